"""
Video and translation endpoints.
"""

import sqlalchemy as sa
from fastapi import APIRouter, Depends, Query

from dubsync.api.deps import get_services
from dubsync.core.db import session_scope
from dubsync.core.exceptions import NotFoundError, ValidationError
from dubsync.models import TranslationStatus, Video
from dubsync.schemas.translation import QueueStatus, SubmissionAccepted, VideoResponse
from dubsync.services.container import Services

router = APIRouter(prefix="/api", tags=["Videos"])


@router.get("/videos", response_model=list[VideoResponse], summary="List videos")
def list_videos(
    translation_status: str | None = Query(default=None, description="Filter by translation status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    services: Services = Depends(get_services),
) -> list[VideoResponse]:
    """List videos, newest first."""
    if translation_status is not None and translation_status not in TranslationStatus.ALL:
        raise ValidationError(f"Unknown translation status: {translation_status}")

    query = sa.select(Video).order_by(Video.published_at.desc(), Video.created_at.desc())
    if translation_status:
        query = query.where(Video.translation_status == translation_status)

    with session_scope(services.session_factory) as session:
        rows = session.scalars(query.offset(offset).limit(limit)).all()
        return [VideoResponse.model_validate(row) for row in rows]


@router.get("/videos/{video_id}", response_model=VideoResponse, summary="Get video")
def get_video(video_id: str, services: Services = Depends(get_services)) -> VideoResponse:
    with session_scope(services.session_factory) as session:
        video = session.get(Video, video_id)
        if video is None:
            raise NotFoundError("Video", video_id)
        return VideoResponse.model_validate(video)


@router.post(
    "/videos/{video_id}/translate",
    response_model=SubmissionAccepted,
    summary="Submit video for translation",
)
async def translate_video(video_id: str, services: Services = Depends(get_services)) -> SubmissionAccepted:
    """
    Submit a video to the dubbing service.

    Raises:
        NotFoundError: No such video (404)
        VideoTooLongError: Duration unknown or too long (422)
        AlreadyInFlightError: Already pending, processing or completed (409)
        SubmissionFailedError: Dubbing service rejected it (502)
    """
    return await services.queue.submit(video_id)


@router.get("/translation-queue", response_model=QueueStatus, summary="Translation queue status")
def translation_queue(services: Services = Depends(get_services)) -> QueueStatus:
    return services.queue.get_queue_status()
