"""
HeyGen video translation client.

Submits catalog videos to the HeyGen video translation API. Completion is
reported out of band by email; the public share page linked from that email
names the source video when the email cannot be matched by token alone.
"""

import re

import httpx

from dubsync.core.config import settings
from dubsync.core.exceptions import ExternalServiceError, SubmissionFailedError
from dubsync.core.logging import get_logger

logger = get_logger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={external_id}"
SOURCE_VIDEO_PATTERN = re.compile(r"https?://(?:www\.)?youtube\.com/watch\?v=([A-Za-z0-9_-]{11})")


class HeyGenClient:
    """
    Async HTTP client for HeyGen video translation.

    Submissions are not retried here: a failure is reported straight back to
    the user who asked for the translation.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        output_language: str | None = None,
        timeout: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or settings.heygen_api_key
        self.base_url = (base_url or settings.heygen_base_url).rstrip("/")
        self.output_language = output_language or settings.heygen_output_language
        self.timeout = timeout or settings.heygen_timeout
        self._transport = transport

        if not self.api_key:
            raise ValueError("HeyGen API key is required")

    def _get_headers(self) -> dict:
        return {
            "X-Api-Key": self.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def submit(self, external_id: str, title: str | None = None) -> str:
        """
        Submit a video for translation.

        Args:
            external_id: Catalog video ID
            title: Title shown in the HeyGen dashboard

        Returns:
            str: The ``video_translate_id`` used to correlate the completion email

        Raises:
            SubmissionFailedError: The request failed or HeyGen rejected it
        """
        payload = {
            "video_url": WATCH_URL.format(external_id=external_id),
            "output_language": self.output_language,
            "title": title or external_id,
        }
        kwargs = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**kwargs) as client:
                response = await client.post(
                    f"{self.base_url}/v2/video_translate",
                    json=payload,
                    headers=self._get_headers(),
                )
        except httpx.TimeoutException as e:
            raise SubmissionFailedError(external_id, f"HeyGen request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise SubmissionFailedError(external_id, f"HeyGen request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        error = body.get("error") if isinstance(body, dict) else None
        if response.status_code >= 400 or error:
            message = self._error_message(error) or f"HTTP {response.status_code}: {response.text[:200]}"
            raise SubmissionFailedError(external_id, message)

        token = ((body.get("data") or {}) if isinstance(body, dict) else {}).get("video_translate_id")
        if not token:
            raise SubmissionFailedError(external_id, "HeyGen response did not include a video_translate_id")

        logger.info(f"Submitted {external_id} to HeyGen as {token}")
        return token

    @staticmethod
    def _error_message(error) -> str | None:
        if not error:
            return None
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or str(error)
        return str(error)


class HeyGenSharePage:
    """Reads the source video ID off a public HeyGen share page."""

    def __init__(self, timeout: int | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout or settings.heygen_timeout
        self._transport = transport

    async def resolve_external_id(self, share_url: str) -> str | None:
        """
        Fetch the share page and pull the YouTube watch ID it embeds.

        Returns None when the page is gone or names no source video.

        Raises:
            ExternalServiceError: The page could not be fetched
        """
        kwargs = {"timeout": self.timeout, "follow_redirects": True}
        if self._transport is not None:
            kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**kwargs) as client:
                response = await client.get(share_url, headers={"Accept": "text/html"})
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Share page request failed: {e}") from e

        if response.status_code >= 500:
            raise ExternalServiceError(f"Share page returned HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.warning(f"Share page {share_url} returned HTTP {response.status_code}")
            return None

        match = SOURCE_VIDEO_PATTERN.search(response.text)
        if not match:
            logger.warning(f"No source video found on share page {share_url}")
            return None
        return match.group(1)
