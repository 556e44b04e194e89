"""
YouTube Data API v3 client.

Provides the catalog operations used by sync and backfill:
- Channel and playlist listing with pagination
- Video detail lookup (snippet + duration)
"""

import re
from datetime import UTC, datetime

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dubsync.core.config import settings
from dubsync.core.exceptions import (
    CatalogConnectionError,
    CatalogError,
    CatalogNotFoundError,
    UpstreamQuotaExceededError,
)
from dubsync.core.logging import get_logger
from dubsync.models import SourceType
from dubsync.schemas.catalog import CatalogItem, CatalogItemDetail, CatalogPage
from dubsync.services.quota_service import QUOTA_COSTS, ApiKeyPool

logger = get_logger(__name__)

PAGE_SIZE = 50

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)

# Error reasons YouTube uses when the project's daily quota is spent
_QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded", "rateLimitExceeded"}


def parse_iso8601_duration(value: str | None) -> int | None:
    """
    Convert an ISO 8601 duration such as ``PT1H2M3S`` to seconds.

    Returns None when the value is missing or not a duration.
    """
    if not value or not isinstance(value, str):
        return None
    match = _DURATION_RE.match(value)
    if not match:
        logger.warning(f"Unparseable duration: {value!r}")
        return None
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _best_thumbnail(snippet: dict) -> str | None:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("maxres", "standard", "high", "medium", "default"):
        if size in thumbnails and thumbnails[size].get("url"):
            return thumbnails[size]["url"]
    return None


class YouTubeClient:
    """
    Async HTTP client for the YouTube Data API.

    Transient failures (connection errors, timeouts, 5xx) are retried with
    exponential backoff; quota and not-found responses are raised as typed
    errors without retrying. Callers reserve quota for the first attempt;
    each retry that goes back to the API is charged to the same key here.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
        max_retries: int | None = None,
        proxy: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        quota: ApiKeyPool | None = None,
        retry_wait_min: float = 2,
        retry_wait_max: float = 10,
    ):
        """
        Initialize YouTube client.

        Args:
            api_key: API key (defaults to settings.youtube_api_key)
            base_url: API root (defaults to settings.youtube_base_url)
            timeout: Request timeout in seconds
            max_retries: Attempts per request for transient failures
            proxy: Optional HTTP proxy URL
            transport: Custom httpx transport (tests)
            quota: Key pool charged for retried requests
            retry_wait_min: Minimum backoff in seconds
            retry_wait_max: Maximum backoff in seconds
        """
        self.api_key = api_key or settings.youtube_api_key
        self.base_url = (base_url or settings.youtube_base_url).rstrip("/")
        self.timeout = timeout or settings.youtube_timeout
        self.max_retries = max_retries or settings.youtube_max_retries
        self.proxy = proxy if proxy is not None else settings.youtube_proxy_url
        self._transport = transport
        self._quota = quota
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max

        if not self.api_key:
            raise ValueError("YouTube API key is required")

    # =========================================================================
    # HTTP
    # =========================================================================

    def _client(self) -> httpx.AsyncClient:
        kwargs = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.proxy:
            kwargs["proxy"] = self.proxy
        return httpx.AsyncClient(**kwargs)

    async def _request(self, path: str, params: dict, api_key: str | None = None) -> dict:
        """
        Make a single GET request.

        Raises:
            UpstreamQuotaExceededError: 403 with a quota reason
            CatalogNotFoundError: 404
            CatalogConnectionError: Connection failures, timeouts, 5xx
            CatalogError: Other errors
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        query = {**{k: v for k, v in params.items() if v is not None}, "key": api_key or self.api_key}

        try:
            async with self._client() as client:
                response = await client.get(url, params=query, headers={"Accept": "application/json"})
        except httpx.ConnectError as e:
            raise CatalogConnectionError(f"Connection failed: {e}") from e
        except httpx.TimeoutException as e:
            raise CatalogConnectionError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise CatalogError(f"Request failed: {e}") from e

        if response.status_code == 403:
            reason, message = self._error_reason(response)
            if reason in _QUOTA_REASONS:
                raise UpstreamQuotaExceededError(f"YouTube quota exceeded: {message}")
            raise CatalogError(f"Forbidden: {message}")
        if response.status_code == 404:
            raise CatalogNotFoundError(f"Not found: {path}")
        if response.status_code >= 500:
            raise CatalogConnectionError(f"HTTP {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            _, message = self._error_reason(response)
            raise CatalogError(f"HTTP {response.status_code}: {message}")

        return response.json()

    async def _request_with_retry(
        self, path: str, params: dict, cost: int, api_key: str | None = None
    ) -> dict:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=self._retry_wait_min, max=self._retry_wait_max),
            retry=retry_if_exception_type(CatalogConnectionError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying {path} (attempt {attempt.retry_state.attempt_number})")
                    if self._quota is not None:
                        self._quota.charge(api_key or self.api_key, cost)
                return await self._request(path, params, api_key)

    @staticmethod
    def _error_reason(response: httpx.Response) -> tuple[str | None, str]:
        try:
            error = response.json().get("error", {})
        except ValueError:
            return None, response.text[:200]
        errors = error.get("errors") or [{}]
        return errors[0].get("reason"), error.get("message", "")

    # =========================================================================
    # Catalog operations
    # =========================================================================

    def listing_cost(self, source_type: str) -> int:
        if source_type == SourceType.PLAYLIST:
            return QUOTA_COSTS["playlistItems.list"]
        return QUOTA_COSTS["search.list"]

    async def list_channel_items(
        self,
        source_type: str,
        source_id: str,
        page_token: str | None = None,
        published_after: datetime | None = None,
        api_key: str | None = None,
    ) -> CatalogPage:
        """
        List one page of a channel's or playlist's videos, newest first.

        Args:
            source_type: ``channel`` or ``playlist``
            source_id: Channel or playlist ID
            page_token: Token from the previous page
            published_after: Only return videos published after this time
            api_key: Key granted by the quota pool (defaults to the client's key)

        Returns:
            CatalogPage: Items in listing order and the next page token
        """
        if source_type == SourceType.PLAYLIST:
            return await self._list_playlist(source_id, page_token, published_after, api_key)
        return await self._list_channel(source_id, page_token, published_after, api_key)

    async def _list_channel(
        self,
        channel_id: str,
        page_token: str | None,
        published_after: datetime | None,
        api_key: str | None = None,
    ) -> CatalogPage:
        data = await self._request_with_retry(
            "search",
            {
                "part": "snippet",
                "channelId": channel_id,
                "type": "video",
                "order": "date",
                "maxResults": PAGE_SIZE,
                "pageToken": page_token,
                "publishedAfter": published_after.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
                if published_after
                else None,
            },
            QUOTA_COSTS["search.list"],
            api_key,
        )

        items = []
        for entry in data.get("items", []):
            video_id = (entry.get("id") or {}).get("videoId")
            if not video_id:
                continue
            items.append(self._item_from_snippet(video_id, entry.get("snippet") or {}))

        logger.debug(f"Listed {len(items)} items for channel {channel_id}")
        return CatalogPage(
            items=items,
            next_page_token=data.get("nextPageToken"),
            unit_cost=QUOTA_COSTS["search.list"],
        )

    async def _list_playlist(
        self,
        playlist_id: str,
        page_token: str | None,
        published_after: datetime | None,
        api_key: str | None = None,
    ) -> CatalogPage:
        data = await self._request_with_retry(
            "playlistItems",
            {
                "part": "snippet,contentDetails",
                "playlistId": playlist_id,
                "maxResults": PAGE_SIZE,
                "pageToken": page_token,
            },
            QUOTA_COSTS["playlistItems.list"],
            api_key,
        )

        items = []
        reached_older = False
        for entry in data.get("items", []):
            details = entry.get("contentDetails") or {}
            snippet = entry.get("snippet") or {}
            video_id = details.get("videoId") or (snippet.get("resourceId") or {}).get("videoId")
            if not video_id:
                continue
            item = self._item_from_snippet(video_id, snippet)
            published = _parse_timestamp(details.get("videoPublishedAt")) or item.published_at
            item.published_at = published
            # playlistItems has no server-side date filter
            if published_after and published and published <= published_after:
                reached_older = True
                continue
            items.append(item)

        return CatalogPage(
            items=items,
            next_page_token=None if reached_older else data.get("nextPageToken"),
            unit_cost=QUOTA_COSTS["playlistItems.list"],
        )

    async def get_item_detail(self, item_id: str, api_key: str | None = None) -> CatalogItemDetail:
        """
        Fetch full metadata for one video.

        Raises:
            CatalogNotFoundError: If the video does not exist or is private
        """
        data = await self._request_with_retry(
            "videos",
            {"part": "snippet,contentDetails", "id": item_id},
            QUOTA_COSTS["videos.list"],
            api_key,
        )
        entries = data.get("items") or []
        if not entries:
            raise CatalogNotFoundError(f"Video {item_id} not found")

        entry = entries[0]
        base = self._item_from_snippet(item_id, entry.get("snippet") or {})
        return CatalogItemDetail(
            **base.model_dump(),
            duration_seconds=parse_iso8601_duration((entry.get("contentDetails") or {}).get("duration")),
        )

    @staticmethod
    def _item_from_snippet(video_id: str, snippet: dict) -> CatalogItem:
        return CatalogItem(
            external_id=video_id,
            title=snippet.get("title", ""),
            description=snippet.get("description"),
            thumbnail_url=_best_thumbnail(snippet),
            published_at=_parse_timestamp(snippet.get("publishedAt")),
            channel_id=snippet.get("channelId"),
            channel_title=snippet.get("channelTitle"),
        )
