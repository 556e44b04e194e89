"""
IMAP mailbox client for dubbing-service notifications.

imaplib is blocking, so each fetch runs in a worker thread. Messages are
fetched with BODY.PEEK so the mailbox's read flags are left untouched; the
watcher tracks its own UID marker instead.
"""

import asyncio
import email
import imaplib
from datetime import UTC, datetime
from email.message import EmailMessage
from email.policy import default as default_policy
from email.utils import parsedate_to_datetime

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dubsync.core.config import settings
from dubsync.core.exceptions import MailboxConnectionError, MailboxError
from dubsync.core.logging import get_logger
from dubsync.schemas.completion import MailboxBatch, MailboxConfig, MailboxMarker, MailboxMessage

logger = get_logger(__name__)

_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def imap_date(value: datetime) -> str:
    """Format a date as IMAP SEARCH expects (``18-Oct-2026``)."""
    return f"{value.day}-{_MONTHS[value.month - 1]}-{value.year}"


def _message_text(message: EmailMessage) -> str:
    parts = []
    for part in message.walk():
        if part.get_content_maintype() == "multipart":
            continue
        if part.get_content_type() not in ("text/plain", "text/html"):
            continue
        try:
            parts.append(part.get_content())
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            parts.append(payload.decode("utf-8", errors="replace"))
    return "\n".join(parts)


def _received_at(message: EmailMessage) -> datetime | None:
    raw = message.get("Date")
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(str(raw))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class ImapMailboxClient:
    """Reads notification messages from an IMAP folder by UID."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool | None = None,
        timeout: int | None = None,
        max_retries: int = 3,
        retry_wait_min: float = 2,
        retry_wait_max: float = 10,
    ):
        self.host = host or settings.mailbox_host
        self.port = port or settings.mailbox_port
        self.user = user or settings.mailbox_user
        self.password = password or settings.mailbox_password
        self.use_tls = settings.mailbox_use_tls if use_tls is None else use_tls
        self.timeout = timeout or settings.mailbox_timeout
        self.max_retries = max_retries
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max

        if not self.host:
            raise ValueError("Mailbox host is required")

    async def fetch_since(self, marker: MailboxMarker, config: MailboxConfig) -> MailboxBatch:
        """
        Fetch messages after the marker, oldest first.

        When the marker is empty or belongs to another UIDVALIDITY, messages
        since ``config.since`` are returned instead.

        Raises:
            MailboxConnectionError: Connection kept failing after retries
            MailboxError: Authentication or protocol error
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=self._retry_wait_min, max=self._retry_wait_max),
            retry=retry_if_exception_type(MailboxConnectionError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying mailbox fetch (attempt {attempt.retry_state.attempt_number})")
                return await asyncio.to_thread(self._fetch_blocking, marker, config)

    def _connect(self) -> imaplib.IMAP4:
        try:
            if self.use_tls:
                conn = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
            else:
                conn = imaplib.IMAP4(self.host, self.port, timeout=self.timeout)
        except OSError as e:
            raise MailboxConnectionError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        try:
            conn.login(self.user, self.password)
        except imaplib.IMAP4.error as e:
            conn.shutdown()
            raise MailboxError(f"Mailbox login failed: {e}") from e
        return conn

    def _fetch_blocking(self, marker: MailboxMarker, config: MailboxConfig) -> MailboxBatch:
        conn = self._connect()
        try:
            typ, _ = conn.select(config.folder, readonly=True)
            if typ != "OK":
                raise MailboxError(f"Cannot select folder {config.folder}")

            _, validity_data = conn.response("UIDVALIDITY")
            uid_validity = int(validity_data[0]) if validity_data and validity_data[0] else None

            resume = (
                marker.last_uid is not None
                and marker.uid_validity is not None
                and marker.uid_validity == uid_validity
            )
            if resume:
                criteria = ["UID", f"{marker.last_uid + 1}:*"]
            elif config.since is not None:
                criteria = ["SINCE", imap_date(config.since)]
            else:
                criteria = ["ALL"]

            typ, data = conn.uid("SEARCH", None, *criteria)
            if typ != "OK":
                raise MailboxError(f"UID SEARCH failed: {data}")

            uids = sorted(int(u) for u in (data[0] or b"").split())
            if resume:
                # "N:*" always matches the newest message, even below N
                uids = [u for u in uids if u > marker.last_uid]
            uids = uids[: config.limit]

            messages = [self._fetch_message(conn, uid) for uid in uids]
            logger.debug(f"Fetched {len(messages)} messages from {config.folder}")
            return MailboxBatch(uid_validity=uid_validity, messages=messages)
        except (imaplib.IMAP4.abort, OSError) as e:
            raise MailboxConnectionError(f"Mailbox connection lost: {e}") from e
        except imaplib.IMAP4.error as e:
            raise MailboxError(f"Mailbox protocol error: {e}") from e
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                logger.debug("Mailbox logout failed", exc_info=True)

    def _fetch_message(self, conn: imaplib.IMAP4, uid: int) -> MailboxMessage:
        typ, data = conn.uid("FETCH", str(uid), "(BODY.PEEK[])")
        if typ != "OK":
            raise MailboxError(f"FETCH {uid} failed")

        raw = next((item[1] for item in data if isinstance(item, tuple)), b"")
        parsed = email.message_from_bytes(raw, policy=default_policy)
        return MailboxMessage(
            uid=uid,
            sender=str(parsed.get("From", "")),
            subject=str(parsed.get("Subject", "")),
            body=_message_text(parsed),
            received_at=_received_at(parsed),
        )
