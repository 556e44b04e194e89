"""
Parsing of HeyGen notification emails into completion events.

HeyGen sends a message with a share link when a translation finishes, and a
failure notice when it cannot process a video. The share or video ID in the
link is the ``video_translate_id`` returned at submission time.

The sender domain also carries invoices, credit warnings and newsletters.
Those are skipped, not treated as unparseable notices.
"""

import re

from dubsync.core.clock import utcnow
from dubsync.core.exceptions import CompletionParseError
from dubsync.schemas.completion import MailboxMessage
from dubsync.schemas.translation import CompletionEvent

EMBED_URL = "https://app.heygen.com/embeds/{token}"

# Ordered most to least specific
TOKEN_PATTERNS = [
    re.compile(r"https?://app\.heygen\.com/video-translate/share/([A-Za-z0-9_-]+)"),
    re.compile(r"https?://app\.heygen\.com/videos/([A-Za-z0-9_-]+)"),
    re.compile(r"https?://app\.heygen\.com/embeds/([A-Za-z0-9_-]+)"),
    re.compile(r"https?://(?:app\.|www\.)?heygen\.com/share/([A-Za-z0-9_-]+)"),
    re.compile(r"video[_ ]translate[_ ]id[:=\s]+([A-Za-z0-9_-]+)", re.IGNORECASE),
]

FAILURE_PATTERN = re.compile(
    r"\b(failed|failure|could not|couldn't|unable to|unsuccessful|was not successful)\b|失败|无法",
    re.IGNORECASE,
)

SUCCESS_PATTERN = re.compile(
    r"\b(ready|completed?|finished|is done|successfully|succeeded)\b|完成|成功",
    re.IGNORECASE,
)

SERVICE_SUBJECT_PATTERN = re.compile(r"heygen|video translat|视频翻译", re.IGNORECASE)

NOTICE_SUBJECT_PATTERN = re.compile(r"video|translat|视频|翻译", re.IGNORECASE)

MAX_DETAIL_LENGTH = 500


def is_service_message(message: MailboxMessage, sender_domain: str) -> bool:
    """True if the message was sent by (or is about) the dubbing service."""
    sender = message.sender.lower()
    if sender_domain and sender_domain.lower() in sender:
        return True
    return bool(SERVICE_SUBJECT_PATTERN.search(message.subject))


def find_link(text: str) -> tuple[str | None, str | None]:
    """
    Locate the correlation token and, for share links, the share page URL.

    Returns:
        tuple: (token, share_url); either may be None
    """
    for pattern in TOKEN_PATTERNS:
        match = pattern.search(text)
        if match:
            link = match.group(0)
            return match.group(1), link if "/share/" in link else None
    return None, None


def extract_token(text: str) -> str | None:
    return find_link(text)[0]


def _failure_detail(message: MailboxMessage) -> str:
    if FAILURE_PATTERN.search(message.subject):
        return message.subject
    for line in message.body.splitlines():
        if FAILURE_PATTERN.search(line):
            return line.strip()[:MAX_DETAIL_LENGTH]
    return message.subject


def classify_outcome(message: MailboxMessage) -> str | None:
    """
    Decide success or failure from the wording of a notice.

    The subject is read first; the body only decides when the subject states
    neither outcome. Returns None when neither part states one.
    """
    for text in (message.subject, message.body):
        if FAILURE_PATTERN.search(text):
            return "failure"
        if SUCCESS_PATTERN.search(text):
            return "success"
    return None


def parse_message(message: MailboxMessage, sender_domain: str = "heygen.com") -> CompletionEvent | None:
    """
    Parse a mailbox message.

    Args:
        message: Fetched message
        sender_domain: Domain the dubbing service sends from

    Returns:
        CompletionEvent, or None if the message is not a translation notice
        from the dubbing service

    Raises:
        CompletionParseError: A translation notice without a correlation token
            or without any outcome wording
    """
    if not is_service_message(message, sender_domain):
        return None

    token, share_url = find_link(f"{message.subject}\n{message.body}")
    if not token and not NOTICE_SUBJECT_PATTERN.search(message.subject):
        return None

    if not token:
        raise CompletionParseError(
            f"No correlation token in message {message.uid} ({message.subject!r})"
        )

    outcome = classify_outcome(message)
    if outcome is None:
        raise CompletionParseError(
            f"Message {message.uid} ({message.subject!r}) states neither success nor failure"
        )

    failed = outcome == "failure"
    return CompletionEvent(
        token=token,
        outcome=outcome,
        received_at=message.received_at or utcnow(),
        message_uid=message.uid,
        result_url=None if failed else EMBED_URL.format(token=token),
        share_url=share_url,
        detail=_failure_detail(message) if failed else None,
    )
