"""
Unit tests for the IMAP mailbox client against a scripted IMAP connection.
"""

import asyncio
import imaplib
from datetime import UTC, datetime
from email.message import EmailMessage

import pytest

from dubsync.core.exceptions import MailboxConnectionError, MailboxError
from dubsync.schemas.completion import MailboxConfig, MailboxMarker
from dubsync.services.mailbox_client import ImapMailboxClient, imap_date


def raw_message(subject, body, sender="HeyGen <noreply@heygen.com>"):
    message = EmailMessage()
    message["From"] = sender
    message["Subject"] = subject
    message["Date"] = "Sun, 18 Oct 2026 05:00:00 -0700"
    message.set_content(body)
    return message.as_bytes()


class FakeImap:
    """Scripted subset of imaplib.IMAP4 used by the client."""

    def __init__(self, messages: dict[int, bytes], uid_validity: int = 7):
        self.messages = messages
        self.uid_validity = uid_validity
        self.searches = []
        self.fetched = []
        self.selected = None
        self.logged_out = False
        self.login_error = None

    def login(self, user, password):
        if self.login_error:
            raise self.login_error
        return "OK", [b"Logged in"]

    def select(self, folder, readonly=False):
        self.selected = (folder, readonly)
        return "OK", [str(len(self.messages)).encode()]

    def response(self, code):
        return code, [str(self.uid_validity).encode()]

    def uid(self, command, *args):
        if command == "SEARCH":
            criteria = args[1:]
            self.searches.append(criteria)
            uids = sorted(self.messages)
            if criteria[0] == "UID":
                start = int(criteria[1].split(":")[0])
                # N:* matches the highest UID even when it is below N
                uids = [u for u in uids if u >= start] or uids[-1:]
            return "OK", [" ".join(str(u) for u in uids).encode()]
        if command == "FETCH":
            uid = int(args[0])
            self.fetched.append(uid)
            raw = self.messages[uid]
            return "OK", [(f"{uid} (UID {uid} BODY[] {{{len(raw)}}}".encode(), raw), b")"]
        raise AssertionError(f"Unexpected command {command}")

    def logout(self):
        self.logged_out = True

    def shutdown(self):
        self.logged_out = True


@pytest.fixture
def imap(monkeypatch):
    conn = FakeImap(
        {
            1: raw_message(
                "Your video translation is ready",
                "Watch: https://app.heygen.com/video-translate/share/tok1",
            ),
            2: raw_message("Team lunch", "Pizza at noon", sender="colleague@example.org"),
            3: raw_message(
                "Your video translation is ready",
                "Watch: https://app.heygen.com/video-translate/share/tok3",
            ),
        }
    )
    monkeypatch.setattr(imaplib, "IMAP4_SSL", lambda host, port, timeout=None: conn)
    return conn


@pytest.fixture
def client() -> ImapMailboxClient:
    return ImapMailboxClient(
        host="imap.test",
        port=993,
        user="bot@example.org",
        password="secret",
        use_tls=True,
        timeout=5,
        max_retries=2,
        retry_wait_min=0,
        retry_wait_max=0,
    )


def fetch(client, marker=None, **config):
    return asyncio.run(client.fetch_since(marker or MailboxMarker(), MailboxConfig(**config)))


class TestFetch:
    def test_initial_fetch_uses_lookback(self, client, imap):
        batch = fetch(client, since=datetime(2026, 10, 15, 12, 0, tzinfo=UTC))

        assert imap.searches == [("SINCE", "15-Oct-2026")]
        assert imap.selected == ("INBOX", True)
        assert imap.logged_out is True
        assert batch.uid_validity == 7
        assert [m.uid for m in batch.messages] == [1, 2, 3]

        first = batch.messages[0]
        assert first.sender == "HeyGen <noreply@heygen.com>"
        assert first.subject == "Your video translation is ready"
        assert "video-translate/share/tok1" in first.body
        assert first.received_at == datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def test_no_lookback_searches_all(self, client, imap):
        fetch(client)
        assert imap.searches == [("ALL",)]

    def test_resume_from_marker(self, client, imap):
        batch = fetch(client, MailboxMarker(uid_validity=7, last_uid=2))

        assert imap.searches == [("UID", "3:*")]
        assert [m.uid for m in batch.messages] == [3]

    def test_nothing_new_after_marker(self, client, imap):
        """The highest UID matched by N:* is dropped when it is not past the marker."""
        batch = fetch(client, MailboxMarker(uid_validity=7, last_uid=3))

        assert batch.messages == []
        assert imap.fetched == []

    def test_marker_from_other_uid_validity_ignored(self, client, imap):
        fetch(
            client,
            MailboxMarker(uid_validity=6, last_uid=2),
            since=datetime(2026, 10, 1, tzinfo=UTC),
        )
        assert imap.searches == [("SINCE", "1-Oct-2026")]

    def test_limit(self, client, imap):
        batch = fetch(client, limit=2)
        assert [m.uid for m in batch.messages] == [1, 2]


class TestFailures:
    def test_connect_failure_retried(self, client, monkeypatch):
        attempts = []

        def refuse(host, port, timeout=None):
            attempts.append(host)
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(imaplib, "IMAP4_SSL", refuse)

        with pytest.raises(MailboxConnectionError):
            fetch(client)
        assert len(attempts) == 2

    def test_login_failure_not_retried(self, client, imap):
        imap.login_error = imaplib.IMAP4.error("AUTHENTICATIONFAILED")

        with pytest.raises(MailboxError) as exc_info:
            fetch(client)

        assert not isinstance(exc_info.value, MailboxConnectionError)
        assert imap.searches == []

    def test_host_required(self):
        with pytest.raises(ValueError):
            ImapMailboxClient(host="")


def test_imap_date():
    assert imap_date(datetime(2026, 3, 5, tzinfo=UTC)) == "5-Mar-2026"
