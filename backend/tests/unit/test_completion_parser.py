"""
Unit tests for HeyGen notification parsing.
"""

import pytest

from dubsync.core.exceptions import CompletionParseError
from dubsync.schemas.completion import MailboxMessage
from dubsync.services.completion_parser import extract_token, is_service_message, parse_message


def message(subject, body="", sender="HeyGen <noreply@heygen.com>", uid=1):
    return MailboxMessage(uid=uid, sender=sender, subject=subject, body=body)


class TestExtractToken:
    @pytest.mark.parametrize(
        "text",
        [
            "https://app.heygen.com/video-translate/share/abc_123-XYZ",
            "View: https://app.heygen.com/videos/abc_123-XYZ?sid=email",
            "<a href=\"https://app.heygen.com/embeds/abc_123-XYZ\">Watch</a>",
            "https://www.heygen.com/share/abc_123-XYZ",
            "video_translate_id: abc_123-XYZ",
        ],
    )
    def test_known_link_shapes(self, text):
        assert extract_token(text) == "abc_123-XYZ"

    def test_no_token(self):
        assert extract_token("Thanks for using HeyGen!") is None

    def test_share_link_preferred(self):
        text = (
            "https://app.heygen.com/embeds/embed-id "
            "https://app.heygen.com/video-translate/share/share-id"
        )
        assert extract_token(text) == "share-id"


class TestServiceMessage:
    def test_sender_domain(self):
        assert is_service_message(message("Hello"), "heygen.com")

    def test_subject_fallback(self):
        msg = message("Your HeyGen video translation is ready", sender="relay@example.org")
        assert is_service_message(msg, "heygen.com")

    def test_unrelated(self):
        msg = message("Weekly newsletter", sender="news@example.org")
        assert not is_service_message(msg, "heygen.com")


class TestParseMessage:
    def test_success(self):
        event = parse_message(
            message(
                "Your video translation is ready",
                "Watch: https://app.heygen.com/video-translate/share/tok42",
                uid=9,
            )
        )

        assert event.token == "tok42"
        assert event.outcome == "success"
        assert event.result_url == "https://app.heygen.com/embeds/tok42"
        assert event.message_uid == 9
        assert event.detail is None
        assert event.share_url == "https://app.heygen.com/video-translate/share/tok42"

    def test_failure(self):
        event = parse_message(
            message(
                "Video translation failed",
                "Details: https://app.heygen.com/videos/tok42",
            )
        )

        assert event.outcome == "failure"
        assert event.result_url is None
        assert event.detail == "Video translation failed"

    def test_failure_word_in_body_does_not_override_subject(self):
        """A subject that states an outcome wins over the body."""
        event = parse_message(
            message(
                "Your video translation is ready",
                "If playback failed, open https://app.heygen.com/video-translate/share/tok42",
            )
        )
        assert event.outcome == "success"

    def test_failure_stated_only_in_body(self):
        event = parse_message(
            message(
                "Update on your video translation",
                "Unfortunately we could not complete your video translation.\n"
                "Details: https://app.heygen.com/video-translate/share/tokB",
            )
        )

        assert event.token == "tokB"
        assert event.outcome == "failure"
        assert event.result_url is None
        assert event.detail == "Unfortunately we could not complete your video translation."

    def test_success_stated_only_in_body(self):
        event = parse_message(
            message(
                "Update on your video translation",
                "Your video has finished processing: https://app.heygen.com/video-translate/share/tokC",
            )
        )
        assert event.outcome == "success"
        assert event.share_url == "https://app.heygen.com/video-translate/share/tokC"

    def test_no_outcome_wording(self):
        with pytest.raises(CompletionParseError):
            parse_message(
                message(
                    "Update on your video translation",
                    "See https://app.heygen.com/video-translate/share/tokD",
                )
            )

    def test_non_share_link_has_no_share_url(self):
        event = parse_message(message("Video translation failed", "https://app.heygen.com/videos/tok42"))
        assert event.share_url is None

    def test_non_service_message(self):
        msg = message("Lunch?", "https://app.heygen.com/videos/tok42", sender="friend@example.org")
        assert parse_message(msg) is None

    @pytest.mark.parametrize(
        "subject,body",
        [
            ("Your HeyGen credits are running low", "Top up now"),
            ("Your HeyGen invoice for October", "Payment failed. Update your card."),
            ("Welcome to HeyGen", "Thanks for signing up"),
        ],
    )
    def test_account_mail_skipped(self, subject, body):
        assert parse_message(message(subject, body)) is None

    def test_notice_without_token(self):
        with pytest.raises(CompletionParseError):
            parse_message(message("Your video translation is ready", "Open the app to watch it"))
