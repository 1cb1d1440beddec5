"""Tests for message validation and normalization."""

import pytest

from zapcrm.domain.messages import (
    get_preview_content,
    has_valid_content,
    infer_type_from_mimetype,
    infer_type_from_url,
    is_base64_content,
    is_placeholder_content,
    is_system_notification,
    is_unsupported_message_type,
    sanitize_content,
    truncate_content,
    validate_message_content,
    validate_message_type,
)


class TestValidateMessageContent:
    def test_text_is_valid(self):
        result = validate_message_content("Olá, tudo bem?")
        assert result.is_valid is True
        assert result.reason is None

    def test_media_without_caption_is_valid(self):
        assert validate_message_content("", "https://media.example.com/a.jpg").is_valid is True

    def test_empty(self):
        result = validate_message_content("", None)
        assert result.is_valid is False
        assert result.reason == "empty_message"

    @pytest.mark.parametrize("placeholder", ["[Text]", "[MEDIA]", "[mídia]", "[Áudio]", "[sticker]"])
    def test_placeholders(self, placeholder):
        result = validate_message_content(placeholder)
        assert result.is_valid is False
        assert result.reason == "placeholder_content"

    def test_placeholder_with_media_is_still_rejected(self):
        result = validate_message_content("[image]", "https://media.example.com/a.jpg")
        assert result.reason == "placeholder_content"

    def test_placeholder_must_match_exactly(self):
        assert is_placeholder_content("[text] oi") is False
        assert is_placeholder_content(None) is False


class TestHasValidContent:
    def test_media_always_counts(self):
        assert has_valid_content("[image]", "https://media.example.com/a.jpg") is True

    def test_placeholder_text(self):
        assert has_valid_content("[image]") is False

    def test_empty(self):
        assert has_valid_content(None) is False


class TestSanitizeAndTruncate:
    def test_sanitize(self):
        assert sanitize_content("  a\x00b\r\nc\rd  ") == "ab\nc\nd"

    def test_sanitize_empty(self):
        assert sanitize_content(None) == ""

    def test_truncate_marks_cut(self):
        assert truncate_content("abcdef", max_length=3) == "abc..."

    def test_truncate_short_content_unchanged(self):
        assert truncate_content("abc", max_length=3) == "abc"

    def test_truncate_default_limit(self):
        content = "x" * 10001
        assert len(truncate_content(content)) == 10003


class TestMessageTypes:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("chat", "text"),
            ("ptt", "audio"),
            ("IMAGE", "image"),
            ("document", "document"),
            ("location", "location"),
        ],
    )
    def test_aliases_and_canonical(self, raw, expected):
        result = validate_message_type(raw)
        assert result.is_valid is True
        assert result.normalized_type == expected

    def test_unknown_becomes_text(self):
        result = validate_message_type("hologram")
        assert result.is_valid is True
        assert result.normalized_type == "text"

    def test_none_becomes_text(self):
        assert validate_message_type(None).normalized_type == "text"

    @pytest.mark.parametrize("message_type", ["poll", "poll_creation", "REACTION", "order"])
    def test_unsupported(self, message_type):
        assert is_unsupported_message_type(message_type) is True

    def test_supported(self):
        assert is_unsupported_message_type("image") is False
        assert is_unsupported_message_type(None) is False


class TestPreview:
    def test_text_short(self):
        assert get_preview_content("oi", "text") == "oi"

    def test_text_long(self):
        assert get_preview_content("x" * 60, "text") == "x" * 47 + "..."

    def test_media_without_caption(self):
        assert get_preview_content("", "image") == "[Imagem]"

    def test_media_with_caption_uses_remaining_budget(self):
        preview = get_preview_content("y" * 100, "document", max_length=20)
        assert preview == "[Documento] " + "y" * 8

    def test_unknown_type_label(self):
        assert get_preview_content("", "hologram") == "[hologram]"


class TestSystemNotification:
    def test_protocol_type(self):
        assert is_system_notification({"_data": {"type": "e2e_notification"}}) is True

    def test_top_level_type(self):
        assert is_system_notification({"type": "revoked"}) is True

    def test_subtype(self):
        assert is_system_notification({"_data": {"type": "chat", "subtype": "url"}}) is True

    def test_regular_chat(self):
        assert is_system_notification({"_data": {"type": "chat"}, "body": "oi"}) is False

    def test_empty(self):
        assert is_system_notification(None) is False


class TestBase64Detection:
    def test_short_strings_never_base64(self):
        assert is_base64_content("/9j/abc") is False

    def test_known_prefix(self):
        assert is_base64_content("/9j/" + "A" * 200) is True

    def test_long_unbroken_alphabet(self):
        assert is_base64_content("Qk" * 300) is True

    def test_long_prose(self):
        assert is_base64_content("palavra " * 100) is False


class TestTypeInference:
    @pytest.mark.parametrize(
        "mimetype,expected",
        [
            ("audio/ogg; codecs=opus", "audio"),
            ("image/jpeg", "image"),
            ("video/mp4", "video"),
            ("application/pdf", "document"),
            ("text/plain", None),
            (None, None),
        ],
    )
    def test_from_mimetype(self, mimetype, expected):
        assert infer_type_from_mimetype(mimetype) == expected

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://m.example.com/file.OGG", "audio"),
            ("https://m.example.com/ptt/123", "audio"),
            ("https://m.example.com/photo.jpeg", "image"),
            ("https://m.example.com/clip.mp4", "video"),
            ("https://m.example.com/contract", "document"),
        ],
    )
    def test_from_url(self, url, expected):
        assert infer_type_from_url(url) == expected
