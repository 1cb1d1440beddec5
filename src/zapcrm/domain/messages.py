"""Message validation and normalization before persistence.

Invalid input is never an exception: callers receive a result with a
machine-readable reason and skip persistence.
Security: NEVER log message content (PII).
"""

import re
from dataclasses import dataclass
from typing import Any

from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import safe_log_context

logger = get_logger(__name__)

CANONICAL_TYPES: frozenset[str] = frozenset(
    {"text", "image", "audio", "video", "document", "sticker", "location", "contact"}
)

# Gateway names for canonical types
TYPE_ALIASES: dict[str, str] = {
    "chat": "text",
    "ptt": "audio",
}

# Recognized but not ingested
UNSUPPORTED_TYPES: frozenset[str] = frozenset(
    {"poll", "poll_creation", "reaction", "product", "product_list", "order"}
)

# Media-type markers the gateway leaks into the text field
PLACEHOLDER_CONTENTS: frozenset[str] = frozenset(
    {
        "[text]", "[Text]", "[TEXT]",
        "[media]", "[Media]", "[MEDIA]",
        "[mídia]", "[Mídia]", "[MÍDIA]",
        "[MÃ­dia]",
        "[audio]", "[Audio]", "[AUDIO]",
        "[áudio]", "[Áudio]", "[ÁUDIO]",
        "[image]", "[Image]", "[IMAGE]",
        "[imagem]", "[Imagem]", "[IMAGEM]",
        "[video]", "[Video]", "[VIDEO]",
        "[vídeo]", "[Vídeo]", "[VÍDEO]",
        "[document]", "[Document]", "[DOCUMENT]",
        "[documento]", "[Documento]", "[DOCUMENTO]",
        "[sticker]", "[Sticker]", "[STICKER]",
    }
)

# WAHA protocol traffic that is not a conversation message
SYSTEM_MESSAGE_TYPES: frozenset[str] = frozenset(
    {
        "notification_template",
        "e2e_notification",
        "gp2",
        "ciphertext",
        "protocol",
        "call_log",
        "revoked",
    }
)
SYSTEM_SUBTYPES: frozenset[str] = frozenset({"contact_info_card", "url"})

PREVIEW_LABELS: dict[str, str] = {
    "image": "Imagem",
    "audio": "Audio",
    "video": "Video",
    "document": "Documento",
    "sticker": "Sticker",
    "location": "Localizacao",
    "contact": "Contato",
    "ptt": "Audio",
}

DEFAULT_MAX_LENGTH = 10000
DEFAULT_PREVIEW_LENGTH = 50

_BASE64_PREFIXES = (
    "/9j/",  # jpeg
    "iVBOR",  # png
    "R0lGOD",  # gif
    "UklGR",  # webp
    "AAAA",
    "GkXf",  # webm
    "T2dn",  # ogg
    "data:image",
    "data:audio",
    "data:video",
)
_BASE64_ALPHABET = re.compile(r"^[A-Za-z0-9+/=]+$")


@dataclass(frozen=True)
class MessageValidation:
    """Whether a message candidate is worth persisting."""

    is_valid: bool
    reason: str | None = None


@dataclass(frozen=True)
class TypeValidation:
    """Normalized message type. Unknown types are tolerated as text."""

    is_valid: bool
    normalized_type: str


def is_placeholder_content(content: str | None) -> bool:
    """True if content is a gateway media marker rather than user text."""
    return bool(content) and content in PLACEHOLDER_CONTENTS


def validate_message_content(content: str | None, media_url: str | None = None) -> MessageValidation:
    """Decide whether content/media form a real message.

    Returns:
        Invalid with reason 'empty_message' when there is neither content nor
        media, 'placeholder_content' when content is a gateway marker.
    """
    if not content and not media_url:
        return MessageValidation(is_valid=False, reason="empty_message")

    if is_placeholder_content(content):
        return MessageValidation(is_valid=False, reason="placeholder_content")

    return MessageValidation(is_valid=True)


def has_valid_content(content: str | None, media_url: str | None = None) -> bool:
    """Media always counts; text counts unless it is a placeholder."""
    if media_url:
        return True
    if not content:
        return False
    return not is_placeholder_content(content)


def sanitize_content(content: str | None) -> str:
    """Drop NUL characters, trim, and normalize line endings to LF."""
    if not content:
        return ""
    cleaned = content.replace("\x00", "").strip()
    return cleaned.replace("\r\n", "\n").replace("\r", "\n")


def truncate_content(content: str | None, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Cut content to max_length, marking the cut with an ellipsis."""
    if not content:
        return ""
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def validate_message_type(message_type: str | None) -> TypeValidation:
    """Map gateway types onto the canonical set; unknown types become text."""
    lower_type = (message_type or "").lower()
    normalized = TYPE_ALIASES.get(lower_type, lower_type)

    if normalized in CANONICAL_TYPES:
        return TypeValidation(is_valid=True, normalized_type=normalized)

    logger.warning(
        "unknown message type, defaulting to text",
        extra={"extra_fields": safe_log_context(message_type=lower_type)},
    )
    return TypeValidation(is_valid=True, normalized_type="text")


def is_unsupported_message_type(message_type: str | None) -> bool:
    """Polls, reactions and commerce messages are skipped, not errors."""
    return (message_type or "").lower() in UNSUPPORTED_TYPES


def get_preview_content(
    content: str | None,
    message_type: str,
    max_length: int = DEFAULT_PREVIEW_LENGTH,
) -> str:
    """Short preview for inbox lists and notifications.

    Non-text types get a bracketed label; the label's own length is taken
    out of the budget.
    """
    if message_type not in ("text", "chat"):
        label = PREVIEW_LABELS.get(message_type, message_type)
        if content:
            budget = max(max_length - len(label) - 3, 0)
            return f"[{label}] {content[:budget]}"
        return f"[{label}]"

    if not content:
        return ""
    if len(content) <= max_length:
        return content
    return content[: max_length - 3] + "..."


def is_system_notification(payload: dict[str, Any] | None) -> bool:
    """True for protocol/e2e/call-log/revoked WAHA events."""
    if not payload:
        return False
    data = payload.get("_data") if isinstance(payload.get("_data"), dict) else {}
    message_type = data.get("type") or payload.get("type") or ""
    subtype = data.get("subtype") or payload.get("subtype") or ""
    return message_type in SYSTEM_MESSAGE_TYPES or subtype in SYSTEM_SUBTYPES


def is_base64_content(value: str | None) -> bool:
    """Heuristic for inline media bodies that must not be stored as text."""
    if not value or len(value) < 100:
        return False
    if value.startswith(_BASE64_PREFIXES):
        return True
    return len(value) > 500 and " " not in value and bool(_BASE64_ALPHABET.match(value[:100]))


def infer_type_from_mimetype(mimetype: str | None) -> str | None:
    """Media type for a MIME type, None if it says nothing useful."""
    if not mimetype:
        return None
    if mimetype.startswith("audio/") or "ogg" in mimetype:
        return "audio"
    if mimetype.startswith("image/"):
        return "image"
    if mimetype.startswith("video/"):
        return "video"
    if mimetype.startswith("application/") or "pdf" in mimetype or "document" in mimetype:
        return "document"
    return None


def infer_type_from_url(url: str) -> str:
    """Media type guessed from a media URL; documents by default."""
    lower = url.lower()
    if any(marker in lower for marker in ("ptt", "audio", ".ogg", ".mp3", ".m4a")):
        return "audio"
    if any(ext in lower for ext in (".jpg", ".jpeg", ".png", ".webp")):
        return "image"
    if any(ext in lower for ext in (".mp4", ".3gp", ".mov")):
        return "video"
    return "document"
