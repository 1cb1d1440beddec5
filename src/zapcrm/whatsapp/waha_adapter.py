"""WAHA adapter - validate and normalize webhook payloads."""

from datetime import datetime, timezone
from typing import Any, Literal

from zapcrm.domain.messages import (
    infer_type_from_mimetype,
    infer_type_from_url,
    is_base64_content,
    is_system_notification,
)

from .models import MessageCandidate, NormalizedInbound

MESSAGE_EVENTS = frozenset({"message", "message.any"})
ACK_EVENT = "message.ack"

_MEDIA_TYPES = frozenset({"image", "video", "document", "audio"})


class InvalidPayloadError(Exception):
    """Raised when a WAHA payload has invalid shape."""

    pass


def detect_provider(body: dict[str, Any]) -> tuple[Literal["waha", "meta", "unknown"], str]:
    """Identify the gateway that sent a webhook body and its event name."""
    if body.get("event") and "session" in body:
        return "waha", str(body["event"])
    if body.get("object") == "whatsapp_business_account" and body.get("entry"):
        return "meta", "webhook"
    return "unknown", ""


def is_message_event(event: str) -> bool:
    """True for events carrying a message (not acks or session updates)."""
    return event in MESSAGE_EVENTS


def _data(msg: dict[str, Any]) -> dict[str, Any]:
    data = msg.get("_data")
    return data if isinstance(data, dict) else {}


def _media(msg: dict[str, Any]) -> dict[str, Any]:
    media = msg.get("media")
    return media if isinstance(media, dict) else {}


def normalize(body: dict[str, Any]) -> NormalizedInbound:
    """Normalize a WAHA message event.

    Args:
        body: Raw webhook body ({"event", "session", "payload"}).

    Returns:
        NormalizedInbound with PII fields for in-memory use.

    Raises:
        InvalidPayloadError: If required fields are missing or invalid.
    """
    msg = body.get("payload")
    if not isinstance(msg, dict):
        raise InvalidPayloadError("missing payload")

    message_id = msg.get("id")
    if isinstance(message_id, dict):
        # Some WAHA engines send the key object instead of the serialized id
        message_id = message_id.get("_serialized") or message_id.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    from_me = bool(msg.get("fromMe", False))
    # For outbound echoes the contact is the recipient
    chat_id = msg.get("to") if from_me else msg.get("from")
    if not chat_id or not isinstance(chat_id, str):
        raise InvalidPayloadError("missing chat id")

    data = _data(msg)
    media = _media(msg)
    data_media = data.get("media") if isinstance(data.get("media"), dict) else {}

    return NormalizedInbound(
        message_id=message_id,
        provider="waha",
        session=str(body.get("session") or "default"),
        received_at=datetime.now(timezone.utc),
        chat_id=chat_id,
        from_me=from_me,
        push_name=msg.get("pushName") or data.get("notifyName") or "",
        raw_type=str(msg.get("type") or data.get("type") or ""),
        body=msg.get("body") or data.get("body") or "",
        caption=msg.get("caption") or data.get("caption") or "",
        has_media=msg.get("hasMedia") is True,
        media_url=(
            msg.get("mediaUrl")
            or media.get("url")
            or data_media.get("url")
            or data.get("deprecatedMms3Url")
        ),
        mimetype=media.get("mimetype") or data.get("mimetype") or data_media.get("mimetype") or "",
        inline_media=media.get("data") or data_media.get("data"),
        raw=msg,
    )


def extract_message_content(msg: NormalizedInbound) -> MessageCandidate:
    """Detect type, text and media of a normalized message.

    Type comes from the gateway type first, then from the MIME type or URL
    for 'chat' messages that actually carry media. Captions win over bodies
    for media, and base64 bodies are never used as text.
    """
    if is_system_notification(msg.raw):
        return MessageCandidate(content="", type="text", is_system_message=True)

    raw_type = msg.raw_type.lower()
    message_type = "text"
    if raw_type in ("ptt", "audio"):
        message_type = "audio"
    elif raw_type in _MEDIA_TYPES or raw_type in ("sticker", "location", "contact"):
        message_type = raw_type
    elif raw_type == "vcard":
        message_type = "contact"
    elif raw_type in ("chat", "") and (msg.has_media or msg.media_url):
        inferred = infer_type_from_mimetype(msg.mimetype)
        if inferred:
            message_type = inferred
        elif msg.media_url:
            message_type = infer_type_from_url(msg.media_url)
    elif raw_type not in ("chat", "text", ""):
        # Leave unknown/unsupported types for the validator to judge
        message_type = raw_type

    has_real_media = (msg.has_media or bool(msg.media_url)) and message_type != "text"

    if has_real_media:
        content = ""
        if msg.caption and not is_base64_content(msg.caption):
            content = msg.caption
        elif msg.body and not is_base64_content(msg.body):
            content = msg.body
        return MessageCandidate(content=content, type=message_type, media_url=msg.media_url)

    content = msg.body
    if not content:
        return MessageCandidate(content="", type="text", is_system_message=True)

    return MessageCandidate(content=content, type=message_type, media_url=msg.media_url)
