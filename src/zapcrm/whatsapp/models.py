"""WhatsApp inbound message models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal


@dataclass(frozen=True)
class NormalizedInbound:
    """WAHA message event flattened into the fields the pipeline needs.

    ATENÇÃO PII:
    - `chat_id`, `push_name`, `body` and `caption` are PII
    - Keep in memory during webhook processing only
    - NEVER log them, use hash_identifier/safe_log_context
    """

    message_id: str
    provider: Literal["waha", "meta"]
    session: str
    received_at: datetime
    chat_id: str
    from_me: bool
    push_name: str
    raw_type: str
    body: str
    caption: str = ""
    has_media: bool = False
    media_url: str | None = None
    mimetype: str = ""
    inline_media: str | None = None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True)
class MessageCandidate:
    """Content extracted from an inbound message, before validation."""

    content: str
    type: str
    media_url: str | None = None
    is_system_message: bool = False
