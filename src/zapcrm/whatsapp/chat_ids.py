"""WhatsApp chat identifier classification.

Gateway ids live in disjoint namespaces that must never be mixed up:
- individual: <phone>@c.us / <phone>@s.whatsapp.net / bare digits
- group:      <id>@g.us, or bare ids starting with 120363
- broadcast:  status@broadcast and any other <id>@broadcast
- LID:        <id>@lid, privacy ids used by click-to-WhatsApp ads

All helpers accept None/empty input and return False/"" instead of raising.
"""

from typing import Any

from zapcrm.domain.phone import digits_only

INDIVIDUAL_SUFFIX = "@c.us"
LEGACY_INDIVIDUAL_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"
LID_SUFFIX = "@lid"
BROADCAST_SUFFIX = "@broadcast"
STATUS_BROADCAST = "status@broadcast"

GROUP_PREFIX = "120363"

# Bare digit ids at least this long are privacy ids, not phones (E.164 max is 15)
LID_MIN_DIGITS = 15

KNOWN_SUFFIXES = (
    INDIVIDUAL_SUFFIX,
    LEGACY_INDIVIDUAL_SUFFIX,
    GROUP_SUFFIX,
    LID_SUFFIX,
    BROADCAST_SUFFIX,
)


def _has_known_suffix(chat_id: str) -> bool:
    return chat_id.endswith(KNOWN_SUFFIXES)


def is_group_chat(chat_id: str | None) -> bool:
    """True for @g.us ids, or unsuffixed ids carrying the group prefix."""
    if not chat_id:
        return False
    if chat_id.endswith(GROUP_SUFFIX):
        return True
    return "@" not in chat_id and chat_id.startswith(GROUP_PREFIX)


def is_status_broadcast(chat_id: str | None) -> bool:
    """True for WhatsApp status updates and broadcast lists."""
    if not chat_id:
        return False
    return STATUS_BROADCAST in chat_id or chat_id.endswith(BROADCAST_SUFFIX)


def is_lid(chat_id: str | None) -> bool:
    """True for privacy ids.

    An explicit @lid suffix always counts. Without a recognized suffix, a
    non-group id of 15+ digits is treated as a LID. Explicit individual
    suffixes (@c.us) opt out of the length heuristic.
    """
    if not chat_id:
        return False
    if chat_id.endswith(LID_SUFFIX):
        return True
    if _has_known_suffix(chat_id) or is_group_chat(chat_id):
        return False
    return len(digits_only(chat_id)) >= LID_MIN_DIGITS


def build_chat_id(phone: str | None) -> str:
    """Individual chat id for a phone: digits + @c.us."""
    digits = digits_only(phone)
    if not digits:
        return ""
    return f"{digits}{INDIVIDUAL_SUFFIX}"


def extract_phone_from_chat_id(chat_id: str | None) -> str:
    """Numeric identity of a chat id (known suffixes and non-digits removed)."""
    if not chat_id:
        return ""
    for suffix in KNOWN_SUFFIXES:
        if chat_id.endswith(suffix):
            chat_id = chat_id[: -len(suffix)]
            break
    return digits_only(chat_id)


def format_lid(lid: str | None) -> str:
    """LID in the form the gateway API expects (<digits>@lid)."""
    digits = clean_lid(lid)
    if not digits:
        return ""
    return f"{digits}{LID_SUFFIX}"


def clean_lid(lid: str | None) -> str:
    """Digits of a LID."""
    if not lid:
        return ""
    return digits_only(lid.replace(LID_SUFFIX, ""))


def screen_chat_id(chat_id: str | None) -> str | None:
    """Filter reason for chats that never become leads, None for individuals."""
    if is_group_chat(chat_id):
        return "group_message"
    if is_status_broadcast(chat_id):
        return "status_broadcast"
    return None


def is_self_message(phone_a: str | None, phone_b: str | None) -> bool:
    """Same endpoint, ignoring country code differences (last 10 digits)."""
    a = digits_only(phone_a)[-10:]
    b = digits_only(phone_b)[-10:]
    return bool(a) and a == b


def _dig(payload: Any, *path: str) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def extract_real_phone_from_payload(payload: dict[str, Any] | None) -> str | None:
    """Look for the sender's real phone when the message arrived from a LID.

    WAHA sometimes carries the real endpoint in secondary fields. Returns the
    first individual chat id found, or a 10-13 digit non-LID string.
    """
    if not payload:
        return None

    candidates = (
        _dig(payload, "_data", "from", "_serialized"),
        _dig(payload, "_data", "chat", "id", "_serialized"),
        _dig(payload, "chat", "id"),
        _dig(payload, "_data", "chatId"),
        _dig(payload, "_data", "from"),
    )

    for candidate in candidates:
        if not candidate or not isinstance(candidate, str):
            continue
        if INDIVIDUAL_SUFFIX in candidate or LEGACY_INDIVIDUAL_SUFFIX in candidate:
            return candidate
        digits = digits_only(candidate)
        if 10 <= len(digits) <= 13 and LID_SUFFIX not in candidate:
            return digits

    return None
