"""Inbound WhatsApp message pipeline.

One webhook message event goes through:
screen chat id -> extract/validate content -> resolve sender -> find or
create lead -> ensure conversation -> store message -> re-host media.

Every early exit is a skip with a machine-readable reason, never an error.
Database errors propagate so the caller's transaction rolls back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from psycopg2.extensions import cursor as PgCursor

from zapcrm.domain.messages import (
    is_unsupported_message_type,
    sanitize_content,
    truncate_content,
    validate_message_content,
    validate_message_type,
)
from zapcrm.domain.phone import normalize_phone
from zapcrm.infra.gateway_config import GatewayConfig
from zapcrm.infra.media import upload_base64_to_storage, upload_media_to_storage
from zapcrm.infra.repositories.leads_repository import (
    Lead,
    create_lead,
    find_lead,
    find_lead_by_lid,
    touch_lead,
)
from zapcrm.infra.repositories.messages_repository import (
    ensure_conversation,
    insert_message,
    message_exists,
    set_message_media,
)
from zapcrm.infra.storage import ObjectStorage
from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import hash_identifier, safe_log_context
from zapcrm.whatsapp.chat_ids import (
    clean_lid,
    extract_real_phone_from_payload,
    is_lid,
    is_self_message,
    screen_chat_id,
)
from zapcrm.whatsapp.models import MessageCandidate, NormalizedInbound
from zapcrm.whatsapp.waha_adapter import extract_message_content
from zapcrm.whatsapp.waha_client import resolve_phone_from_lid

logger = get_logger(__name__)

InboundStatus = Literal["stored", "skipped", "duplicate"]


@dataclass(frozen=True)
class InboundResult:
    """Outcome of one inbound message event."""

    status: InboundStatus
    reason: str | None = None
    lead_id: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class Sender:
    """Who sent the message.

    phone is the normalized real phone, or the LID digits when the privacy
    id could not be resolved (lid is set only in that case).
    """

    phone: str
    lid: str | None = None


def _skip(reason: str) -> InboundResult:
    logger.info(
        "inbound message skipped",
        extra={"extra_fields": safe_log_context(reason=reason)},
    )
    return InboundResult(status="skipped", reason=reason)


def resolve_sender(msg: NormalizedInbound, gateway: GatewayConfig | None) -> Sender:
    """Real phone of the sender, resolving click-to-WhatsApp LIDs when possible.

    LIDs are resolved from secondary payload fields first, then through the
    gateway's LID endpoint.
    """
    if not is_lid(msg.chat_id):
        return Sender(phone=normalize_phone(msg.chat_id))

    lid = clean_lid(msg.chat_id)
    real_phone = extract_real_phone_from_payload(msg.raw)
    if not real_phone and gateway:
        real_phone = resolve_phone_from_lid(gateway, msg.chat_id)

    if real_phone:
        logger.info(
            "lid resolved to phone",
            extra={"extra_fields": safe_log_context(lid_hash=hash_identifier(lid))},
        )
        return Sender(phone=normalize_phone(real_phone))

    logger.warning(
        "lid unresolved, using it as temporary identifier",
        extra={"extra_fields": safe_log_context(lid_hash=hash_identifier(lid))},
    )
    return Sender(phone=lid, lid=lid)


def find_or_create_lead(
    cur: PgCursor,
    sender: Sender,
    push_name: str,
    tenant_id: str | None,
) -> Lead | None:
    """Existing lead for the sender (touched), or a newly created one."""
    if sender.lid:
        lead = find_lead_by_lid(cur, sender.lid, tenant_id)
    else:
        lead = find_lead(cur, sender.phone, push_name)

    if lead is not None:
        touch_lead(cur, lead, sender_name=push_name, from_lid=sender.lid is not None)
        return lead

    return create_lead(
        cur,
        phone=sender.phone,
        sender_name=push_name or None,
        tenant_id=tenant_id,
        lid=sender.lid,
    )



@dataclass(frozen=True)
class PreparedInbound:
    """A message that passed screening, with its sender resolved."""

    candidate: MessageCandidate
    sender: Sender
    message_type: str
    content: str


def prepare_inbound(
    msg: NormalizedInbound,
    gateway: GatewayConfig | None,
) -> PreparedInbound | InboundResult:
    """Screen a message and resolve its sender, without touching the database.

    May call the gateway to resolve a LID, so run it outside any open
    transaction.

    Returns:
        PreparedInbound, or a skipped InboundResult.
    """
    if msg.from_me:
        return _skip("from_me")

    screen_reason = screen_chat_id(msg.chat_id)
    if screen_reason:
        return _skip(screen_reason)

    candidate = extract_message_content(msg)
    if candidate.is_system_message:
        return _skip("system_message")

    if is_unsupported_message_type(candidate.type):
        return _skip("unsupported_type")

    validation = validate_message_content(
        candidate.content, candidate.media_url or msg.inline_media
    )
    if not validation.is_valid:
        return _skip(validation.reason or "empty_message")

    sender = resolve_sender(msg, gateway)
    if not sender.phone:
        return _skip("lead_unresolved")

    if gateway and gateway.phone_number and is_self_message(sender.phone, gateway.phone_number):
        return _skip("self_message")

    return PreparedInbound(
        candidate=candidate,
        sender=sender,
        message_type=validate_message_type(candidate.type).normalized_type,
        content=truncate_content(sanitize_content(candidate.content)),
    )


def _duplicate(external_id: str, lead_id: str | None = None) -> InboundResult:
    logger.info(
        "inbound message already stored",
        extra={
            "extra_fields": safe_log_context(
                lead_id=lead_id, message_hash=hash_identifier(external_id)
            )
        },
    )
    return InboundResult(status="duplicate", lead_id=lead_id)


def store_inbound(
    cur: PgCursor,
    msg: NormalizedInbound,
    prepared: PreparedInbound,
    gateway: GatewayConfig | None,
    *,
    tenant_id: str | None = None,
) -> InboundResult:
    """Find or create the lead and store the message without its media.

    Redeliveries are detected before the lead is touched. Media is attached
    afterwards with ingest_media + set_message_media.

    Raises:
        psycopg2.Error: On database failure.
    """
    if message_exists(cur, msg.message_id):
        return _duplicate(msg.message_id)

    if tenant_id is None and gateway is not None:
        tenant_id = gateway.tenant_id

    lead = find_or_create_lead(cur, prepared.sender, msg.push_name, tenant_id)
    if lead is None:
        return _skip("lead_unresolved")

    conversation_id = ensure_conversation(
        cur,
        lead_id=lead.id,
        instance_id=gateway.instance_id if gateway else None,
    )

    message_id = insert_message(
        cur,
        conversation_id=conversation_id,
        lead_id=lead.id,
        external_id=msg.message_id,
        content=prepared.content,
        message_type=prepared.message_type,
        from_me=msg.from_me,
    )
    if message_id is None:
        # Concurrent delivery won the insert
        return _duplicate(msg.message_id, lead.id)

    logger.info(
        "inbound message stored",
        extra={
            "extra_fields": safe_log_context(
                lead_id=lead.id,
                message_id=message_id,
                message_type=prepared.message_type,
            )
        },
    )
    return InboundResult(status="stored", lead_id=lead.id, message_id=message_id)


def ingest_media(
    msg: NormalizedInbound,
    prepared: PreparedInbound,
    lead_id: str,
    gateway: GatewayConfig | None,
    storage: ObjectStorage | None,
) -> str | None:
    """storage:// reference for the message media, None when absent or failed."""
    if prepared.message_type == "text" or storage is None:
        return None

    if prepared.candidate.media_url:
        return upload_media_to_storage(
            prepared.candidate.media_url, prepared.message_type, lead_id, gateway, storage=storage
        )

    if msg.inline_media:
        return upload_base64_to_storage(
            msg.inline_media, msg.mimetype, prepared.message_type, lead_id, storage=storage
        )

    return None


def process_inbound(
    cur: PgCursor,
    msg: NormalizedInbound,
    gateway: GatewayConfig | None,
    *,
    storage: ObjectStorage | None = None,
    tenant_id: str | None = None,
) -> InboundResult:
    """Turn a normalized gateway message into a stored CRM message.

    Runs every step on one cursor. The webhook runs the same steps in
    separate short transactions so gateway and media I/O never happen
    while one is open.

    Args:
        cur: Database cursor (within transaction).
        msg: Normalized webhook message.
        gateway: Config of the receiving gateway instance, if known.
        storage: Object storage for media. Media is dropped when None.
        tenant_id: Owning tenant; defaults to the gateway's tenant.

    Returns:
        InboundResult with status stored, skipped or duplicate.

    Raises:
        psycopg2.Error: On database failure.
    """
    prepared = prepare_inbound(msg, gateway)
    if isinstance(prepared, InboundResult):
        return prepared

    result = store_inbound(cur, msg, prepared, gateway, tenant_id=tenant_id)
    if result.status != "stored":
        return result

    media_ref = ingest_media(msg, prepared, result.lead_id, gateway, storage)
    if media_ref:
        set_message_media(cur, result.message_id, media_ref)
    return result
