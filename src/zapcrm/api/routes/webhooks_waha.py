"""WhatsApp webhook routes - WAHA integration.

Security:
- Phones, chat ids, names and text exist only in memory during processing
- Logs carry message id prefixes and hashes only, never PII
- Fail-closed: without WAHA_WEBHOOK_SECRET only APP_ENV=local is accepted
"""

import hmac
import os
from typing import Any

import psycopg2
from fastapi import APIRouter, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from zapcrm.domain.inbound import InboundResult, ingest_media, prepare_inbound, store_inbound
from zapcrm.infra.db import txn
from zapcrm.infra.gateway_config import get_gateway_config
from zapcrm.infra.repositories.messages_repository import set_message_media
from zapcrm.infra.storage import ObjectStorage
from zapcrm.observability.correlation import bind_tenant, get_correlation_id
from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import safe_log_context
from zapcrm.whatsapp.models import NormalizedInbound
from zapcrm.whatsapp.waha_adapter import (
    InvalidPayloadError,
    detect_provider,
    is_message_event,
    normalize,
)

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

# Built lazily from env on first media message
_storage: ObjectStorage | None = None


def _get_storage() -> ObjectStorage | None:
    """Get object storage instance (allows test injection).

    Returns None when storage is not configured; messages are then stored
    without media.
    """
    global _storage
    if _storage is None:
        try:
            _storage = ObjectStorage.from_env()
        except RuntimeError:
            logger.warning("object storage not configured, media will be dropped")
            return None
    return _storage


class WebhookAck(BaseModel):
    """Body of every webhook answer."""

    status: str
    reason: str | None = None


def _result(status: str, reason: str | None = None, status_code: int = 200) -> JSONResponse:
    ack = WebhookAck(status=status, reason=reason)
    return JSONResponse(status_code=status_code, content=ack.model_dump())


def _message_id_prefix(message_id: str) -> str:
    return message_id[:8] if len(message_id) >= 8 else message_id


def _process_message(msg: NormalizedInbound) -> InboundResult:
    """Run the inbound pipeline in short transactions (blocking; call off the event loop).

    LID lookups and media downloads happen between transactions, never
    while one holds a connection. Media is attached only after the message
    insert committed, so redeliveries never re-upload it.
    """
    with txn() as cur:
        gateway = get_gateway_config(cur, msg.session)

    with bind_tenant(gateway.tenant_id if gateway else None):
        prepared = prepare_inbound(msg, gateway)
        if isinstance(prepared, InboundResult):
            return prepared

        with txn() as cur:
            result = store_inbound(cur, msg, prepared, gateway)

        if result.status != "stored":
            return result

        media_ref = ingest_media(msg, prepared, result.lead_id, gateway, _get_storage())
        if media_ref:
            try:
                with txn() as cur:
                    set_message_media(cur, result.message_id, media_ref)
            except psycopg2.Error as e:
                # Message is committed; it stays without media
                logger.error(
                    "media attach failed",
                    extra={
                        "extra_fields": safe_log_context(
                            lead_id=result.lead_id,
                            message_id=result.message_id,
                            error_type=type(e).__name__,
                        )
                    },
                )

        return result


@router.post("/waha")
async def waha_webhook(
    request: Request,
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> JSONResponse:
    """Receive a WAHA webhook.

    ACK 2xx only after the message (or its skip decision) is committed.

    Args:
        request: FastAPI request object.
        x_webhook_secret: Shared secret configured on the WAHA webhook.

    Returns:
        200 with {"status", "reason"} if stored, skipped or duplicate.
        400 Bad Request if JSON or payload shape is invalid.
        401 Unauthorized if secret validation fails.
        500 Internal Server Error if processing fails.
    """
    correlation_id = get_correlation_id()

    # Webhook secret validation (fail-closed)
    expected_secret = os.environ.get("WAHA_WEBHOOK_SECRET", "")
    if not expected_secret:
        if os.environ.get("APP_ENV", "") == "local":
            logger.warning(
                "WAHA_WEBHOOK_SECRET not set - skipping validation (local dev)",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
        else:
            logger.error(
                "WAHA_WEBHOOK_SECRET not configured - rejecting webhook (fail-closed)",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            return _result("error", "unauthorized", status_code=401)
    elif not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected_secret):
        logger.warning(
            "waha webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _result("error", "unauthorized", status_code=401)

    # 1. Parse JSON
    try:
        body: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _result("error", "invalid_json", status_code=400)

    if not isinstance(body, dict):
        return _result("error", "invalid_payload", status_code=400)

    # 2. Only WAHA message events are ingested here
    provider, event = detect_provider(body)
    if provider != "waha":
        logger.info(
            "unsupported webhook provider",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, provider=provider)},
        )
        return _result("skipped", "unsupported_provider")

    if not is_message_event(event):
        return _result("skipped", "unsupported_event")

    # 3. Normalize payload (PII in memory only)
    try:
        msg = normalize(body)
    except InvalidPayloadError:
        logger.warning(
            "invalid waha payload shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, event=event)},
        )
        return _result("error", "invalid_payload", status_code=400)

    logger.info(
        "waha webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_id_prefix=_message_id_prefix(msg.message_id),
                event=event,
                raw_type=msg.raw_type,
                has_media=msg.has_media,
            )
        },
    )

    try:
        result = await run_in_threadpool(_process_message, msg)
    except Exception:
        # Transaction rolled back - do NOT return 2xx so WAHA retries
        logger.exception(
            "webhook processing failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    message_id_prefix=_message_id_prefix(msg.message_id),
                )
            },
        )
        return _result("error", "processing_failed", status_code=500)

    return _result(result.status, result.reason)
