"""WhatsApp gateway (WAHA) configuration.

Provides functions to load the gateway instance that received a webhook,
looked up by session name in whatsapp_config, with environment fallbacks
for single-instance deployments.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor

from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import safe_log_context

from .db import fetchone

logger = get_logger(__name__)

_CONFIG_COLUMNS = "id, base_url, api_key, instance_name, phone_number, tenant_id"


@dataclass(frozen=True)
class GatewayConfig:
    """Connection settings for one WAHA instance.

    Attributes:
        base_url: Gateway base URL without trailing slash.
        api_key: Gateway API key. NEVER logged.
        session_name: WAHA session (instance) name.
        instance_id: whatsapp_config row id, None for env config.
        tenant_id: Owning tenant, None for env config.
        phone_number: Phone of the connected WhatsApp account, if known.
    """

    base_url: str
    api_key: str
    session_name: str = "default"
    instance_id: str | None = None
    tenant_id: str | None = None
    phone_number: str | None = None


def _row_to_config(row: tuple) -> GatewayConfig:
    instance_id, base_url, api_key, instance_name, phone_number, tenant_id = row
    return GatewayConfig(
        base_url=(base_url or "").rstrip("/"),
        api_key=api_key or "",
        session_name=instance_name or "default",
        instance_id=str(instance_id),
        tenant_id=str(tenant_id) if tenant_id else None,
        phone_number=phone_number,
    )


def config_from_env() -> GatewayConfig | None:
    """Gateway config from WAHA_BASE_URL / WAHA_API_KEY / WAHA_SESSION."""
    base_url = os.environ.get("WAHA_BASE_URL", "")
    api_key = os.environ.get("WAHA_API_KEY", "")
    if not base_url or not api_key:
        return None
    return GatewayConfig(
        base_url=base_url.rstrip("/"),
        api_key=api_key,
        session_name=os.environ.get("WAHA_SESSION", "default"),
    )


def get_gateway_config(cur: PgCursor, session_name: str | None = None) -> GatewayConfig | None:
    """Load the active WAHA instance for a session.

    Priority:
    1. whatsapp_config row matching the session (case-insensitive)
    2. First active whatsapp_config row
    3. Environment variables

    Args:
        cur: Database cursor.
        session_name: Session from the webhook body.

    Returns:
        GatewayConfig or None if nothing is configured.
    """
    if session_name:
        row = fetchone(
            cur,
            f"""
            SELECT {_CONFIG_COLUMNS} FROM whatsapp_config
            WHERE is_active = true AND provider = 'waha' AND lower(instance_name) = lower(%s)
            LIMIT 1
            """,
            (session_name,),
        )
        if row:
            return _row_to_config(row)

        logger.warning(
            "gateway instance not found for session, using first active",
            extra={"extra_fields": safe_log_context(session=session_name)},
        )

    row = fetchone(
        cur,
        f"""
        SELECT {_CONFIG_COLUMNS} FROM whatsapp_config
        WHERE is_active = true AND provider = 'waha'
        ORDER BY created_at
        LIMIT 1
        """,
    )
    if row:
        return _row_to_config(row)

    return config_from_env()
