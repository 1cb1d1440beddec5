"""WAHA (WhatsApp HTTP API) client.

Gateway deployments disagree on the auth header, so every call walks the
known formats until one is not rejected with 401.
Security: NEVER log api keys, phones or LIDs. Only hashes.
"""

import os
from dataclasses import dataclass
from typing import Any

import requests

from zapcrm.domain.phone import brazilian_phone_variants, digits_only
from zapcrm.infra.gateway_config import GatewayConfig
from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import hash_identifier, safe_log_context

from .chat_ids import INDIVIDUAL_SUFFIX, clean_lid

logger = get_logger(__name__)

# Timeout for gateway requests (seconds)
HTTP_TIMEOUT = int(os.environ.get("WAHA_HTTP_TIMEOUT", "15"))


class GatewayAuthError(Exception):
    """Raised when no auth format could reach the gateway."""

    pass


@dataclass(frozen=True)
class ContactCheck:
    """Result of a number existence check."""

    exists: bool
    chat_id: str | None = None
    error: str | None = None


def auth_header_formats(api_key: str) -> list[tuple[str, dict[str, str]]]:
    """Auth header candidates, in the order they are tried."""
    return [
        ("X-Api-Key", {"X-Api-Key": api_key}),
        ("Bearer", {"Authorization": f"Bearer {api_key}"}),
        ("ApiKey", {"Authorization": api_key}),
    ]


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes to avoid //api/ paths."""
    return url.rstrip("/")


def waha_fetch(url: str, api_key: str, method: str = "GET", **kwargs: Any) -> requests.Response:
    """Call the gateway trying each auth header format.

    Returns the first response that is not a 401. When every format is
    rejected the last 401 response is returned.

    Raises:
        GatewayAuthError: If every attempt failed at the network level.
    """
    extra_headers = kwargs.pop("headers", None) or {}
    kwargs.setdefault("timeout", HTTP_TIMEOUT)

    last_response: requests.Response | None = None
    last_error: Exception | None = None

    for name, auth_headers in auth_header_formats(api_key):
        try:
            response = requests.request(
                method,
                url,
                headers={**extra_headers, **auth_headers},
                **kwargs,
            )
        except requests.RequestException as e:
            logger.warning(
                "gateway request failed",
                extra={
                    "extra_fields": safe_log_context(auth_format=name, error_type=type(e).__name__)
                },
            )
            last_error = e
            continue

        if response.status_code != 401:
            return response

        logger.info(
            "gateway rejected auth format, trying next",
            extra={"extra_fields": safe_log_context(auth_format=name)},
        )
        last_response = response

    if last_response is not None:
        return last_response

    raise GatewayAuthError("all auth formats failed") from last_error


def resolve_phone_from_lid(config: GatewayConfig, lid: str) -> str | None:
    """Ask the gateway for the real phone behind a LID.

    Returns:
        Phone digits (possibly with @c.us stripped), or None if unresolved.
    """
    lid_digits = clean_lid(lid)
    url = f"{normalize_base_url(config.base_url)}/api/{config.session_name}/lids/{lid_digits}"
    log_ctx = safe_log_context(lid_hash=hash_identifier(lid_digits))

    try:
        response = waha_fetch(url, config.api_key)
        if not response.ok:
            logger.info(
                "lid lookup returned error status",
                extra={"extra_fields": {**log_ctx, "status": str(response.status_code)}},
            )
            return None
        data = response.json()
    except (GatewayAuthError, requests.RequestException, ValueError) as e:
        logger.warning(
            "lid lookup failed",
            extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
        )
        return None

    if not isinstance(data, dict):
        return None

    # Response shape differs between WAHA versions; 'pn' is the common one
    for key in ("pn", "phone", "number", "jid", "id"):
        value = data.get(key)
        if isinstance(value, str) and value:
            real_phone = value.replace(INDIVIDUAL_SUFFIX, "")
            if "lid" in real_phone:
                continue
            logger.info("lid resolved via gateway", extra={"extra_fields": log_ctx})
            return real_phone

    return None


def check_number_exists(config: GatewayConfig, phone: str) -> ContactCheck:
    """Find which Brazilian variant of a phone is registered on WhatsApp."""
    clean_phone = digits_only(phone)
    base_url = normalize_base_url(config.base_url)

    try:
        for variant in brazilian_phone_variants(clean_phone):
            response = waha_fetch(
                f"{base_url}/api/contacts/check-exists",
                config.api_key,
                params={"phone": variant, "session": config.session_name},
            )
            if not response.ok:
                continue

            data = response.json()
            exists = data.get("numberExists") or data.get("exists") or data.get("isRegistered")
            if exists:
                chat_id = data.get("chatId") or data.get("jid") or data.get("id")
                return ContactCheck(exists=True, chat_id=chat_id or f"{variant}{INDIVIDUAL_SUFFIX}")
    except (GatewayAuthError, requests.RequestException, ValueError) as e:
        logger.warning(
            "number existence check failed",
            extra={
                "extra_fields": safe_log_context(
                    phone_hash=hash_identifier(clean_phone), error_type=type(e).__name__
                )
            },
        )
        return ContactCheck(exists=False, error=str(e))

    return ContactCheck(
        exists=False,
        chat_id=f"{clean_phone}{INDIVIDUAL_SUFFIX}",
        error="number not found on WhatsApp (all Brazilian variants tried)",
    )
