"""Media ingestion: gateway URL -> private object storage.

Gateways hand out short-lived (often loopback) media URLs. Every attachment
is downloaded once and re-hosted under a per-lead path; the message stores
the opaque storage reference.

Failures never propagate: the caller persists the message without media.
Security: NEVER log media URLs with tokens, only hosts and sizes.
"""

from __future__ import annotations

import base64
import binascii
import os
import time
from urllib.parse import urlsplit, urlunsplit

import requests

from zapcrm.infra.gateway_config import GatewayConfig
from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import safe_log_context

from .storage import ObjectStorage, StorageError

logger = get_logger(__name__)

HTTP_TIMEOUT = int(os.environ.get("MEDIA_HTTP_TIMEOUT", "30"))

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPE_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/ogg": "ogg",
    "audio/ogg; codecs=opus": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/aac": "aac",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}

TYPE_FALLBACK_EXTENSIONS: dict[str, str] = {
    "image": "jpg",
    "audio": "ogg",
    "video": "mp4",
    "document": "bin",
}

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})


def normalize_media_url(url: str) -> str:
    """Prepend https:// to scheme-less URLs."""
    if not url.startswith(("http://", "https://")):
        return f"https://{url}"
    return url


def correct_localhost_url(url: str, gateway_base_url: str | None) -> str:
    """Point loopback media URLs at the gateway's public host.

    Path and query are kept; scheme, host and port come from the gateway.
    """
    if not gateway_base_url:
        return url

    parts = urlsplit(url)
    if parts.hostname not in _LOOPBACK_HOSTS:
        return url

    gateway = urlsplit(normalize_media_url(gateway_base_url))
    return urlunsplit((gateway.scheme, gateway.netloc, parts.path, parts.query, ""))


def is_gateway_url(url: str, gateway_base_url: str | None) -> bool:
    """True if url points at the gateway host (so it needs gateway auth)."""
    if not gateway_base_url:
        return False
    gateway_host = urlsplit(normalize_media_url(gateway_base_url)).netloc
    return bool(gateway_host) and urlsplit(url).netloc == gateway_host


def get_file_extension(content_type: str, message_type: str) -> str:
    """Extension from Content-Type: exact match, then subtype match, then message type."""
    extension = CONTENT_TYPE_EXTENSIONS.get(content_type)
    if extension:
        return extension

    for known_type, known_extension in CONTENT_TYPE_EXTENSIONS.items():
        if known_type.split("/")[1] in content_type:
            return known_extension

    return TYPE_FALLBACK_EXTENSIONS.get(message_type, "bin")


def build_media_path(lead_id: str, extension: str) -> str:
    """leads/<lead_id>/<epoch_ms>.<ext>"""
    return f"leads/{lead_id}/{int(time.time() * 1000)}.{extension}"


def upload_media_to_storage(
    media_url: str,
    media_type: str,
    lead_id: str,
    gateway: GatewayConfig | None = None,
    *,
    storage: ObjectStorage,
) -> str | None:
    """Download a media URL and re-host it in private storage.

    Args:
        media_url: URL from the gateway payload (may lack a scheme or point
            at localhost).
        media_type: Canonical message type, used for the fallback extension.
        lead_id: Lead owning the attachment (storage path prefix).
        gateway: Gateway config for localhost correction and auth headers.
        storage: Destination object storage.

    Returns:
        storage://<bucket>/<path> reference, or None on any failure.
    """
    base_url = gateway.base_url if gateway else None
    log_ctx = {"media_type": media_type, "lead_id": lead_id}

    try:
        url = correct_localhost_url(normalize_media_url(media_url), base_url)
        needs_auth = is_gateway_url(url, base_url)
        host = urlsplit(url).hostname or ""
    except ValueError as e:
        logger.error(
            "media url invalid",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        return None

    log_ctx["host"] = host

    headers: dict[str, str] = {}
    if gateway and gateway.api_key and needs_auth:
        # Both formats at once: gateway versions expect different headers
        headers["X-Api-Key"] = gateway.api_key
        headers["Authorization"] = f"Bearer {gateway.api_key}"

    try:
        response = requests.get(url, headers=headers, timeout=HTTP_TIMEOUT)
    except (requests.RequestException, ValueError) as e:
        logger.error(
            "media download failed",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        return None

    if not response.ok:
        logger.error(
            "media download returned error status",
            extra={"extra_fields": safe_log_context(**log_ctx, status=response.status_code)},
        )
        return None

    content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
    data = response.content
    path = build_media_path(lead_id, get_file_extension(content_type, media_type))

    try:
        ref = storage.upload(path, data, content_type)
    except StorageError:
        logger.error("media upload failed", extra={"extra_fields": safe_log_context(**log_ctx)})
        return None

    logger.info(
        "media stored",
        extra={"extra_fields": safe_log_context(**log_ctx, size=len(data))},
    )
    return ref


def upload_base64_to_storage(
    data: str,
    mimetype: str,
    media_type: str,
    lead_id: str,
    *,
    storage: ObjectStorage,
) -> str | None:
    """Store media that arrived inline (base64) in the webhook payload."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]

    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        logger.warning(
            "inline media is not valid base64",
            extra={"extra_fields": safe_log_context(media_type=media_type, lead_id=lead_id)},
        )
        return None

    content_type = mimetype or DEFAULT_CONTENT_TYPE
    path = build_media_path(lead_id, get_file_extension(content_type, media_type))

    try:
        return storage.upload(path, raw, content_type)
    except StorageError:
        logger.error(
            "inline media upload failed",
            extra={"extra_fields": safe_log_context(media_type=media_type, lead_id=lead_id)},
        )
        return None
