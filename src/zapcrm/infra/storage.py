"""Private object storage for message attachments (S3-compatible).

Objects are addressed internally by storage references
(storage://<bucket>/<path>), never by public URLs. Signed URLs are minted
only when an attachment is rendered or forwarded.

Environment:
- STORAGE_ENDPOINT_URL: S3-compatible endpoint (Supabase, R2, MinIO...)
- STORAGE_ACCESS_KEY_ID / STORAGE_SECRET_ACCESS_KEY: credentials
- STORAGE_REGION: region name (default: auto)
- MEDIA_BUCKET: bucket name (default: message-attachments)
"""

from __future__ import annotations

import os
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import safe_log_context

logger = get_logger(__name__)

STORAGE_REF_SCHEME = "storage://"
DEFAULT_BUCKET = "message-attachments"

# Attachments are immutable once written
CACHE_CONTROL = "max-age=31536000"

DEFAULT_SIGNED_URL_TTL = 3600


class StorageError(Exception):
    """Raised when an object storage operation fails."""

    pass


def build_storage_ref(bucket: str, path: str) -> str:
    """storage://<bucket>/<path>"""
    return f"{STORAGE_REF_SCHEME}{bucket}/{path.lstrip('/')}"


def is_storage_ref(value: str | None) -> bool:
    return bool(value) and value.startswith(STORAGE_REF_SCHEME)


def parse_storage_ref(ref: str) -> tuple[str, str]:
    """Split a storage reference into (bucket, path).

    Raises:
        ValueError: If ref is not a storage reference.
    """
    if not is_storage_ref(ref):
        raise ValueError("not a storage reference")
    bucket, _, path = ref[len(STORAGE_REF_SCHEME):].partition("/")
    if not bucket or not path:
        raise ValueError("storage reference must include bucket and path")
    return bucket, path


class ObjectStorage:
    """Thin wrapper over a boto3 S3 client bound to one bucket."""

    def __init__(self, client: Any, bucket: str = DEFAULT_BUCKET) -> None:
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_env(cls) -> "ObjectStorage":
        """Build the client from STORAGE_* environment variables.

        Raises:
            RuntimeError: If endpoint or credentials are missing.
        """
        endpoint_url = os.environ.get("STORAGE_ENDPOINT_URL")
        access_key_id = os.environ.get("STORAGE_ACCESS_KEY_ID")
        secret_access_key = os.environ.get("STORAGE_SECRET_ACCESS_KEY")

        missing = [
            name
            for name, value in (
                ("STORAGE_ENDPOINT_URL", endpoint_url),
                ("STORAGE_ACCESS_KEY_ID", access_key_id),
                ("STORAGE_SECRET_ACCESS_KEY", secret_access_key),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"Missing storage config: {', '.join(missing)}")

        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=os.environ.get("STORAGE_REGION", "auto"),
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        return cls(client, bucket=os.environ.get("MEDIA_BUCKET", DEFAULT_BUCKET))

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Write an object (never overwriting) and return its storage reference.

        Raises:
            StorageError: On any client or transport failure.
        """
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                CacheControl=CACHE_CONTROL,
                IfNoneMatch="*",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "storage upload failed",
                extra={
                    "extra_fields": safe_log_context(
                        bucket=self.bucket, path=path, error_type=type(e).__name__
                    )
                },
            )
            raise StorageError("upload failed") from e

        return build_storage_ref(self.bucket, path)

    def create_signed_url(self, ref: str, expires_in: int = DEFAULT_SIGNED_URL_TTL) -> str:
        """Short-lived download URL for a storage reference.

        Raises:
            ValueError: If ref is malformed.
            StorageError: If the URL cannot be signed.
        """
        bucket, path = parse_storage_ref(ref)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError("could not sign url") from e
