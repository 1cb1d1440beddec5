"""Request-scoped log context: correlation id and owning tenant.

The correlation id is set per webhook request by the API middleware. The
tenant id is bound once the receiving gateway instance is known, so every
log line of a multi-tenant inbox can be filtered by account.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def get_tenant_id() -> str:
    """Tenant bound to the current request, "" when unknown."""
    return tenant_id_var.get()


@contextmanager
def bind_tenant(tenant_id: str | None) -> Iterator[None]:
    """Tag log lines emitted inside the block with tenant_id."""
    token = tenant_id_var.set(tenant_id or "")
    try:
        yield
    finally:
        tenant_id_var.reset(token)
