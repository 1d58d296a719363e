"""Per-request metadata stamped onto audit entries."""

from __future__ import annotations

import time
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field


@dataclass
class RequestAuditContext:
    """Request metadata captured at the boundary (no bodies, no PHI)."""

    method: str | None = None
    path: str | None = None
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ip_address: str | None = None
    user_agent: str | None = None
    started_at: float = field(default_factory=time.perf_counter)


_REQUEST_AUDIT_CONTEXT: ContextVar[RequestAuditContext | None] = ContextVar(
    "request_audit_context",
    default=None,
)


def start_request_audit_context(
    *,
    method: str | None = None,
    path: str | None = None,
    correlation_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Token:
    """Initialize request-local audit metadata and return context token."""
    context = RequestAuditContext(
        method=method,
        path=path,
        ip_address=ip_address,
        # Truncate to 500 chars (DB limit)
        user_agent=user_agent[:500] if user_agent else None,
    )
    if correlation_id:
        context.correlation_id = correlation_id[:64]
    return _REQUEST_AUDIT_CONTEXT.set(context)


def reset_request_audit_context(token: Token) -> None:
    """Restore the previous request-local audit state."""
    _REQUEST_AUDIT_CONTEXT.reset(token)


def get_request_audit_context() -> RequestAuditContext | None:
    """Return the current request's audit metadata, if any."""
    return _REQUEST_AUDIT_CONTEXT.get()
