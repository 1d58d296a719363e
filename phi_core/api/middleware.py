"""Request middleware that stamps audit metadata into the request context."""

from collections.abc import Callable
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from phi_core.core.config import settings
from phi_core.core.request_audit_context import (
    get_request_audit_context,
    reset_request_audit_context,
    start_request_audit_context,
)

REQUEST_ID_HEADER = "X-Request-ID"

# Responses may carry decrypted PHI; no browser or proxy may cache them
NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def get_client_ip(request: Request) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()[:45]

    if request.client:
        return request.client.host
    return None


class RequestAuditContextMiddleware(BaseHTTPMiddleware):
    """
    Captures method, path, correlation id, client IP and user agent for the
    audit recorder, and marks every response uncacheable. Request bodies are
    never read.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        token = start_request_audit_context(
            method=request.method,
            path=request.url.path[:500],
            correlation_id=request.headers.get(REQUEST_ID_HEADER),
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        try:
            context = get_request_audit_context()
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.correlation_id
            response.headers.update(NO_STORE_HEADERS)
            return response
        finally:
            reset_request_audit_context(token)
