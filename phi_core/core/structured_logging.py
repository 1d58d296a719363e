"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    user_id: object | None = None,
    org_id: object | None = None,
    resource_type: str | None = None,
    resource_id: object | None = None,
    correlation_id: str | None = None,
    action: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict (ids and labels only)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if org_id:
        context["org_id"] = str(org_id)
    if resource_type:
        context["resource_type"] = resource_type
    if resource_id:
        context["resource_id"] = str(resource_id)
    if correlation_id:
        context["correlation_id"] = correlation_id
    if action:
        context["action"] = action
    return context
