"""Audit router - API endpoints for reviewing the PHI access trail."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from phi_core.api.deps import get_caller_id, get_db, get_gate
from phi_core.core.permissions import Capability
from phi_core.db.enums import AuditAction
from phi_core.services import audit_service
from phi_core.services.access_gate_service import AccessControlGate
from phi_core.services.permission_service import ResourceScope

router = APIRouter(prefix="/organizations/{org_id}/audit", tags=["Audit"])

# Reviewing the trail is an organization-settings privilege
AUDIT_REVIEW_CAPABILITY = Capability.MANAGE_SETTINGS


# ============================================================================
# Schemas
# ============================================================================

class AuditEntryRead(BaseModel):
    """Audit entry for API response. Carries field names, never values."""
    id: UUID
    actor_user_id: UUID | None
    action: str
    resource_type: str
    resource_id: UUID | None
    fields_accessed: list[str]
    phi_fields_count: int
    success: bool
    security_level: str
    risk_score: int
    response_status: int | None
    correlation_id: str | None
    ip_address: str | None
    details: dict[str, Any] | None
    created_at: datetime
    retention_expiry: datetime

    model_config = {"from_attributes": True}


class AuditEntryListResponse(BaseModel):
    """Paginated audit entry response."""
    items: list[AuditEntryRead]
    total: int
    page: int
    per_page: int


class AuditStatsResponse(BaseModel):
    total: int
    last_24h: int
    failed: int
    high_risk: int
    phi_access: int


class AuditChainResponse(BaseModel):
    valid: bool


# ============================================================================
# Endpoints
# ============================================================================

@router.get("", response_model=AuditEntryListResponse)
def list_audit_entries(
    org_id: UUID,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    action: AuditAction | None = Query(None, description="Filter by action"),
    actor_user_id: UUID | None = Query(None, description="Filter by actor"),
    resource_type: str | None = Query(None),
    resource_id: UUID | None = Query(None),
    min_risk: int | None = Query(None, ge=0, le=100),
    start_date: datetime | None = Query(None, description="Filter entries after this date"),
    end_date: datetime | None = Query(None, description="Filter entries before this date"),
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
    db: Session = Depends(get_db),
) -> AuditEntryListResponse:
    """
    List audit entries for the organization, newest first.

    Requires: manage-settings capability in the organization
    """
    gate.require(caller_id, ResourceScope.build(org_id), AUDIT_REVIEW_CAPABILITY)

    entries, total = audit_service.list_entries(
        db,
        org_id,
        actor_user_id=actor_user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        min_risk=min_risk,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return AuditEntryListResponse(
        items=[AuditEntryRead.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/stats", response_model=AuditStatsResponse)
def get_audit_stats(
    org_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
    db: Session = Depends(get_db),
) -> AuditStatsResponse:
    """Summary counts: total, last 24h, failed, high-risk and PHI access."""
    gate.require(caller_id, ResourceScope.build(org_id), AUDIT_REVIEW_CAPABILITY)
    return AuditStatsResponse(**audit_service.get_stats(db, org_id))


@router.get("/verify", response_model=AuditChainResponse)
def verify_audit_chain(
    org_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
    db: Session = Depends(get_db),
) -> AuditChainResponse:
    """Recompute the organization's hash chain and report whether it is intact."""
    gate.require(caller_id, ResourceScope.build(org_id), AUDIT_REVIEW_CAPABILITY)
    return AuditChainResponse(valid=audit_service.verify_chain(db, org_id))
