"""Protected resources router - gate-backed CRUD and hashed-field search."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response, status

from phi_core.api.deps import get_caller_id, get_gate
from phi_core.db.enums import ResourceType
from phi_core.services.access_gate_service import AccessControlGate

router = APIRouter(prefix="/resources", tags=["Protected Resources"])


@router.post("/{resource_type}", status_code=status.HTTP_201_CREATED)
def create_resource(
    resource_type: ResourceType,
    fields: dict[str, Any] = Body(...),
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
) -> dict[str, Any]:
    """Create a resource. Body must include organization_id and the assignee id."""
    return gate.write_protected(resource_type, fields, caller_id)


@router.get("/{resource_type}/search")
def search_resources(
    resource_type: ResourceType,
    field: str = Query(..., description="Hashed field to match"),
    q: str = Query(..., min_length=1),
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
) -> dict[str, Any]:
    """Exact-match search. Only results the caller may read are returned."""
    items = gate.search_by(resource_type, field, q, caller_id)
    return {"items": items, "total": len(items)}


@router.get("/{resource_type}/{resource_id}")
def read_resource(
    resource_type: ResourceType,
    resource_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
) -> dict[str, Any]:
    return gate.read_protected(resource_type, resource_id, caller_id)


@router.patch("/{resource_type}/{resource_id}")
def update_resource(
    resource_type: ResourceType,
    resource_id: UUID,
    fields: dict[str, Any] = Body(...),
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
) -> dict[str, Any]:
    return gate.write_protected(resource_type, fields, caller_id, resource_id=resource_id)


@router.delete("/{resource_type}/{resource_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_resource(
    resource_type: ResourceType,
    resource_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    gate: AccessControlGate = Depends(get_gate),
) -> Response:
    """Soft delete. The record is retained and hidden from reads."""
    gate.delete_protected(resource_type, resource_id, caller_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
