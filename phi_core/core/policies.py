"""Centralized capability policies for protected resource types."""

from dataclasses import dataclass

from phi_core.core.permissions import Capability as C
from phi_core.db.enums import ResourceType


@dataclass(frozen=True)
class ResourcePolicy:
    """Capability required per operation on a resource type."""

    read: C
    write: C
    create: C
    delete: C


_CLINICAL = ResourcePolicy(
    read=C.VIEW_PHI,
    write=C.MODIFY_PHI,
    create=C.CREATE_RESOURCE,
    delete=C.MODIFY_PHI,
)

POLICIES: dict[ResourceType, ResourcePolicy] = {
    ResourceType.PATIENT: _CLINICAL,
    ResourceType.CLINICAL_SESSION: _CLINICAL,
    ResourceType.TREATMENT_PLAN: _CLINICAL,
    # Clinician personal data: the clinician (as assignee) or staff managers
    ResourceType.CLINICIAN_PHI: ResourcePolicy(
        read=C.MANAGE_STAFF,
        write=C.MANAGE_STAFF,
        create=C.MANAGE_STAFF,
        delete=C.MANAGE_STAFF,
    ),
}

_missing = [rt.value for rt in ResourceType if rt not in POLICIES]
if _missing:
    raise RuntimeError(f"POLICIES is missing entries for: {', '.join(_missing)}")


def get_policy(resource_type: ResourceType) -> ResourcePolicy:
    """Fetch a resource policy or raise KeyError."""
    return POLICIES[resource_type]
