"""Service layer modules."""

from phi_core.services.access_gate_service import AccessControlGate
from phi_core.services.age_service import compute_age
from phi_core.services.audit_service import (
    AuditTrailRecorder,
    SqlAlchemyAuditStore,
    get_stats,
    list_entries,
    verify_chain,
)
from phi_core.services.membership_service import (
    SqlAlchemyMembershipLookup,
    deactivate_membership,
    grant_membership,
    transfer_primary_ownership,
)
from phi_core.services.permission_service import (
    Decision,
    DenialReason,
    PermissionResolver,
    ResourceScope,
)
from phi_core.services.phi_codec_service import PHIFieldCodec
from phi_core.services.resource_repository import SqlAlchemyResourceRepository

__all__ = [
    # Gate
    "AccessControlGate",
    # Authorization
    "PermissionResolver",
    "ResourceScope",
    "Decision",
    "DenialReason",
    # Codec
    "PHIFieldCodec",
    "compute_age",
    # Audit
    "AuditTrailRecorder",
    "SqlAlchemyAuditStore",
    "list_entries",
    "get_stats",
    "verify_chain",
    # Storage adapters
    "SqlAlchemyMembershipLookup",
    "SqlAlchemyResourceRepository",
    # Membership lifecycle
    "grant_membership",
    "deactivate_membership",
    "transfer_primary_ownership",
]
