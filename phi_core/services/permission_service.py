"""Permission resolution over organization memberships.

Resolution, per active membership in the resource's organization, first match wins:
1. Caller is the resource's primary assignee or in its assigned staff set
2. Membership holds the blanket flag for the capability
3. Membership's selected-id grant list contains the resource's primary assignee
4. Otherwise deny

No membership in the organization is a hard deny, whatever the caller holds elsewhere.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from phi_core.core.interfaces import MembershipLookup
from phi_core.core.permissions import Capability, get_capability_rule
from phi_core.db.models import OrganizationMembership

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    """Why a decision denied. Logged server-side, never shown to callers."""
    NO_MEMBERSHIP = "NO_MEMBERSHIP"
    INSUFFICIENT_CAPABILITY = "INSUFFICIENT_CAPABILITY"


class GrantRule(str, Enum):
    """Which resolution rule granted access."""
    ASSIGNED_STAFF = "assigned_staff"
    BLANKET_FLAG = "blanket_flag"
    SELECTED_GRANT = "selected_grant"


def _id_set(values: Iterable[object] | None) -> frozenset[str]:
    return frozenset(str(v) for v in (values or ()) if v is not None)


@dataclass(frozen=True)
class ResourceScope:
    """Ownership facts of the resource being accessed."""

    organization_id: UUID
    primary_assignee_id: UUID | None = None
    assigned_staff_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        organization_id: UUID,
        primary_assignee_id: UUID | None = None,
        assigned_staff_ids: Iterable[object] | None = None,
    ) -> "ResourceScope":
        return cls(
            organization_id=organization_id,
            primary_assignee_id=primary_assignee_id,
            assigned_staff_ids=_id_set(assigned_staff_ids),
        )

    def is_staff(self, user_id: UUID) -> bool:
        if self.primary_assignee_id is not None and str(self.primary_assignee_id) == str(user_id):
            return True
        return str(user_id) in self.assigned_staff_ids


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""

    granted: bool
    capability: Capability
    reason: DenialReason | None = None
    rule: GrantRule | None = None

    @classmethod
    def grant(cls, capability: Capability, rule: GrantRule) -> "Decision":
        return cls(granted=True, capability=capability, rule=rule)

    @classmethod
    def deny(cls, capability: Capability, reason: DenialReason) -> "Decision":
        return cls(granted=False, capability=capability, reason=reason)


def match_membership(
    membership: OrganizationMembership,
    caller_id: UUID,
    scope: ResourceScope,
    capability: Capability,
) -> GrantRule | None:
    """Return the first rule this membership satisfies, or None."""
    if scope.is_staff(caller_id):
        return GrantRule.ASSIGNED_STAFF

    rule = get_capability_rule(capability)
    if getattr(membership, rule.blanket_flag):
        return GrantRule.BLANKET_FLAG

    if rule.selected_list and scope.primary_assignee_id is not None:
        selected = _id_set(getattr(membership, rule.selected_list))
        if str(scope.primary_assignee_id) in selected:
            return GrantRule.SELECTED_GRANT

    return None


def resolve(
    memberships: Iterable[OrganizationMembership],
    caller_id: UUID,
    scope: ResourceScope,
    capability: Capability,
) -> Decision:
    """Pure decision over an already-fetched membership list."""
    in_org = [
        m
        for m in memberships
        if m.is_active and str(m.organization_id) == str(scope.organization_id)
    ]
    if not in_org:
        return Decision.deny(capability, DenialReason.NO_MEMBERSHIP)

    for membership in in_org:
        matched = match_membership(membership, caller_id, scope, capability)
        if matched is not None:
            return Decision.grant(capability, matched)

    return Decision.deny(capability, DenialReason.INSUFFICIENT_CAPABILITY)


class PermissionResolver:
    """Authorizes callers against memberships fetched from a lookup collaborator."""

    def __init__(self, membership_lookup: MembershipLookup) -> None:
        self._memberships = membership_lookup

    def authorize(self, caller_id: UUID, scope: ResourceScope, capability: Capability) -> Decision:
        memberships = self._memberships.find_by_user(caller_id)
        decision = resolve(memberships, caller_id, scope, capability)
        if decision.granted:
            logger.debug(
                "Granted %s to user %s in org %s via %s",
                capability.value,
                caller_id,
                scope.organization_id,
                decision.rule.value,
            )
        else:
            logger.info(
                "Denied %s to user %s in org %s (%s)",
                capability.value,
                caller_id,
                scope.organization_id,
                decision.reason.value,
            )
        return decision
