"""
Permission resolution tests.

Tests cover:
- Assigned staff always granted
- Blanket flag and selected-grant rules
- Missing capability = deny
- Org scoping (no membership in the org is a hard deny)
- Capability and role preset tables are complete
"""

import uuid
from types import SimpleNamespace

import pytest

from phi_core.core.permissions import CAPABILITY_RULES, ROLE_PRESETS, Capability, get_role_preset
from phi_core.db.enums import Role
from phi_core.services.membership_service import SqlAlchemyMembershipLookup, set_selected_grants
from phi_core.services.permission_service import (
    DenialReason,
    GrantRule,
    PermissionResolver,
    ResourceScope,
    resolve,
)


def _membership(org_id, **flags):
    values = get_role_preset(Role.THERAPIST).as_flags()
    values.update(flags)
    return SimpleNamespace(organization_id=org_id, is_active=True, **values)


# =============================================================================
# Pure resolution
# =============================================================================

def test_assigned_staff_granted_without_flags():
    org_id, caller = uuid.uuid4(), uuid.uuid4()
    scope = ResourceScope.build(org_id, primary_assignee_id=caller)

    decision = resolve([_membership(org_id)], caller, scope, Capability.VIEW_PHI)

    assert decision.granted
    assert decision.rule == GrantRule.ASSIGNED_STAFF


def test_secondary_assigned_staff_granted():
    org_id, caller = uuid.uuid4(), uuid.uuid4()
    scope = ResourceScope.build(org_id, uuid.uuid4(), assigned_staff_ids=[str(caller)])

    assert resolve([_membership(org_id)], caller, scope, Capability.MODIFY_PHI).granted


def test_blanket_flag_grants():
    org_id = uuid.uuid4()
    scope = ResourceScope.build(org_id, uuid.uuid4())

    decision = resolve(
        [_membership(org_id, can_view_all_patients=True)], uuid.uuid4(), scope, Capability.VIEW_PHI
    )
    assert decision.granted
    assert decision.rule == GrantRule.BLANKET_FLAG


def test_selected_grant_matches_primary_assignee():
    org_id, assignee = uuid.uuid4(), uuid.uuid4()
    scope = ResourceScope.build(org_id, assignee)
    membership = _membership(org_id, can_view_selected_patients=[str(assignee)])

    decision = resolve([membership], uuid.uuid4(), scope, Capability.VIEW_PHI)
    assert decision.granted
    assert decision.rule == GrantRule.SELECTED_GRANT


def test_selected_grant_for_other_assignee_denied():
    org_id = uuid.uuid4()
    scope = ResourceScope.build(org_id, uuid.uuid4())
    membership = _membership(org_id, can_view_selected_patients=[str(uuid.uuid4())])

    decision = resolve([membership], uuid.uuid4(), scope, Capability.VIEW_PHI)
    assert not decision.granted
    assert decision.reason == DenialReason.INSUFFICIENT_CAPABILITY


def test_calendar_grant_does_not_grant_phi():
    org_id, assignee = uuid.uuid4(), uuid.uuid4()
    scope = ResourceScope.build(org_id, assignee)
    membership = _membership(org_id, can_view_all_calendars=True, can_view_selected_calendars=[str(assignee)])

    assert resolve([membership], uuid.uuid4(), scope, Capability.VIEW_CALENDAR).granted
    assert not resolve([membership], uuid.uuid4(), scope, Capability.VIEW_PHI).granted


def test_no_membership_in_org_denied_even_if_owner_elsewhere():
    """Full privileges in org A grant nothing in org B."""
    org_a, org_b = uuid.uuid4(), uuid.uuid4()
    owner_flags = get_role_preset(Role.OWNER).as_flags()
    membership = _membership(org_a, **owner_flags)
    scope = ResourceScope.build(org_b, uuid.uuid4())

    decision = resolve([membership], uuid.uuid4(), scope, Capability.VIEW_PHI)
    assert not decision.granted
    assert decision.reason == DenialReason.NO_MEMBERSHIP


def test_inactive_membership_ignored():
    org_id = uuid.uuid4()
    membership = _membership(org_id, can_view_all_patients=True)
    membership.is_active = False

    decision = resolve([membership], uuid.uuid4(), ResourceScope.build(org_id), Capability.VIEW_PHI)
    assert decision.reason == DenialReason.NO_MEMBERSHIP


@pytest.mark.parametrize(
    "capability, flag",
    [
        (Capability.MANAGE_STAFF, "can_manage_staff"),
        (Capability.MANAGE_BILLING, "can_manage_billing"),
        (Capability.MANAGE_SETTINGS, "can_manage_settings"),
        (Capability.CREATE_RESOURCE, "can_create_patients"),
    ],
)
def test_flag_only_capabilities(capability, flag):
    org_id = uuid.uuid4()
    scope = ResourceScope.build(org_id)

    assert resolve([_membership(org_id, **{flag: True})], uuid.uuid4(), scope, capability).granted
    assert not resolve([_membership(org_id, **{flag: False})], uuid.uuid4(), scope, capability).granted


def test_capability_table_complete():
    assert set(CAPABILITY_RULES) == set(Capability)


def test_role_presets_complete():
    assert set(ROLE_PRESETS) == set(Role)
    assert all(get_role_preset(Role.OWNER).as_flags()[k] for k in (
        "can_view_all_patients",
        "can_view_all_calendars",
        "can_manage_billing",
        "can_manage_staff",
        "can_manage_settings",
        "can_create_patients",
    ))
    for role in (Role.ADMIN, Role.THERAPIST, Role.CONTRACTOR):
        flags = get_role_preset(role).as_flags()
        assert flags["can_create_patients"] is True
        assert flags["can_view_all_patients"] is False


def test_unknown_role_rejected():
    with pytest.raises(ValueError):
        get_role_preset("superuser")


# =============================================================================
# Resolver over stored memberships
# =============================================================================

def test_resolver_uses_stored_memberships(db, test_org, owner, therapist):
    resolver = PermissionResolver(SqlAlchemyMembershipLookup(db))
    scope = ResourceScope.build(test_org.id, uuid.uuid4())

    assert resolver.authorize(owner.user_id, scope, Capability.VIEW_PHI).granted
    assert not resolver.authorize(therapist.user_id, scope, Capability.VIEW_PHI).granted


def test_resolver_selected_grant_update(db, test_org, make_staff, therapist):
    admin = make_staff(Role.ADMIN)
    resolver = PermissionResolver(SqlAlchemyMembershipLookup(db))
    scope = ResourceScope.build(test_org.id, therapist.user_id)

    assert not resolver.authorize(admin.user_id, scope, Capability.VIEW_PHI).granted

    set_selected_grants(db, admin.membership, patients=[therapist.user_id])
    assert resolver.authorize(admin.user_id, scope, Capability.VIEW_PHI).granted


def test_resolver_cross_org(db, test_org, other_org, make_staff):
    outsider = make_staff(Role.OWNER, org=other_org, is_primary_owner=True)
    resolver = PermissionResolver(SqlAlchemyMembershipLookup(db))

    decision = resolver.authorize(outsider.user_id, ResourceScope.build(test_org.id), Capability.VIEW_PHI)
    assert decision.reason == DenialReason.NO_MEMBERSHIP
