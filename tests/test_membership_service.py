"""
Membership lifecycle tests.

Tests cover:
- Role presets applied on grant, with overrides
- One active membership per (org, user)
- Primary owner invariant: one per org, cannot be deactivated, transferable
"""

import uuid

import pytest

from phi_core.db.enums import Role
from phi_core.services.membership_service import (
    MembershipError,
    deactivate_membership,
    get_membership_for_org,
    get_primary_owner,
    grant_membership,
    list_active_memberships,
    transfer_primary_ownership,
)


def test_grant_applies_role_preset(db, test_org):
    membership = grant_membership(db, test_org.id, uuid.uuid4(), Role.OWNER)

    assert membership.can_view_all_patients is True
    assert membership.can_manage_staff is True
    assert membership.is_active is True


def test_grant_with_overrides(db, test_org):
    assignee = uuid.uuid4()
    membership = grant_membership(
        db,
        test_org.id,
        uuid.uuid4(),
        "admin",
        can_manage_billing=True,
        can_view_selected_patients=[assignee],
    )

    assert membership.role == "admin"
    assert membership.can_manage_billing is True
    assert membership.can_view_selected_patients == [str(assignee)]


def test_grant_rejects_unknown_flag(db, test_org):
    with pytest.raises(MembershipError):
        grant_membership(db, test_org.id, uuid.uuid4(), Role.THERAPIST, can_fly=True)


def test_duplicate_active_membership_rejected(db, test_org, therapist):
    with pytest.raises(MembershipError):
        grant_membership(db, test_org.id, therapist.user_id, Role.ADMIN)


def test_user_may_belong_to_several_orgs(db, test_org, other_org, therapist):
    grant_membership(db, other_org.id, therapist.user_id, Role.CONTRACTOR)

    memberships = list_active_memberships(db, therapist.user_id)
    assert {m.organization_id for m in memberships} == {test_org.id, other_org.id}


def test_single_primary_owner(db, test_org, owner):
    with pytest.raises(MembershipError):
        grant_membership(db, test_org.id, uuid.uuid4(), Role.OWNER, is_primary_owner=True)


def test_primary_owner_must_be_owner(db, other_org):
    with pytest.raises(MembershipError):
        grant_membership(db, other_org.id, uuid.uuid4(), Role.ADMIN, is_primary_owner=True)


def test_deactivate_keeps_row(db, test_org, therapist):
    deactivate_membership(db, therapist.membership)

    assert therapist.membership.is_active is False
    assert therapist.membership.deactivated_at is not None
    assert get_membership_for_org(db, test_org.id, therapist.user_id) is None


def test_primary_owner_cannot_be_deactivated(db, owner):
    with pytest.raises(MembershipError):
        deactivate_membership(db, owner.membership)


def test_transfer_primary_ownership(db, test_org, owner, make_staff):
    co_owner = make_staff(Role.OWNER)

    transfer_primary_ownership(db, test_org.id, co_owner.user_id)

    assert get_primary_owner(db, test_org.id).user_id == co_owner.user_id
    assert owner.membership.is_primary_owner is False
    # Former primary owner may now be offboarded
    deactivate_membership(db, owner.membership)
    assert owner.membership.is_active is False


def test_transfer_to_non_owner_rejected(db, test_org, owner, therapist):
    with pytest.raises(MembershipError):
        transfer_primary_ownership(db, test_org.id, therapist.user_id)
