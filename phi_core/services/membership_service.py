"""Membership service - organization membership lookups and lifecycle."""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from phi_core.core.permissions import get_role_preset
from phi_core.db.enums import Role
from phi_core.db.models import OrganizationMembership


logger = logging.getLogger(__name__)

_FLAG_FIELDS = {
    "can_view_all_patients",
    "can_view_all_calendars",
    "can_manage_billing",
    "can_manage_staff",
    "can_manage_settings",
    "can_create_patients",
}
_LIST_FIELDS = {"can_view_selected_patients", "can_view_selected_calendars"}


class MembershipError(ValueError):
    """Membership change would violate a membership invariant."""


class SqlAlchemyMembershipLookup:
    """MembershipLookup backed by the organization_memberships table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_user(self, user_id: UUID) -> list[OrganizationMembership]:
        return list_active_memberships(self.db, user_id)


def list_active_memberships(db: Session, user_id: UUID) -> list[OrganizationMembership]:
    """All active memberships of a user, across organizations."""
    return (
        db.query(OrganizationMembership)
        .filter(
            OrganizationMembership.user_id == user_id,
            OrganizationMembership.is_active.is_(True),
        )
        .order_by(OrganizationMembership.created_at)
        .all()
    )


def get_membership_for_org(db: Session, org_id: UUID, user_id: UUID) -> OrganizationMembership | None:
    """Get the active membership scoped to an organization."""
    return (
        db.query(OrganizationMembership)
        .filter(
            OrganizationMembership.organization_id == org_id,
            OrganizationMembership.user_id == user_id,
            OrganizationMembership.is_active.is_(True),
        )
        .first()
    )


def get_primary_owner(db: Session, org_id: UUID) -> OrganizationMembership | None:
    return (
        db.query(OrganizationMembership)
        .filter(
            OrganizationMembership.organization_id == org_id,
            OrganizationMembership.is_primary_owner.is_(True),
            OrganizationMembership.is_active.is_(True),
        )
        .first()
    )


def _id_list(values: Iterable[object] | None) -> list[str]:
    return sorted({str(v) for v in (values or ())})


def grant_membership(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    role: Role | str,
    *,
    is_primary_owner: bool = False,
    **overrides: object,
) -> OrganizationMembership:
    """
    Create a membership from the role preset plus explicit flag overrides.

    Call this when:
    - An owner adds a staff member
    - An invite is accepted

    Raises MembershipError if the user already has an active membership in
    the organization, or if a second primary owner would be created.
    """
    role = Role(role)
    unknown = set(overrides) - _FLAG_FIELDS - _LIST_FIELDS
    if unknown:
        raise MembershipError(f"Unknown membership flags: {', '.join(sorted(unknown))}")

    if get_membership_for_org(db, org_id, user_id):
        raise MembershipError("User already has an active membership in this organization")

    if is_primary_owner:
        if role != Role.OWNER:
            raise MembershipError("Only an owner membership can be the primary owner")
        if get_primary_owner(db, org_id):
            raise MembershipError("Organization already has a primary owner")

    values = get_role_preset(role).as_flags()
    for key, value in overrides.items():
        values[key] = _id_list(value) if key in _LIST_FIELDS else bool(value)

    membership = OrganizationMembership(
        organization_id=org_id,
        user_id=user_id,
        role=role.value,
        is_active=True,
        is_primary_owner=is_primary_owner,
        **values,
    )
    db.add(membership)
    db.flush()

    logger.info(
        "Granted %s membership to user %s in org %s",
        role.value,
        user_id,
        org_id,
    )
    return membership


def set_selected_grants(
    db: Session,
    membership: OrganizationMembership,
    *,
    patients: Iterable[object] | None = None,
    calendars: Iterable[object] | None = None,
) -> OrganizationMembership:
    """Replace the per-staff patient and/or calendar grant lists."""
    if patients is not None:
        membership.can_view_selected_patients = _id_list(patients)
    if calendars is not None:
        membership.can_view_selected_calendars = _id_list(calendars)
    db.flush()
    return membership


def deactivate_membership(db: Session, membership: OrganizationMembership) -> OrganizationMembership:
    """
    Offboard a member. The row is kept; it is never hard-deleted.

    The primary owner cannot be deactivated until ownership is transferred.
    """
    if membership.is_primary_owner:
        raise MembershipError("Transfer primary ownership before deactivating this member")
    if not membership.is_active:
        return membership

    membership.is_active = False
    membership.deactivated_at = datetime.now(timezone.utc)
    db.flush()

    logger.info(
        "Deactivated membership of user %s in org %s",
        membership.user_id,
        membership.organization_id,
    )
    return membership


def transfer_primary_ownership(
    db: Session,
    org_id: UUID,
    new_owner_user_id: UUID,
) -> OrganizationMembership:
    """Move the primary-owner mark to another active owner of the organization."""
    target = get_membership_for_org(db, org_id, new_owner_user_id)
    if not target:
        raise MembershipError("Target user has no active membership in this organization")
    if target.role != Role.OWNER.value:
        raise MembershipError("Primary ownership can only move to an owner")

    current = get_primary_owner(db, org_id)
    if current is not None and current.id == target.id:
        return target
    if current is not None:
        current.is_primary_owner = False
        db.flush()

    target.is_primary_owner = True
    db.flush()

    logger.info("Transferred primary ownership in org %s to user %s", org_id, new_owner_user_id)
    return target
