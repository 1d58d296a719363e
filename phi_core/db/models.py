"""SQLAlchemy ORM models for tenants, memberships, protected resources and audit."""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON, Boolean, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, event
)
from sqlalchemy.orm import Mapped, ORMExecuteState, Session, mapped_column, relationship

from phi_core.core.exceptions import AuditImmutabilityError
from phi_core.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _phi() -> Mapped[str | None]:
    return mapped_column(Text, nullable=True)


def _search_hash() -> Mapped[str | None]:
    return mapped_column(String(64), nullable=True, index=True)


# =============================================================================
# Tenant Models
# =============================================================================

class Organization(Base):
    """
    A practice (tenant) in the multi-tenant system.

    All protected resources belong to an organization
    and must be scoped by organization_id in all queries.
    """
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    memberships: Mapped[list["OrganizationMembership"]] = relationship(
        back_populates="organization"
    )


class OrganizationMembership(Base):
    """
    Binds one user to one organization with a role and capability flags.

    A user may hold memberships in several organizations. Memberships are
    deactivated on offboarding, never deleted. At most one active membership
    per (organization, user) and at most one active primary owner per
    organization (enforced in membership_service).
    """
    __tablename__ = "organization_memberships"
    __table_args__ = (
        Index("idx_memberships_user_active", "user_id", "is_active"),
        Index("idx_memberships_org_id", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)  # Role

    # Patient and calendar visibility
    can_view_all_patients: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_view_selected_patients: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    can_view_all_calendars: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_view_selected_calendars: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Management
    can_manage_billing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage_staff: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage_settings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create_patients: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_primary_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    organization: Mapped["Organization"] = relationship(back_populates="memberships")


# =============================================================================
# Protected Resources
# =============================================================================

class SoftDeleteMixin:
    """Soft-delete columns: protected rows are retained, never purged."""

    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)


class Patient(SoftDeleteMixin, Base):
    """Patient record. All PHI columns hold ciphertext only."""
    __tablename__ = "patients"
    __table_args__ = (
        Index("idx_patients_org_therapist", "organization_id", "primary_therapist_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False
    )
    primary_therapist_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    assigned_therapist_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Plain fields
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False)
    type: Mapped[str] = mapped_column(String(30), default="individual", nullable=False)
    billing_type: Mapped[str] = mapped_column(String(30), default="private_pay", nullable=False)
    session_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    no_show_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    copay_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    deductible_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    default_cpt_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    place_of_service: Mapped[str] = mapped_column(String(5), default="11", nullable=False)
    authorization_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Identity and contact (encrypted)
    name_encrypted: Mapped[str | None] = _phi()
    contact_email_encrypted: Mapped[str | None] = _phi()
    contact_phone_encrypted: Mapped[str | None] = _phi()
    home_address_encrypted: Mapped[str | None] = _phi()
    home_city_encrypted: Mapped[str | None] = _phi()
    home_state_encrypted: Mapped[str | None] = _phi()
    home_zip_encrypted: Mapped[str | None] = _phi()

    # Demographics (encrypted; age is derived from dob, never stored)
    dob_encrypted: Mapped[str | None] = _phi()
    gender_encrypted: Mapped[str | None] = _phi()
    race_encrypted: Mapped[str | None] = _phi()
    ethnicity_encrypted: Mapped[str | None] = _phi()
    pronouns_encrypted: Mapped[str | None] = _phi()
    hometown_encrypted: Mapped[str | None] = _phi()

    # Clinical (encrypted)
    clinical_notes_encrypted: Mapped[str | None] = _phi()
    diagnosis_codes_encrypted: Mapped[str | None] = _phi()
    primary_diagnosis_encrypted: Mapped[str | None] = _phi()
    secondary_diagnosis_encrypted: Mapped[str | None] = _phi()
    tertiary_diagnosis_encrypted: Mapped[str | None] = _phi()
    medical_history_encrypted: Mapped[str | None] = _phi()
    treatment_history_encrypted: Mapped[str | None] = _phi()
    referring_physician_encrypted: Mapped[str | None] = _phi()
    referring_physician_npi_encrypted: Mapped[str | None] = _phi()

    # Insurance (encrypted)
    insurance_provider_encrypted: Mapped[str | None] = _phi()
    insurance_info_encrypted: Mapped[str | None] = _phi()
    member_id_encrypted: Mapped[str | None] = _phi()
    group_number_encrypted: Mapped[str | None] = _phi()
    primary_insured_name_encrypted: Mapped[str | None] = _phi()
    primary_insured_dob_encrypted: Mapped[str | None] = _phi()
    authorization_info_encrypted: Mapped[str | None] = _phi()
    prior_auth_number_encrypted: Mapped[str | None] = _phi()

    # Search hashes
    name_search_hash: Mapped[str | None] = _search_hash()
    contact_email_search_hash: Mapped[str | None] = _search_hash()
    contact_phone_search_hash: Mapped[str | None] = _search_hash()


class ClinicianPHI(SoftDeleteMixin, Base):
    """Clinician personal data (identity, contact, work authorization)."""
    __tablename__ = "clinician_phi"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    is_us_citizen: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    ssn_encrypted: Mapped[str | None] = _phi()
    dob_encrypted: Mapped[str | None] = _phi()
    gender_encrypted: Mapped[str | None] = _phi()
    race_encrypted: Mapped[str | None] = _phi()
    home_address_encrypted: Mapped[str | None] = _phi()
    home_city_encrypted: Mapped[str | None] = _phi()
    home_state_encrypted: Mapped[str | None] = _phi()
    home_zip_encrypted: Mapped[str | None] = _phi()
    personal_phone_encrypted: Mapped[str | None] = _phi()
    personal_email_encrypted: Mapped[str | None] = _phi()
    birth_city_encrypted: Mapped[str | None] = _phi()
    birth_state_encrypted: Mapped[str | None] = _phi()
    birth_country_encrypted: Mapped[str | None] = _phi()
    work_permit_visa_encrypted: Mapped[str | None] = _phi()
    emergency_contact_name_encrypted: Mapped[str | None] = _phi()
    emergency_contact_phone_encrypted: Mapped[str | None] = _phi()
    emergency_contact_relationship_encrypted: Mapped[str | None] = _phi()

    personal_phone_search_hash: Mapped[str | None] = _search_hash()
    personal_email_search_hash: Mapped[str | None] = _search_hash()


class ClinicalSession(SoftDeleteMixin, Base):
    """Clinical session with encrypted SOAP notes."""
    __tablename__ = "clinical_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="RESTRICT"), nullable=False
    )
    therapist_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    date: Mapped[datetime | None] = mapped_column(nullable=True)
    duration: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    type: Mapped[str] = mapped_column(String(30), default="individual", nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="scheduled", nullable=False)
    is_intake: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    session_format: Mapped[str | None] = mapped_column(String(30), nullable=True)
    cpt_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    authorization_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    authorization_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    clinical_notes_encrypted: Mapped[str | None] = _phi()
    subjective_notes_encrypted: Mapped[str | None] = _phi()
    objective_notes_encrypted: Mapped[str | None] = _phi()
    assessment_notes_encrypted: Mapped[str | None] = _phi()
    plan_notes_encrypted: Mapped[str | None] = _phi()
    treatment_goals_encrypted: Mapped[str | None] = _phi()
    progress_notes_encrypted: Mapped[str | None] = _phi()
    interventions_encrypted: Mapped[str | None] = _phi()


class TreatmentPlan(SoftDeleteMixin, Base):
    """Versioned patient treatment plan with encrypted clinical content."""
    __tablename__ = "treatment_plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="RESTRICT"), nullable=False
    )
    therapist_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False)
    start_date: Mapped[date | None] = mapped_column(nullable=True)
    end_date: Mapped[date | None] = mapped_column(nullable=True)
    review_date: Mapped[date | None] = mapped_column(nullable=True)
    next_review_date: Mapped[date | None] = mapped_column(nullable=True)

    content_encrypted: Mapped[str | None] = _phi()
    goals_encrypted: Mapped[str | None] = _phi()
    objectives_encrypted: Mapped[str | None] = _phi()
    interventions_encrypted: Mapped[str | None] = _phi()
    progress_notes_encrypted: Mapped[str | None] = _phi()
    diagnosis_encrypted: Mapped[str | None] = _phi()
    assessment_encrypted: Mapped[str | None] = _phi()


# =============================================================================
# Audit
# =============================================================================

class AuditLogEntry(Base):
    """
    Immutable PHI access audit record.

    Security:
    - Never stores PHI values, only field names and ids
    - Never updated after insert
    - Never deleted before retention_expiry (created_at + retention years)
    - Hash-chained per organization (prev_hash -> entry_hash) so tampering
      that bypasses the ORM is detectable
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        Index("idx_audit_entries_created", "created_at"),
        Index("idx_audit_entries_actor_created", "actor_user_id", "created_at"),
        Index("idx_audit_entries_resource", "resource_type", "resource_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True  # Unauthenticated or failed-auth attempts have no actor
    )

    action: Mapped[str] = mapped_column(String(20), nullable=False)  # AuditAction
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # PHI access tracking (field names only)
    fields_accessed: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    phi_fields_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Outcome and classification
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    security_level: Mapped[str] = mapped_column(String(20), default="standard", nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hipaa_compliant: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Request / response metadata
    request_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    request_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Redacted context (ids, counts, query type; never values)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    retention_expiry: Mapped[datetime] = mapped_column(nullable=False)

    # Hash chain (SHA256 hex)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)


@event.listens_for(AuditLogEntry, "before_update")
def _block_audit_update(mapper, connection, target: AuditLogEntry) -> None:
    raise AuditImmutabilityError("Audit entries cannot be modified")


@event.listens_for(AuditLogEntry, "before_delete")
def _block_early_audit_delete(mapper, connection, target: AuditLogEntry) -> None:
    if _as_utc(target.retention_expiry) > _utcnow():
        raise AuditImmutabilityError("Audit entries cannot be deleted before retention expiry")


@event.listens_for(Session, "do_orm_execute")
def _block_bulk_audit_writes(orm_execute_state: ORMExecuteState) -> None:
    """Bulk UPDATE/DELETE statements skip the mapper events above; refuse them here."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    table = getattr(orm_execute_state.statement, "table", None)
    if getattr(table, "name", None) != AuditLogEntry.__tablename__:
        return
    if orm_execute_state.is_update:
        raise AuditImmutabilityError("Audit entries cannot be modified")
    raise AuditImmutabilityError("Audit entries cannot be bulk deleted")
