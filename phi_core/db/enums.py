"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    Organization membership roles.

    - OWNER: Practice owner (billing, staff, settings, all patients)
    - ADMIN: Practice administrator (selected patients and calendars)
    - THERAPIST: Licensed clinician (own patients)
    - CONTRACTOR: 1099 clinician (own patients)
    """
    OWNER = "owner"
    ADMIN = "admin"
    THERAPIST = "therapist"
    CONTRACTOR = "contractor"


class ResourceType(str, Enum):
    """Protected resource types carrying PHI fields."""
    PATIENT = "patient"
    CLINICIAN_PHI = "clinician_phi"
    CLINICAL_SESSION = "clinical_session"
    TREATMENT_PLAN = "treatment_plan"


class AuditAction(str, Enum):
    """Actions recorded in the PHI audit trail."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    PHI_ACCESS = "PHI_ACCESS"
    LOGIN = "LOGIN"


class SecurityLevel(str, Enum):
    """Security classification of an audit entry."""
    STANDARD = "standard"
    PHI_PROTECTED = "phi-protected"
    ADMIN = "admin"
