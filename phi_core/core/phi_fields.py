"""Static PHI field tables per protected resource type.

Each resource type lists its PHI fields in a fixed order. Storage columns are
derived from the field name: ``<name>_encrypted`` holds the ciphertext and,
for hashed fields, ``<name>_search_hash`` holds the keyed search hash.
"""

from dataclasses import dataclass

from phi_core.db.enums import ResourceType


@dataclass(frozen=True)
class PHIField:
    """Descriptor for one encrypted field."""

    name: str
    hashed: bool = False
    required: bool = False
    # Normalization applied before hashing: "email", "phone" or "text"
    hash_purpose: str = "text"
    derives_age: bool = False

    @property
    def encrypted_column(self) -> str:
        return f"{self.name}_encrypted"

    @property
    def search_hash_column(self) -> str | None:
        return f"{self.name}_search_hash" if self.hashed else None


@dataclass(frozen=True)
class ResourceSchema:
    """Field layout of a protected resource type."""

    resource_type: ResourceType
    phi_fields: tuple[PHIField, ...]
    # Clear-text columns a caller may set on create/update
    plain_fields: tuple[str, ...]
    # Column holding the primary assigned staff member
    assignee_field: str
    # Optional column holding additional assigned staff ids
    assigned_staff_field: str | None = None

    @property
    def hashed_fields(self) -> tuple[PHIField, ...]:
        return tuple(f for f in self.phi_fields if f.hashed)

    def get_field(self, name: str) -> PHIField | None:
        for phi_field in self.phi_fields:
            if phi_field.name == name:
                return phi_field
        return None

    def is_phi(self, name: str) -> bool:
        return self.get_field(name) is not None


def _fields(*names: str) -> tuple[PHIField, ...]:
    return tuple(PHIField(name) for name in names)


PATIENT_SCHEMA = ResourceSchema(
    resource_type=ResourceType.PATIENT,
    phi_fields=(
        PHIField("name", hashed=True, required=True, hash_purpose="text"),
        PHIField("contact_email", hashed=True, hash_purpose="email"),
        PHIField("contact_phone", hashed=True, hash_purpose="phone"),
        *_fields("home_address", "home_city", "home_state", "home_zip"),
        PHIField("dob", derives_age=True),
        *_fields(
            "gender",
            "race",
            "ethnicity",
            "pronouns",
            "hometown",
            "clinical_notes",
            "diagnosis_codes",
            "primary_diagnosis",
            "secondary_diagnosis",
            "tertiary_diagnosis",
            "medical_history",
            "treatment_history",
            "referring_physician",
            "referring_physician_npi",
            "insurance_provider",
            "insurance_info",
            "member_id",
            "group_number",
            "primary_insured_name",
            "primary_insured_dob",
            "authorization_info",
            "prior_auth_number",
        ),
    ),
    plain_fields=(
        "status",
        "type",
        "billing_type",
        "session_cost",
        "no_show_fee",
        "copay_amount",
        "deductible_amount",
        "default_cpt_code",
        "place_of_service",
        "authorization_required",
        "assigned_therapist_ids",
    ),
    assignee_field="primary_therapist_id",
    assigned_staff_field="assigned_therapist_ids",
)

CLINICIAN_PHI_SCHEMA = ResourceSchema(
    resource_type=ResourceType.CLINICIAN_PHI,
    phi_fields=(
        PHIField("ssn"),
        PHIField("dob", derives_age=True),
        *_fields("gender", "race", "home_address", "home_city", "home_state", "home_zip"),
        PHIField("personal_phone", hashed=True, hash_purpose="phone"),
        PHIField("personal_email", hashed=True, hash_purpose="email"),
        *_fields(
            "birth_city",
            "birth_state",
            "birth_country",
            "work_permit_visa",
            "emergency_contact_name",
            "emergency_contact_phone",
            "emergency_contact_relationship",
        ),
    ),
    plain_fields=("is_us_citizen",),
    assignee_field="user_id",
)

CLINICAL_SESSION_SCHEMA = ResourceSchema(
    resource_type=ResourceType.CLINICAL_SESSION,
    phi_fields=_fields(
        "clinical_notes",
        "subjective_notes",
        "objective_notes",
        "assessment_notes",
        "plan_notes",
        "treatment_goals",
        "progress_notes",
        "interventions",
    ),
    plain_fields=(
        "patient_id",
        "date",
        "duration",
        "type",
        "status",
        "is_intake",
        "session_format",
        "cpt_code",
        "authorization_required",
        "authorization_number",
        "is_paid",
    ),
    assignee_field="therapist_id",
)

TREATMENT_PLAN_SCHEMA = ResourceSchema(
    resource_type=ResourceType.TREATMENT_PLAN,
    phi_fields=_fields(
        "content",
        "goals",
        "objectives",
        "interventions",
        "progress_notes",
        "diagnosis",
        "assessment",
    ),
    plain_fields=(
        "patient_id",
        "version",
        "status",
        "start_date",
        "end_date",
        "review_date",
        "next_review_date",
    ),
    assignee_field="therapist_id",
)

RESOURCE_SCHEMAS: dict[ResourceType, ResourceSchema] = {
    schema.resource_type: schema
    for schema in (
        PATIENT_SCHEMA,
        CLINICIAN_PHI_SCHEMA,
        CLINICAL_SESSION_SCHEMA,
        TREATMENT_PLAN_SCHEMA,
    )
}

_missing = [rt.value for rt in ResourceType if rt not in RESOURCE_SCHEMAS]
if _missing:
    raise RuntimeError(f"RESOURCE_SCHEMAS is missing entries for: {', '.join(_missing)}")


def get_schema(resource_type: ResourceType | str) -> ResourceSchema:
    """Return the field table for a resource type. Raises ValueError if unknown."""
    return RESOURCE_SCHEMAS[ResourceType(resource_type)]
