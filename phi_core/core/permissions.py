"""Capability registry and role presets.

Every Capability maps to the membership flag that grants it blanket and,
where one exists, the per-user grant list that grants it for selected staff.
Every Role maps to its default membership flags. Both tables are checked for
completeness at import so a new enum member cannot silently fall through.
"""

from dataclasses import dataclass, field
from enum import Enum

from phi_core.db.enums import Role


class Capability(str, Enum):
    """Atomic permissions checked by the permission resolver."""
    VIEW_PHI = "view_phi"
    MODIFY_PHI = "modify_phi"
    MANAGE_STAFF = "manage_staff"
    CREATE_RESOURCE = "create_resource"
    VIEW_CALENDAR = "view_calendar"
    MODIFY_CALENDAR = "modify_calendar"
    MANAGE_BILLING = "manage_billing"
    MANAGE_SETTINGS = "manage_settings"


@dataclass(frozen=True)
class CapabilityRule:
    """Membership attributes consulted for a capability."""
    blanket_flag: str
    selected_list: str | None = None


CAPABILITY_RULES: dict[Capability, CapabilityRule] = {
    Capability.VIEW_PHI: CapabilityRule("can_view_all_patients", "can_view_selected_patients"),
    Capability.MODIFY_PHI: CapabilityRule("can_view_all_patients", "can_view_selected_patients"),
    Capability.MANAGE_STAFF: CapabilityRule("can_manage_staff"),
    Capability.CREATE_RESOURCE: CapabilityRule("can_create_patients"),
    Capability.VIEW_CALENDAR: CapabilityRule("can_view_all_calendars", "can_view_selected_calendars"),
    Capability.MODIFY_CALENDAR: CapabilityRule("can_view_all_calendars", "can_view_selected_calendars"),
    Capability.MANAGE_BILLING: CapabilityRule("can_manage_billing"),
    Capability.MANAGE_SETTINGS: CapabilityRule("can_manage_settings"),
}

# Capabilities whose audit entries are classified as admin activity
ADMIN_CAPABILITIES: frozenset[Capability] = frozenset(
    {Capability.MANAGE_STAFF, Capability.MANAGE_BILLING, Capability.MANAGE_SETTINGS}
)


@dataclass(frozen=True)
class RolePreset:
    """Default membership flags applied when a membership is granted."""
    description: str
    can_view_all_patients: bool = False
    can_view_all_calendars: bool = False
    can_manage_billing: bool = False
    can_manage_staff: bool = False
    can_manage_settings: bool = False
    can_create_patients: bool = True
    can_view_selected_patients: frozenset = field(default_factory=frozenset)
    can_view_selected_calendars: frozenset = field(default_factory=frozenset)

    def as_flags(self) -> dict[str, object]:
        return {
            "can_view_all_patients": self.can_view_all_patients,
            "can_view_all_calendars": self.can_view_all_calendars,
            "can_manage_billing": self.can_manage_billing,
            "can_manage_staff": self.can_manage_staff,
            "can_manage_settings": self.can_manage_settings,
            "can_create_patients": self.can_create_patients,
            "can_view_selected_patients": sorted(self.can_view_selected_patients),
            "can_view_selected_calendars": sorted(self.can_view_selected_calendars),
        }


ROLE_PRESETS: dict[Role, RolePreset] = {
    Role.OWNER: RolePreset(
        "Full practice access: all patients and calendars, billing, staff and settings.",
        can_view_all_patients=True,
        can_view_all_calendars=True,
        can_manage_billing=True,
        can_manage_staff=True,
        can_manage_settings=True,
    ),
    Role.ADMIN: RolePreset(
        "Limited management access: selected patients and calendars only.",
    ),
    Role.THERAPIST: RolePreset(
        "Clinical access: own patients, may create patients.",
    ),
    Role.CONTRACTOR: RolePreset(
        "Clinical access for 1099 contractors: own patients, may create patients.",
    ),
}


def _check_complete(table: dict, enum_cls: type[Enum], name: str) -> None:
    missing = [member for member in enum_cls if member not in table]
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {', '.join(m.value for m in missing)}")


_check_complete(CAPABILITY_RULES, Capability, "CAPABILITY_RULES")
_check_complete(ROLE_PRESETS, Role, "ROLE_PRESETS")


def get_capability_rule(capability: Capability) -> CapabilityRule:
    return CAPABILITY_RULES[capability]


def get_role_preset(role: Role | str) -> RolePreset:
    """Get default flags for a role. Raises ValueError for unknown roles."""
    return ROLE_PRESETS[Role(role)]
