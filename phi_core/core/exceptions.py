"""Error taxonomy for the PHI access core.

Messages on these exceptions are safe to show to callers: they never carry
the denial reason, ciphertext, key material or field values.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from phi_core.services.permission_service import Decision


class PHICoreError(Exception):
    """Base class for PHI core errors."""

    public_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class ResourceNotFound(PHICoreError):
    """The resource does not exist, is soft-deleted, or is not visible to the caller."""

    public_message = "Not found"


class AuthorizationDenied(PHICoreError):
    """Caller lacks the capability for an organization-level operation."""

    public_message = "Insufficient permissions"

    def __init__(self, decision: "Decision | None" = None) -> None:
        super().__init__()
        # Kept for server-side logging only
        self.decision = decision


class PHICodecError(PHICoreError):
    """Encryption or decryption of a PHI field bag failed."""

    public_message = "Internal error"

    def __init__(self, field_name: str | None = None) -> None:
        super().__init__()
        self.field_name = field_name


class InvalidFieldError(PHICoreError, ValueError):
    """A field update names an unknown field or omits a required one."""

    public_message = "Invalid field"

    def __init__(self, field_name: str, problem: str = "unknown field") -> None:
        super().__init__(f"{problem}: {field_name}")
        self.field_name = field_name
        self.problem = problem


class AuditWriteFailure(PHICoreError):
    """Persisting an audit entry failed after retry. Never raised to callers."""

    public_message = "Audit write failed"


class AuditImmutabilityError(PHICoreError):
    """An audit entry was updated, or deleted before its retention expiry."""

    public_message = "Audit entries are immutable"
