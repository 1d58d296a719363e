"""Collaborator interfaces consumed by the access gate."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from phi_core.db.enums import ResourceType
from phi_core.db.models import AuditLogEntry, OrganizationMembership


class EncryptionProvider(Protocol):
    """Opaque symmetric encryption capability."""

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string."""

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext produced by encrypt."""


class MembershipLookup(Protocol):
    def find_by_user(self, user_id: UUID) -> list[OrganizationMembership]:
        """Return the user's active memberships across all organizations."""


class ResourceRepository(Protocol):
    """
    Storage for protected resources.

    ``values`` maps column names to stored values: plain columns as-is, PHI
    columns as ciphertext (``<field>_encrypted``) and search hashes
    (``<field>_search_hash``).
    """

    def find_by_id(self, resource_type: ResourceType, resource_id: UUID) -> Any | None:
        """Return the row, including soft-deleted rows, or None."""

    def create(self, resource_type: ResourceType, values: dict[str, Any]) -> Any:
        """Insert and return a new row."""

    def update(self, resource_type: ResourceType, resource_id: UUID, values: dict[str, Any]) -> Any:
        """Apply values to an existing row and return it."""

    def soft_delete(
        self,
        resource_type: ResourceType,
        resource_id: UUID,
        deleted_by: UUID,
        deleted_at: datetime,
    ) -> Any:
        """Mark a row deleted without removing it."""

    def find_by_search_hash(
        self, resource_type: ResourceType, field_name: str, search_hash: str
    ) -> list[Any]:
        """Return non-deleted rows whose search hash for field_name matches."""


class AuditStore(Protocol):
    def append(self, entry: AuditLogEntry) -> None:
        """Durably persist an audit entry. Raise on failure."""
