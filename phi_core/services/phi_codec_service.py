"""PHI field codec: encrypt/decrypt named field bags and derive search hashes.

Field dispatch is driven by the static tables in phi_core.core.phi_fields.
A bag is all-or-nothing: if any field fails, PHICodecError is raised and no
partial result escapes.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping

from phi_core.core.config import Settings
from phi_core.core.encryption import FernetEncryptionProvider, hash_pii
from phi_core.core.exceptions import InvalidFieldError, PHICodecError
from phi_core.core.interfaces import EncryptionProvider
from phi_core.core.phi_fields import PHIField, ResourceSchema, get_schema
from phi_core.db.enums import ResourceType
from phi_core.utils.normalization import normalize_search_value

logger = logging.getLogger(__name__)


def to_plaintext(value: Any) -> str | None:
    """Coerce a supplied field value to the string that gets encrypted."""
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        value = value.isoformat()
    if not isinstance(value, str):
        value = str(value)
    if value.strip() == "":
        return None
    return value


class PHIFieldCodec:
    """Stateless codec over an injected encryption provider and hash key."""

    def __init__(self, provider: EncryptionProvider, hash_key: str) -> None:
        if not hash_key:
            raise RuntimeError("PHI_HASH_KEY not configured.")
        self._provider = provider
        self._hash_key = hash_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "PHIFieldCodec":
        return cls(FernetEncryptionProvider.from_settings(settings), settings.PHI_HASH_KEY)

    # -------------------------------------------------------------------------
    # Field bags
    # -------------------------------------------------------------------------

    def encrypt_fields(
        self, resource_type: ResourceType, plaintext_bag: Mapping[str, Any]
    ) -> dict[str, str | None]:
        """
        Encrypt every field in the bag.

        Empty or absent values map to None rather than to a ciphertext of "".
        """
        schema = get_schema(resource_type)
        encrypted: dict[str, str | None] = {}
        for name, value in plaintext_bag.items():
            self._require_field(schema, name)
            plaintext = to_plaintext(value)
            if plaintext is None:
                encrypted[name] = None
                continue
            try:
                encrypted[name] = self._provider.encrypt(plaintext)
            except Exception as exc:
                logger.error(
                    "PHI encryption failed for %s.%s (%s)",
                    schema.resource_type.value,
                    name,
                    type(exc).__name__,
                )
                raise PHICodecError(name) from exc
        return encrypted

    def decrypt_fields(
        self, resource_type: ResourceType, encrypted_bag: Mapping[str, str | None]
    ) -> dict[str, str | None]:
        """Decrypt every field in the bag; stored None stays None."""
        schema = get_schema(resource_type)
        decrypted: dict[str, str | None] = {}
        for name, ciphertext in encrypted_bag.items():
            self._require_field(schema, name)
            if not ciphertext:
                decrypted[name] = None
                continue
            try:
                decrypted[name] = self._provider.decrypt(ciphertext)
            except Exception as exc:
                logger.error(
                    "PHI decryption failed for %s.%s (%s)",
                    schema.resource_type.value,
                    name,
                    type(exc).__name__,
                )
                raise PHICodecError(name) from exc
        return decrypted

    # -------------------------------------------------------------------------
    # Search hashes
    # -------------------------------------------------------------------------

    def search_hash(self, plaintext: str | None, purpose: str = "text") -> str | None:
        """Deterministic, one-way hash of a normalized value; None if empty."""
        normalized = normalize_search_value(plaintext, purpose)
        if not normalized:
            return None
        return hash_pii(normalized, self._hash_key, purpose=purpose)

    def search_hash_for(self, resource_type: ResourceType, field_name: str, plaintext: str | None) -> str | None:
        """Hash a value the way a hashed field of resource_type stores it."""
        phi_field = self._require_hashed(get_schema(resource_type), field_name)
        return self.search_hash(to_plaintext(plaintext), phi_field.hash_purpose)

    def search_hashes(
        self, resource_type: ResourceType, plaintext_bag: Mapping[str, Any]
    ) -> dict[str, str | None]:
        """Fresh search hashes for every hashed field present in the bag."""
        schema = get_schema(resource_type)
        return {
            phi_field.name: self.search_hash(
                to_plaintext(plaintext_bag[phi_field.name]), phi_field.hash_purpose
            )
            for phi_field in schema.hashed_fields
            if phi_field.name in plaintext_bag
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_field(schema: ResourceSchema, name: str) -> PHIField:
        phi_field = schema.get_field(name)
        if phi_field is None:
            raise InvalidFieldError(name)
        return phi_field

    @classmethod
    def _require_hashed(cls, schema: ResourceSchema, name: str) -> PHIField:
        phi_field = cls._require_field(schema, name)
        if not phi_field.hashed:
            raise InvalidFieldError(name, "field is not searchable")
        return phi_field
