"""Encryption provider and keyed hashing for PHI at rest."""

from __future__ import annotations

import hashlib
import hmac

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from phi_core.core.config import Settings


_ENCRYPTED_PREFIX = "enc:"
_SELF_TEST_VALUE = "phi-self-test-123"


class FernetEncryptionProvider:
    """
    Opaque encrypt/decrypt capability backed by Fernet.

    Built once at process start and passed explicitly to the codec. Holds the
    current key first and, during an out-of-band rotation, the previous key;
    new ciphertext is always produced with the current key.
    """

    def __init__(self, keys: list[str]) -> None:
        usable = [key for key in keys if key]
        if not usable:
            raise RuntimeError(
                "PHI_ENCRYPTION_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        try:
            self._fernet = MultiFernet([Fernet(key.encode()) for key in usable])
        except (ValueError, TypeError) as exc:
            raise RuntimeError("PHI_ENCRYPTION_KEY is not a valid Fernet key") from exc
        self.verify()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FernetEncryptionProvider":
        return cls(settings.phi_encryption_keys)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string value for PHI at rest."""
        token = self._fernet.encrypt(plaintext.encode()).decode()
        return f"{_ENCRYPTED_PREFIX}{token}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored PHI value."""
        if not ciphertext.startswith(_ENCRYPTED_PREFIX):
            raise ValueError("Encrypted data is missing prefix")
        token = ciphertext[len(_ENCRYPTED_PREFIX) :]
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            raise ValueError("Invalid or corrupted encrypted data")

    def verify(self) -> None:
        """Round-trip a known value; raise if the key material is unusable."""
        if self.decrypt(self.encrypt(_SELF_TEST_VALUE)) != _SELF_TEST_VALUE:
            raise RuntimeError("PHI encryption self-test failed")


def is_encrypted(value: str | None) -> bool:
    return bool(value) and value.startswith(_ENCRYPTED_PREFIX)


def hash_pii(value: str, key: str, purpose: str = "pii") -> str:
    """Hash PII deterministically for lookups and uniqueness."""
    if not key:
        raise RuntimeError("PHI_HASH_KEY not configured.")
    data = f"{purpose}:{value}".encode()
    return hmac.new(key.encode(), data, hashlib.sha256).hexdigest()
