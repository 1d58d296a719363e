"""Normalization helpers for PHI search hashing."""

import re
from typing import Optional


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize phone to E.164 format (+15551234567).

    Accepts:
    - 10 digits: 5551234567 → +15551234567
    - 11 digits starting with 1: 15551234567 → +15551234567
    - Already E.164: +15551234567 → +15551234567

    Raises:
        ValueError: If phone is not a valid US phone number
    """
    if not phone:
        return None

    cleaned = phone.strip()
    if cleaned.startswith("+"):
        digits = re.sub(r"\D", "", cleaned[1:])
        if digits.startswith("1") and len(digits) == 11:
            return f"+{digits}"
    else:
        digits = re.sub(r"\D", "", cleaned)

    if len(digits) == 10:
        return f"+1{digits}"
    elif len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"

    raise ValueError("Invalid phone number. Use 10-digit US format (e.g., 5551234567).")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Normalize email to lowercase, or None if empty."""
    if not email:
        return None
    stripped = email.strip().lower()
    return stripped or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize name by stripping whitespace and collapsing multiple spaces.

    Returns:
        Cleaned name or None if empty
    """
    if not name:
        return None
    collapsed = " ".join(name.split())
    return collapsed or None


def normalize_search_value(value: Optional[str], purpose: str) -> Optional[str]:
    """
    Normalize a plaintext value before search hashing.

    Emails are lowercased, phones go to E.164 when they parse (raw digits
    otherwise), everything else is whitespace-collapsed and lowercased.
    """
    if value is None:
        return None
    if purpose == "email":
        return normalize_email(value)
    if purpose == "phone":
        if not value.strip():
            return None
        try:
            return normalize_phone(value)
        except ValueError:
            return value.strip()
    name = normalize_name(value)
    return name.lower() if name else None
