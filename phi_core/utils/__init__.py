"""Utility modules."""

from phi_core.utils.normalization import (
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_search_value,
)

__all__ = [
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "normalize_search_value",
]
