"""Safe Harbor age derivation from date of birth.

Ages above 89 are collapsed to a single "90+" bucket per the HIPAA Safe
Harbor de-identification rule. Bad input never raises: a derived field must
not block access to the rest of the record.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

logger = logging.getLogger(__name__)

SAFE_HARBOR_MAX_AGE = 89
SAFE_HARBOR_BUCKET = "90+"
AGE_UNKNOWN = "unknown"

DisplayAge = int | str


def parse_date_of_birth(value: date | datetime | str | None) -> date | None:
    """Parse a date of birth from a date, datetime or ISO string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        return None


def whole_years_between(born: date, as_of: date) -> int:
    """Whole years elapsed; increments on the anniversary day itself."""
    years = as_of.year - born.year
    # Feb 29 birthdays compare as (2, 29) and so increment on Mar 1 in common years
    if (as_of.month, as_of.day) < (born.month, born.day):
        years -= 1
    return years


def compute_age(
    date_of_birth: date | datetime | str | None,
    as_of: date | datetime | None = None,
) -> DisplayAge:
    """
    Compute a display age under the Safe Harbor rule.

    Returns:
        int for ages 0-89, "90+" for anything older, "unknown" when the date
        of birth is missing, unparsable or after as_of.
    """
    born = parse_date_of_birth(date_of_birth)
    if born is None:
        if date_of_birth not in (None, ""):
            logger.warning("Unparsable date of birth; age reported as unknown")
        return AGE_UNKNOWN

    if as_of is None:
        reference = date.today()
    elif isinstance(as_of, datetime):
        reference = as_of.date()
    else:
        reference = as_of

    age = whole_years_between(born, reference)
    if age < 0:
        return AGE_UNKNOWN
    if age > SAFE_HARBOR_MAX_AGE:
        return SAFE_HARBOR_BUCKET
    return age
