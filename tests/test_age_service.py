"""Safe Harbor age derivation tests."""

from datetime import date, datetime

import pytest

from phi_core.services.age_service import AGE_UNKNOWN, SAFE_HARBOR_BUCKET, compute_age


AS_OF = date(2024, 6, 15)


@pytest.mark.parametrize(
    "dob, expected",
    [
        (date(1935, 6, 16), 88),
        (date(1935, 6, 15), 89),
        (date(1934, 6, 16), 89),
        (date(1934, 6, 15), SAFE_HARBOR_BUCKET),
        (date(1919, 1, 1), SAFE_HARBOR_BUCKET),
        (date(2024, 6, 15), 0),
    ],
)
def test_safe_harbor_boundaries(dob, expected):
    """89 stays numeric; 90 and above collapse to "90+"."""
    assert compute_age(dob, AS_OF) == expected


def test_day_before_anniversary():
    assert compute_age(date(1990, 6, 16), AS_OF) == 33


def test_on_anniversary():
    assert compute_age(date(1990, 6, 15), AS_OF) == 34


def test_iso_string_and_datetime_inputs():
    assert compute_age("1990-06-15", AS_OF) == 34
    assert compute_age(datetime(1990, 6, 15, 12, 0), AS_OF) == 34
    assert compute_age("1990-06-15T08:30:00", AS_OF) == 34


def test_leap_day_birthday_in_common_year():
    """Feb 29 birthdays increment on Mar 1 in non-leap years."""
    born = date(2000, 2, 29)
    assert compute_age(born, date(2023, 2, 28)) == 22
    assert compute_age(born, date(2023, 3, 1)) == 23
    assert compute_age(born, date(2024, 2, 29)) == 24


@pytest.mark.parametrize("bad", [None, "", "not-a-date", "1990-13-45", 12345])
def test_missing_or_unparsable_is_unknown(bad):
    """Bad input never raises."""
    assert compute_age(bad, AS_OF) == AGE_UNKNOWN


def test_future_dob_is_unknown():
    assert compute_age(date(2030, 1, 1), AS_OF) == AGE_UNKNOWN
