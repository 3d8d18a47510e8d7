"""Schedule matching and slot filtering (no database)."""
from datetime import date

import pytest

from app.models.prescription import Prescription
from app.workflow.schedule import (
    in_validity_window,
    matches_schedule,
    months_between,
    normalize_slot,
    slots_for_date,
)


def rx(**kw):
    values = dict(
        frequency_type="daily",
        frequency_value=None,
        specific_weekdays=None,
        is_odd_even_day="none",
        medication_time_slots=["08:00"],
        start_date=date(2024, 1, 1),
        start_time=None,
        end_date=None,
        end_time=None,
    )
    values.update(kw)
    return Prescription(**values)


@pytest.mark.parametrize("raw,expected", [
    ("08:00", "08:00"),
    ("8:00", "08:00"),
    ("08:00:00", "08:00"),
    (" 13:5 ", "13:05"),
])
def test_normalize_slot(raw, expected):
    assert normalize_slot(raw) == expected


@pytest.mark.parametrize("raw", ["25:00", "08:60", "0800", "", None, "ab:cd"])
def test_normalize_slot_rejects_non_clock_values(raw):
    with pytest.raises(ValueError):
        normalize_slot(raw)


def test_daily_always_matches():
    assert matches_schedule(rx(), date(2024, 3, 17))


def test_every_x_days_counts_from_start_date():
    every_other = rx(frequency_type="every_x_days", frequency_value=2)
    assert matches_schedule(every_other, date(2024, 1, 1))
    assert not matches_schedule(every_other, date(2024, 1, 2))
    assert matches_schedule(every_other, date(2024, 1, 3))
    # across a month boundary
    assert matches_schedule(every_other, date(2024, 2, 2))


def test_every_x_months_needs_same_day_of_month():
    quarterly = rx(frequency_type="every_x_months", frequency_value=3, start_date=date(2024, 1, 15))
    assert months_between(date(2024, 1, 15), date(2024, 4, 15)) == 3
    assert matches_schedule(quarterly, date(2024, 4, 15))
    assert not matches_schedule(quarterly, date(2024, 4, 16))
    assert not matches_schedule(quarterly, date(2024, 3, 15))
    assert matches_schedule(quarterly, date(2025, 1, 15))


def test_weekly_days_uses_iso_weekday():
    mon_wed = rx(frequency_type="weekly_days", specific_weekdays=[1, 3])
    assert matches_schedule(mon_wed, date(2024, 1, 1))  # Monday
    assert not matches_schedule(mon_wed, date(2024, 1, 2))
    assert matches_schedule(mon_wed, date(2024, 1, 3))
    assert not matches_schedule(rx(frequency_type="weekly_days", specific_weekdays=None), date(2024, 1, 1))


def test_odd_even_days():
    odd = rx(frequency_type="odd_even_days", is_odd_even_day="odd")
    even = rx(frequency_type="odd_even_days", is_odd_even_day="even")
    neither = rx(frequency_type="odd_even_days", is_odd_even_day="none")
    assert matches_schedule(odd, date(2024, 1, 31))
    assert not matches_schedule(odd, date(2024, 2, 2))
    assert matches_schedule(even, date(2024, 2, 2))
    assert not matches_schedule(neither, date(2024, 2, 2))


def test_unknown_frequency_type_is_treated_as_due():
    assert matches_schedule(rx(frequency_type="lunar"), date(2024, 5, 5))


def test_validity_window():
    course = rx(start_date=date(2024, 1, 10), end_date=date(2024, 1, 20))
    assert not in_validity_window(course, date(2024, 1, 9))
    assert in_validity_window(course, date(2024, 1, 10))
    assert in_validity_window(course, date(2024, 1, 20))
    assert not in_validity_window(course, date(2024, 1, 21))
    assert in_validity_window(rx(), date(2030, 1, 1))


def test_slots_are_normalised_and_deduplicated():
    p = rx(medication_time_slots=["20:00", "8:00", "08:00:00", ""])
    assert slots_for_date(p, date(2024, 1, 5)) == ["08:00", "20:00"]


def test_slots_trimmed_on_first_and_last_day():
    p = rx(
        medication_time_slots=["08:00", "13:00", "20:00"],
        start_date=date(2024, 1, 1),
        start_time="12:00",
        end_date=date(2024, 1, 5),
        end_time="13:00",
    )
    assert slots_for_date(p, date(2024, 1, 1)) == ["13:00", "20:00"]
    assert slots_for_date(p, date(2024, 1, 3)) == ["08:00", "13:00", "20:00"]
    assert slots_for_date(p, date(2024, 1, 5)) == ["08:00", "13:00"]
