"""
Schedule matching: does a prescription fall due on a given date, and at
which time slots?

Pure functions only; no database access.
"""
from datetime import date

from app.models.enums import FrequencyType, OddEvenDay


def normalize_slot(slot: str) -> str:
    """'8:00', '08:00:00' -> '08:00'. Raises ValueError for anything else."""
    parts = str(slot or "").strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time slot '{slot}', expected HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time slot '{slot}'")
    return f"{hour:02d}:{minute:02d}"


def months_between(start: date, target: date) -> int:
    return (target.year - start.year) * 12 + (target.month - start.month)


def matches_schedule(prescription, target_date: date) -> bool:
    """
    Evaluate the interval pattern against target_date.

    daily           -> always
    every_x_days    -> (target - start) days divisible by N
    every_x_months  -> month difference divisible by N, on the start's day-of-month
    weekly_days     -> ISO weekday (1=Mon .. 7=Sun) listed in specific_weekdays
    odd_even_days   -> parity of day-of-month; "none" never matches

    The validity window is checked separately (see in_validity_window).
    """
    start = prescription.start_date
    interval = prescription.frequency_value or 1

    try:
        frequency = FrequencyType(prescription.frequency_type)
    except ValueError:
        # unknown pattern: treat as due, like the daily default
        return True

    if frequency == FrequencyType.DAILY:
        return True

    if frequency == FrequencyType.EVERY_X_DAYS:
        return (target_date - start).days % interval == 0

    if frequency == FrequencyType.EVERY_X_MONTHS:
        return months_between(start, target_date) % interval == 0 and target_date.day == start.day

    if frequency == FrequencyType.WEEKLY_DAYS:
        return target_date.isoweekday() in (prescription.specific_weekdays or [])

    if frequency == FrequencyType.ODD_EVEN_DAYS:
        parity = prescription.is_odd_even_day or OddEvenDay.NONE.value
        if parity == OddEvenDay.ODD.value:
            return target_date.day % 2 == 1
        if parity == OddEvenDay.EVEN.value:
            return target_date.day % 2 == 0
        return False

    return True


def in_validity_window(prescription, target_date: date) -> bool:
    if target_date < prescription.start_date:
        return False
    if prescription.end_date is not None and target_date > prescription.end_date:
        return False
    return True


def slots_for_date(prescription, target_date: date) -> list[str]:
    """
    Time slots that apply on target_date, normalised and de-duplicated.

    On the start date, slots before start_time are dropped; on the end date,
    slots after end_time are dropped.
    """
    slots = sorted({normalize_slot(s) for s in (prescription.medication_time_slots or []) if s})

    if prescription.start_time and target_date == prescription.start_date:
        first = normalize_slot(prescription.start_time)
        slots = [s for s in slots if s >= first]
    if prescription.end_time and prescription.end_date is not None and target_date == prescription.end_date:
        last = normalize_slot(prescription.end_time)
        slots = [s for s in slots if s <= last]
    return slots
