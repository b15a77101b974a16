"""Slot calendar index: which reservations occupy a (date, time) slot."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Sequence

from ..models import Reservation, ReservationStatus
from ..utils.time import slot_start

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{1,2})(?::\d{1,2}(?:\.\d+)?)?\s*(?:Z|[+-]\d{1,2}(?::?\d{2})?)?\s*$")


def normalize_time(value: str | time) -> str:
    """Reduce a time-of-day to zero-padded HH:MM, dropping seconds and timezone."""
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}"
    match = _TIME_RE.match(value)
    if match is None:
        raise ValueError(f"invalid time of day: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"time of day out of range: {value!r}")
    return f"{hour:02d}:{minute:02d}"


def _active(reservations: Iterable[Reservation]) -> list[Reservation]:
    return [r for r in reservations if r.status != ReservationStatus.CANCELLED]


def reservations_for_day(reservations: Iterable[Reservation], day: date) -> list[Reservation]:
    return [r for r in reservations if r.date == day]


def reservations_at_time(
    reservations: Iterable[Reservation],
    day: date,
    slot_time: str | time,
) -> list[Reservation]:
    wanted = normalize_time(slot_time)
    return [r for r in reservations_for_day(reservations, day) if normalize_time(r.slot_time) == wanted]


def is_slot_available(
    reservations: Iterable[Reservation],
    day: date,
    slot_time: str | time,
    *,
    exclude_id: Optional[str] = None,
) -> bool:
    """True iff no non-cancelled reservation occupies the slot.

    This is a read; it does not reserve anything. The persistence layer is the
    authority on conflicting concurrent bookings.
    """
    occupying = [
        r for r in _active(reservations_at_time(reservations, day, slot_time)) if r.id != exclude_id
    ]
    return not occupying


@dataclass(frozen=True)
class SlotEntry:
    time: str
    status: str
    available: bool
    reservation_id: Optional[str] = None
    owner_id: Optional[str] = None


def day_schedule(
    reservations: Iterable[Reservation],
    day: date,
    *,
    now: datetime,
    time_slots: Sequence[str],
) -> list[SlotEntry]:
    active = _active(reservations_for_day(reservations, day))
    entries: list[SlotEntry] = []
    for raw in time_slots:
        slot = normalize_time(raw)
        booked = next((r for r in active if normalize_time(r.slot_time) == slot), None)
        if slot_start(day, slot, now.tzinfo) < now:
            status = "past"
        elif booked is not None:
            status = "booked"
        else:
            status = "available"
        entries.append(
            SlotEntry(
                time=slot,
                status=status,
                available=status == "available",
                reservation_id=booked.id if booked else None,
                owner_id=booked.owner_id if booked else None,
            )
        )
    return entries


def available_dates(
    reservations: Iterable[Reservation],
    start: date,
    *,
    days: int,
    slots_per_day: int,
) -> list[date]:
    """Dates in [start, start + days) that still have at least one free slot."""
    booked_per_day: dict[date, int] = {}
    for r in _active(reservations):
        booked_per_day[r.date] = booked_per_day.get(r.date, 0) + 1
    candidates = (start + timedelta(days=offset) for offset in range(days))
    return [d for d in candidates if booked_per_day.get(d, 0) < slots_per_day]
