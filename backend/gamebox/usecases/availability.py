from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from ..domain.calendar import SlotEntry, available_dates, day_schedule, is_slot_available, normalize_time
from ..domain.repositories import ReservationRepository
from ..utils.time import now_local, slot_start


async def check_slot(
    res_repo: ReservationRepository,
    *,
    day: date,
    slot_time: str,
    now: Optional[datetime] = None,
) -> bool:
    """Advisory read for the booking form; booking itself re-checks at write time."""
    slot = normalize_time(slot_time)
    now = now or now_local()
    if slot_start(day, slot, now.tzinfo) <= now:
        return False
    reservations = await res_repo.list_by_date(day)
    return is_slot_available(reservations, day, slot)


async def list_day_slots(
    res_repo: ReservationRepository,
    *,
    day: date,
    time_slots: Sequence[str],
    now: Optional[datetime] = None,
) -> list[SlotEntry]:
    reservations = await res_repo.list_by_date(day)
    return day_schedule(reservations, day, now=now or now_local(), time_slots=time_slots)


async def list_available_dates(
    res_repo: ReservationRepository,
    *,
    start: date,
    days: int,
    slots_per_day: int,
) -> list[date]:
    end = start + timedelta(days=days - 1)
    reservations = await res_repo.list_between(start, end)
    return available_dates(reservations, start, days=days, slots_per_day=slots_per_day)
