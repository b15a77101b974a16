"""Privileged operations that bypass ordinary viewer gating.

Callers are expected to have verified the admin role already.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ..domain.calendar import is_slot_available
from ..domain.errors import NotFoundError
from ..domain.repositories import ProfileRepository, ReservationRepository
from ..domain.state_machine import CoreFieldPatch, ReservationStatusChanged, apply_core_edit, transition
from ..models import Reservation, ReservationParticipant, ReservationStatus, UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminStats:
    total_reservations: int
    today_bookings: int
    unique_confirmed_participants: int
    by_status: dict[str, int] = field(default_factory=dict)


async def _load_for_update(res_repo: ReservationRepository, reservation_id: str) -> Reservation:
    reservation = await res_repo.get_for_update(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return reservation


async def set_status(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    new_status: ReservationStatus,
) -> tuple[Reservation, ReservationStatusChanged]:
    """Force a status change. Participant confirmation state is not consulted."""
    reservation = await _load_for_update(res_repo, reservation_id)
    event = transition(reservation, new_status)
    await res_repo.save(reservation)
    logger.info("admin moved reservation %s from %s to %s", reservation.id, event.old_status, event.new_status)
    return reservation, event


async def edit_fields(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    patch: CoreFieldPatch,
) -> Reservation:
    reservation = await _load_for_update(res_repo, reservation_id)
    target_day = patch.date if patch.date is not None else reservation.date
    same_day = await res_repo.list_by_date(target_day)

    def slot_is_free(day: date, slot_time: str) -> bool:
        return is_slot_available(same_day, day, slot_time, exclude_id=reservation.id)

    apply_core_edit(reservation, patch, slot_is_free=slot_is_free)
    await res_repo.save(reservation)
    return reservation


async def delete_reservation(res_repo: ReservationRepository, *, reservation_id: str) -> Reservation:
    reservation = await _load_for_update(res_repo, reservation_id)
    await res_repo.delete(reservation)
    logger.info("admin deleted reservation %s", reservation_id)
    return reservation


async def list_participants(res_repo: ReservationRepository, *, reservation_id: str) -> list[ReservationParticipant]:
    reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return sorted(reservation.participants, key=lambda p: (p.position, p.added_at))


async def list_all_reservations(
    res_repo: ReservationRepository,
    profile_repo: ProfileRepository,
) -> list[tuple[Reservation, Optional[UserProfile]]]:
    reservations = await res_repo.list_all()
    profiles = await profile_repo.list_profiles(r.owner_id for r in reservations)
    by_id = {p.id: p for p in profiles}
    return [(r, by_id.get(r.owner_id)) for r in reservations]


async def admin_stats(res_repo: ReservationRepository, *, today: date) -> AdminStats:
    reservations = await res_repo.list_all()
    statuses = Counter(str(r.status) for r in reservations)
    confirmed_emails = {p.email for r in reservations for p in r.participants if p.confirmed}
    return AdminStats(
        total_reservations=len(reservations),
        today_bookings=sum(1 for r in reservations if r.date == today),
        unique_confirmed_participants=len(confirmed_emails),
        by_status={status.value: statuses.get(status.value, 0) for status in ReservationStatus},
    )
