"""Reservation status transitions and the guards around them.

    pending ──> confirmed ──> finished
       │            │
       ├────────────┴──> cancelled
       └────────────────> no-show / finished (admin override)

cancelled, finished and no-show are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from ..models import TERMINAL_STATUSES, Level, Reservation, ReservationStatus, slot_key
from ..utils.time import utc_now_naive
from .calendar import normalize_time
from .errors import AccessDeniedError, CapacityViolationError, InvalidTransitionError, SlotConflictError

_ALLOWED: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {
            ReservationStatus.CONFIRMED,
            ReservationStatus.CANCELLED,
            ReservationStatus.FINISHED,
            ReservationStatus.NO_SHOW,
        }
    ),
    ReservationStatus.CONFIRMED: frozenset(
        {ReservationStatus.CANCELLED, ReservationStatus.FINISHED, ReservationStatus.NO_SHOW}
    ),
}


@dataclass(frozen=True)
class ReservationStatusChanged:
    reservation_id: str
    old_status: ReservationStatus
    new_status: ReservationStatus


@dataclass(frozen=True)
class CoreFieldPatch:
    date: Optional[date] = None
    slot_time: Optional[str] = None
    game_mode: Optional[str] = None
    level: Optional[Level] = None
    max_participants: Optional[int] = None
    is_public: Optional[bool] = None


def is_terminal(status: ReservationStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in _ALLOWED.get(current, frozenset())


def ensure_mutable(reservation: Reservation) -> None:
    if is_terminal(reservation.status):
        raise InvalidTransitionError(f"reservation {reservation.id} is {reservation.status}")


def check_create(
    *,
    owner_id: Optional[str],
    max_participants: int,
    participant_count: int,
    slot_available: bool,
) -> None:
    if not owner_id:
        raise AccessDeniedError("an owner is required to book a slot")
    if max_participants < 1:
        raise CapacityViolationError("max_participants must be >= 1")
    if participant_count > max_participants:
        raise CapacityViolationError(
            f"{participant_count} participants exceed the limit of {max_participants}"
        )
    if not slot_available:
        raise SlotConflictError("slot is already booked")


def transition(
    reservation: Reservation,
    target: ReservationStatus,
    *,
    now: Optional[datetime] = None,
) -> ReservationStatusChanged:
    """Move `reservation` to `target` or raise InvalidTransitionError leaving it untouched."""
    current = ReservationStatus(reservation.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(f"cannot move reservation {reservation.id} from {current} to {target}")

    reservation.status = target
    reservation.updated_at = now or utc_now_naive()
    if target == ReservationStatus.CANCELLED:
        # Frees the slot for the uniqueness constraint.
        reservation.active_slot = None
    return ReservationStatusChanged(reservation_id=reservation.id, old_status=current, new_status=target)


def cancel(reservation: Reservation, *, now: Optional[datetime] = None) -> ReservationStatusChanged:
    return transition(reservation, ReservationStatus.CANCELLED, now=now)


def confirm_if_all_confirmed(
    reservation: Reservation,
    *,
    now: Optional[datetime] = None,
) -> Optional[ReservationStatusChanged]:
    if reservation.status != ReservationStatus.PENDING:
        return None
    participants = reservation.participants
    if participants and all(p.confirmed for p in participants):
        return transition(reservation, ReservationStatus.CONFIRMED, now=now)
    return None


def apply_core_edit(
    reservation: Reservation,
    patch: CoreFieldPatch,
    *,
    slot_is_free: Callable[[date, str], bool],
    now: Optional[datetime] = None,
) -> bool:
    """Apply an edit of the core fields in place. Returns True when the slot moved.

    Validation happens before any field is touched.
    """
    ensure_mutable(reservation)

    new_date = patch.date if patch.date is not None else reservation.date
    new_time = normalize_time(patch.slot_time) if patch.slot_time is not None else reservation.slot_time
    slot_changed = (new_date, new_time) != (reservation.date, reservation.slot_time)

    if patch.max_participants is not None:
        if patch.max_participants < 1:
            raise CapacityViolationError("max_participants must be >= 1")
        if patch.max_participants < len(reservation.participants):
            raise CapacityViolationError(
                f"reservation {reservation.id} already has {len(reservation.participants)} participants"
            )
    if slot_changed and not slot_is_free(new_date, new_time):
        raise SlotConflictError(f"slot {new_date} {new_time} is already booked")

    if slot_changed:
        reservation.date = new_date
        reservation.slot_time = new_time
        reservation.active_slot = slot_key(new_date, new_time)
    if patch.game_mode is not None:
        reservation.game_mode = patch.game_mode
    if patch.level is not None:
        reservation.level = patch.level
    if patch.max_participants is not None:
        reservation.max_participants = patch.max_participants
    if patch.is_public is not None:
        reservation.is_public = patch.is_public
    reservation.updated_at = now or utc_now_naive()
    return slot_changed
