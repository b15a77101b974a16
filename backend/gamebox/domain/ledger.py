"""Per-participant confirmation state of a reservation."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..models import Reservation, ReservationParticipant, ReservationStatus
from ..utils.time import now_local, slot_start, utc_now_naive
from .capacity import CapacityPolicy
from .errors import CapacityExceededError, InvalidTransitionError, NotFoundError
from .state_machine import is_terminal


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_participant(
    reservation: Reservation,
    email: Optional[str] = None,
    *,
    user_id: Optional[str] = None,
) -> Optional[ReservationParticipant]:
    wanted = normalize_email(email) if email else None
    for participant in reservation.participants:
        if wanted is not None and normalize_email(participant.email) == wanted:
            return participant
        if user_id is not None and participant.user_id == user_id:
            return participant
    return None


def new_participant(
    email: str,
    *,
    name: Optional[str] = None,
    user_id: Optional[str] = None,
    confirmed: bool = False,
    position: int = 0,
    now: Optional[datetime] = None,
) -> ReservationParticipant:
    address = normalize_email(email)
    return ReservationParticipant(
        email=address,
        name=name or address.split("@")[0],
        user_id=user_id,
        confirmed=confirmed,
        position=position,
        added_at=now or utc_now_naive(),
    )


def add_participant(
    reservation: Reservation,
    email: str,
    *,
    policy: CapacityPolicy,
    name: Optional[str] = None,
    user_id: Optional[str] = None,
    confirmed: bool = False,
) -> ReservationParticipant:
    """Append a participant that is not yet listed, enforcing capacity and uniqueness."""
    if find_participant(reservation, email, user_id=user_id) is not None:
        raise ValueError(f"{email} is already a participant of reservation {reservation.id}")
    if policy.is_full(reservation):
        raise CapacityExceededError(f"reservation {reservation.id} is full")
    if is_terminal(reservation.status):
        raise InvalidTransitionError(f"reservation {reservation.id} is {reservation.status}")
    position = max((p.position for p in reservation.participants), default=-1) + 1
    participant = new_participant(email, name=name, user_id=user_id, confirmed=confirmed, position=position)
    reservation.participants.append(participant)
    return participant


def confirm_participation(
    reservation: Reservation,
    email: str,
    *,
    policy: CapacityPolicy,
    name: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Reservation:
    """Insert or update `email` as a confirmed participant.

    Confirming an already confirmed participant changes nothing.
    """
    existing = find_participant(reservation, email, user_id=user_id)
    if existing is None:
        add_participant(reservation, email, policy=policy, name=name, user_id=user_id, confirmed=True)
        return reservation
    if existing.confirmed:
        return reservation
    if is_terminal(reservation.status):
        raise InvalidTransitionError(f"reservation {reservation.id} is {reservation.status}")
    existing.confirmed = True
    if user_id is not None and existing.user_id is None:
        existing.user_id = user_id
    return reservation


def update_participant_confirmation(reservation: Reservation, email: str, confirmed: bool) -> Reservation:
    participant = find_participant(reservation, email)
    if participant is None:
        raise NotFoundError(f"{email} is not a participant of reservation {reservation.id}")
    if participant.confirmed == confirmed:
        return reservation
    if is_terminal(reservation.status):
        raise InvalidTransitionError(f"reservation {reservation.id} is {reservation.status}")
    participant.confirmed = confirmed
    return reservation


def confirmed_count(reservation: Reservation) -> int:
    return sum(1 for p in reservation.participants if p.confirmed)


def total_count(reservation: Reservation) -> int:
    return len(reservation.participants)


def is_upcoming(reservation: Reservation, *, now: Optional[datetime] = None) -> bool:
    now = now or now_local()
    return slot_start(reservation.date, reservation.slot_time, now.tzinfo) > now and (
        reservation.status != ReservationStatus.CANCELLED
    )


def is_past(reservation: Reservation, *, now: Optional[datetime] = None) -> bool:
    """Independent of status: a cancelled reservation is past only once its slot has started."""
    now = now or now_local()
    return slot_start(reservation.date, reservation.slot_time, now.tzinfo) < now
