import asyncio
from datetime import date
from typing import Iterable

import pytest
from gamebox.domain.errors import CapacityExceededError, SlotConflictError
from gamebox.models import Reservation, ReservationParticipant, UserProfile


def _clone_participant(participant: ReservationParticipant, *, confirmed: bool | None = None) -> ReservationParticipant:
    return ReservationParticipant(
        email=participant.email,
        user_id=participant.user_id,
        name=participant.name,
        confirmed=participant.confirmed if confirmed is None else confirmed,
        position=participant.position,
        added_at=participant.added_at,
    )


def _snapshot(reservation: Reservation) -> Reservation:
    """What a separate database session would load: same row, independent objects."""
    return Reservation(
        id=reservation.id,
        owner_id=reservation.owner_id,
        date=reservation.date,
        slot_time=reservation.slot_time,
        active_slot=reservation.active_slot,
        game_mode=reservation.game_mode,
        level=reservation.level,
        is_public=reservation.is_public,
        max_participants=reservation.max_participants,
        status=reservation.status,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
        participants=[_clone_participant(p) for p in reservation.participants],
    )


class FakeResRepo:
    """In-memory store that enforces the same write-time guards as the database.

    `get_for_update` hands out snapshots and yields, so concurrent callers can
    read the same stale state; `save_participants` recounts against the stored
    row the way the database recount does.
    """

    def __init__(self, reservations: Iterable[Reservation] = ()) -> None:
        self.items: dict[str, Reservation] = {r.id: r for r in reservations}
        self.saved: list[str] = []
        self.deleted: list[str] = []
        self.locked: list[str] = []

    async def get(self, reservation_id: str) -> Reservation | None:
        return self.items.get(reservation_id)

    async def get_for_update(self, reservation_id: str) -> Reservation | None:
        self.locked.append(reservation_id)
        stored = self.items.get(reservation_id)
        if stored is None:
            return None
        snapshot = _snapshot(stored)
        await asyncio.sleep(0)
        return snapshot

    async def list_for_user(self, user_id: str, email: str | None) -> list[Reservation]:
        wanted = (email or "").strip().lower()
        return [
            r
            for r in self.items.values()
            if r.owner_id == user_id or any(p.user_id == user_id or p.email == wanted for p in r.participants)
        ]

    async def list_all(self) -> list[Reservation]:
        return list(self.items.values())

    async def list_by_date(self, day: date) -> list[Reservation]:
        snapshot = [r for r in self.items.values() if r.date == day]
        # Yield so concurrent callers interleave between read and write.
        await asyncio.sleep(0)
        return snapshot

    async def list_between(self, start: date, end: date) -> list[Reservation]:
        return [r for r in self.items.values() if start <= r.date <= end]

    def _check_unique_slot(self, reservation: Reservation) -> None:
        if reservation.active_slot is None:
            return
        for other in self.items.values():
            if other.id != reservation.id and other.active_slot == reservation.active_slot:
                raise SlotConflictError("slot is already booked")

    async def create(self, reservation: Reservation) -> Reservation:
        self._check_unique_slot(reservation)
        self.items[reservation.id] = reservation
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self._check_unique_slot(reservation)
        self.items[reservation.id] = reservation
        self.saved.append(reservation.id)
        return reservation

    async def save_participants(self, reservation: Reservation, max_participants: int) -> Reservation:
        await asyncio.sleep(0)
        stored = self.items[reservation.id]
        incoming = {p.email: p for p in reservation.participants}
        merged = [
            _clone_participant(p, confirmed=incoming[p.email].confirmed if p.email in incoming else None)
            for p in stored.participants
        ]
        known = {p.email for p in stored.participants}
        merged.extend(_clone_participant(p) for p in reservation.participants if p.email not in known)
        if len(merged) > max_participants:
            raise CapacityExceededError(f"reservation {reservation.id} is full")
        stored.participants = merged
        stored.status = reservation.status
        stored.updated_at = reservation.updated_at
        self.saved.append(reservation.id)
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        self.deleted.append(reservation.id)
        self.items.pop(reservation.id, None)


class FakeProfileRepo:
    def __init__(self, profiles: Iterable[UserProfile] = ()) -> None:
        self.profiles = {p.id: p for p in profiles}

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)

    async def list_profiles(self, user_ids: Iterable[str]) -> list[UserProfile]:
        return [self.profiles[i] for i in set(user_ids) if i in self.profiles]


@pytest.fixture
def res_repo() -> FakeResRepo:
    return FakeResRepo()


@pytest.fixture
def profile_repo() -> FakeProfileRepo:
    return FakeProfileRepo()
