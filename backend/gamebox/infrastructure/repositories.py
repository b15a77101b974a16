from __future__ import annotations

from datetime import date
from typing import Iterable

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import CapacityExceededError, SlotConflictError
from ..domain.repositories import ProfileRepository, ReservationRepository
from ..models import Reservation, ReservationParticipant, UserProfile


def _is_slot_conflict(exc: IntegrityError) -> bool:
    # Message formats differ per driver but all name the column or the constraint.
    return "active_slot" in str(exc.orig)


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _ordered(self, stmt: Select[tuple[Reservation]]) -> Select[tuple[Reservation]]:
        return stmt.order_by(Reservation.date.desc(), Reservation.slot_time.desc())

    async def get(self, reservation_id: str) -> Reservation | None:
        return await self.session.scalar(select(Reservation).where(Reservation.id == reservation_id))

    async def get_for_update(self, reservation_id: str) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def list_for_user(self, user_id: str, email: str | None) -> list[Reservation]:
        match = ReservationParticipant.user_id == user_id
        if email:
            match = or_(match, ReservationParticipant.email == email.strip().lower())
        joined = select(ReservationParticipant.reservation_id).where(match)
        stmt = select(Reservation).where(or_(Reservation.owner_id == user_id, Reservation.id.in_(joined)))
        return list(await self.session.scalars(self._ordered(stmt)))

    async def list_all(self) -> list[Reservation]:
        stmt = select(Reservation).order_by(Reservation.created_at.desc())
        return list(await self.session.scalars(stmt))

    async def list_by_date(self, day: date) -> list[Reservation]:
        stmt = select(Reservation).where(Reservation.date == day).order_by(Reservation.slot_time)
        return list(await self.session.scalars(stmt))

    async def list_between(self, start: date, end: date) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.date >= start, Reservation.date <= end)
            .order_by(Reservation.date, Reservation.slot_time)
        )
        return list(await self.session.scalars(stmt))

    async def create(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self._flush_slot()
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self._flush_slot()
        return reservation

    async def save_participants(self, reservation: Reservation, max_participants: int) -> Reservation:
        """Flush participant changes and re-check the limit inside the same transaction.

        Callers load the reservation with `get_for_update`, so concurrent joins
        on the same reservation are serialized on its row lock.
        """
        self.session.add(reservation)
        await self.session.flush()
        stmt = select(func.count(ReservationParticipant.id)).where(
            ReservationParticipant.reservation_id == reservation.id
        )
        stored = int(await self.session.scalar(stmt) or 0)
        if stored > max_participants:
            raise CapacityExceededError(f"reservation {reservation.id} is full")
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        await self.session.delete(reservation)
        await self.session.flush()

    async def _flush_slot(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError as exc:
            if _is_slot_conflict(exc):
                raise SlotConflictError("slot is already booked") from exc
            raise


class SqlAlchemyProfileRepository(ProfileRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return await self.session.scalar(select(UserProfile).where(UserProfile.id == user_id))

    async def list_profiles(self, user_ids: Iterable[str]) -> list[UserProfile]:
        ids = list(set(user_ids))
        if not ids:
            return []
        return list(await self.session.scalars(select(UserProfile).where(UserProfile.id.in_(ids))))
