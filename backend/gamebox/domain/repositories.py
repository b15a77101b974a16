from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol

from ..models import Reservation, UserProfile


class ReservationRepository(Protocol):
    async def get(self, reservation_id: str) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: str) -> Reservation | None: ...

    async def list_for_user(self, user_id: str, email: str | None) -> list[Reservation]: ...

    async def list_all(self) -> list[Reservation]: ...

    async def list_by_date(self, day: date) -> list[Reservation]: ...

    async def list_between(self, start: date, end: date) -> list[Reservation]: ...

    async def create(self, reservation: Reservation) -> Reservation: ...

    async def save(self, reservation: Reservation) -> Reservation: ...

    async def save_participants(self, reservation: Reservation, max_participants: int) -> Reservation: ...

    async def delete(self, reservation: Reservation) -> None: ...


class ProfileRepository(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def list_profiles(self, user_ids: Iterable[str]) -> list[UserProfile]: ...
