from datetime import date, datetime
from typing import Any, cast

import pytest
from fastapi import HTTPException
from gamebox.domain.access import Viewer
from gamebox.domain.capacity import CapacityPolicy
from gamebox.domain.errors import InvalidTransitionError, NotFoundError, SlotConflictError
from gamebox.domain.state_machine import ReservationStatusChanged
from gamebox.deps import require_admin
from gamebox.models import Level, Reservation, ReservationStatus, UserProfile
from gamebox.routers import admin as router
from gamebox.schemas import ReservationUpdate, StatusUpdate
from gamebox.usecases.admin import AdminStats
from gamebox.utils import audit_log
from sqlalchemy.ext.asyncio import AsyncSession

POLICY = CapacityPolicy({"5v5": 10})
ADMIN = Viewer(authenticated=True, user_id="admin-1", email="admin@example.com", role="admin")


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _reservation(status: ReservationStatus) -> Reservation:
    now = datetime(2025, 1, 1)
    return Reservation(
        id="r1",
        owner_id="owner-1",
        date=date(2025, 3, 1),
        slot_time="09:00",
        game_mode="5v5",
        level=Level.ADVANCED,
        is_public=False,
        max_participants=10,
        status=status,
        created_at=now,
        updated_at=now,
        participants=[],
    )


@pytest.fixture
def audit_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_emit(**kwargs: Any) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(audit_log, "emit_audit_log", fake_emit)
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyProfileRepository", lambda s: s)  # type: ignore[assignment]
    return calls


@pytest.mark.asyncio
async def test_require_admin_rejects_regular_user() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await require_admin(viewer=Viewer(authenticated=True, user_id="u1", role="user"))
    assert excinfo.value.status_code == 403
    assert await require_admin(viewer=ADMIN) is ADMIN


@pytest.mark.asyncio
async def test_set_status_publishes_event(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    reservation = _reservation(ReservationStatus.FINISHED)

    async def fake_set_status(*args: object, **kwargs: Any) -> tuple[Reservation, ReservationStatusChanged]:
        assert kwargs["new_status"] == ReservationStatus.FINISHED
        return reservation, ReservationStatusChanged("r1", ReservationStatus.PENDING, ReservationStatus.FINISHED)

    monkeypatch.setattr(router.admin_usecase, "set_status", fake_set_status)

    result = await router.set_reservation_status(
        payload=StatusUpdate(status=ReservationStatus.FINISHED),
        reservation_id="r1",
        session=cast(AsyncSession, DummySession()),
        admin=ADMIN,
        policy=POLICY,
    )
    assert result.status == ReservationStatus.FINISHED
    assert len(audit_calls) == 1
    assert audit_calls[0]["action"] == "reservation.status_changed"
    assert audit_calls[0]["initiator"] == "admin"
    assert audit_calls[0]["status_to"] == ReservationStatus.FINISHED


@pytest.mark.asyncio
async def test_set_status_from_terminal_is_409(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    async def fake_set_status(*args: object, **kwargs: object) -> tuple[Reservation, ReservationStatusChanged]:
        raise InvalidTransitionError("terminal")

    monkeypatch.setattr(router.admin_usecase, "set_status", fake_set_status)

    with pytest.raises(HTTPException) as excinfo:
        await router.set_reservation_status(
            payload=StatusUpdate(status=ReservationStatus.CONFIRMED),
            reservation_id="r1",
            session=cast(AsyncSession, DummySession()),
            admin=ADMIN,
            policy=POLICY,
        )
    assert excinfo.value.status_code == 409
    assert audit_calls == []


def test_status_update_rejects_unknown_value() -> None:
    with pytest.raises(ValueError):
        StatusUpdate(status="archived")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_edit_refuses_status_in_body(audit_calls: list) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await router.edit_reservation(
            payload=ReservationUpdate(status=ReservationStatus.FINISHED),
            reservation_id="r1",
            session=cast(AsyncSession, DummySession()),
            admin=ADMIN,
            policy=POLICY,
        )
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_edit_slot_conflict_is_409(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    async def fake_edit(*args: object, **kwargs: object) -> Reservation:
        raise SlotConflictError("taken")

    monkeypatch.setattr(router.admin_usecase, "edit_fields", fake_edit)

    with pytest.raises(HTTPException) as excinfo:
        await router.edit_reservation(
            payload=ReservationUpdate(slot_time="10:00"),
            reservation_id="r1",
            session=cast(AsyncSession, DummySession()),
            admin=ADMIN,
            policy=POLICY,
        )
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_edit_audits_changed_fields(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    reservation = _reservation(ReservationStatus.CONFIRMED)
    received: dict[str, Any] = {}

    async def fake_edit(*args: object, **kwargs: Any) -> Reservation:
        received.update(kwargs)
        return reservation

    monkeypatch.setattr(router.admin_usecase, "edit_fields", fake_edit)

    await router.edit_reservation(
        payload=ReservationUpdate(slot_time="10:00:00", is_public=False),
        reservation_id="r1",
        session=cast(AsyncSession, DummySession()),
        admin=ADMIN,
        policy=POLICY,
    )
    assert received["patch"].slot_time == "10:00"
    assert received["patch"].is_public is False
    assert audit_calls[0]["action"] == "reservation.updated"
    assert audit_calls[0]["extra"] == {"fields": ["is_public", "slot_time"]}


@pytest.mark.asyncio
async def test_list_reservations_fills_unknown_owner(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    now = datetime(2025, 1, 1)
    known = UserProfile(id="owner-1", email="owner@example.com", name="Olivia", role="user", created_at=now, updated_at=now)

    async def fake_list(*args: object, **kwargs: object) -> list[tuple[Reservation, UserProfile | None]]:
        return [(_reservation(ReservationStatus.PENDING), known), (_reservation(ReservationStatus.CANCELLED), None)]

    monkeypatch.setattr(router.admin_usecase, "list_all_reservations", fake_list)

    rows = await router.list_reservations(session=cast(AsyncSession, DummySession()), policy=POLICY)
    assert (rows[0].owner_name, rows[0].owner_email) == ("Olivia", "owner@example.com")
    assert (rows[1].owner_name, rows[1].owner_email) == ("Unknown", "No email")


@pytest.mark.asyncio
async def test_stats(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    async def fake_stats(*args: object, **kwargs: object) -> AdminStats:
        return AdminStats(
            total_reservations=3, today_bookings=1, unique_confirmed_participants=2, by_status={"pending": 3}
        )

    monkeypatch.setattr(router.admin_usecase, "admin_stats", fake_stats)

    stats = await router.get_stats(session=cast(AsyncSession, DummySession()))
    assert stats.total_reservations == 3
    assert stats.by_status == {"pending": 3}


@pytest.mark.asyncio
async def test_list_participants_unknown_reservation_is_404(monkeypatch: pytest.MonkeyPatch, audit_calls: list) -> None:
    async def fake_list(*args: object, **kwargs: object) -> list:
        raise NotFoundError("reservation r9 not found")

    monkeypatch.setattr(router.admin_usecase, "list_participants", fake_list)

    with pytest.raises(HTTPException) as excinfo:
        await router.list_participants(reservation_id="r9", session=cast(AsyncSession, DummySession()))
    assert excinfo.value.status_code == 404
