from datetime import date, datetime

import pytest
from gamebox.domain.errors import CapacityExceededError, SlotConflictError
from gamebox.domain.ledger import new_participant
from gamebox.domain.state_machine import cancel
from gamebox.infrastructure.repositories import SqlAlchemyProfileRepository, SqlAlchemyReservationRepository
from gamebox.models import Level, Reservation, ReservationStatus, UserProfile, new_id, slot_key

DAY = date(2025, 3, 1)


def _reservation(owner_id: str = "owner-1", slot_time: str = "09:00", emails: tuple[str, ...] = ()) -> Reservation:
    created = datetime(2025, 1, 1)
    return Reservation(
        id=new_id(),
        owner_id=owner_id,
        date=DAY,
        slot_time=slot_time,
        active_slot=slot_key(DAY, slot_time),
        game_mode="1v1",
        level=Level.BEGINNER,
        is_public=True,
        max_participants=2,
        status=ReservationStatus.PENDING,
        created_at=created,
        updated_at=created,
        participants=[new_participant(e, position=i, now=created) for i, e in enumerate(emails)],
    )


@pytest.mark.asyncio
async def test_second_booking_of_slot_is_a_conflict(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            await SqlAlchemyReservationRepository(session).create(_reservation())

    async with session_factory() as session:
        with pytest.raises(SlotConflictError):
            async with session.begin():
                await SqlAlchemyReservationRepository(session).create(_reservation(owner_id="owner-2"))

    async with session_factory() as session:
        stored = await SqlAlchemyReservationRepository(session).list_by_date(DAY)
    assert [r.owner_id for r in stored] == ["owner-1"]


@pytest.mark.asyncio
async def test_cancelled_slot_is_released(session_factory) -> None:
    first = _reservation()
    async with session_factory() as session:
        async with session.begin():
            await SqlAlchemyReservationRepository(session).create(first)

    async with session_factory() as session:
        async with session.begin():
            repo = SqlAlchemyReservationRepository(session)
            locked = await repo.get_for_update(first.id)
            assert locked is not None
            cancel(locked)
            await repo.save(locked)

    async with session_factory() as session:
        async with session.begin():
            rebooked = await SqlAlchemyReservationRepository(session).create(_reservation(owner_id="owner-2"))
    assert rebooked.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_participant_recount_rejects_overfill(session_factory) -> None:
    reservation = _reservation(emails=("a@example.com", "b@example.com"))
    async with session_factory() as session:
        async with session.begin():
            await SqlAlchemyReservationRepository(session).create(reservation)

    async with session_factory() as session:
        with pytest.raises(CapacityExceededError):
            async with session.begin():
                repo = SqlAlchemyReservationRepository(session)
                locked = await repo.get_for_update(reservation.id)
                assert locked is not None
                locked.participants.append(new_participant("c@example.com", position=2))
                await repo.save_participants(locked, locked.max_participants)

    async with session_factory() as session:
        stored = await SqlAlchemyReservationRepository(session).get(reservation.id)
    assert stored is not None
    assert [p.email for p in stored.participants] == ["a@example.com", "b@example.com"]


@pytest.mark.asyncio
async def test_list_for_user_matches_owner_and_participant(session_factory) -> None:
    mine = _reservation(owner_id="owner-1", slot_time="09:00")
    joined = _reservation(owner_id="owner-2", slot_time="10:00", emails=("me@example.com",))
    other = _reservation(owner_id="owner-3", slot_time="11:00", emails=("x@example.com",))
    async with session_factory() as session:
        async with session.begin():
            repo = SqlAlchemyReservationRepository(session)
            for r in (mine, joined, other):
                await repo.create(r)

    async with session_factory() as session:
        found = await SqlAlchemyReservationRepository(session).list_for_user("owner-1", "Me@Example.com")
    assert {r.id for r in found} == {mine.id, joined.id}


@pytest.mark.asyncio
async def test_delete_cascades_participants(session_factory) -> None:
    reservation = _reservation(emails=("a@example.com",))
    async with session_factory() as session:
        async with session.begin():
            await SqlAlchemyReservationRepository(session).create(reservation)

    async with session_factory() as session:
        async with session.begin():
            repo = SqlAlchemyReservationRepository(session)
            locked = await repo.get_for_update(reservation.id)
            assert locked is not None
            await repo.delete(locked)

    async with session_factory() as session:
        repo = SqlAlchemyReservationRepository(session)
        assert await repo.get(reservation.id) is None
        assert await repo.list_all() == []


@pytest.mark.asyncio
async def test_profiles_lookup(session_factory) -> None:
    created = datetime(2025, 1, 1)
    async with session_factory() as session:
        async with session.begin():
            session.add(
                UserProfile(
                    id="owner-1", email="owner@example.com", name="Olivia", created_at=created, updated_at=created
                )
            )

    async with session_factory() as session:
        repo = SqlAlchemyProfileRepository(session)
        assert (await repo.get_profile("owner-1")).name == "Olivia"  # type: ignore[union-attr]
        assert [p.id for p in await repo.list_profiles(["owner-1", "missing", "owner-1"])] == ["owner-1"]
        assert await repo.list_profiles([]) == []
