from datetime import date, datetime, timedelta, timezone

import pytest
from gamebox.domain import ledger
from gamebox.domain.capacity import CapacityPolicy
from gamebox.domain.errors import CapacityExceededError, InvalidTransitionError, NotFoundError
from gamebox.models import Level, Reservation, ReservationStatus

POLICY = CapacityPolicy({"1v1": 2})


def _reservation(
    *,
    game_mode: str = "1v1",
    max_participants: int = 2,
    status: ReservationStatus = ReservationStatus.PENDING,
    day: date = date(2025, 3, 1),
    slot_time: str = "09:00",
) -> Reservation:
    created = datetime(2025, 1, 1)
    return Reservation(
        id="r1",
        owner_id="owner-1",
        date=day,
        slot_time=slot_time,
        game_mode=game_mode,
        level=Level.BEGINNER,
        is_public=True,
        max_participants=max_participants,
        status=status,
        created_at=created,
        updated_at=created,
        participants=[],
    )


def _state(reservation: Reservation) -> list[tuple[str, bool, str | None]]:
    return [(p.email, p.confirmed, p.name) for p in reservation.participants]


def test_one_on_one_fills_at_two_and_rejects_third() -> None:
    reservation = _reservation()

    ledger.confirm_participation(reservation, "first@example.com", policy=POLICY)
    assert POLICY.is_full(reservation) is False

    ledger.confirm_participation(reservation, "second@example.com", policy=POLICY)
    assert POLICY.is_full(reservation) is True

    with pytest.raises(CapacityExceededError):
        ledger.confirm_participation(reservation, "third@example.com", policy=POLICY)
    assert ledger.total_count(reservation) == 2
    assert ledger.confirmed_count(reservation) == 2


def test_confirm_participation_is_idempotent() -> None:
    once = _reservation()
    ledger.confirm_participation(once, "a@example.com", policy=POLICY)

    twice = _reservation()
    ledger.confirm_participation(twice, "a@example.com", policy=POLICY)
    ledger.confirm_participation(twice, "A@Example.com ", policy=POLICY)

    assert _state(once) == _state(twice)


def test_reconfirm_existing_entry_when_full_succeeds() -> None:
    reservation = _reservation()
    ledger.add_participant(reservation, "a@example.com", policy=POLICY)
    ledger.add_participant(reservation, "b@example.com", policy=POLICY)

    ledger.confirm_participation(reservation, "b@example.com", policy=POLICY, user_id="user-b")
    entry = ledger.find_participant(reservation, "b@example.com")
    assert entry is not None
    assert entry.confirmed is True
    assert entry.user_id == "user-b"
    assert ledger.total_count(reservation) == 2


def test_length_never_exceeds_max_across_attempts() -> None:
    reservation = _reservation(game_mode="spikeball", max_participants=4)
    for i in range(10):
        try:
            ledger.confirm_participation(reservation, f"p{i}@example.com", policy=POLICY)
        except CapacityExceededError:
            pass
        assert ledger.total_count(reservation) <= 4
    assert ledger.total_count(reservation) == 4


def test_add_participant_rejects_duplicates() -> None:
    reservation = _reservation(max_participants=4)
    ledger.add_participant(reservation, "a@example.com", policy=POLICY)
    with pytest.raises(ValueError):
        ledger.add_participant(reservation, " A@EXAMPLE.COM", policy=POLICY)


@pytest.mark.parametrize("status", [ReservationStatus.CANCELLED, ReservationStatus.FINISHED])
def test_closed_reservation_never_gains_participants(status: ReservationStatus) -> None:
    reservation = _reservation(status=status)
    with pytest.raises(InvalidTransitionError):
        ledger.confirm_participation(reservation, "late@example.com", policy=POLICY)
    assert reservation.participants == []


def test_name_defaults_to_local_part() -> None:
    participant = ledger.new_participant("Jane.Doe@Example.com")
    assert participant.email == "jane.doe@example.com"
    assert participant.name == "jane.doe"


def test_update_participant_confirmation() -> None:
    reservation = _reservation()
    ledger.add_participant(reservation, "a@example.com", policy=POLICY, confirmed=True)

    ledger.update_participant_confirmation(reservation, "a@example.com", False)
    assert ledger.confirmed_count(reservation) == 0

    with pytest.raises(NotFoundError):
        ledger.update_participant_confirmation(reservation, "nobody@example.com", True)


def test_update_confirmation_on_terminal_rejected() -> None:
    reservation = _reservation()
    ledger.add_participant(reservation, "a@example.com", policy=POLICY)
    reservation.status = ReservationStatus.NO_SHOW
    with pytest.raises(InvalidTransitionError):
        ledger.update_participant_confirmation(reservation, "a@example.com", True)


@pytest.mark.parametrize("offset_minutes", [-600, -61, -1, 1, 59, 600])
def test_upcoming_xor_past_for_open_reservations(offset_minutes: int) -> None:
    slot = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    now = slot + timedelta(minutes=offset_minutes)
    for status in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED, ReservationStatus.FINISHED):
        reservation = _reservation(status=status)
        assert ledger.is_upcoming(reservation, now=now) != ledger.is_past(reservation, now=now)


def test_tie_instant_is_neither_upcoming_nor_past() -> None:
    now = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    reservation = _reservation()
    assert ledger.is_upcoming(reservation, now=now) is False
    assert ledger.is_past(reservation, now=now) is False


def test_cancelled_future_reservation_is_not_past() -> None:
    now = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
    reservation = _reservation(status=ReservationStatus.CANCELLED)
    assert ledger.is_upcoming(reservation, now=now) is False
    assert ledger.is_past(reservation, now=now) is False
