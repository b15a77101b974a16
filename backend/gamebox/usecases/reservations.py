from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence

from ..domain import access, ledger
from ..domain.access import MutationAction, Viewer
from ..domain.calendar import is_slot_available, normalize_time
from ..domain.capacity import CapacityPolicy
from ..domain.errors import (
    AccessDeniedError,
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
)
from ..domain.repositories import ReservationRepository
from ..domain.state_machine import (
    CoreFieldPatch,
    ReservationStatusChanged,
    cancel,
    check_create,
    confirm_if_all_confirmed,
    is_terminal,
)
from ..models import Level, Reservation, ReservationStatus, new_id, slot_key
from ..utils.time import now_local, slot_start, utc_now_naive
from . import admin as admin_usecase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticipantInput:
    email: str
    name: Optional[str] = None


@dataclass(frozen=True)
class ReservationPatch:
    core: CoreFieldPatch
    status: Optional[ReservationStatus] = None

    @property
    def has_core_changes(self) -> bool:
        return self.core != CoreFieldPatch()


async def load(res_repo: ReservationRepository, reservation_id: str, *, for_update: bool = False) -> Reservation:
    if for_update:
        reservation = await res_repo.get_for_update(reservation_id)
    else:
        reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return reservation


async def create_reservation(
    res_repo: ReservationRepository,
    *,
    owner: Viewer,
    day: date,
    slot_time: str,
    game_mode: str,
    policy: CapacityPolicy,
    level: Level = Level.BEGINNER,
    is_public: bool = True,
    max_participants: Optional[int] = None,
    participants: Sequence[ParticipantInput] = (),
    owner_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Reservation:
    slot = normalize_time(slot_time)
    now = now or now_local()
    if slot_start(day, slot, now.tzinfo) <= now:
        raise ValueError("cannot book a slot that has already started")

    limit = max_participants or policy.max_participants_for(game_mode)
    reservation = Reservation(
        id=new_id(),
        owner_id=owner.user_id,
        date=day,
        slot_time=slot,
        active_slot=slot_key(day, slot),
        game_mode=game_mode,
        level=level,
        is_public=is_public,
        max_participants=limit,
        status=ReservationStatus.PENDING,
        created_at=utc_now_naive(),
        updated_at=utc_now_naive(),
        participants=[],
    )

    # The owner's own entry goes first; it is display order only.
    seen: set[str] = set()
    entries: list[tuple[str, Optional[str], bool, Optional[str]]] = []
    if owner.email:
        seen.add(ledger.normalize_email(owner.email))
        entries.append((owner.email, owner_name, True, owner.user_id))
    for item in participants:
        address = ledger.normalize_email(item.email)
        if address in seen:
            if owner.email and address == ledger.normalize_email(owner.email):
                continue
            raise ValueError(f"participant {item.email} is listed more than once")
        seen.add(address)
        entries.append((item.email, item.name, False, None))

    existing = await res_repo.list_by_date(day)
    check_create(
        owner_id=owner.user_id,
        max_participants=limit,
        participant_count=len(entries),
        slot_available=is_slot_available(existing, day, slot),
    )
    for position, (email, name, confirmed, user_id) in enumerate(entries):
        reservation.participants.append(
            ledger.new_participant(email, name=name, user_id=user_id, confirmed=confirmed, position=position)
        )

    created = await res_repo.create(reservation)
    logger.info("reservation %s booked for %s %s by %s", created.id, day, slot, owner.user_id)
    return created


async def list_reservations_for_viewer(res_repo: ReservationRepository, *, viewer: Viewer) -> list[Reservation]:
    if not viewer.authenticated or viewer.user_id is None:
        return []
    return await res_repo.list_for_user(viewer.user_id, viewer.email)


async def get_reservation(res_repo: ReservationRepository, *, reservation_id: str, viewer: Viewer) -> Reservation:
    reservation = await load(res_repo, reservation_id)
    access.require_view(reservation, viewer)
    return reservation


async def join_via_share_link(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    viewer: Viewer,
    policy: CapacityPolicy,
    name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Reservation, list[ReservationStatusChanged]]:
    if not viewer.email:
        raise ValueError("an e-mail address is required to join")
    reservation = await load(res_repo, reservation_id, for_update=True)

    invited = ledger.find_participant(reservation, viewer.email, user_id=viewer.user_id)
    if invited is None:
        _check_joinable(reservation, viewer, policy=policy, now=now)

    ledger.confirm_participation(reservation, viewer.email, policy=policy, name=name, user_id=viewer.user_id)
    events = _settle_status(reservation)
    await res_repo.save_participants(reservation, policy.effective_max(reservation))
    return reservation, events


def _check_joinable(reservation: Reservation, viewer: Viewer, *, policy: CapacityPolicy, now: Optional[datetime]) -> None:
    if not reservation.is_public:
        raise AccessDeniedError(f"reservation {reservation.id} is private")
    if is_terminal(reservation.status):
        raise InvalidTransitionError(f"reservation {reservation.id} is {reservation.status}")
    if not ledger.is_upcoming(reservation, now=now):
        raise AccessDeniedError(f"reservation {reservation.id} has already started")
    if access.is_owner(reservation, viewer):
        raise AccessDeniedError("owners cannot join their own reservation")
    if policy.is_full(reservation):
        raise CapacityExceededError(f"reservation {reservation.id} is full")
    if not access.can_join(reservation, viewer, policy=policy, now=now):
        raise AccessDeniedError(f"viewer may not join reservation {reservation.id}")


def _settle_status(reservation: Reservation) -> list[ReservationStatusChanged]:
    event = confirm_if_all_confirmed(reservation)
    return [event] if event is not None else []


async def set_participant_confirmation(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    viewer: Viewer,
    email: str,
    confirmed: bool,
    policy: CapacityPolicy,
) -> tuple[Reservation, list[ReservationStatusChanged]]:
    reservation = await load(res_repo, reservation_id, for_update=True)
    access.require_mutate(reservation, viewer, MutationAction.MANAGE_PARTICIPANTS)
    ledger.update_participant_confirmation(reservation, email, confirmed)
    events = _settle_status(reservation)
    await res_repo.save_participants(reservation, policy.effective_max(reservation))
    return reservation, events


async def cancel_reservation(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    viewer: Viewer,
) -> tuple[Reservation, ReservationStatusChanged]:
    reservation = await load(res_repo, reservation_id, for_update=True)
    access.require_mutate(reservation, viewer, MutationAction.CANCEL)
    event = cancel(reservation)
    await res_repo.save(reservation)
    return reservation, event


async def update_reservation(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    viewer: Viewer,
    patch: ReservationPatch,
) -> tuple[Reservation, list[ReservationStatusChanged]]:
    """Owner/admin edit. Owners may only cancel; admins go through the override surface."""
    if viewer.is_admin:
        events: list[ReservationStatusChanged] = []
        reservation = await load(res_repo, reservation_id, for_update=True)
        if patch.has_core_changes:
            reservation = await admin_usecase.edit_fields(res_repo, reservation_id=reservation_id, patch=patch.core)
        if patch.status is not None and patch.status != reservation.status:
            reservation, event = await admin_usecase.set_status(
                res_repo, reservation_id=reservation_id, new_status=patch.status
            )
            events.append(event)
        return reservation, events

    if patch.has_core_changes or patch.status != ReservationStatus.CANCELLED:
        reservation = await load(res_repo, reservation_id)
        access.require_mutate(reservation, viewer, MutationAction.EDIT)
    reservation, event = await cancel_reservation(res_repo, reservation_id=reservation_id, viewer=viewer)
    return reservation, [event]


async def remove_reservation(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    viewer: Viewer,
) -> tuple[Reservation, Optional[ReservationStatusChanged]]:
    """DELETE semantics: admins delete the record, owners cancel it."""
    if viewer.is_admin:
        deleted = await admin_usecase.delete_reservation(res_repo, reservation_id=reservation_id)
        return deleted, None
    reservation, event = await cancel_reservation(res_repo, reservation_id=reservation_id, viewer=viewer)
    return reservation, event
