from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_viewer, get_optional_viewer, get_policy, get_session
from ..domain.access import Viewer
from ..domain.capacity import CapacityPolicy
from ..domain.errors import ReservationError
from ..domain.state_machine import CoreFieldPatch
from ..infrastructure.repositories import SqlAlchemyReservationRepository
from ..schemas import (
    AvailabilityRead,
    ParticipantConfirmationUpdate,
    ReservationCreate,
    ReservationRead,
    ReservationRemoval,
    ReservationUpdate,
    ShareConfirm,
    TimeSlotRead,
)
from ..usecases import availability as availability_usecase
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import audit_reservation, audit_status_changes
from ..utils.time import now_local
from .errors import audit_failure, http_error, initiator_of, invalid_input

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_current_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation = await reservation_usecase.create_reservation(
                res_repo,
                owner=viewer,
                day=payload.date,
                slot_time=payload.slot_time,
                game_mode=payload.game_mode,
                policy=policy,
                level=payload.level,
                is_public=payload.is_public,
                max_participants=payload.max_participants,
                participants=[
                    reservation_usecase.ParticipantInput(email=p.email, name=p.name) for p in payload.participants
                ],
                owner_name=payload.owner_name,
            )
    except ReservationError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise invalid_input(exc) from exc

    try:
        audit_reservation(
            "reservation.created",
            reservation,
            initiator=initiator_of(viewer),
            user_id=viewer.user_id,
            status_to=reservation.status,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=viewer.user_id)


@router.get("", response_model=List[ReservationRead])
async def list_my_reservations(
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_current_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    rows = await reservation_usecase.list_reservations_for_viewer(res_repo, viewer=viewer)
    return [ReservationRead.from_db(reservation=r, policy=policy, viewer_id=viewer.user_id) for r in rows]


@router.get("/availability/check", response_model=AvailabilityRead)
async def check_availability(
    day: date = Query(..., alias="date"),
    slot_time: str = Query(..., alias="time"),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        available = await availability_usecase.check_slot(res_repo, day=day, slot_time=slot_time)
    except ValueError as exc:
        raise invalid_input(exc) from exc
    return AvailabilityRead(available=available)


@router.get("/availability/slots", response_model=List[TimeSlotRead])
async def list_time_slots(
    day: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> list[TimeSlotRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    entries = await availability_usecase.list_day_slots(
        res_repo, day=day, time_slots=get_settings().time_slots
    )
    return [TimeSlotRead.from_entry(entry) for entry in entries]


@router.get("/availability/dates", response_model=List[date])
async def list_available_dates(
    start: Optional[date] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[date]:
    settings = get_settings()
    res_repo = SqlAlchemyReservationRepository(session)
    return await availability_usecase.list_available_dates(
        res_repo,
        start=start or now_local().date(),
        days=settings.available_dates_window_days,
        slots_per_day=len(settings.time_slots),
    )


@router.get("/share/{reservation_id}", response_model=ReservationRead)
async def get_shared_reservation(
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_optional_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        reservation = await reservation_usecase.get_reservation(
            res_repo, reservation_id=reservation_id, viewer=viewer
        )
    except ReservationError as exc:
        raise http_error(exc) from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=viewer.user_id)


@router.post("/share/{reservation_id}/confirm", response_model=ReservationRead)
async def confirm_via_share_link(
    payload: ShareConfirm,
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_optional_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    joiner = Viewer(
        authenticated=viewer.authenticated,
        user_id=viewer.user_id,
        email=payload.email,
        role=viewer.role,
    )
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation, events = await reservation_usecase.join_via_share_link(
                res_repo,
                reservation_id=reservation_id,
                viewer=joiner,
                policy=policy,
                name=payload.name,
            )
    except ReservationError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise invalid_input(exc) from exc

    try:
        audit_reservation(
            "reservation.participant_confirmed",
            reservation,
            initiator=initiator_of(viewer),
            user_id=viewer.user_id,
            extra={"participant_email": payload.email},
        )
        audit_status_changes(reservation, events, initiator=initiator_of(viewer), user_id=viewer.user_id)
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=viewer.user_id)


@router.post("/{reservation_id}/participant/confirm", response_model=ReservationRead)
async def update_participant_confirmation(
    payload: ParticipantConfirmationUpdate,
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_current_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation, events = await reservation_usecase.set_participant_confirmation(
                res_repo,
                reservation_id=reservation_id,
                viewer=viewer,
                email=payload.email,
                confirmed=payload.confirmed,
                policy=policy,
            )
    except ReservationError as exc:
        raise http_error(exc) from exc

    try:
        audit_reservation(
            "reservation.participant_confirmed",
            reservation,
            initiator=initiator_of(viewer),
            user_id=viewer.user_id,
            extra={"participant_email": payload.email, "confirmed": payload.confirmed},
        )
        audit_status_changes(reservation, events, initiator=initiator_of(viewer), user_id=viewer.user_id)
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=viewer.user_id)


@router.get("/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_optional_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        reservation = await reservation_usecase.get_reservation(
            res_repo, reservation_id=reservation_id, viewer=viewer
        )
    except ReservationError as exc:
        raise http_error(exc) from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=viewer.user_id)


@router.patch("/{reservation_id}", response_model=ReservationRead)
async def update_reservation(
    payload: ReservationUpdate,
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_current_viewer),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    patch = reservation_usecase.ReservationPatch(
        core=CoreFieldPatch(
            date=payload.date,
            slot_time=payload.slot_time,
            game_mode=payload.game_mode,
            level=payload.level,
            max_participants=payload.max_participants,
            is_public=payload.is_public,
        ),
        status=payload.status,
    )
    if not patch.has_core_changes and patch.status is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="nothing to update")

    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation, events = await reservation_usecase.update_reservation(
                res_repo, reservation_id=reservation_id, viewer=viewer, patch=patch
            )
    except ReservationError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise invalid_input(exc) from exc

    try:
        if patch.has_core_changes:
            audit_reservation(
                "reservation.updated",
                reservation,
                initiator=initiator_of(viewer),
                user_id=viewer.user_id,
                extra={"fields": sorted(payload.model_dump(exclude_none=True, exclude={"status"}))},
            )
        audit_status_changes(reservation, events, initiator=initiator_of(viewer), user_id=viewer.user_id)
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=viewer.user_id)


@router.delete("/{reservation_id}", response_model=ReservationRemoval)
async def delete_reservation(
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(get_current_viewer),
) -> ReservationRemoval:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation, event = await reservation_usecase.remove_reservation(
                res_repo, reservation_id=reservation_id, viewer=viewer
            )
    except ReservationError as exc:
        raise http_error(exc) from exc

    try:
        if event is None:
            audit_reservation(
                "reservation.deleted",
                reservation,
                initiator=initiator_of(viewer),
                user_id=viewer.user_id,
                status_from=reservation.status,
            )
        else:
            audit_reservation(
                "reservation.cancelled",
                reservation,
                initiator=initiator_of(viewer),
                user_id=viewer.user_id,
                status_from=event.old_status,
                status_to=event.new_status,
            )
            audit_status_changes(reservation, [event], initiator=initiator_of(viewer), user_id=viewer.user_id)
    except RuntimeError as exc:
        raise audit_failure() from exc

    if event is None:
        return ReservationRemoval(reservation_id=reservation_id, action="deleted")
    return ReservationRemoval(reservation_id=reservation_id, action="cancelled", status=reservation.status)
