from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_policy, get_session, require_admin
from ..domain.access import Viewer
from ..domain.capacity import CapacityPolicy
from ..domain.errors import ReservationError
from ..domain.state_machine import CoreFieldPatch
from ..infrastructure.repositories import SqlAlchemyProfileRepository, SqlAlchemyReservationRepository
from ..schemas import (
    AdminParticipantRead,
    AdminReservationRead,
    AdminStatsRead,
    ReservationRead,
    ReservationRemoval,
    ReservationUpdate,
    StatusUpdate,
)
from ..usecases import admin as admin_usecase
from ..utils.audit_log import audit_reservation, audit_status_changes
from ..utils.time import now_local
from .errors import audit_failure, http_error, invalid_input

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/reservations", response_model=List[AdminReservationRead])
async def list_reservations(
    session: AsyncSession = Depends(get_session),
    policy: CapacityPolicy = Depends(get_policy),
) -> list[AdminReservationRead]:
    rows = await admin_usecase.list_all_reservations(
        SqlAlchemyReservationRepository(session),
        SqlAlchemyProfileRepository(session),
    )
    return [AdminReservationRead.from_admin_row(reservation=r, owner=owner, policy=policy) for r, owner in rows]


@router.get("/stats", response_model=AdminStatsRead)
async def get_stats(session: AsyncSession = Depends(get_session)) -> AdminStatsRead:
    stats = await admin_usecase.admin_stats(SqlAlchemyReservationRepository(session), today=now_local().date())
    return AdminStatsRead(
        total_reservations=stats.total_reservations,
        today_bookings=stats.today_bookings,
        unique_confirmed_participants=stats.unique_confirmed_participants,
        by_status=stats.by_status,
    )


@router.get("/reservations/{reservation_id}/participants", response_model=List[AdminParticipantRead])
async def list_participants(
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
) -> list[AdminParticipantRead]:
    try:
        participants = await admin_usecase.list_participants(
            SqlAlchemyReservationRepository(session), reservation_id=reservation_id
        )
    except ReservationError as exc:
        raise http_error(exc) from exc
    return [AdminParticipantRead.from_db(participant=p) for p in participants]


@router.put("/reservations/{reservation_id}/status", response_model=ReservationRead)
async def set_reservation_status(
    payload: StatusUpdate,
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    admin: Viewer = Depends(require_admin),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation, event = await admin_usecase.set_status(
                res_repo, reservation_id=reservation_id, new_status=payload.status
            )
    except ReservationError as exc:
        raise http_error(exc) from exc

    try:
        audit_status_changes(reservation, [event], initiator="admin", user_id=admin.user_id)
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=admin.user_id)


@router.patch("/reservations/{reservation_id}", response_model=ReservationRead)
async def edit_reservation(
    payload: ReservationUpdate,
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    admin: Viewer = Depends(require_admin),
    policy: CapacityPolicy = Depends(get_policy),
) -> ReservationRead:
    if payload.status is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="use PUT /admin/reservations/{id}/status to change the status",
        )
    patch = CoreFieldPatch(
        date=payload.date,
        slot_time=payload.slot_time,
        game_mode=payload.game_mode,
        level=payload.level,
        max_participants=payload.max_participants,
        is_public=payload.is_public,
    )
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation = await admin_usecase.edit_fields(res_repo, reservation_id=reservation_id, patch=patch)
    except ReservationError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise invalid_input(exc) from exc

    try:
        audit_reservation(
            "reservation.updated",
            reservation,
            initiator="admin",
            user_id=admin.user_id,
            extra={"fields": sorted(payload.model_dump(exclude_none=True))},
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRead.from_db(reservation=reservation, policy=policy, viewer_id=admin.user_id)


@router.delete("/reservations/{reservation_id}", response_model=ReservationRemoval)
async def delete_reservation(
    reservation_id: str = Path(..., min_length=1, max_length=36),
    session: AsyncSession = Depends(get_session),
    admin: Viewer = Depends(require_admin),
) -> ReservationRemoval:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with session.begin():
            reservation = await admin_usecase.delete_reservation(res_repo, reservation_id=reservation_id)
    except ReservationError as exc:
        raise http_error(exc) from exc

    try:
        audit_reservation(
            "reservation.deleted",
            reservation,
            initiator="admin",
            user_id=admin.user_id,
            status_from=reservation.status,
        )
    except RuntimeError as exc:
        raise audit_failure() from exc
    return ReservationRemoval(reservation_id=reservation_id, action="deleted")
