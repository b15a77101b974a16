from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Optional

from ..models import Reservation, ReservationParticipant, ReservationStatus
from .capacity import CapacityPolicy
from .errors import AccessDeniedError
from .ledger import is_upcoming, normalize_email

ADMIN_ROLES = frozenset({"admin", "moderator"})


class MutationAction(StrEnum):
    CANCEL = "cancel"
    EDIT = "edit"
    SET_STATUS = "set_status"
    DELETE = "delete"
    MANAGE_PARTICIPANTS = "manage_participants"


# Owner rights; ownership comes from owner_id only, never from participant order.
_OWNER_ACTIONS = frozenset({MutationAction.CANCEL, MutationAction.MANAGE_PARTICIPANTS})


@dataclass(frozen=True)
class Viewer:
    authenticated: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.authenticated and (self.role or "").lower() in ADMIN_ROLES

    @classmethod
    def anonymous(cls, email: Optional[str] = None) -> "Viewer":
        return cls(authenticated=False, email=email)


def is_owner(reservation: Reservation, viewer: Viewer) -> bool:
    return viewer.authenticated and viewer.user_id is not None and viewer.user_id == reservation.owner_id


def _matches(participant: ReservationParticipant, viewer: Viewer) -> bool:
    if viewer.user_id is not None and participant.user_id == viewer.user_id:
        return True
    return viewer.email is not None and normalize_email(participant.email) == normalize_email(viewer.email)


def is_confirmed_participant(reservation: Reservation, viewer: Viewer) -> bool:
    return any(p.confirmed and _matches(p, viewer) for p in reservation.participants)


def can_view(reservation: Reservation, viewer: Viewer) -> bool:
    return (
        reservation.is_public
        or viewer.is_admin
        or is_owner(reservation, viewer)
        or is_confirmed_participant(reservation, viewer)
    )


def can_join(
    reservation: Reservation,
    viewer: Viewer,
    *,
    policy: CapacityPolicy,
    now: Optional[datetime] = None,
) -> bool:
    if not reservation.is_public:
        return False
    if reservation.status not in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED):
        return False
    if not is_upcoming(reservation, now=now):
        return False
    if is_owner(reservation, viewer) or is_confirmed_participant(reservation, viewer):
        return False
    return not policy.is_full(reservation)


def can_mutate(
    reservation: Reservation,
    viewer: Viewer,
    action: MutationAction = MutationAction.CANCEL,
) -> bool:
    if viewer.is_admin:
        return True
    return is_owner(reservation, viewer) and action in _OWNER_ACTIONS


def require_view(reservation: Reservation, viewer: Viewer) -> None:
    if not can_view(reservation, viewer):
        raise AccessDeniedError(f"viewer may not see reservation {reservation.id}")


def require_mutate(reservation: Reservation, viewer: Viewer, action: MutationAction) -> None:
    if not can_mutate(reservation, viewer, action):
        raise AccessDeniedError(f"viewer may not {action} reservation {reservation.id}")
