from datetime import date as date_type
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .domain.calendar import SlotEntry, normalize_time
from .domain.capacity import CapacityPolicy
from .domain.ledger import confirmed_count, is_past, is_upcoming
from .models import Level, Reservation, ReservationParticipant, ReservationStatus, UserProfile


class ParticipantCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)


class ReservationCreate(BaseModel):
    date: date_type
    slot_time: str
    game_mode: str = Field(min_length=1, max_length=50)
    level: Level = Level.BEGINNER
    is_public: bool = True
    max_participants: Optional[int] = Field(default=None, ge=1)
    participants: list[ParticipantCreate] = Field(default_factory=list)
    owner_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("slot_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return normalize_time(value)


class ReservationUpdate(BaseModel):
    date: Optional[date_type] = None
    slot_time: Optional[str] = None
    game_mode: Optional[str] = Field(default=None, min_length=1, max_length=50)
    level: Optional[Level] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    is_public: Optional[bool] = None
    status: Optional[ReservationStatus] = None

    @field_validator("slot_time")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        return normalize_time(value) if value is not None else None


class ShareConfirm(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)


class ParticipantConfirmationUpdate(BaseModel):
    email: EmailStr
    confirmed: bool


class StatusUpdate(BaseModel):
    status: ReservationStatus


class ParticipantRead(BaseModel):
    email: str
    name: Optional[str]
    user_id: Optional[str]
    confirmed: bool

    @classmethod
    def from_db(cls, *, participant: ReservationParticipant) -> "ParticipantRead":
        return cls(
            email=participant.email,
            name=participant.name,
            user_id=participant.user_id,
            confirmed=participant.confirmed,
        )


class AdminParticipantRead(ParticipantRead):
    position: int
    added_at: datetime

    @classmethod
    def from_db(cls, *, participant: ReservationParticipant) -> "AdminParticipantRead":
        return cls(
            email=participant.email,
            name=participant.name,
            user_id=participant.user_id,
            confirmed=participant.confirmed,
            position=participant.position,
            added_at=participant.added_at,
        )


class ReservationRead(BaseModel):
    id: str
    owner_id: str
    date: date_type
    slot_time: str
    game_mode: str
    level: Level
    is_public: bool
    max_participants: int
    status: ReservationStatus
    participants: list[ParticipantRead]
    confirmed_count: int
    total_count: int
    is_full: bool
    is_upcoming: bool
    is_past: bool
    is_owner: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_db(
        cls,
        *,
        reservation: Reservation,
        policy: CapacityPolicy,
        viewer_id: Optional[str] = None,
    ) -> "ReservationRead":
        return cls(
            id=reservation.id,
            owner_id=reservation.owner_id,
            date=reservation.date,
            slot_time=reservation.slot_time,
            game_mode=reservation.game_mode,
            level=reservation.level,
            is_public=reservation.is_public,
            max_participants=policy.effective_max(reservation),
            status=reservation.status,
            participants=[ParticipantRead.from_db(participant=p) for p in reservation.participants],
            confirmed_count=confirmed_count(reservation),
            total_count=len(reservation.participants),
            is_full=policy.is_full(reservation),
            is_upcoming=is_upcoming(reservation),
            is_past=is_past(reservation),
            is_owner=viewer_id is not None and viewer_id == reservation.owner_id,
            created_at=reservation.created_at,
            updated_at=reservation.updated_at,
        )


class AdminReservationRead(ReservationRead):
    owner_name: str = "Unknown"
    owner_email: str = "No email"

    @classmethod
    def from_admin_row(
        cls,
        *,
        reservation: Reservation,
        owner: Optional[UserProfile],
        policy: CapacityPolicy,
    ) -> "AdminReservationRead":
        base = ReservationRead.from_db(reservation=reservation, policy=policy)
        return cls(
            **base.model_dump(),
            owner_name=(owner.name if owner and owner.name else "Unknown"),
            owner_email=(owner.email if owner else "No email"),
        )


class AvailabilityRead(BaseModel):
    available: bool


class TimeSlotRead(BaseModel):
    time: str
    status: str
    available: bool
    reservation_id: Optional[str] = None
    owner_id: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: SlotEntry) -> "TimeSlotRead":
        return cls(
            time=entry.time,
            status=entry.status,
            available=entry.available,
            reservation_id=entry.reservation_id,
            owner_id=entry.owner_id,
        )


class AdminStatsRead(BaseModel):
    total_reservations: int
    today_bookings: int
    unique_confirmed_participants: int
    by_status: dict[str, int]


class ReservationRemoval(BaseModel):
    reservation_id: str
    action: str
    status: Optional[ReservationStatus] = None
