from __future__ import annotations

import uuid
from datetime import date as date_type
from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Date, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class ReservationStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FINISHED = "finished"
    NO_SHOW = "no-show"


class Level(StrEnum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


TERMINAL_STATUSES = frozenset(
    {ReservationStatus.CANCELLED, ReservationStatus.FINISHED, ReservationStatus.NO_SHOW}
)


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
        length=20,
    )


def new_id() -> str:
    return str(uuid.uuid4())


def slot_key(day: date_type, slot_time: str) -> str:
    """Key stored in `reservations.active_slot`; `slot_time` must already be normalized."""
    return f"{day.isoformat()} {slot_time}"


class UserProfile(Base):
    __tablename__ = "user_profiles"
    __table_args__ = (UniqueConstraint("email", name="uq_user_profiles_email"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("max_participants >= 1", name="chk_res_max_participants"),
        # NULL once cancelled, so a cancelled slot can be booked again.
        UniqueConstraint("active_slot", name="uq_res_active_slot"),
        Index("idx_res_owner", "owner_id"),
        Index("idx_res_date", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    slot_time: Mapped[str] = mapped_column(String(5), nullable=False)
    active_slot: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    game_mode: Mapped[str] = mapped_column(String(50), nullable=False)
    level: Mapped[Level] = mapped_column(_str_enum(Level), nullable=False, default=Level.BEGINNER)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _str_enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    participants: Mapped[list["ReservationParticipant"]] = relationship(
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationParticipant.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, slot={self.date} {self.slot_time}, status={self.status})>"


class ReservationParticipant(Base):
    __tablename__ = "reservation_participants"
    __table_args__ = (
        UniqueConstraint("reservation_id", "email", name="uq_participant_email"),
        Index("idx_participant_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[str] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    reservation: Mapped["Reservation"] = relationship(back_populates="participants")
