from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional

from .request_id import get_request_id

if TYPE_CHECKING:
    from ..domain.state_machine import ReservationStatusChanged
    from ..models import Reservation

AuditAction = Literal[
    "reservation.created",
    "reservation.cancelled",
    "reservation.updated",
    "reservation.deleted",
    "reservation.status_changed",
    "reservation.participant_confirmed",
]
AuditInitiator = Literal["user", "admin", "guest"]


def _configure_audit_logger(name: str = "audit") -> logging.Logger:
    """One JSON document per line on stderr, kept out of the root logger."""
    audit = logging.getLogger(name)
    audit.setLevel(logging.INFO)
    audit.propagate = False
    if not audit.handlers:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(message)s"))
        audit.addHandler(stream)
    return audit


_audit_logger = _configure_audit_logger()


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return value


def _build_payload(fields: dict[str, Any], extra: Optional[dict[str, Any]]) -> dict[str, Any]:
    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "request_id": get_request_id(),
    }
    record.update(fields)
    if extra:
        record.update(extra)
    return {key: _plain(value) for key, value in record.items() if value is not None}


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    reservation_id: str,
    owner_id: Optional[str],
    user_id: Optional[str],
    slot_date: Optional[date],
    slot_time: Optional[str],
    status_from: Optional[str],
    status_to: Optional[str],
    participants: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Write one audit record. Raises RuntimeError when the record cannot be written."""
    payload = _build_payload(
        {
            "action": action,
            "initiator": initiator,
            "reservation_id": reservation_id,
            "owner_id": owner_id,
            "user_id": user_id,
            "slot_date": slot_date,
            "slot_time": slot_time,
            "status_from": status_from,
            "status_to": status_to,
            "participants": participants,
            "message": message,
        },
        extra,
    )
    try:
        _audit_logger.info(json.dumps(payload, ensure_ascii=True))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def audit_reservation(
    action: AuditAction,
    reservation: "Reservation",
    *,
    initiator: AuditInitiator,
    user_id: Optional[str],
    status_from: Optional[str] = None,
    status_to: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    emit_audit_log(
        action=action,
        initiator=initiator,
        reservation_id=reservation.id,
        owner_id=reservation.owner_id,
        user_id=user_id,
        slot_date=reservation.date,
        slot_time=reservation.slot_time,
        status_from=status_from,
        status_to=status_to,
        participants=len(reservation.participants),
        extra=extra,
    )


def audit_status_changes(
    reservation: "Reservation",
    events: "list[ReservationStatusChanged]",
    *,
    initiator: AuditInitiator,
    user_id: Optional[str],
) -> None:
    """Publish ReservationStatusChanged events for notification consumers."""
    for event in events:
        audit_reservation(
            "reservation.status_changed",
            reservation,
            initiator=initiator,
            user_id=user_id,
            status_from=event.old_status,
            status_to=event.new_status,
        )
