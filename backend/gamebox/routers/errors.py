from typing import Any

from fastapi import HTTPException, status

from ..domain.access import Viewer
from ..domain.errors import (
    AccessDeniedError,
    CapacityExceededError,
    CapacityViolationError,
    InvalidTransitionError,
    NotFoundError,
    ReservationError,
    SlotConflictError,
)
from ..utils.audit_log import AuditInitiator

_STATUS_BY_ERROR: tuple[tuple[type[ReservationError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (SlotConflictError, status.HTTP_409_CONFLICT),
    (CapacityExceededError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (CapacityViolationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def http_error(exc: ReservationError) -> HTTPException:
    code = next(
        (http_status for error_cls, http_status in _STATUS_BY_ERROR if isinstance(exc, error_cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    detail: dict[str, Any] = {"code": exc.code, "message": exc.user_message, "retryable": exc.retryable}
    return HTTPException(status_code=code, detail=detail)


def invalid_input(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


def audit_failure() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")


def initiator_of(viewer: Viewer) -> AuditInitiator:
    if viewer.is_admin:
        return "admin"
    return "user" if viewer.authenticated else "guest"
