class ReservationError(Exception):
    """Base class for reservation engine failures surfaced to callers."""

    code = "reservation_error"
    retryable = False
    user_message = "The reservation request could not be completed."


class InvalidTransitionError(ReservationError):
    code = "invalid_transition"
    user_message = "This reservation can no longer be changed."


class CapacityViolationError(ReservationError):
    code = "capacity_violation"
    user_message = "The participant limit cannot be lower than the number of participants."


class CapacityExceededError(ReservationError):
    code = "capacity_exceeded"
    retryable = True
    user_message = "This reservation is full. Pick another session or check back later."


class SlotConflictError(ReservationError):
    code = "slot_conflict"
    retryable = True
    user_message = "This time slot was just booked. Please choose a different slot."


class AccessDeniedError(ReservationError):
    code = "access_denied"
    user_message = "You do not have access to this reservation."


class NotFoundError(ReservationError):
    code = "not_found"
    user_message = "Reservation not found."
