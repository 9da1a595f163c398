from fastapi import HTTPException, status

from app.models.enums import BookingStatus

# Defines all valid status transitions for a booking
ALLOWED_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,  # Worker withdraws the application
    },
    BookingStatus.ACCEPTED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.REJECTED: set(),  # Terminal state
    BookingStatus.COMPLETED: set(),  # Terminal state
    BookingStatus.CANCELLED: set(),  # Terminal state
}


def validate_transition(current: BookingStatus | str, new: BookingStatus, action: str | None = None) -> None:
    """Validate a booking status transition. Raises HTTP 409 if invalid."""
    current = BookingStatus(current)
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new not in allowed:
        detail = f"Cannot transition from '{current.value}' to '{new.value}'"
        if action:
            detail = f"Cannot {action} a booking in status '{current.value}'"
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
