"""
Error taxonomy of the booking engine.

Request-facing errors are HTTPException subclasses so services can raise them
directly and routes propagate them unchanged. SyncDeferred is internal: it is
logged and retried, never returned to a caller.
"""

from fastapi import HTTPException, status
from typing import Any, Optional


class ValidationError(HTTPException):
    """Malformed template/recurrence/slot input, rejected before persistence."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        self.message = message
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "validation_error", "field": field, "message": message},
        )


class NotFound(HTTPException):
    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "resource": resource,
                "id": str(resource_id),
                "message": f"{resource} not found",
            },
        )


class CapacityExceeded(HTTPException):
    """Admission denied; no booking was written. Caller should offer another slot."""

    def __init__(self, slot_id: str, capacity: int, booked_count: int):
        self.slot_id = slot_id
        self.capacity = capacity
        self.booked_count = booked_count
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "capacity_exceeded",
                "slot_id": slot_id,
                "capacity": capacity,
                "booked_count": booked_count,
                "remaining_seats": 0,
                "message": "This session is full. Please choose another slot.",
            },
        )


class InvalidTransition(HTTPException):
    """Lifecycle event not valid from the current status; booking untouched."""

    def __init__(self, booking_id: str, current_status: str, event: str):
        self.booking_id = booking_id
        self.current_status = current_status
        self.event = event
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "invalid_transition",
                "booking_id": booking_id,
                "current_status": current_status,
                "event": event,
                "message": f"Cannot apply '{event}' to a booking in status '{current_status}'. Refresh the booking and retry.",
            },
        )


class SyncDeferred(Exception):
    """A side effect (message, CRM sync) failed after its transition was committed."""

    def __init__(self, operation: str, booking_id: Optional[str], reason: str):
        self.operation = operation
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"{operation} deferred for booking {booking_id}: {reason}")
