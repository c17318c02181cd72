"""
Booking lifecycle as an explicit transition table.

next_status() is a pure function of (current status, event). Pairs absent from
TRANSITIONS are invalid. Two pairs map a status onto itself: a repeated
reminder and a repeated conversion are accepted as no-ops so that retries are
harmless.
"""

from typing import Dict, FrozenSet, Tuple

from workshop_engine.core.errors import InvalidTransition
from workshop_engine.modules.bookings.schemas import BookingEvent, BookingStatus

S = BookingStatus
E = BookingEvent

TRANSITIONS: Dict[Tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (S.CONFIRMED, E.SEND_REMINDER): S.REMINDER_SENT,
    (S.REMINDER_SENT, E.SEND_REMINDER): S.REMINDER_SENT,
    (S.REMINDER_SENT, E.RECONFIRM): S.CONFIRMED,
    (S.CONFIRMED, E.CANCEL): S.CANCELLED,
    (S.REMINDER_SENT, E.CANCEL): S.CANCELLED,
    (S.CONFIRMED, E.MARK_ATTENDED): S.ATTENDED,
    (S.REMINDER_SENT, E.MARK_ATTENDED): S.ATTENDED,
    (S.CONFIRMED, E.MARK_NO_SHOW): S.NO_SHOW,
    (S.REMINDER_SENT, E.MARK_NO_SHOW): S.NO_SHOW,
    (S.ATTENDED, E.REQUEST_FEEDBACK): S.FEEDBACK_REQUESTED,
    (S.ATTENDED, E.CONVERT): S.CONVERTED,
    (S.FEEDBACK_REQUESTED, E.CONVERT): S.CONVERTED,
    (S.CONVERTED, E.CONVERT): S.CONVERTED,
}

TERMINAL: FrozenSet[BookingStatus] = frozenset({S.CONVERTED, S.CANCELLED, S.NO_SHOW})


def next_status(booking_id: str, current: BookingStatus, event: BookingEvent) -> BookingStatus:
    """Target status for event, or InvalidTransition."""
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransition(booking_id, current.value, event.value)
    return target


def is_noop(current: BookingStatus, event: BookingEvent) -> bool:
    return TRANSITIONS.get((current, event)) == current


def allowed_events(current: BookingStatus) -> list:
    """Events staff can apply next, for action menus."""
    return [event for (status, event), target in TRANSITIONS.items() if status == current and target != current]
