"""
Recurrence expansion and merge with persisted slot overrides.

Everything here is pure: callers pass already-loaded templates, slots and
occupancy counts. Templates are expected to have passed validation at save
time, so a malformed rule raises ValueError instead of a user-facing error.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from workshop_engine.modules.slots.schemas import SlotStatus, VirtualSlot, WorkshopSlotResponse
from workshop_engine.modules.templates.schemas import RecurrenceType, TIME_OF_DAY, WorkshopTemplateResponse

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

SlotKey = Tuple[str, str, str]  # (template_id, YYYY-MM-DD, HH:MM)


class Occurrence(NamedTuple):
    template_id: str
    date: date
    start_time: str
    end_time: str

    @property
    def key(self) -> SlotKey:
        return (self.template_id, self.date.isoformat(), self.start_time)


def weekday_index(day: date) -> int:
    """0=Sunday .. 6=Saturday"""
    return (day.weekday() + 1) % 7


def to_minutes(time_of_day: str) -> int:
    if not time_of_day or not TIME_OF_DAY.match(time_of_day):
        raise ValueError(f"Invalid time of day: {time_of_day!r}")
    hours, minutes = time_of_day.split(":")
    return int(hours) * 60 + int(minutes)


def end_time_for(start_time: str, duration: int) -> str:
    """start_time + duration minutes, wrapping past midnight"""
    total = (to_minutes(start_time) + duration) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def slot_key(slot: WorkshopSlotResponse) -> SlotKey:
    return (slot.workshop_template_id, slot.date.isoformat(), slot.start_time)


def enumerate_occurrences(
    template: WorkshopTemplateResponse,
    from_date: date,
    window_days: int
) -> List[Occurrence]:
    """Candidate occurrences of one template inside [from_date, from_date + window_days)."""
    if window_days < 0:
        raise ValueError("window_days must not be negative")
    pattern = template.recurrence_pattern
    start_time = pattern.time
    end_time = end_time_for(start_time, template.duration)
    until = from_date + timedelta(days=window_days)

    if template.recurrence_type == RecurrenceType.ONE_TIME:
        if pattern.date is None:
            raise ValueError(f"One-time template {template.id} has no date")
        if from_date <= pattern.date < until:
            return [Occurrence(template.id, pattern.date, start_time, end_time)]
        return []

    if not pattern.days:
        raise ValueError(f"Weekly template {template.id} has an empty day set")
    days = set(pattern.days)
    occurrences = []
    for offset in range(window_days):
        day = from_date + timedelta(days=offset)
        if weekday_index(day) in days:
            occurrences.append(Occurrence(template.id, day, start_time, end_time))
    return occurrences


def is_occurrence(template: WorkshopTemplateResponse, on_date: date, start_time: str) -> bool:
    """True if (on_date, start_time) is an instance generated by the template's rule."""
    return any(
        occ.start_time == start_time
        for occ in enumerate_occurrences(template, on_date, 1)
    )


def describe_rule(template: WorkshopTemplateResponse) -> str:
    pattern = template.recurrence_pattern
    if template.recurrence_type == RecurrenceType.WEEKLY:
        days = ", ".join(DAY_NAMES[d] for d in sorted(pattern.days or []))
        return f"Every {days} at {pattern.time}"
    return f"{pattern.date.isoformat() if pattern.date else '?'} at {pattern.time}"


def merge_virtual_slots(
    templates: Iterable[WorkshopTemplateResponse],
    slots: Iterable[WorkshopSlotResponse],
    occupancy: Dict[str, int],
    from_date: date,
    window_days: int,
    today: Optional[date] = None,
    future_only: bool = False
) -> List[VirtualSlot]:
    """
    Expand every active template over the window and overlay persisted slots.

    A persisted live slot contributes its own id and capacity, with booked_count
    taken from occupancy; a cancelled one hides the occurrence; occurrences with
    no persisted slot use template defaults and booked_count 0.
    """
    persisted = {slot_key(s): s for s in slots}
    virtual_slots = []
    for template in templates:
        if not template.is_active:
            continue
        for occ in enumerate_occurrences(template, from_date, window_days):
            if future_only and today is not None and occ.date < today:
                continue
            slot = persisted.get(occ.key)
            if slot is not None and slot.status == SlotStatus.CANCELLED:
                continue
            if slot is not None:
                virtual_slots.append(VirtualSlot(
                    template_id=template.id,
                    template_title=template.title,
                    date_str=occ.date.isoformat(),
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    capacity=slot.capacity,
                    booked_count=occupancy.get(slot.id, 0),
                    slot_id=slot.id,
                ))
            else:
                virtual_slots.append(VirtualSlot(
                    template_id=template.id,
                    template_title=template.title,
                    date_str=occ.date.isoformat(),
                    start_time=occ.start_time,
                    end_time=occ.end_time,
                    capacity=template.capacity_per_slot,
                    booked_count=0,
                ))
    return sorted(virtual_slots, key=lambda s: (s.date_str, s.start_time))
