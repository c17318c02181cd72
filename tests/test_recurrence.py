from datetime import date, timedelta

import pytest

from workshop_engine.modules.slots.recurrence import (
    describe_rule, end_time_for, enumerate_occurrences, is_occurrence, merge_virtual_slots, weekday_index
)
from workshop_engine.modules.slots.schemas import WorkshopSlotResponse
from workshop_engine.modules.templates.schemas import WorkshopTemplateResponse

MONDAY = date(2025, 1, 6)


def make_template(**overrides):
    fields = dict(
        id="tpl-1",
        title="Intro to Robotics",
        duration=90,
        recurrence_type="weekly",
        recurrence_pattern={"days": [2, 4], "time": "16:00"},
        capacity_per_slot=3,
        is_active=True,
        shareable_slug="intro-to-robotics-ab12c",
    )
    fields.update(overrides)
    return WorkshopTemplateResponse(**fields)


def make_slot(**overrides):
    fields = dict(
        id="slot-1",
        workshop_template_id="tpl-1",
        date=date(2025, 1, 7),
        start_time="16:00",
        end_time="17:30",
        capacity=3,
        booked_count=0,
        status="available",
    )
    fields.update(overrides)
    return WorkshopSlotResponse(**fields)


def test_weekday_index_starts_on_sunday():
    assert weekday_index(date(2025, 1, 5)) == 0
    assert weekday_index(MONDAY) == 1
    assert weekday_index(date(2025, 1, 11)) == 6


def test_weekly_tuesday_thursday_over_two_weeks():
    occurrences = enumerate_occurrences(make_template(), MONDAY, 14)

    assert [o.date for o in occurrences] == [
        date(2025, 1, 7), date(2025, 1, 9), date(2025, 1, 14), date(2025, 1, 16)
    ]
    assert all(o.start_time == "16:00" and o.end_time == "17:30" for o in occurrences)


def test_weekly_occurrences_fall_on_rule_days_only():
    template = make_template(recurrence_pattern={"days": [0, 3, 6], "time": "09:30"})
    occurrences = enumerate_occurrences(template, date(2025, 3, 1), 60)

    assert occurrences
    assert {weekday_index(o.date) for o in occurrences} <= {0, 3, 6}
    assert len(occurrences) == len({o.key for o in occurrences})


def test_window_is_half_open():
    template = make_template(recurrence_pattern={"days": [1], "time": "10:00"})

    assert [o.date for o in enumerate_occurrences(template, MONDAY, 7)] == [MONDAY]
    assert [o.date for o in enumerate_occurrences(template, MONDAY, 8)] == [MONDAY, MONDAY + timedelta(days=7)]
    assert enumerate_occurrences(template, MONDAY, 0) == []


def test_one_time_inside_and_outside_window():
    template = make_template(
        recurrence_type="one-time",
        recurrence_pattern={"date": "2025-01-10", "time": "10:00"},
        duration=120,
    )

    inside = enumerate_occurrences(template, MONDAY, 7)
    assert len(inside) == 1
    assert inside[0].date == date(2025, 1, 10)
    assert inside[0].end_time == "12:00"
    assert enumerate_occurrences(template, MONDAY, 4) == []
    assert enumerate_occurrences(template, date(2025, 1, 11), 30) == []


def test_malformed_weekly_rule_raises():
    template = make_template()
    template.recurrence_pattern.days = []

    with pytest.raises(ValueError):
        enumerate_occurrences(template, MONDAY, 7)


@pytest.mark.parametrize("start,duration,expected", [
    ("16:00", 90, "17:30"),
    ("09:45", 30, "10:15"),
    ("23:30", 90, "01:00"),
    ("00:00", 1440, "00:00"),
])
def test_end_time_for(start, duration, expected):
    assert end_time_for(start, duration) == expected


def test_is_occurrence():
    template = make_template()

    assert is_occurrence(template, date(2025, 1, 7), "16:00")
    assert not is_occurrence(template, date(2025, 1, 7), "17:00")
    assert not is_occurrence(template, date(2025, 1, 8), "16:00")


def test_describe_rule():
    assert describe_rule(make_template()) == "Every Tue, Thu at 16:00"


def test_merge_uses_template_defaults_for_virtual_occurrences():
    slots = merge_virtual_slots([make_template()], [], {}, MONDAY, 14)

    assert len(slots) == 4
    assert all(s.slot_id is None and s.booked_count == 0 and s.capacity == 3 for s in slots)
    assert slots[0].remaining_seats == 3
    assert not slots[0].is_full


def test_merge_overlays_persisted_slot():
    persisted = make_slot(capacity=5)
    slots = merge_virtual_slots([make_template()], [persisted], {"slot-1": 5}, MONDAY, 14)

    first = slots[0]
    assert first.slot_id == "slot-1"
    assert first.capacity == 5
    assert first.booked_count == 5
    assert first.is_full
    assert first.remaining_seats == 0
    assert len(slots) == 4


def test_merge_hides_cancelled_occurrence():
    cancelled = make_slot(status="cancelled")
    slots = merge_virtual_slots([make_template()], [cancelled], {}, MONDAY, 14)

    assert [s.date_str for s in slots] == ["2025-01-09", "2025-01-14", "2025-01-16"]


def test_merge_skips_inactive_templates_and_sorts():
    early = make_template(id="tpl-2", title="Coding Club", recurrence_pattern={"days": [2], "time": "09:00"})
    inactive = make_template(id="tpl-3", is_active=False)
    slots = merge_virtual_slots([make_template(), early, inactive], [], {}, MONDAY, 7)

    assert [(s.date_str, s.start_time, s.template_id) for s in slots] == [
        ("2025-01-07", "09:00", "tpl-2"),
        ("2025-01-07", "16:00", "tpl-1"),
        ("2025-01-09", "16:00", "tpl-1"),
    ]


def test_merge_future_only_drops_past_dates():
    slots = merge_virtual_slots([make_template()], [], {}, MONDAY, 14, today=date(2025, 1, 10), future_only=True)

    assert [s.date_str for s in slots] == ["2025-01-14", "2025-01-16"]
