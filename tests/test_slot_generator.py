"""Tests for slot generation: weekly template to bookable intervals."""

import random
from datetime import date, datetime, timedelta, timezone

import pytest

from slotsync.core.errors import NotConfigured, ValidationFailed
from slotsync.db.models import Slot
from slotsync.schemas.availability import (
    AppointmentTypeInput,
    AvailabilityUpdate,
    BlockedIntervalCreate,
    WeeklyHoursInput,
)
from slotsync.services import availability_service, slot_service
from tests.helpers import MONDAY, WEEK_BEFORE, at, configure_availability


MONDAY_DATE = MONDAY.date()


def _starts(slots) -> list[datetime]:
    return [s.start_time for s in slots]


def test_monday_template_yields_sixteen_half_hour_slots(db, provider):
    configure_availability(db, provider.id)

    slots = slot_service.generate_slots(
        db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE
    )

    assert len(slots) == 16
    assert slots[0].start_time == at(MONDAY, 9)
    assert slots[-1].start_time == at(MONDAY, 16, 30)
    assert all(s.end_time - s.start_time == timedelta(minutes=30) for s in slots)
    assert all(s.is_available for s in slots)


def test_today_starts_after_lead_time_rounded_to_duration(db, provider):
    configure_availability(db, provider.id, min_lead_time_hours=1)
    now = at(MONDAY, 14, 17)

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=now)

    assert _starts(slots) == [at(MONDAY, 15, 30), at(MONDAY, 16), at(MONDAY, 16, 30)]


def test_today_before_template_start_keeps_template_start(db, provider):
    configure_availability(db, provider.id, min_lead_time_hours=1)
    now = at(MONDAY, 8, 30)

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=now)

    assert slots[0].start_time == at(MONDAY, 9)
    assert len(slots) == 16


def test_regenerating_same_range_creates_nothing(db, provider):
    configure_availability(db, provider.id)
    first = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    second = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    assert len(first) == 16
    assert second == []
    assert db.query(Slot).filter(Slot.provider_id == provider.id).count() == 16


def test_buffers_widen_the_step_between_slots(db, provider):
    configure_availability(db, provider.id, buffer_before=10, buffer_after=5)

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    # 30 min + 15 min of buffers: 09:00, 09:45, ... 16:30
    assert slots[0].start_time == at(MONDAY, 9)
    assert slots[1].start_time == at(MONDAY, 9, 45)
    assert len(slots) == 11


def test_policy_buffers_do_not_change_the_step(db, provider):
    # Default rules carry buffer_time_after=10; only the type's buffers count
    availability_service.initialize_rules(db, provider.id, "UTC")
    availability_service.upsert_rules(
        db,
        provider.id,
        AvailabilityUpdate(
            appointment_types=[
                AppointmentTypeInput(
                    name="Consultation", duration_minutes=30, buffer_before=0, buffer_after=0
                )
            ]
        ),
    )

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    assert len(slots) == 16
    assert _starts(slots)[:3] == [at(MONDAY, 9), at(MONDAY, 9, 30), at(MONDAY, 10)]


def test_default_type_steps_by_its_own_buffers(db, provider):
    availability_service.initialize_rules(db, provider.id, "UTC")

    slots = slot_service.generate_slots(
        db, provider.id, MONDAY_DATE, MONDAY_DATE, appointment_type_name="Consultation", now=WEEK_BEFORE
    )

    # 30 min + 10 before + 5 after
    assert slots[1].start_time - slots[0].start_time == timedelta(minutes=45)


def test_past_days_are_skipped(db, provider):
    configure_availability(db, provider.id)
    now = MONDAY + timedelta(days=2)  # Wednesday

    slots = slot_service.generate_slots(
        db, provider.id, MONDAY_DATE, MONDAY_DATE + timedelta(days=3), now=now
    )

    assert slots
    assert min(s.start_time for s in slots).date() == (MONDAY + timedelta(days=2)).date()


@pytest.mark.parametrize(
    "blocked_start,blocked_end,missing",
    [
        ((12, 0), (13, 0), [(12, 0), (12, 30)]),
        ((9, 10), (9, 20), [(9, 0)]),
        ((16, 45), (18, 0), [(16, 30)]),
    ],
)
def test_blocked_intervals_remove_overlapping_candidates(db, provider, blocked_start, blocked_end, missing):
    configure_availability(db, provider.id)
    availability_service.add_blocked_interval(
        db,
        provider.id,
        BlockedIntervalCreate(
            start_time=at(MONDAY, *blocked_start),
            end_time=at(MONDAY, *blocked_end),
            reason="Lunch",
        ),
    )

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    starts = _starts(slots)
    assert len(slots) == 16 - len(missing)
    for hour, minute in missing:
        assert at(MONDAY, hour, minute) not in starts
    for slot in slots:
        assert not (slot.start_time < at(MONDAY, *blocked_end) and slot.end_time > at(MONDAY, *blocked_start))


def test_recurring_blocked_interval_repeats_weekly(db, provider):
    configure_availability(db, provider.id)
    availability_service.add_blocked_interval(
        db,
        provider.id,
        BlockedIntervalCreate(
            start_time=at(MONDAY, 12),
            end_time=at(MONDAY, 13),
            reason="Weekly staff meeting",
            is_recurring=True,
        ),
    )
    next_monday = MONDAY + timedelta(days=7)

    slots = slot_service.generate_slots(
        db, provider.id, next_monday.date(), next_monday.date(), now=WEEK_BEFORE
    )

    starts = _starts(slots)
    assert at(next_monday, 12) not in starts
    assert at(next_monday, 12, 30) not in starts
    assert len(slots) == 14


def test_generated_slots_never_overlap_existing_ones(db, provider):
    configure_availability(db, provider.id)
    slot_service.create_manual_slot(db, provider.id, at(MONDAY, 10, 15), at(MONDAY, 10, 45))

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    starts = _starts(slots)
    assert at(MONDAY, 10) not in starts
    assert at(MONDAY, 10, 30) not in starts
    ordered = sorted(
        db.query(Slot).filter(Slot.provider_id == provider.id).all(), key=lambda s: s.start_time
    )
    for earlier, later in zip(ordered, ordered[1:]):
        assert earlier.end_time <= later.start_time


def test_weekends_skipped_unless_requested(db, provider):
    configure_availability(db, provider.id)
    saturday = MONDAY - timedelta(days=2)
    now = saturday - timedelta(days=7)

    skipped = slot_service.generate_slots(db, provider.id, saturday.date(), saturday.date(), now=now)
    included = slot_service.generate_slots(
        db, provider.id, saturday.date(), saturday.date(), include_weekends=True, now=now
    )

    assert skipped == []
    # Saturday has no hours of its own and borrows the first enabled entry (09:00-17:00)
    assert len(included) == 16
    assert included[0].start_time == at(saturday, 9)


def test_weekend_fallback_can_be_disabled(db, provider):
    configure_availability(db, provider.id, weekend_fallback_enabled=False)
    saturday = MONDAY - timedelta(days=2)

    slots = slot_service.generate_slots(
        db, provider.id, saturday.date(), saturday.date(), include_weekends=True,
        now=saturday - timedelta(days=7),
    )

    assert slots == []


def test_time_restrictions_limit_windows(db, provider):
    configure_availability(db, provider.id, time_restrictions=[("09:00", "10:00"), ("14:00", "15:00")])

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    assert _starts(slots) == [
        at(MONDAY, 9), at(MONDAY, 9, 30), at(MONDAY, 14), at(MONDAY, 14, 30)
    ]


def test_wall_clock_hours_follow_provider_timezone(db, provider):
    configure_availability(db, provider.id, timezone_name="America/New_York")

    slots = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    # 09:00 EST is 14:00 UTC in January
    assert slots[0].start_time == at(MONDAY, 14)
    assert len(slots) == 16


def test_custom_weekly_hours(db, provider):
    configure_availability(
        db,
        provider.id,
        weekly_hours=[WeeklyHoursInput(day_of_week=1, start_time="08:00", end_time="10:00")],
    )

    monday = slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)
    tuesday = slot_service.generate_slots(
        db, provider.id, MONDAY_DATE + timedelta(days=1), MONDAY_DATE + timedelta(days=1), now=WEEK_BEFORE
    )

    assert len(monday) == 4
    assert monday[0].start_time == at(MONDAY, 8)
    assert tuesday == []


def test_generation_requires_rules(db, provider):
    with pytest.raises(NotConfigured):
        slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)


def test_generation_rejects_inverted_range(db, provider):
    configure_availability(db, provider.id)
    with pytest.raises(ValidationFailed):
        slot_service.generate_slots(
            db, provider.id, MONDAY_DATE, MONDAY_DATE - timedelta(days=1), now=WEEK_BEFORE
        )


def test_day_summary_counts_slots(db, provider):
    configure_availability(db, provider.id)
    slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    summary = slot_service.get_day_summary(db, provider.id, MONDAY_DATE)
    empty = slot_service.get_day_summary(db, provider.id, date(2030, 1, 8))

    assert summary["has_slots"] is True
    assert summary["total_slots"] == 16
    assert summary["available_slots"] == 16
    assert empty["has_slots"] is False


def test_available_listing_respects_lead_and_advance_window(db, provider):
    configure_availability(db, provider.id, max_advance_booking_days=30)
    slot_service.generate_slots(db, provider.id, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE)

    within = slot_service.list_available_slots(db, provider.id, now=at(MONDAY, 11, 30))
    too_far = slot_service.list_available_slots(db, provider.id, now=MONDAY - timedelta(days=40))

    # Lead time 1h from 11:30: first bookable slot is 12:30
    assert within[0].start_time == at(MONDAY, 12, 30)
    assert too_far == []


def test_candidate_computation_is_pure(db, provider):
    rules = configure_availability(db, provider.id)
    appointment_type = availability_service.get_appointment_type(rules)

    candidates = slot_service.compute_candidate_slots(
        rules, appointment_type, MONDAY_DATE, MONDAY_DATE, now=WEEK_BEFORE
    )

    assert len(candidates) == 16
    assert candidates[0] == slot_service.TimeSlot(at(MONDAY, 9), at(MONDAY, 9, 30))
    assert db.query(Slot).count() == 0
    assert candidates[0].start.tzinfo == timezone.utc


def _random_window(rng: random.Random, earliest: int, latest: int) -> tuple[str, str]:
    start = rng.randrange(earliest * 4, (latest - 1) * 4) * 15
    end = rng.randrange(start + 15, latest * 60 + 1, 15)
    return f"{start // 60:02d}:{start % 60:02d}", f"{end // 60:02d}:{end % 60:02d}"


@pytest.mark.parametrize("seed", range(12))
def test_random_rules_never_produce_overlaps(db, provider, seed):
    rng = random.Random(seed)
    weekly_hours = []
    for day_of_week in range(1, 6):
        if rng.random() < 0.8:
            start, end = _random_window(rng, 6, 20)
            weekly_hours.append(WeeklyHoursInput(day_of_week=day_of_week, start_time=start, end_time=end))
    restrictions = [_random_window(rng, 0, 23) for _ in range(rng.randrange(0, 3))]
    configure_availability(
        db,
        provider.id,
        duration=rng.choice([15, 20, 30, 45, 60]),
        buffer_before=rng.choice([0, 5, 10]),
        buffer_after=rng.choice([0, 5, 15]),
        weekly_hours=weekly_hours or None,
        time_restrictions=restrictions,
    )
    blocks = []
    for _ in range(rng.randrange(0, 4)):
        day = MONDAY + timedelta(days=rng.randrange(0, 5))
        start = at(day, rng.randrange(6, 20), rng.choice([0, 10, 20, 30, 40, 50]))
        end = start + timedelta(minutes=rng.randrange(10, 180))
        availability_service.add_blocked_interval(
            db, provider.id, BlockedIntervalCreate(start_time=start, end_time=end, reason="Random")
        )
        blocks.append((start, end))
    slot_service.create_manual_slot(db, provider.id, at(MONDAY, 11, 5), at(MONDAY, 11, 35))

    slots = slot_service.generate_slots(
        db, provider.id, MONDAY_DATE, MONDAY_DATE + timedelta(days=6), now=WEEK_BEFORE
    )

    stored = sorted(
        db.query(Slot).filter(Slot.provider_id == provider.id).all(), key=lambda s: s.start_time
    )
    for earlier, later in zip(stored, stored[1:]):
        assert earlier.end_time <= later.start_time
    hours_by_day = {(h.day_of_week, h.start_time, h.end_time) for h in weekly_hours}
    for slot in slots:
        for start, end in blocks:
            assert not (slot.start_time < end and slot.end_time > start)
        assert slot.start_time.weekday() < 5
        if weekly_hours:
            dow = (slot.start_time.weekday() + 1) % 7
            assert any(
                day == dow
                and slot.start_time.strftime("%H:%M") >= start
                and slot.end_time.strftime("%H:%M") <= end
                for day, start, end in hours_by_day
            )
