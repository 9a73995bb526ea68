"""Tests for the availability store."""

import uuid
from datetime import datetime, time

import pytest

from slotsync.core.errors import NotConfigured, NotFound, ValidationFailed
from slotsync.db.models import AppointmentType, ProviderAvailability, WeeklyHours
from slotsync.schemas.availability import (
    AppointmentTypeInput,
    AvailabilityUpdate,
    BlockedIntervalCreate,
    PolicyUpdate,
    TimeRestrictionInput,
    WeeklyHoursInput,
)
from slotsync.services import availability_service
from tests.helpers import MONDAY, at


def test_initialize_creates_default_template(db, provider):
    rules = availability_service.initialize_rules(db, provider.id, "Europe/Berlin")

    assert rules.timezone == "Europe/Berlin"
    assert [h.day_of_week for h in rules.weekly_hours] == [1, 2, 3, 4, 5]
    assert all(h.start_time == time(9, 0) and h.end_time == time(17, 0) for h in rules.weekly_hours)
    assert [t.name for t in rules.appointment_types] == [
        "Consultation", "Cleaning", "Root Canal", "Filling"
    ]
    assert rules.buffer_time_after == 10
    assert rules.min_lead_time_hours == 1
    assert rules.max_advance_booking_days == 90
    assert rules.weekend_fallback_enabled is True


def test_initialize_is_idempotent(db, provider):
    first = availability_service.initialize_rules(db, provider.id)
    availability_service.upsert_rules(
        db, provider.id, AvailabilityUpdate(policy=PolicyUpdate(min_lead_time_hours=4))
    )

    second = availability_service.initialize_rules(db, provider.id, "Asia/Tokyo")

    assert second.id == first.id
    assert second.timezone == "UTC"
    assert second.min_lead_time_hours == 4
    assert db.query(ProviderAvailability).count() == 1
    assert db.query(WeeklyHours).count() == 5


def test_get_rules_requires_initialization(db, provider):
    assert availability_service.get_rules_or_none(db, provider.id) is None
    with pytest.raises(NotConfigured):
        availability_service.get_rules(db, provider.id)


def test_upsert_creates_defaults_when_missing(db, provider):
    rules = availability_service.upsert_rules(
        db, provider.id, AvailabilityUpdate(policy=PolicyUpdate(max_appointments_per_day=8))
    )

    assert rules.max_appointments_per_day == 8
    assert len(rules.appointment_types) == 4


def test_upsert_replaces_lists_and_merges_policy(db, provider):
    availability_service.initialize_rules(db, provider.id)

    rules = availability_service.upsert_rules(
        db,
        provider.id,
        AvailabilityUpdate(
            weekly_hours=[
                WeeklyHoursInput(day_of_week=2, start_time="10:00", end_time="14:00"),
                WeeklyHoursInput(day_of_week=4, start_time="12:00", end_time="18:00", enabled=False),
            ],
            appointment_types=[
                AppointmentTypeInput(
                    name="Checkup",
                    duration_minutes=20,
                    time_restrictions=[TimeRestrictionInput(start_time="10:00", end_time="12:00")],
                )
            ],
            policy=PolicyUpdate(min_cancellation_notice_hours=48),
        ),
    )

    assert [(h.day_of_week, h.enabled) for h in rules.weekly_hours] == [(2, True), (4, False)]
    assert [t.name for t in rules.appointment_types] == ["Checkup"]
    assert rules.appointment_types[0].time_restrictions == [
        {"start_time": "10:00", "end_time": "12:00"}
    ]
    assert rules.min_cancellation_notice_hours == 48
    # Untouched policy fields keep their values
    assert rules.min_reschedule_notice_hours == 24
    assert rules.buffer_time_after == 10
    assert db.query(AppointmentType).count() == 1


def test_daily_cap_can_be_cleared(db, provider):
    availability_service.upsert_rules(
        db, provider.id, AvailabilityUpdate(policy=PolicyUpdate(max_appointments_per_day=3))
    )

    rules = availability_service.upsert_rules(
        db, provider.id, AvailabilityUpdate(policy=PolicyUpdate(max_appointments_per_day=None))
    )

    assert rules.max_appointments_per_day is None


@pytest.mark.parametrize(
    "update",
    [
        AvailabilityUpdate(
            weekly_hours=[WeeklyHoursInput(day_of_week=1, start_time="17:00", end_time="09:00")]
        ),
        AvailabilityUpdate(
            appointment_types=[
                AppointmentTypeInput(name="Consultation"),
                AppointmentTypeInput(name="consultation "),
            ]
        ),
        AvailabilityUpdate(
            appointment_types=[
                AppointmentTypeInput(
                    name="Late",
                    time_restrictions=[TimeRestrictionInput(start_time="15:00", end_time="15:00")],
                )
            ]
        ),
        AvailabilityUpdate(timezone="Mars/Olympus_Mons"),
    ],
    ids=["inverted-hours", "duplicate-type", "empty-restriction", "unknown-timezone"],
)
def test_invalid_updates_change_nothing(db, provider, update):
    availability_service.initialize_rules(db, provider.id)

    with pytest.raises(ValidationFailed):
        availability_service.upsert_rules(db, provider.id, update)

    rules = availability_service.get_rules(db, provider.id)
    assert len(rules.weekly_hours) == 5
    assert len(rules.appointment_types) == 4
    assert rules.timezone == "UTC"


def test_initialize_rejects_unknown_timezone(db, provider):
    with pytest.raises(ValidationFailed):
        availability_service.initialize_rules(db, provider.id, "Nowhere/City")


def test_appointment_type_lookup(db, provider):
    rules = availability_service.initialize_rules(db, provider.id)

    assert availability_service.get_appointment_type(rules).name == "Consultation"
    assert availability_service.get_appointment_type(rules, name=" root canal").duration_minutes == 90
    with pytest.raises(NotFound):
        availability_service.get_appointment_type(rules, name="Whitening")
    with pytest.raises(NotFound):
        availability_service.get_appointment_type(rules, type_id=uuid.uuid4())


def test_blocked_interval_lifecycle(db, provider):
    availability_service.initialize_rules(db, provider.id)

    first = availability_service.add_blocked_interval(
        db,
        provider.id,
        BlockedIntervalCreate(start_time=at(MONDAY, 12), end_time=at(MONDAY, 13), reason="Lunch"),
    )
    availability_service.add_blocked_interval(
        db,
        provider.id,
        BlockedIntervalCreate(start_time=at(MONDAY, 15), end_time=at(MONDAY, 16)),
    )
    assert len(availability_service.get_rules(db, provider.id).blocked_intervals) == 2

    availability_service.remove_blocked_interval(db, provider.id, first.id)
    rules = availability_service.get_rules(db, provider.id)
    assert [b.start_time for b in rules.blocked_intervals] == [at(MONDAY, 15)]

    assert availability_service.clear_blocked_intervals(db, provider.id) == 1
    assert availability_service.get_rules(db, provider.id).blocked_intervals == []


def test_blocked_interval_validation(db, provider):
    availability_service.initialize_rules(db, provider.id)

    with pytest.raises(ValidationFailed):
        availability_service.add_blocked_interval(
            db,
            provider.id,
            BlockedIntervalCreate(start_time=at(MONDAY, 13), end_time=at(MONDAY, 12)),
        )
    with pytest.raises(ValidationFailed):
        availability_service.add_blocked_interval(
            db,
            provider.id,
            BlockedIntervalCreate(
                start_time=datetime(2030, 1, 7, 12), end_time=datetime(2030, 1, 7, 13)
            ),
        )


def test_removing_another_providers_interval_is_not_found(db, provider):
    availability_service.initialize_rules(db, provider.id)
    other = uuid.uuid4()
    availability_service.initialize_rules(db, other)
    blocked = availability_service.add_blocked_interval(
        db,
        other,
        BlockedIntervalCreate(start_time=at(MONDAY, 12), end_time=at(MONDAY, 13)),
    )

    with pytest.raises(NotFound):
        availability_service.remove_blocked_interval(db, provider.id, blocked.id)


def test_clear_without_rules_removes_nothing(db, provider):
    assert availability_service.clear_blocked_intervals(db, provider.id) == 0
