"""HTTP-level tests for availability, slot, appointment and calendar endpoints."""

import uuid

import pytest
from httpx import AsyncClient

from slotsync.core.deps import get_calendar_factory
from slotsync.core.errors import ProviderUnavailable
from slotsync.core.security import create_session_token
from slotsync.db.enums import Role
from slotsync.db.models import Appointment, CalendarCredential, WebhookChannel
from slotsync.main import app
from slotsync.services import slot_service
from tests.helpers import at, configure_availability, upcoming_monday


BOOKING = {"patient_name": "Ada Lovelace", "patient_email": "ada@example.com"}


@pytest.fixture
def monday():
    return upcoming_monday()


@pytest.fixture
def open_slots(db, provider, monday):
    configure_availability(db, provider.id)
    return slot_service.generate_slots(db, provider.id, monday.date(), monday.date())


# =============================================================================
# Authentication
# =============================================================================

class TestAuthentication:
    async def test_writes_require_a_session(self, client: AsyncClient):
        response = await client.post("/availability/initialize")
        assert response.status_code == 401

    async def test_invalid_token_rejected(self, client):
        response = await client.get("/appointments", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_patients_cannot_manage_availability(self, client, patient_auth):
        response = await client.post("/availability/initialize", headers=patient_auth.headers)
        assert response.status_code == 403

    async def test_session_cookie_accepted(self, provider_client):
        response = await provider_client.post("/availability/initialize")
        assert response.status_code == 200


# =============================================================================
# Availability
# =============================================================================

class TestAvailability:
    async def test_initialize_then_read_publicly(self, client, provider_auth):
        created = await client.post(
            "/availability/initialize",
            json={"timezone": "America/Chicago"},
            headers=provider_auth.headers,
        )
        assert created.status_code == 200

        response = await client.get(f"/availability/{provider_auth.principal.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["timezone"] == "America/Chicago"
        assert len(data["weekly_hours"]) == 5
        assert {t["name"] for t in data["appointment_types"]} >= {"Consultation", "Cleaning"}
        assert data["policy"]["min_lead_time_hours"] == 1

    async def test_unconfigured_provider_is_404(self, client):
        response = await client.get(f"/availability/{uuid.uuid4()}")
        assert response.status_code == 404

    async def test_patch_validates_windows(self, provider_client):
        response = await provider_client.patch(
            "/availability",
            json={"weekly_hours": [{"day_of_week": 1, "start_time": "17:00", "end_time": "09:00"}]},
        )
        assert response.status_code == 422

    async def test_patch_rejects_malformed_times(self, provider_client):
        response = await provider_client.patch(
            "/availability",
            json={"weekly_hours": [{"day_of_week": 1, "start_time": "9am", "end_time": "17:00"}]},
        )
        assert response.status_code == 422

    async def test_patch_merges_policy(self, provider_client):
        response = await provider_client.patch(
            "/availability", json={"policy": {"min_lead_time_hours": 12}}
        )

        assert response.status_code == 200
        policy = response.json()["policy"]
        assert policy["min_lead_time_hours"] == 12
        assert policy["max_advance_booking_days"] == 90

    async def test_blocked_interval_endpoints(self, provider_client, monday):
        await provider_client.post("/availability/initialize")

        created = await provider_client.post(
            "/availability/blocked-intervals",
            json={
                "start_time": at(monday, 12).isoformat(),
                "end_time": at(monday, 13).isoformat(),
                "reason": "Lunch",
            },
        )
        assert created.status_code == 201
        blocked_id = created.json()["id"]

        deleted = await provider_client.delete(f"/availability/blocked-intervals/{blocked_id}")
        assert deleted.status_code == 204
        again = await provider_client.delete(f"/availability/blocked-intervals/{blocked_id}")
        assert again.status_code == 404

        cleared = await provider_client.delete("/availability/blocked-intervals")
        assert cleared.json() == {"removed": 0}


# =============================================================================
# Slots
# =============================================================================

class TestSlots:
    async def test_generate_is_idempotent(self, db, provider_client, provider, monday):
        configure_availability(db, provider.id)
        body = {"start_date": monday.date().isoformat(), "end_date": monday.date().isoformat()}

        first = await provider_client.post("/slots/generate", json=body)
        second = await provider_client.post("/slots/generate", json=body)

        assert first.status_code == 201
        assert first.json()["created"] == 16
        assert first.json()["slots"][0]["start_time"].startswith(f"{monday.date().isoformat()}T09:00:00")
        assert second.json()["created"] == 0

    async def test_generate_without_rules_is_404(self, provider_client, monday):
        response = await provider_client.post(
            "/slots/generate",
            json={"start_date": monday.date().isoformat(), "end_date": monday.date().isoformat()},
        )
        assert response.status_code == 404

    async def test_available_listing_is_public(self, client, provider, open_slots, monday):
        response = await client.get(
            "/slots/available",
            params={"provider_id": str(provider.id), "start": at(monday, 12).isoformat()},
        )

        assert response.status_code == 200
        starts = [s["start_time"] for s in response.json()["slots"]]
        assert len(starts) == 10
        assert starts == sorted(starts)

    async def test_manual_slot_overlap_is_conflict(self, provider_client, open_slots, monday):
        response = await provider_client.post(
            "/slots",
            json={
                "start_time": at(monday, 9, 15).isoformat(),
                "end_time": at(monday, 9, 45).isoformat(),
            },
        )
        assert response.status_code == 409

    async def test_manual_slot_after_hours(self, provider_client, open_slots, monday):
        response = await provider_client.post(
            "/slots",
            json={
                "start_time": at(monday, 18).isoformat(),
                "end_time": at(monday, 18, 30).isoformat(),
                "appointment_type_name": "Consultation",
            },
        )

        assert response.status_code == 201
        assert response.json()["source"] == "manual"

    async def test_day_summary(self, provider_client, open_slots, monday):
        response = await provider_client.get("/slots/today", params={"day": monday.date().isoformat()})

        assert response.status_code == 200
        assert response.json()["total_slots"] == 16
        assert response.json()["has_slots"] is True

    async def test_clear_calendar(self, db, client, provider_auth, patient_auth, open_slots, fake_calendar):
        booked = await client.post(
            "/appointments", json={**BOOKING, "slot_id": str(open_slots[0].id)}, headers=patient_auth.headers
        )
        assert booked.status_code == 201

        response = await client.delete("/slots", headers=provider_auth.headers)

        assert response.status_code == 200
        assert response.json() == {
            "slots_deleted": 16,
            "appointments_deleted": 1,
            "blocked_intervals_deleted": 0,
            "calendar_events_deleted": 1,
            "calendar_events_failed": 0,
        }
        assert fake_calendar.deleted == ["evt-1"]


# =============================================================================
# Appointments
# =============================================================================

class TestAppointments:
    async def test_public_booking(self, client, open_slots, fake_calendar):
        response = await client.post(
            "/appointments", json={**BOOKING, "slot_id": str(open_slots[0].id)}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "scheduled"
        assert data["client_id"] is None
        assert data["calendar_sync_status"] == "synced"
        assert data["external_event_id"] == "evt-1"
        assert len(fake_calendar.created) == 1

    async def test_double_booking_is_conflict(self, client, open_slots):
        body = {**BOOKING, "slot_id": str(open_slots[0].id)}

        first = await client.post("/appointments", json=body)
        second = await client.post("/appointments", json=body)

        assert first.status_code == 201
        assert second.status_code == 409

    async def test_unknown_slot_is_conflict(self, client, open_slots):
        response = await client.post("/appointments", json={**BOOKING, "slot_id": str(uuid.uuid4())})
        assert response.status_code == 409

    async def test_invalid_email_rejected(self, client, open_slots):
        response = await client.post(
            "/appointments",
            json={"patient_name": "Ada", "patient_email": "not-an-email", "slot_id": str(open_slots[0].id)},
        )
        assert response.status_code == 422

    async def test_provider_cannot_book_for_another_provider(self, client, open_slots):
        other = create_session_token(uuid.uuid4(), Role.PROVIDER.value)
        response = await client.post(
            "/appointments",
            json={**BOOKING, "slot_id": str(open_slots[0].id)},
            headers={"Authorization": f"Bearer {other}"},
        )
        assert response.status_code == 403

    async def test_calendar_outage_still_books(self, client, open_slots, fake_calendar):
        fake_calendar.fail_with = ProviderUnavailable("Google Calendar returned 503", status_code=503)

        response = await client.post(
            "/appointments", json={**BOOKING, "slot_id": str(open_slots[0].id)}
        )

        assert response.status_code == 201
        assert response.json()["calendar_sync_status"] == "pending"

    async def test_listing_and_detail_are_scoped(self, client, open_slots, provider_auth, patient_auth):
        mine = await client.post(
            "/appointments",
            json={**BOOKING, "slot_id": str(open_slots[0].id)},
            headers=patient_auth.headers,
        )
        await client.post("/appointments", json={**BOOKING, "slot_id": str(open_slots[1].id)})
        appointment_id = mine.json()["id"]

        as_patient = await client.get("/appointments", headers=patient_auth.headers)
        as_provider = await client.get("/appointments", headers=provider_auth.headers)
        detail = await client.get(f"/appointments/{appointment_id}", headers=patient_auth.headers)

        stranger_token = create_session_token(uuid.uuid4(), Role.PATIENT.value)
        hidden = await client.get(
            f"/appointments/{appointment_id}", headers={"Authorization": f"Bearer {stranger_token}"}
        )

        assert as_patient.json()["total"] == 1
        assert as_provider.json()["total"] == 2
        assert detail.status_code == 200
        assert detail.json()["history"][0]["action"] == "created"
        assert detail.json()["slot"]["is_available"] is False
        assert hidden.status_code == 404

    async def test_patient_cancels_own_appointment(self, client, db, open_slots, patient_auth):
        booked = await client.post(
            "/appointments",
            json={**BOOKING, "slot_id": str(open_slots[0].id)},
            headers=patient_auth.headers,
        )

        response = await client.post(
            f"/appointments/{booked.json()['id']}/cancel",
            json={"reason": "Feeling better"},
            headers=patient_auth.headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancelled_by"] == "patient"
        again = await client.post(
            f"/appointments/{booked.json()['id']}/cancel", headers=patient_auth.headers
        )
        assert again.status_code == 409

    async def test_reschedule_endpoint(self, client, db, open_slots, patient_auth, fake_calendar):
        booked = await client.post(
            "/appointments",
            json={**BOOKING, "slot_id": str(open_slots[0].id)},
            headers=patient_auth.headers,
        )

        response = await client.post(
            f"/appointments/{booked.json()['id']}/reschedule",
            json={"new_slot_id": str(open_slots[3].id)},
            headers=patient_auth.headers,
        )

        assert response.status_code == 200
        assert response.json()["slot_id"] == str(open_slots[3].id)
        assert response.json()["rescheduled_from_id"] == booked.json()["id"]
        old = db.get(Appointment, uuid.UUID(booked.json()["id"]))
        db.refresh(old)
        assert old.status == "rescheduled"

    async def test_reschedule_across_providers_is_conflict(self, client, db, open_slots, patient_auth, monday):
        other_provider = uuid.uuid4()
        configure_availability(db, other_provider)
        foreign = slot_service.generate_slots(db, other_provider, monday.date(), monday.date())[0]
        booked = await client.post(
            "/appointments",
            json={**BOOKING, "slot_id": str(open_slots[0].id)},
            headers=patient_auth.headers,
        )

        response = await client.post(
            f"/appointments/{booked.json()['id']}/reschedule",
            json={"new_slot_id": str(foreign.id)},
            headers=patient_auth.headers,
        )

        assert response.status_code == 409

    async def test_complete_requires_provider(self, client, open_slots, provider_auth, patient_auth):
        booked = await client.post(
            "/appointments",
            json={**BOOKING, "slot_id": str(open_slots[0].id)},
            headers=patient_auth.headers,
        )
        url = f"/appointments/{booked.json()['id']}/complete"

        as_patient = await client.post(url, headers=patient_auth.headers)
        as_provider = await client.post(url, headers=provider_auth.headers)

        assert as_patient.status_code == 403
        assert as_provider.status_code == 200
        assert as_provider.json()["status"] == "completed"


# =============================================================================
# Calendar connection
# =============================================================================

class TestCalendar:
    async def test_connect_registers_channel_and_backfills(self, client, db, open_slots, provider_auth, fake_calendar):
        fake_calendar.fail_with = ProviderUnavailable("Google Calendar returned 503", status_code=503)
        booked = await client.post("/appointments", json={**BOOKING, "slot_id": str(open_slots[0].id)})
        assert booked.json()["calendar_sync_status"] == "pending"
        fake_calendar.fail_with = None

        response = await client.post(
            "/calendar/connect",
            json={"refresh_token": "refresh-abc", "account_email": "dr@example.com"},
            headers=provider_auth.headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["connected"] is True
        assert data["channel"]["calendar_id"] == "primary"
        assert fake_calendar.watched == [data["channel"]["channel_id"]]
        assert db.query(CalendarCredential).count() == 1
        appointment = db.get(Appointment, uuid.UUID(booked.json()["id"]))
        db.refresh(appointment)
        assert appointment.calendar_sync_status == "synced"
        assert appointment.external_event_id == "evt-1"

    async def test_webhook_lifecycle_endpoints(self, client, db, provider_auth, fake_calendar):
        headers = provider_auth.headers

        setup = await client.post("/calendar/webhook/setup", headers=headers)
        renew = await client.post("/calendar/webhook/renew", headers=headers)
        health = await client.get("/calendar/webhook/health", headers=headers)
        stopped = await client.delete("/calendar/webhook", headers=headers)
        missing = await client.delete("/calendar/webhook", headers=headers)

        assert setup.status_code == 200
        assert renew.json()["renewed"] is False
        assert health.json()["total_channels"] == 1
        assert stopped.status_code == 204
        assert missing.status_code == 404
        assert db.query(WebhookChannel).count() == 0

    async def test_watch_failure_is_bad_gateway(self, client, provider_auth, failing_calendar):
        app.dependency_overrides[get_calendar_factory] = lambda: (lambda _db, _pid: failing_calendar)

        response = await client.post("/calendar/webhook/setup", headers=provider_auth.headers)

        assert response.status_code == 502
