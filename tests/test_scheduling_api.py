"""Tests for the scheduling, opening hours, availability and slot hold endpoints."""

from uuid import uuid4

import pytest

CONTEXT = {"trace_id": "trace-admin", "actor_id": "ops", "tenant_id": "tenant-a"}


@pytest.mark.asyncio
async def test_opening_hours_check(client, clinic, local, upcoming):
    monday = upcoming(0)
    resp = await client.post("/api/v1/scheduling/opening-hours/check", json={
        "tenant_id": clinic.tenant_id,
        "clinic_id": str(clinic.clinic_id),
        "start": local(monday, "17:30").isoformat(),
        "end": local(monday, "18:30").isoformat(),
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["within_hours"] is False
    assert data["reason"] == "Appointment ends after closing hours (18:00)"
    assert data["source"] == "company_recurring"
    assert data["timezone_degraded"] is False


@pytest.mark.asyncio
async def test_availability_check(client, clinic, local, upcoming):
    monday = upcoming(0)
    resp = await client.post("/api/v1/scheduling/availability/check", json={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "at": local(monday, "17:00").isoformat(),
    })
    assert resp.status_code == 200
    assert resp.json()["available"] is False
    assert resp.json()["source"] == "recurring"


@pytest.mark.asyncio
async def test_available_slots(client, clinic, local, upcoming):
    monday = upcoming(0)
    resp = await client.get("/api/v1/scheduling/available-slots", params={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "start": local(monday, "09:00").isoformat(),
        "end": local(monday, "10:00").isoformat(),
        "slot_minutes": 20,
    })
    assert resp.status_code == 200
    assert [s["start"] for s in resp.json()] == [
        local(monday, "09:00").isoformat(),
        local(monday, "09:20").isoformat(),
        local(monday, "09:40").isoformat(),
    ]

    resp = await client.get("/api/v1/scheduling/available-slots", params={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "start": local(monday, "10:00").isoformat(),
        "end": local(monday, "09:00").isoformat(),
    })
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_opening_hours_administration(client, clinic, upcoming):
    resp = await client.put("/api/v1/opening-hours/day", json={
        "tenant_id": clinic.tenant_id,
        "clinic_id": str(clinic.clinic_id),
        "day_of_week": "wednesday",
        "start_time": "10:00",
        "end_time": "14:00",
        "control_plane_context": CONTEXT,
    })
    assert resp.status_code == 200
    assert resp.json()["day_of_week"] == "wednesday"

    holiday = upcoming(3)
    resp = await client.post("/api/v1/opening-hours/overrides", json={
        "tenant_id": clinic.tenant_id,
        "clinic_id": str(clinic.clinic_id),
        "override_date": holiday.isoformat(),
        "is_closed": True,
        "control_plane_context": CONTEXT,
    })
    assert resp.status_code == 201
    assert resp.json()["is_closed"] is True

    resp = await client.get("/api/v1/opening-hours/effective", params={
        "tenant_id": clinic.tenant_id, "clinic_id": str(clinic.clinic_id),
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["source"] == "clinic"
    assert [e["day_of_week"] for e in data["recurring"]] == ["wednesday"]
    assert [e["override_date"] for e in data["overrides"]] == [holiday.isoformat()]

    removal = {
        "tenant_id": clinic.tenant_id,
        "clinic_id": str(clinic.clinic_id),
        "override_date": holiday.isoformat(),
        "control_plane_context": CONTEXT,
    }
    resp = await client.request("DELETE", "/api/v1/opening-hours/overrides", json=removal)
    assert resp.status_code == 200
    resp = await client.request("DELETE", "/api/v1/opening-hours/overrides", json=removal)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_admin_writes_require_context(client, clinic):
    resp = await client.put("/api/v1/opening-hours/day", json={
        "tenant_id": clinic.tenant_id,
        "day_of_week": "monday",
        "start_time": "10:00",
        "end_time": "14:00",
    })
    assert resp.status_code == 403

    resp = await client.put("/api/v1/opening-hours/day", json={
        "tenant_id": clinic.tenant_id,
        "day_of_week": "monday",
        "start_time": "10:00",
        "end_time": "14:00",
        "control_plane_context": {**CONTEXT, "tenant_id": "tenant-b"},
    })
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason_code"] == "tenant_mismatch"


@pytest.mark.asyncio
async def test_effective_hours_for_unknown_clinic(client, clinic):
    resp = await client.get("/api/v1/opening-hours/effective", params={
        "tenant_id": clinic.tenant_id, "clinic_id": str(uuid4()),
    })
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_availability_administration(client, clinic, local, upcoming):
    resp = await client.put("/api/v1/availability/recurring", json={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "day_of_week": "saturday",
        "start_time": "09:00",
        "end_time": "12:00",
        "control_plane_context": CONTEXT,
    })
    assert resp.status_code == 200
    assert resp.json()["is_recurring"] is True

    day_off = upcoming(0)
    resp = await client.post("/api/v1/availability/overrides", json={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "override_date": day_off.isoformat(),
        "control_plane_context": CONTEXT,
    })
    assert resp.status_code == 201
    assert resp.json()["start_time"] == "00:00"
    assert resp.json()["end_time"] == "00:00"

    resp = await client.post("/api/v1/scheduling/availability/check", json={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "at": local(day_off, "10:00").isoformat(),
    })
    assert resp.json()["reason"] == "Override marks provider as unavailable"

    resp = await client.put("/api/v1/availability/recurring", json={
        "tenant_id": clinic.tenant_id,
        "provider_id": str(uuid4()),
        "day_of_week": "saturday",
        "start_time": "09:00",
        "end_time": "12:00",
        "control_plane_context": CONTEXT,
    })
    assert resp.status_code == 404


# ============================================================================
# SLOT HOLDS
# ============================================================================

def hold(clinic, session_id, start, end):
    return {
        "tenant_id": clinic.tenant_id,
        "session_id": session_id,
        "provider_id": str(clinic.provider_id),
        "start": start.isoformat(),
        "end": end.isoformat(),
    }


@pytest.mark.asyncio
async def test_slot_hold_lifecycle(client, clinic, local, upcoming):
    monday = upcoming(0)
    start, end = local(monday, "10:00"), local(monday, "10:30")

    resp = await client.post("/api/v1/slot-locks/", json=hold(clinic, "form-1", start, end))
    assert resp.status_code == 201
    assert len(resp.json()["keys"]) == 1

    resp = await client.post("/api/v1/slot-locks/", json=hold(clinic, "form-2", start, end))
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "slot_locked"

    check_params = {
        "tenant_id": clinic.tenant_id,
        "provider_id": str(clinic.provider_id),
        "start": start.isoformat(),
        "end": end.isoformat(),
        "session_id": "form-2",
    }
    resp = await client.get("/api/v1/slot-locks/check", params=check_params)
    assert resp.json()["is_locked"] is True

    resp = await client.post("/api/v1/slot-locks/extend", params={"tenant_id": clinic.tenant_id, "session_id": "form-1"})
    assert resp.status_code == 200

    resp = await client.delete("/api/v1/slot-locks/", params={"tenant_id": clinic.tenant_id, "session_id": "form-1"})
    assert resp.json() == {"released": 1}

    resp = await client.get("/api/v1/slot-locks/check", params=check_params)
    assert resp.json()["is_locked"] is False

    resp = await client.post("/api/v1/slot-locks/extend", params={"tenant_id": clinic.tenant_id, "session_id": "form-1"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_slot_hold_needs_a_calendar(client, clinic, local, upcoming):
    monday = upcoming(0)
    body = hold(clinic, "form-1", local(monday, "10:00"), local(monday, "10:30"))
    del body["provider_id"]
    resp = await client.post("/api/v1/slot-locks/", json=body)
    assert resp.status_code == 422
