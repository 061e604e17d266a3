"""
tests/test_bookings.py
Tests for the resident booking lifecycle:
create → reschedule → cancel, slot availability and access rules.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.lifecycle import check_in_otp_expiry
from shared.models.models import Booking, BookingStatus, Notification, Service, User
from shared.utils.helpers import as_utc, today_utc
from tests.conftest import TEST_OTP, auth_headers, booking_payload, future_date, make_booking


# ── Creation ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(client: AsyncClient, resident: User, service: Service, db: AsyncSession):
    """Price is frozen from the service and the booking starts pending and unassigned."""
    response = await client.post("/bookings", headers=auth_headers(resident), json=booking_payload(service))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == BookingStatus.PENDING.value
    assert data["sevak_id"] is None
    assert data["booking_number"].startswith("BK")
    assert data["total_amount"] == 500.0
    assert data["estimated_duration"] == 60
    assert len(data["check_in_otp"]) == 6
    assert [t["status"] for t in data["timeline"]] == ["pending"]

    await db.refresh(service)
    assert service.booking_count == 1

    notes = (await db.execute(select(Notification).where(Notification.user_id == resident.id))).scalars().all()
    assert [n.title for n in notes] == ["Booking Confirmed"]


@pytest.mark.asyncio
async def test_create_booking_past_date_rejected(client: AsyncClient, resident: User, service: Service):
    """Booking in the past must be rejected with 422."""
    payload = booking_payload(service, scheduled_date=today_utc() - timedelta(days=1))
    response = await client.post("/bookings", headers=auth_headers(resident), json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_off_slot_time_rejected(client: AsyncClient, resident: User, service: Service):
    payload = booking_payload(service, scheduled_time="10:30")
    response = await client.post("/bookings", headers=auth_headers(resident), json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == "Requested time is not a bookable slot"


@pytest.mark.asyncio
async def test_create_booking_unknown_service(client: AsyncClient, resident: User, service: Service):
    payload = booking_payload(service)
    payload["service_id"] = "00000000-0000-0000-0000-000000000000"
    response = await client.post("/bookings", headers=auth_headers(resident), json=payload)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_sevak_cannot_create_booking(client: AsyncClient, sevak_user: User, service: Service):
    response = await client.post("/bookings", headers=auth_headers(sevak_user), json=booking_payload(service))
    assert response.status_code == 403


# ── Read ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_my_bookings_with_status_filter(
    client: AsyncClient, db: AsyncSession, resident: User, other_resident: User, service: Service
):
    await make_booking(db, resident, service)
    await make_booking(db, resident, service, status=BookingStatus.CANCELLED, scheduled_time="11:00")
    await make_booking(db, other_resident, service, scheduled_time="12:00")

    response = await client.get("/bookings/mine", headers=auth_headers(resident))
    assert response.status_code == 200
    assert response.json()["pagination"]["total_items"] == 2

    pending = await client.get("/bookings/mine", headers=auth_headers(resident), params={"status": "pending"})
    assert [b["status"] for b in pending.json()["data"]] == ["pending"]


@pytest.mark.asyncio
async def test_get_booking_access_rules(
    client: AsyncClient, db: AsyncSession, resident: User, other_resident: User,
    sevak_user: User, admin_user: User, service: Service,
):
    booking = await make_booking(db, resident, service, status=BookingStatus.ASSIGNED, sevak=sevak_user)

    own = await client.get(f"/bookings/{booking.id}", headers=auth_headers(resident))
    assert own.status_code == 200
    assert own.json()["data"]["check_in_otp"] == booking.check_in_otp

    as_sevak = await client.get(f"/bookings/{booking.id}", headers=auth_headers(sevak_user))
    assert as_sevak.status_code == 200
    assert "check_in_otp" not in as_sevak.json()["data"]

    as_admin = await client.get(f"/bookings/{booking.id}", headers=auth_headers(admin_user))
    assert as_admin.status_code == 200

    stranger = await client.get(f"/bookings/{booking.id}", headers=auth_headers(other_resident))
    assert stranger.status_code == 403


# ── Slots ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_available_slots_exclude_live_bookings(
    client: AsyncClient, db: AsyncSession, resident: User, service: Service
):
    day = future_date()
    await make_booking(db, resident, service, scheduled_date=day, scheduled_time="10:00")
    await make_booking(db, resident, service, status=BookingStatus.CANCELLED, scheduled_date=day, scheduled_time="11:00")

    response = await client.get(
        "/bookings/available-slots", params={"service_id": str(service.id), "date": day.isoformat()}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert "10:00" not in data["available_slots"]
    assert "11:00" in data["available_slots"]
    assert data["booked_slots"] == ["10:00"]
    assert data["available_slots"][0] == "09:00"
    assert data["available_slots"][-1] == "18:00"


# ── Reschedule ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reschedule_keeps_status_and_notifies_sevak(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.ASSIGNED, sevak=sevak_user)
    new_date = future_date(7)

    response = await client.patch(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(resident),
        json={"new_date": new_date.isoformat(), "new_time": "15:00"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "assigned"
    assert data["scheduled_date"] == new_date.isoformat()
    assert data["scheduled_time"] == "15:00"
    assert data["timeline"][-1]["status"] == "rescheduled"
    assert data["timeline"][-1]["notes"] == f"Rescheduled to {new_date.isoformat()} at 15:00"

    titles = (await db.execute(
        select(Notification.title).where(Notification.user_id == sevak_user.id)
    )).scalars().all()
    assert "Booking Rescheduled" in titles


@pytest.mark.asyncio
async def test_reschedule_completed_booking_rejected(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    response = await client.patch(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(resident),
        json={"new_date": future_date(5).isoformat(), "new_time": "12:00"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_reschedule_moves_checkin_otp_expiry(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.ASSIGNED, sevak=sevak_user)
    new_date = future_date(10)

    response = await client.patch(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(resident),
        json={"new_date": new_date.isoformat(), "new_time": "11:00"},
    )
    assert response.status_code == 200

    await db.refresh(booking)
    assert booking.check_in_otp == TEST_OTP
    assert as_utc(booking.check_in_otp_expires_at) == check_in_otp_expiry(new_date)


@pytest.mark.asyncio
async def test_reschedule_by_other_resident_forbidden(
    client: AsyncClient, db: AsyncSession, resident: User, other_resident: User, service: Service
):
    booking = await make_booking(db, resident, service)
    original_date = booking.scheduled_date

    response = await client.patch(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(other_resident),
        json={"new_date": future_date(6).isoformat(), "new_time": "12:00"},
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied"

    await db.refresh(booking)
    assert booking.scheduled_date == original_date


# ── Cancel ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_unpaid_booking_refunds_zero(
    client: AsyncClient, db: AsyncSession, resident: User, service: Service
):
    booking = await make_booking(db, resident, service)
    response = await client.post(
        f"/bookings/{booking.id}/cancel", headers=auth_headers(resident), json={"reason": "Change of plans"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refund_amount"] == 0.0
    assert data["booking"]["status"] == "cancelled"
    assert data["booking"]["refund_status"] is None
    assert data["booking"]["check_in_otp"] is None
    assert data["booking"]["timeline"][-1]["notes"] == "Cancelled by resident: Change of plans"


@pytest.mark.asyncio
async def test_cancel_paid_booking_refunds_total(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.ASSIGNED, sevak=sevak_user, paid=True)
    response = await client.post(
        f"/bookings/{booking.id}/cancel", headers=auth_headers(resident), json={"reason": "Travelling"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refund_amount"] == 500.0
    assert data["booking"]["refund_status"] == "pending"

    titles = (await db.execute(
        select(Notification.title).where(Notification.user_id == sevak_user.id)
    )).scalars().all()
    assert titles == ["Booking Cancelled"]


@pytest.mark.asyncio
async def test_cancel_twice_rejected(client: AsyncClient, db: AsyncSession, resident: User, service: Service):
    booking = await make_booking(db, resident, service)
    headers = auth_headers(resident)
    first = await client.post(f"/bookings/{booking.id}/cancel", headers=headers, json={"reason": "No longer needed"})
    assert first.status_code == 200

    second = await client.post(f"/bookings/{booking.id}/cancel", headers=headers, json={"reason": "No longer needed"})
    assert second.status_code == 400


@pytest.mark.asyncio
async def test_cancel_someone_elses_booking_forbidden(
    client: AsyncClient, db: AsyncSession, resident: User, other_resident: User, service: Service
):
    booking = await make_booking(db, resident, service)
    response = await client.post(
        f"/bookings/{booking.id}/cancel", headers=auth_headers(other_resident), json={"reason": "Mischief"}
    )
    assert response.status_code == 403

    await db.refresh(booking)
    assert booking.status == BookingStatus.PENDING
