"""
tests/test_ratings.py
Tests for rating completed bookings, one rating per booking, the service
rating aggregate, updates and reports.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import BookingStatus, Service, User
from tests.conftest import auth_headers, make_booking


def _rating(booking, sevak: User, stars: int, comment: str = "Very thorough work") -> dict:
    return {"booking_id": str(booking.id), "rated_to": str(sevak.id), "rating": stars, "comment": comment}


@pytest.mark.asyncio
async def test_rate_completed_booking(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)

    response = await client.post("/ratings", headers=auth_headers(resident), json=_rating(booking, sevak_user, 5))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["rating"] == 5
    assert data["rated_to_id"] == str(sevak_user.id)

    await db.refresh(service)
    assert float(service.average_rating) == 5.0
    assert service.total_ratings == 1


@pytest.mark.asyncio
async def test_duplicate_rating_rejected_and_average_unchanged(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    """A second rating for the same booking fails and contributes nothing."""
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    headers = auth_headers(resident)

    first = await client.post("/ratings", headers=headers, json=_rating(booking, sevak_user, 4))
    assert first.status_code == 201

    second = await client.post("/ratings", headers=headers, json=_rating(booking, sevak_user, 1))
    assert second.status_code == 400
    assert second.json()["message"] == "Rating already exists for this booking"

    await db.refresh(service)
    assert float(service.average_rating) == 4.0
    assert service.total_ratings == 1


@pytest.mark.asyncio
async def test_average_across_bookings(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    headers = auth_headers(resident)
    for stars, slot in ((5, "10:00"), (4, "11:00"), (2, "12:00")):
        booking = await make_booking(
            db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user, scheduled_time=slot
        )
        response = await client.post("/ratings", headers=headers, json=_rating(booking, sevak_user, stars))
        assert response.status_code == 201

    await db.refresh(service)
    assert float(service.average_rating) == pytest.approx(3.67, abs=0.01)
    assert service.total_ratings == 3

    listing = await client.get(f"/ratings/sevak/{sevak_user.id}", params={"sort": "highest"})
    assert listing.status_code == 200
    data = listing.json()["data"]
    assert [r["rating"] for r in data["ratings"]] == [5, 4, 2]
    assert data["total_ratings"] == 3


@pytest.mark.asyncio
async def test_cannot_rate_unfinished_booking(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.IN_PROGRESS, sevak=sevak_user)
    response = await client.post("/ratings", headers=auth_headers(resident), json=_rating(booking, sevak_user, 5))
    assert response.status_code == 400
    assert response.json()["message"] == "Can only rate completed bookings"


@pytest.mark.asyncio
async def test_cannot_rate_someone_elses_booking(
    client: AsyncClient, db: AsyncSession, resident: User, other_resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    response = await client.post(
        "/ratings", headers=auth_headers(other_resident), json=_rating(booking, sevak_user, 1)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_rated_to_must_be_the_bookings_sevak(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, second_sevak: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    response = await client.post("/ratings", headers=auth_headers(resident), json=_rating(booking, second_sevak, 5))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_rating_recomputes_average(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    headers = auth_headers(resident)
    created = await client.post("/ratings", headers=headers, json=_rating(booking, sevak_user, 2))
    rating_id = created.json()["data"]["id"]

    updated = await client.put(f"/ratings/{rating_id}", headers=headers, json={"rating": 4})
    assert updated.status_code == 200
    assert updated.json()["data"]["rating"] == 4

    await db.refresh(service)
    assert float(service.average_rating) == 4.0


@pytest.mark.asyncio
async def test_sevak_can_report_rating(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, second_sevak: User, service: Service
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    created = await client.post("/ratings", headers=auth_headers(resident), json=_rating(booking, sevak_user, 1))
    rating_id = created.json()["data"]["id"]

    stranger = await client.post(
        f"/ratings/{rating_id}/report", headers=auth_headers(second_sevak), json={"reason": "Not my job"}
    )
    assert stranger.status_code == 403

    reported = await client.post(
        f"/ratings/{rating_id}/report", headers=auth_headers(sevak_user), json={"reason": "Abusive language"}
    )
    assert reported.status_code == 200
    assert reported.json()["data"]["is_reported"] is True

    by_booking = await client.get(f"/ratings/booking/{booking.id}", headers=auth_headers(sevak_user))
    assert by_booking.status_code == 200
    assert by_booking.json()["data"]["id"] == rating_id
