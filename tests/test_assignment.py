"""
tests/test_assignment.py
Tests for job assignment: sevak self-accept races, admin assign and
reassign, the blacklist gate, and assignment history.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import Base, get_db
from main import app
from services.booking.lifecycle import claim_unassigned, reassign
from shared.models.models import AdminAuditLog, Booking, BookingStatus, Notification, Service, User, UserRole
from shared.utils.helpers import today_utc
from tests.conftest import _make_user, auth_headers, make_booking


# ── Self-accept ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_second_accept_gets_conflict(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, second_sevak: User, service: Service
):
    """Exactly one of two sevaks wins the job."""
    booking = await make_booking(db, resident, service)

    first = await client.post(f"/sevak/jobs/{booking.id}/accept", headers=auth_headers(sevak_user))
    assert first.status_code == 200

    second = await client.post(f"/sevak/jobs/{booking.id}/accept", headers=auth_headers(second_sevak))
    assert second.status_code == 409
    assert second.json()["message"] == "This job has already been assigned to another sevak"

    await db.refresh(booking)
    assert booking.sevak_id == sevak_user.id
    assert booking.status == BookingStatus.ASSIGNED


@pytest.mark.asyncio
async def test_claim_is_compare_and_swap(
    db: AsyncSession, resident: User, sevak_user: User, second_sevak: User, service: Service
):
    booking = await make_booking(db, resident, service)

    assert await claim_unassigned(db, booking.id, sevak_user.id) is True
    assert await claim_unassigned(db, booking.id, second_sevak.id) is False
    await db.commit()

    winner = await db.scalar(
        select(Booking.sevak_id).where(Booking.id == booking.id)
    )
    assert winner == sevak_user.id


@pytest_asyncio.fixture
async def race_sessions(tmp_path):
    """A file-backed database where every request gets its own connection."""
    race_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", poolclass=NullPool)
    async with race_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=race_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async def race_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = race_db
    yield factory
    app.dependency_overrides.pop(get_db, None)
    await race_engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_accepts_have_one_winner(client: AsyncClient, race_sessions):
    async with race_sessions() as session:
        resident = await _make_user(session, UserRole.RESIDENT, "Asha Resident", "9000000001")
        first = await _make_user(session, UserRole.SEVAK, "Ravi Sevak", "9000000011")
        second = await _make_user(session, UserRole.SEVAK, "Suresh Sevak", "9000000012")
        service = Service(name="Sofa Cleaning", category="Cleaning", base_price=Decimal("500.00"),
                          duration=60, is_active=True, tags=[])
        session.add(service)
        await session.commit()
        booking = await make_booking(session, resident, service)

    responses = await asyncio.gather(
        client.post(f"/sevak/jobs/{booking.id}/accept", headers=auth_headers(first)),
        client.post(f"/sevak/jobs/{booking.id}/accept", headers=auth_headers(second)),
    )
    assert sorted(r.status_code for r in responses) == [200, 409]

    winner = next(r for r in responses if r.status_code == 200).json()["data"]["sevak_id"]
    async with race_sessions() as session:
        stored = await session.scalar(select(Booking).where(Booking.id == booking.id))
        assert str(stored.sevak_id) == winner
        assert stored.status == BookingStatus.ASSIGNED


@pytest.mark.asyncio
async def test_reassign_guards_on_expected_sevak(
    db: AsyncSession, resident: User, sevak_user: User, second_sevak: User, service: Service
):
    """An admin decision based on a stale read does not overwrite a newer assignment."""
    booking = await make_booking(db, resident, service, status=BookingStatus.ASSIGNED, sevak=sevak_user)

    stale = await reassign(db, booking.id, second_sevak.id, None, BookingStatus.PENDING)
    assert stale is False

    fresh = await reassign(db, booking.id, second_sevak.id, sevak_user.id, BookingStatus.ASSIGNED)
    assert fresh is True
    await db.commit()


@pytest.mark.asyncio
async def test_accept_past_job_rejected(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service, scheduled_date=today_utc() - timedelta(days=1))
    response = await client.post(f"/sevak/jobs/{booking.id}/accept", headers=auth_headers(sevak_user))
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot accept jobs scheduled in the past"


@pytest.mark.asyncio
async def test_blacklisted_sevak_cannot_accept(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    sevak_user.is_blacklisted = True
    db.add(sevak_user)
    await db.commit()
    booking = await make_booking(db, resident, service)

    response = await client.post(f"/sevak/jobs/{booking.id}/accept", headers=auth_headers(sevak_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_available_jobs_lists_unassigned_only(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    open_job = await make_booking(db, resident, service)
    await make_booking(db, resident, service, status=BookingStatus.ASSIGNED, sevak=sevak_user, scheduled_time="13:00")

    response = await client.get("/sevak/available-jobs", headers=auth_headers(sevak_user))
    assert response.status_code == 200
    assert [b["id"] for b in response.json()["data"]] == [str(open_job.id)]

    other_category = await client.get(
        "/sevak/available-jobs", headers=auth_headers(sevak_user), params={"category": "Plumbing"}
    )
    assert other_category.json()["data"] == []


# ── Admin Assign ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_assign_then_reassign_history(
    client: AsyncClient, db: AsyncSession, admin_user: User, resident: User,
    sevak_user: User, second_sevak: User, service: Service,
):
    booking = await make_booking(db, resident, service)
    headers = auth_headers(admin_user)

    assigned = await client.post(
        f"/admin/bookings/{booking.id}/assign", headers=headers, json={"sevak_id": str(sevak_user.id)}
    )
    assert assigned.status_code == 200
    assert assigned.json()["data"]["status"] == "assigned"
    assert assigned.json()["data"]["timeline"][-1]["notes"] == "Assigned by admin"

    reassigned = await client.post(
        f"/admin/bookings/{booking.id}/assign",
        headers=headers,
        json={"sevak_id": str(second_sevak.id), "reason": "Original sevak unwell"},
    )
    assert reassigned.status_code == 200
    assert reassigned.json()["data"]["sevak_id"] == str(second_sevak.id)
    assert reassigned.json()["data"]["timeline"][-1]["notes"] == "Reassigned by admin"

    history = await client.get(f"/admin/bookings/{booking.id}/assignment-history", headers=headers)
    entries = history.json()["data"]
    assert [e["assignment_type"] for e in entries] == ["manual", "reassignment"]
    assert entries[1]["previous_sevak_id"] == str(sevak_user.id)
    assert entries[1]["reason"] == "Original sevak unwell"

    unassigned = (await db.execute(
        select(Notification.title).where(Notification.user_id == sevak_user.id)
    )).scalars().all()
    assert "Job Reassigned" in unassigned

    actions = (await db.execute(select(AdminAuditLog.action))).scalars().all()
    assert actions == ["ASSIGN_SEVAK", "ASSIGN_SEVAK"]


@pytest.mark.asyncio
async def test_admin_cannot_assign_blacklisted_sevak(
    client: AsyncClient, db: AsyncSession, admin_user: User, resident: User, sevak_user: User, service: Service
):
    sevak_user.is_blacklisted = True
    db.add(sevak_user)
    await db.commit()
    booking = await make_booking(db, resident, service)

    response = await client.post(
        f"/admin/bookings/{booking.id}/assign", headers=auth_headers(admin_user), json={"sevak_id": str(sevak_user.id)}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot assign blacklisted sevak"


@pytest.mark.asyncio
async def test_admin_cannot_assign_completed_booking(
    client: AsyncClient, db: AsyncSession, admin_user: User, resident: User,
    sevak_user: User, second_sevak: User, service: Service,
):
    booking = await make_booking(db, resident, service, status=BookingStatus.COMPLETED, sevak=sevak_user)
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign", headers=auth_headers(admin_user), json={"sevak_id": str(second_sevak.id)}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_non_admin_cannot_assign(
    client: AsyncClient, db: AsyncSession, resident: User, sevak_user: User, service: Service
):
    booking = await make_booking(db, resident, service)
    response = await client.post(
        f"/admin/bookings/{booking.id}/assign", headers=auth_headers(sevak_user), json={"sevak_id": str(sevak_user.id)}
    )
    assert response.status_code == 403
