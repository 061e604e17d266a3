"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, fake Razorpay
gateway, a temp-dir file store, and seeded users/catalog rows.
"""

import os

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")

import hashlib
import hmac
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from config.settings import settings
from main import app
from services.booking.lifecycle import append_timeline
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Category,
    Service,
    User,
    UserRole,
)
from shared.utils.helpers import generate_booking_number, today_utc, utcnow
from shared.utils.payment_gateway import get_payment_gateway
from shared.utils.security import create_access_token, hash_password
from shared.utils.storage import FileStore, get_file_store

TEST_PASSWORD = "Password@123"
TEST_OTP = "482913"


# ── Fakes ─────────────────────────────────────────────────────

class FakeGateway:
    """Records calls instead of talking to Razorpay."""

    def __init__(self):
        self.orders = []
        self.refunds = []

    async def create_order(self, amount_paise: int, receipt: str, notes: dict) -> dict:
        order = {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "amount": amount_paise,
            "currency": "INR",
            "receipt": receipt,
            "notes": notes,
        }
        self.orders.append(order)
        return order

    async def refund(self, payment_id: str, amount_paise: int, notes: dict) -> dict:
        refund = {"id": f"rfnd_{uuid.uuid4().hex[:14]}", "payment_id": payment_id, "amount": amount_paise}
        self.refunds.append(refund)
        return refund


def razorpay_signature(order_id: str, payment_id: str) -> str:
    return hmac.new(
        settings.RAZORPAY_KEY_SECRET.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()


# ── Infrastructure ────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Each test runs on its own event loop; never reuse the pooled connection
    await engine.dispose()


@pytest_asyncio.fixture
async def redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def file_store(tmp_path) -> FileStore:
    return FileStore(str(tmp_path / "uploads"), "/uploads")


@pytest_asyncio.fixture
async def client(redis, gateway, file_store):
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_file_store] = lambda: file_store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


# ── Users ─────────────────────────────────────────────────────

async def _make_user(db: AsyncSession, role: UserRole, name: str, phone: str, **fields) -> User:
    user = User(
        full_name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        phone_number=phone,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_verified=True,
        is_active=True,
        is_blacklisted=False,
        **fields,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def resident(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.RESIDENT, "Asha Resident", "9000000001")


@pytest_asyncio.fixture
async def other_resident(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.RESIDENT, "Vikram Resident", "9000000002")


@pytest_asyncio.fixture
async def sevak_user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.SEVAK, "Ravi Sevak", "9000000011")


@pytest_asyncio.fixture
async def second_sevak(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.SEVAK, "Suresh Sevak", "9000000012")


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.ADMIN, "Meera Admin", "9000000099")


@pytest_asyncio.fixture
async def vendor_user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.VENDOR, "Kiran Vendor", "9000000021")


@pytest_asyncio.fixture
async def other_vendor(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.VENDOR, "Neha Vendor", "9000000022")


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Catalog ───────────────────────────────────────────────────

@pytest_asyncio.fixture
async def category(db: AsyncSession) -> Category:
    cat = Category(name="Cleaning", icon="broom", description="Home cleaning", display_order=1, is_active=True)
    db.add(cat)
    await db.commit()
    return cat


@pytest_asyncio.fixture
async def service(db: AsyncSession, category: Category) -> Service:
    svc = Service(
        name="Bathroom Cleaning",
        description="Deep cleaning of one bathroom",
        category=category.name,
        subcategory="Bathroom",
        base_price=Decimal("500.00"),
        price_unit="per service",
        duration=60,
        is_active=True,
        tags=["cleaning"],
        average_rating=Decimal("0"),
        total_ratings=0,
        booking_count=0,
    )
    db.add(svc)
    await db.commit()
    return svc


async def make_service(db: AsyncSession, category: Category, name: str, vendor: Optional[User] = None,
                       price: str = "500.00", is_active: bool = True) -> Service:
    svc = Service(
        name=name,
        description=f"{name} at home",
        category=category.name,
        base_price=Decimal(price),
        duration=60,
        is_active=is_active,
        tags=[],
        vendor_id=vendor.id if vendor else None,
    )
    db.add(svc)
    await db.commit()
    return svc


# ── Bookings ──────────────────────────────────────────────────

def future_date(days: int = 3) -> date:
    return today_utc() + timedelta(days=days)


def booking_payload(service: Service, scheduled_date: Optional[date] = None, scheduled_time: str = "10:00") -> dict:
    return {
        "service_id": str(service.id),
        "scheduled_date": (scheduled_date or future_date()).isoformat(),
        "scheduled_time": scheduled_time,
        "address": {"flat_number": "A-101", "society": "Green Park", "city": "Pune", "pincode": "411001"},
        "special_instructions": "Ring the bell twice",
    }


async def make_booking(
    db: AsyncSession,
    resident: User,
    service: Service,
    status: BookingStatus = BookingStatus.PENDING,
    sevak: Optional[User] = None,
    paid: bool = False,
    scheduled_date: Optional[date] = None,
    scheduled_time: str = "10:00",
) -> Booking:
    """Insert a booking directly in the given state with check-in OTP TEST_OTP."""
    scheduled_date = scheduled_date or future_date()
    booking = Booking(
        booking_number=generate_booking_number(),
        resident_id=resident.id,
        service_id=service.id,
        sevak_id=sevak.id if sevak else None,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        estimated_duration=service.duration,
        status=status,
        address={"flat_number": "A-101", "city": "Pune"},
        base_price=service.base_price,
        additional_charges=Decimal("0"),
        discount=Decimal("0"),
        total_amount=service.base_price,
        payment_status=BookingPaymentStatus.PAID if paid else BookingPaymentStatus.PENDING,
        paid_at=utcnow() if paid else None,
        refund_amount=Decimal("0"),
        check_in_otp=TEST_OTP,
        check_in_otp_expires_at=utcnow() + timedelta(days=5),
        check_in_otp_attempts=0,
        before_images=[],
        after_images=[],
        checklist_items=[],
        timeline=[],
    )
    append_timeline(booking, BookingStatus.PENDING.value, "Booking created")
    db.add(booking)
    await db.commit()
    return booking
