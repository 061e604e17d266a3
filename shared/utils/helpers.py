"""
shared/utils/helpers.py
Small helpers shared by the service routers: reference numbers, money,
time normalisation and pagination.
"""

import logging
import math
import secrets
import string
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from fastapi import Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from config.settings import settings
from shared.exceptions import ConflictError
from shared.schemas.schemas import PaginationMeta

logger = logging.getLogger(__name__)

_REF_ALPHABET = string.ascii_uppercase + string.digits
TWO_PLACES = Decimal("0.01")


# ── Reference Numbers ─────────────────────────────────────────

def generate_reference(prefix: str, length: int = 6) -> str:
    """Human-readable reference like BK-20240115-7KQ2ZD."""
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(length))
    return f"{prefix}-{today}-{suffix}"


def generate_booking_number() -> str:
    return generate_reference("BK")


def generate_invoice_number() -> str:
    return generate_reference("INV")


# ── Money ─────────────────────────────────────────────────────

def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def split_commission(amount, percent: float) -> tuple[Decimal, Decimal]:
    """Returns (commission, net) with net == amount - commission."""
    total = to_money(amount)
    commission = to_money(total * Decimal(str(percent)) / Decimal(100))
    return commission, total - commission


# ── Time ──────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return utcnow().date()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Some drivers hand back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Pagination ────────────────────────────────────────────────

class PageParams:
    """Query-string pagination dependency: ?page=&limit=."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
    ):
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> PaginationMeta:
        return PaginationMeta(
            current_page=self.page,
            total_pages=math.ceil(total / self.limit) if total else 0,
            total_items=total,
            items_per_page=self.limit,
        )


# ── Unique References ─────────────────────────────────────────

class ReferenceCollision(ConflictError):
    default_message = "Could not allocate a unique reference number"


@retry(
    retry=retry_if_exception_type(ReferenceCollision),
    stop=stop_after_attempt(settings.BOOKING_NUMBER_MAX_ATTEMPTS),
    reraise=True,
)
async def allocate_reference(db: AsyncSession, column, factory: Callable[[], str]) -> str:
    """
    Draw a reference from factory until one is unused in column.
    The unique index on the column still guards concurrent inserts.
    """
    candidate = factory()
    taken = await db.scalar(
        select(func.count()).select_from(column.class_).where(column == candidate)
    )
    if taken:
        logger.warning("Reference collision on %s: %s", column, candidate)
        raise ReferenceCollision()
    return candidate
