"""
services/booking/lifecycle.py
Booking state machine helpers shared by the resident, sevak, admin and
payment routers.

    pending --assign/accept--> assigned --check-in--> in-progress
    in-progress --check-out--> in-progress --complete--> completed
    pending/confirmed/assigned/in-progress --cancel--> cancelled
    paid (non-terminal) --refund--> refunded
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.exceptions import NotFoundError, ValidationError
from shared.models.models import (
    TERMINAL_BOOKING_STATUSES,
    AssignmentHistory,
    AssignmentType,
    Booking,
    BookingStatus,
    BookingTimelineEntry,
    User,
    UserRole,
    utcnow,
)
from shared.utils.security import generate_otp

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.ASSIGNED,
    BookingStatus.IN_PROGRESS,
)
ASSIGNABLE_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.ASSIGNED,
)


async def get_booking_or_404(booking_id: UUID, db: AsyncSession, for_update: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    booking = await db.scalar(query)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


async def reload_booking(booking_id: UUID, db: AsyncSession) -> Booking:
    """Re-read a booking after a Core UPDATE so the identity map is current."""
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


def append_timeline(booking: Booking, status: str, notes: Optional[str] = None) -> None:
    """Timeline is append-only: one entry per creation and per transition."""
    booking.timeline.append(BookingTimelineEntry(status=status, notes=notes, created_at=utcnow()))


def ensure_modifiable(booking: Booking, action: str) -> None:
    if booking.status in TERMINAL_BOOKING_STATUSES:
        raise ValidationError(f"Cannot {action} this booking")


def check_in_otp_expiry(scheduled_date: date) -> datetime:
    """The code stays valid until the end of the grace period after the visit day."""
    last_day = scheduled_date + timedelta(days=settings.CHECK_IN_OTP_GRACE_DAYS)
    return datetime.combine(last_day, time.max, tzinfo=timezone.utc)


def issue_check_in_otp(booking: Booking) -> None:
    booking.check_in_otp = generate_otp(6)
    booking.check_in_otp_expires_at = check_in_otp_expiry(booking.scheduled_date)
    booking.check_in_otp_attempts = 0


async def get_sevak_or_404(sevak_id: UUID, db: AsyncSession) -> User:
    sevak = await db.scalar(
        select(User).where(User.id == sevak_id, User.role == UserRole.SEVAK)
    )
    if not sevak:
        raise NotFoundError("Sevak not found")
    return sevak


async def claim_unassigned(db: AsyncSession, booking_id: UUID, sevak_id: UUID) -> bool:
    """
    Compare-and-swap assignment: succeeds only while the booking is still
    pending with no sevak. Returns False when another writer got there first.
    """
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.sevak_id.is_(None),
            Booking.status == BookingStatus.PENDING,
        )
        .values(sevak_id=sevak_id, status=BookingStatus.ASSIGNED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def reassign(
    db: AsyncSession,
    booking_id: UUID,
    sevak_id: UUID,
    expected_sevak_id: Optional[UUID],
    expected_status: BookingStatus,
) -> bool:
    """Admin assignment guarded on the state the admin saw when deciding."""
    current_sevak = (
        Booking.sevak_id.is_(None) if expected_sevak_id is None else Booking.sevak_id == expected_sevak_id
    )
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, current_sevak, Booking.status == expected_status)
        .values(sevak_id=sevak_id, status=BookingStatus.ASSIGNED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_assignment(
    db: AsyncSession,
    booking: Booking,
    sevak_id: UUID,
    assigned_by: User,
    assignment_type: AssignmentType,
    previous_sevak_id: Optional[UUID] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> AssignmentHistory:
    entry = AssignmentHistory(
        booking_id=booking.id,
        sevak_id=sevak_id,
        assigned_by_id=assigned_by.id,
        assignment_type=assignment_type,
        previous_sevak_id=previous_sevak_id,
        reason=reason,
        notes=notes,
    )
    db.add(entry)
    logger.info(
        "Booking %s %s to sevak %s by %s",
        booking.booking_number,
        assignment_type.value,
        sevak_id,
        assigned_by.id,
    )
    return entry


def booking_template_vars(booking: Booking, **extra) -> dict:
    return {
        "booking_number": booking.booking_number,
        "scheduled_date": booking.scheduled_date.isoformat(),
        "scheduled_time": booking.scheduled_time,
        **extra,
    }
