"""
services/booking/router.py
Resident-facing booking lifecycle: create, list, view, reschedule, cancel,
and hourly slot availability.
Each handler is one transaction; status, timeline and side-effect rows
commit together.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.booking.lifecycle import (
    CANCELLABLE_STATUSES,
    append_timeline,
    booking_template_vars,
    check_in_otp_expiry,
    ensure_modifiable,
    get_booking_or_404,
    issue_check_in_otp,
)
from services.notification.router import dispatch_notification
from shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from shared.middleware.auth import get_current_user, require_resident
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    RefundStatus,
    Service,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    ApiResponse,
    AvailableSlotsResponse,
    BookingCancelRequest,
    BookingCancelResponse,
    BookingCreateRequest,
    BookingRescheduleRequest,
    BookingResponse,
    PaginatedResponse,
    ResidentBookingResponse,
)
from shared.utils.helpers import PageParams, allocate_reference, generate_booking_number, to_money

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

SLOT_BLOCKING_EXCLUDED = (BookingStatus.CANCELLED, BookingStatus.REFUNDED)


def _hourly_slots() -> list[str]:
    return [f"{hour:02d}:00" for hour in range(settings.SLOT_START_HOUR, settings.SLOT_END_HOUR + 1)]


def _view_for(booking: Booking, user: User) -> BookingResponse:
    if booking.resident_id == user.id:
        return ResidentBookingResponse.model_validate(booking)
    return BookingResponse.model_validate(booking)


# ── Create ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=ApiResponse[ResidentBookingResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_resident),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a pending booking.
    Price is frozen from the service's current base price; the check-in
    code is issued here and handed to the sevak on arrival.
    """
    service = await db.scalar(
        select(Service).where(Service.id == data.service_id, Service.is_active == True)
    )
    if not service:
        raise NotFoundError("Service not found")

    if data.scheduled_time not in _hourly_slots():
        raise ValidationError("Requested time is not a bookable slot")

    booking_number = await allocate_reference(db, Booking.booking_number, generate_booking_number)
    base_price = to_money(service.base_price)

    booking = Booking(
        booking_number=booking_number,
        resident_id=current_user.id,
        service_id=service.id,
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        estimated_duration=service.duration,
        status=BookingStatus.PENDING,
        address=data.address.model_dump(),
        special_instructions=data.special_instructions,
        base_price=base_price,
        additional_charges=to_money(0),
        discount=to_money(0),
        total_amount=base_price,
        payment_status=BookingPaymentStatus.PENDING,
        refund_amount=to_money(0),
        before_images=[],
        after_images=[],
        checklist_items=[],
        timeline=[],
    )
    issue_check_in_otp(booking)
    append_timeline(booking, BookingStatus.PENDING.value, "Booking created")
    db.add(booking)
    await db.flush()

    # Atomic counter bump; no read-modify-write on the service row
    await db.execute(
        update(Service)
        .where(Service.id == service.id)
        .values(booking_count=Service.booking_count + 1)
        .execution_options(synchronize_session=False)
    )

    await dispatch_notification(
        db,
        current_user.id,
        "BOOKING_CREATED",
        booking_template_vars(booking),
        data={"booking_id": booking.id},
    )
    await db.commit()

    logger.info("Booking %s created by resident %s", booking.booking_number, current_user.id)
    return ApiResponse(
        message="Booking created successfully",
        data=ResidentBookingResponse.model_validate(booking),
    )


# ── Read ──────────────────────────────────────────────────────

@router.get("/mine", response_model=PaginatedResponse[list[ResidentBookingResponse]])
async def get_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_resident),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking).where(Booking.resident_id == current_user.id)
    if status_filter:
        query = query.where(Booking.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset(pagination.offset).limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Bookings retrieved successfully",
        data=[ResidentBookingResponse.model_validate(b) for b in result.scalars()],
        pagination=pagination.meta(total or 0),
    )


@router.get("/available-slots", response_model=ApiResponse[AvailableSlotsResponse])
async def get_available_slots(
    service_id: UUID = Query(...),
    slot_date: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
):
    """
    Hourly slots between SLOT_START_HOUR and SLOT_END_HOUR, minus any slot
    held by a live booking of this service on that date.
    """
    service = await db.scalar(select(Service.id).where(Service.id == service_id))
    if not service:
        raise NotFoundError("Service not found")

    result = await db.execute(
        select(Booking.scheduled_time).where(
            Booking.service_id == service_id,
            Booking.scheduled_date == slot_date,
            Booking.status.not_in(SLOT_BLOCKING_EXCLUDED),
        )
    )
    booked = set(result.scalars())
    all_slots = _hourly_slots()

    return ApiResponse(
        message="Available slots retrieved successfully",
        data=AvailableSlotsResponse(
            service_id=service_id,
            date=slot_date,
            available_slots=[s for s in all_slots if s not in booked],
            booked_slots=[s for s in all_slots if s in booked],
        ),
    )


@router.get("/{booking_id}", response_model=ApiResponse[ResidentBookingResponse | BookingResponse])
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking_or_404(booking_id, db)

    is_party = current_user.id in (booking.resident_id, booking.sevak_id)
    if not is_party and current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Access denied")

    return ApiResponse(message="Booking retrieved successfully", data=_view_for(booking, current_user))


# ── Reschedule / Cancel ───────────────────────────────────────

@router.patch("/{booking_id}/reschedule", response_model=ApiResponse[ResidentBookingResponse])
async def reschedule_booking(
    booking_id: UUID,
    data: BookingRescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking_or_404(booking_id, db, for_update=True)
    if booking.resident_id != current_user.id:
        raise ForbiddenError("Access denied")
    ensure_modifiable(booking, "reschedule")
    if data.new_time not in _hourly_slots():
        raise ValidationError("Requested time is not a bookable slot")

    booking.scheduled_date = data.new_date
    booking.scheduled_time = data.new_time
    if booking.check_in_otp:
        booking.check_in_otp_expires_at = check_in_otp_expiry(data.new_date)
    append_timeline(
        booking,
        "rescheduled",
        f"Rescheduled to {data.new_date.isoformat()} at {data.new_time}",
    )

    if booking.sevak_id:
        await dispatch_notification(
            db,
            booking.sevak_id,
            "BOOKING_RESCHEDULED",
            booking_template_vars(booking),
            data={"booking_id": booking.id},
        )
    await db.commit()

    logger.info("Booking %s rescheduled to %s %s", booking.booking_number, data.new_date, data.new_time)
    return ApiResponse(
        message="Booking rescheduled successfully",
        data=ResidentBookingResponse.model_validate(booking),
    )


@router.post("/{booking_id}/cancel", response_model=ApiResponse[BookingCancelResponse])
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Cancel a booking. Refund policy is all-or-nothing: the full total if
    the booking was paid, otherwise zero.
    """
    booking = await get_booking_or_404(booking_id, db, for_update=True)
    if booking.resident_id != current_user.id:
        raise ForbiddenError("Access denied")
    ensure_modifiable(booking, "cancel")
    if booking.status not in CANCELLABLE_STATUSES:
        raise ValidationError("Cannot cancel this booking")

    paid = booking.payment_status == BookingPaymentStatus.PAID
    refund_amount = to_money(booking.total_amount if paid else 0)

    booking.status = BookingStatus.CANCELLED
    booking.cancelled_by_id = current_user.id
    booking.cancellation_reason = data.reason
    booking.cancelled_at = datetime.now(timezone.utc)
    booking.refund_amount = refund_amount
    booking.refund_status = RefundStatus.PENDING if refund_amount > 0 else None
    # A cancelled job can no longer be checked into
    booking.check_in_otp = None
    append_timeline(booking, BookingStatus.CANCELLED.value, f"Cancelled by resident: {data.reason}")

    if booking.sevak_id:
        await dispatch_notification(
            db,
            booking.sevak_id,
            "BOOKING_CANCELLED",
            booking_template_vars(booking),
            data={"booking_id": booking.id},
        )
    await db.commit()

    logger.info("Booking %s cancelled, refund due %s", booking.booking_number, refund_amount)
    return ApiResponse(
        message="Booking cancelled successfully",
        data=BookingCancelResponse(
            booking=ResidentBookingResponse.model_validate(booking),
            refund_amount=float(refund_amount),
        ),
    )
