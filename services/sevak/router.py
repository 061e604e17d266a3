"""
services/sevak/router.py
Field-worker endpoints: job board, self-accept, OTP check-in, check-out,
completion with photos, issue reports, earnings and performance views.
"""

import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.admin.platform import commission_percent
from services.booking.lifecycle import (
    append_timeline,
    booking_template_vars,
    claim_unassigned,
    get_booking_or_404,
    record_assignment,
    reload_booking,
)
from services.notification.router import dispatch_notification
from shared.exceptions import ConflictError, ForbiddenError, ValidationError
from shared.middleware.auth import require_sevak
from shared.models.models import (
    TERMINAL_BOOKING_STATUSES,
    AssignmentType,
    Booking,
    BookingStatus,
    Earning,
    EarningStatus,
    Issue,
    IssueType,
    Rating,
    Service,
    User,
)
from shared.schemas.schemas import (
    ApiResponse,
    AttendanceEntry,
    AttendanceResponse,
    BookingResponse,
    CheckInRequest,
    CheckOutRequest,
    CheckOutResponse,
    EarningResponse,
    EarningsSummaryResponse,
    IssueResponse,
    PaginatedResponse,
    PerformanceResponse,
    RatingResponse,
    SevakJobsResponse,
    SevakRatingsResponse,
)
from shared.utils.helpers import PageParams, as_utc, split_commission, today_utc, utcnow
from shared.utils.security import otp_matches
from shared.utils.storage import FileStore, get_file_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sevak", tags=["Sevak"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_assigned_booking(booking_id: UUID, sevak: User, db: AsyncSession) -> Booking:
    booking = await get_booking_or_404(booking_id, db, for_update=True)
    if booking.sevak_id != sevak.id:
        raise ForbiddenError("You are not assigned to this booking")
    return booking


def _period_start(period: str) -> Optional[datetime]:
    today = today_utc()
    if period == "today":
        start = today
    elif period == "week":
        start = today - timedelta(days=today.weekday())
    elif period == "month":
        start = today.replace(day=1)
    else:
        return None
    return datetime.combine(start, time.min, tzinfo=timezone.utc)


# ── Job Board ─────────────────────────────────────────────────

@router.get("/jobs", response_model=PaginatedResponse[SevakJobsResponse])
async def get_my_jobs(
    job_date: Optional[date] = Query(None, alias="date"),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    """Jobs assigned to the caller, with today's and upcoming open counts."""
    query = select(Booking).where(Booking.sevak_id == current_user.id)
    if job_date:
        query = query.where(Booking.scheduled_date == job_date)
    if status_filter:
        query = query.where(Booking.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.scheduled_date, Booking.scheduled_time)
        .offset(pagination.offset)
        .limit(pagination.limit)
    )

    today = today_utc()
    open_jobs = select(func.count(Booking.id)).where(
        Booking.sevak_id == current_user.id,
        Booking.status.not_in(TERMINAL_BOOKING_STATUSES),
    )
    today_count = await db.scalar(open_jobs.where(Booking.scheduled_date == today))
    upcoming_count = await db.scalar(open_jobs.where(Booking.scheduled_date > today))

    return PaginatedResponse(
        message="Jobs retrieved successfully",
        data=SevakJobsResponse(
            jobs=[BookingResponse.model_validate(b) for b in result.scalars()],
            today_count=today_count or 0,
            upcoming_count=upcoming_count or 0,
        ),
        pagination=pagination.meta(total or 0),
    )


@router.get("/available-jobs", response_model=PaginatedResponse[List[BookingResponse]])
async def get_available_jobs(
    category: Optional[str] = Query(None),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    """Unassigned pending jobs from today onwards, soonest first."""
    query = select(Booking).where(
        Booking.sevak_id.is_(None),
        Booking.status == BookingStatus.PENDING,
        Booking.scheduled_date >= today_utc(),
    )
    if category:
        query = query.join(Service, Service.id == Booking.service_id).where(
            Service.category == category
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.scheduled_date, Booking.scheduled_time)
        .offset(pagination.offset)
        .limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Available jobs retrieved successfully",
        data=[BookingResponse.model_validate(b) for b in result.scalars()],
        pagination=pagination.meta(total or 0),
    )


@router.post("/jobs/{booking_id}/accept", response_model=ApiResponse[BookingResponse])
async def accept_job(
    booking_id: UUID,
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    """
    Self-accept a pending job.
    The claim is a single conditional UPDATE, so of two sevaks racing for
    the same job exactly one wins and the other gets 409.
    """
    booking = await get_booking_or_404(booking_id, db)
    if current_user.is_blacklisted:
        raise ForbiddenError("Blacklisted sevaks cannot accept jobs")
    if booking.scheduled_date < today_utc():
        raise ValidationError("Cannot accept jobs scheduled in the past")

    claimed = await claim_unassigned(db, booking.id, current_user.id)
    booking = await reload_booking(booking.id, db)
    if not claimed:
        logger.info("Sevak %s lost the claim on booking %s", current_user.id, booking.booking_number)
        if booking.sevak_id is not None:
            raise ConflictError("This job has already been assigned to another sevak")
        raise ConflictError("This job is no longer available")

    append_timeline(booking, BookingStatus.ASSIGNED.value, "Job accepted by sevak")
    record_assignment(db, booking, current_user.id, current_user, AssignmentType.AUTO)
    await dispatch_notification(
        db,
        booking.resident_id,
        "SEVAK_ASSIGNED",
        booking_template_vars(booking, sevak_name=current_user.full_name),
        data={"booking_id": booking.id, "sevak_id": current_user.id},
    )
    await db.commit()

    return ApiResponse(message="Job accepted successfully", data=BookingResponse.model_validate(booking))


@router.get("/jobs/{booking_id}", response_model=ApiResponse[BookingResponse])
async def get_job(
    booking_id: UUID,
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking_or_404(booking_id, db)
    if booking.sevak_id != current_user.id:
        raise ForbiddenError("You are not assigned to this booking")
    return ApiResponse(message="Job retrieved successfully", data=BookingResponse.model_validate(booking))


# ── On-site Execution ─────────────────────────────────────────

@router.post("/checkin", response_model=ApiResponse[BookingResponse])
async def check_in(
    data: CheckInRequest,
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    """
    Start the job using the resident's check-in code.
    Wrong codes count against CHECK_IN_OTP_MAX_ATTEMPTS and the counter is
    committed even though the request fails.
    """
    booking = await _get_assigned_booking(data.booking_id, current_user, db)
    if booking.status != BookingStatus.ASSIGNED:
        raise ValidationError("Booking is not in assigned state")

    expires_at = as_utc(booking.check_in_otp_expires_at)
    if not booking.check_in_otp or (expires_at and utcnow() > expires_at):
        raise ValidationError("Check-in OTP has expired")
    if booking.check_in_otp_attempts >= settings.CHECK_IN_OTP_MAX_ATTEMPTS:
        raise ValidationError("Too many invalid OTP attempts")

    if not otp_matches(booking.check_in_otp, data.otp):
        booking.check_in_otp_attempts += 1
        await db.commit()
        logger.warning(
            "Invalid check-in OTP for booking %s (attempt %d)",
            booking.booking_number,
            booking.check_in_otp_attempts,
        )
        raise ValidationError("Invalid OTP")

    booking.status = BookingStatus.IN_PROGRESS
    booking.check_in_time = utcnow()
    booking.check_in_location = data.location.model_dump() if data.location else None
    booking.check_in_otp = None
    booking.check_in_otp_expires_at = None
    append_timeline(booking, BookingStatus.IN_PROGRESS.value, "Sevak checked in")

    await dispatch_notification(
        db,
        booking.resident_id,
        "SEVAK_CHECKED_IN",
        booking_template_vars(booking),
        data={"booking_id": booking.id},
    )
    await db.commit()

    logger.info("Sevak %s checked in to booking %s", current_user.id, booking.booking_number)
    return ApiResponse(message="Checked in successfully", data=BookingResponse.model_validate(booking))


@router.post("/checkout", response_model=ApiResponse[CheckOutResponse])
async def check_out(
    data: CheckOutRequest,
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_assigned_booking(data.booking_id, current_user, db)
    if booking.status != BookingStatus.IN_PROGRESS:
        raise ValidationError("Booking is not in progress")

    now = utcnow()
    started = as_utc(booking.check_in_time) or now
    duration_minutes = int((now - started).total_seconds() // 60)

    booking.check_out_time = now
    booking.check_out_location = data.location.model_dump() if data.location else None
    append_timeline(booking, "checked-out", f"Sevak checked out. Duration: {duration_minutes} minutes")
    await db.commit()

    return ApiResponse(
        message="Checked out successfully",
        data=CheckOutResponse(
            booking=BookingResponse.model_validate(booking),
            duration_minutes=duration_minutes,
        ),
    )


@router.post("/jobs/{booking_id}/complete", response_model=ApiResponse[BookingResponse])
async def complete_job(
    booking_id: UUID,
    completion_notes: Optional[str] = Form(None, max_length=500),
    checklist_items: Optional[str] = Form(None, description="JSON array"),
    before_images: Optional[List[UploadFile]] = File(None),
    after_images: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
    store: FileStore = Depends(get_file_store),
):
    """
    Close out an in-progress job.
    Booking, earning and resident notification are written in one commit.
    """
    booking = await _get_assigned_booking(booking_id, current_user, db)
    if booking.status != BookingStatus.IN_PROGRESS:
        raise ValidationError("Booking is not in progress")

    checklist = []
    if checklist_items:
        try:
            checklist = json.loads(checklist_items)
        except json.JSONDecodeError:
            raise ValidationError("checklist_items must be a JSON array")
        if not isinstance(checklist, list):
            raise ValidationError("checklist_items must be a JSON array")

    folder = f"bookings/{booking.id}"
    saved: List[str] = []
    try:
        before_urls = await store.save_many(before_images, folder)
        saved.extend(before_urls)
        after_urls = await store.save_many(after_images, folder)
        saved.extend(after_urls)

        booking.status = BookingStatus.COMPLETED
        booking.completed_at = utcnow()
        booking.completion_notes = completion_notes
        booking.checklist_items = checklist
        booking.before_images = [*booking.before_images, *before_urls]
        booking.after_images = [*booking.after_images, *after_urls]
        append_timeline(booking, BookingStatus.COMPLETED.value, "Job completed by Sevak")

        commission, net_amount = split_commission(booking.total_amount, await commission_percent(db))
        db.add(
            Earning(
                sevak_id=current_user.id,
                booking_id=booking.id,
                amount=booking.total_amount,
                commission=commission,
                net_amount=net_amount,
                status=EarningStatus.PENDING,
            )
        )

        await dispatch_notification(
            db,
            booking.resident_id,
            "JOB_COMPLETED",
            booking_template_vars(booking),
            data={"booking_id": booking.id},
        )
        await db.commit()
    except Exception:
        # Nothing references the photos unless the commit lands
        await store.delete_many(saved)
        raise

    logger.info(
        "Booking %s completed; earning %s (commission %s)",
        booking.booking_number,
        net_amount,
        commission,
    )
    return ApiResponse(message="Job completed successfully", data=BookingResponse.model_validate(booking))


@router.post(
    "/jobs/{booking_id}/report-issue",
    response_model=ApiResponse[IssueResponse],
    status_code=status.HTTP_201_CREATED,
)
async def report_issue(
    booking_id: UUID,
    issue_type: IssueType = Form(...),
    description: str = Form(..., min_length=10, max_length=1000),
    images: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
    store: FileStore = Depends(get_file_store),
):
    booking = await _get_assigned_booking(booking_id, current_user, db)
    urls = await store.save_many(images, f"issues/{booking.id}")

    issue = Issue(
        booking_id=booking.id,
        reported_by_id=current_user.id,
        issue_type=issue_type,
        description=description,
        images=urls,
    )
    db.add(issue)
    try:
        await db.commit()
    except Exception:
        await store.delete_many(urls)
        raise

    logger.warning("Issue %s reported on booking %s", issue_type.value, booking.booking_number)
    return ApiResponse(message="Issue reported successfully", data=IssueResponse.model_validate(issue))


# ── Earnings & Performance ────────────────────────────────────

@router.get("/earnings", response_model=ApiResponse[EarningsSummaryResponse])
async def get_earnings(
    period: Literal["today", "week", "month", "all"] = Query("month"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    """Net earnings for a period; explicit start/end dates override the period."""
    start = _period_start(period)
    end = None
    if start_date:
        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    if end_date:
        end = datetime.combine(end_date, time.max, tzinfo=timezone.utc)

    query = select(Earning).where(Earning.sevak_id == current_user.id)
    if start:
        query = query.where(Earning.created_at >= start)
    if end:
        query = query.where(Earning.created_at <= end)

    result = await db.execute(query.order_by(Earning.created_at.desc()))
    earnings = result.scalars().all()

    return ApiResponse(
        message="Earnings retrieved successfully",
        data=EarningsSummaryResponse(
            period=period,
            start_date=start,
            end_date=end,
            total_earnings=float(sum(e.net_amount for e in earnings)),
            total_commission=float(sum(e.commission for e in earnings)),
            total_jobs=len(earnings),
            breakdown=[EarningResponse.model_validate(e) for e in earnings],
        ),
    )


@router.get("/performance", response_model=ApiResponse[PerformanceResponse])
async def get_performance(
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    rating_row = (
        await db.execute(
            select(func.avg(Rating.rating), func.count(Rating.id)).where(
                Rating.rated_to_id == current_user.id
            )
        )
    ).one()
    average_rating, total_ratings = rating_row

    total_jobs = await db.scalar(
        select(func.count(Booking.id)).where(Booking.sevak_id == current_user.id)
    ) or 0
    completed_jobs = await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.sevak_id == current_user.id,
            Booking.status == BookingStatus.COMPLETED,
        )
    ) or 0

    checked_in = await db.execute(
        select(Booking.scheduled_date, Booking.check_in_time).where(
            Booking.sevak_id == current_user.id,
            Booking.check_in_time.is_not(None),
        )
    )
    visits = checked_in.all()
    on_time = sum(1 for scheduled, checked in visits if as_utc(checked).date() == scheduled)

    return ApiResponse(
        message="Performance retrieved successfully",
        data=PerformanceResponse(
            average_rating=round(float(average_rating or 0), 2),
            total_ratings=total_ratings or 0,
            completion_rate=round(completed_jobs * 100 / total_jobs) if total_jobs else 0,
            on_time_percentage=round(on_time * 100 / len(visits)) if visits else 0,
            total_jobs=total_jobs,
            completed_jobs=completed_jobs,
        ),
    )


@router.get("/feedback", response_model=PaginatedResponse[SevakRatingsResponse])
async def get_feedback(
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    query = select(Rating).where(Rating.rated_to_id == current_user.id)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Rating.created_at.desc()).offset(pagination.offset).limit(pagination.limit)
    )
    average = await db.scalar(
        select(func.avg(Rating.rating)).where(Rating.rated_to_id == current_user.id)
    )

    return PaginatedResponse(
        message="Feedback retrieved successfully",
        data=SevakRatingsResponse(
            ratings=[RatingResponse.model_validate(r) for r in result.scalars()],
            average_rating=round(float(average or 0), 2),
            total_ratings=total or 0,
        ),
        pagination=pagination.meta(total or 0),
    )


@router.get("/attendance", response_model=ApiResponse[AttendanceResponse])
async def get_attendance(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(require_sevak),
    db: AsyncSession = Depends(get_db),
):
    """Worked days: jobs that were started, and the days actually checked in."""
    query = select(Booking).where(
        Booking.sevak_id == current_user.id,
        Booking.status.in_((BookingStatus.COMPLETED, BookingStatus.IN_PROGRESS)),
    )
    if start_date:
        query = query.where(Booking.scheduled_date >= start_date)
    if end_date:
        query = query.where(Booking.scheduled_date <= end_date)

    result = await db.execute(query.order_by(Booking.scheduled_date.desc()))
    bookings = result.scalars().all()

    return ApiResponse(
        message="Attendance retrieved successfully",
        data=AttendanceResponse(
            attendance=[
                AttendanceEntry(
                    booking_id=b.id,
                    scheduled_date=b.scheduled_date,
                    check_in_time=b.check_in_time,
                    check_out_time=b.check_out_time,
                    status=b.status,
                )
                for b in bookings
            ],
            total_days=len({b.scheduled_date for b in bookings}),
            present_days=len({b.scheduled_date for b in bookings if b.check_in_time}),
        ),
    )
