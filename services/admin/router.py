"""
services/admin/router.py
Admin-only endpoints: dashboard, sevak moderation and document verification,
booking oversight and manual assignment, analytics, platform settings, offers,
broadcasts and the immutable audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.admin.platform import load_platform_settings
from services.booking.lifecycle import (
    ASSIGNABLE_STATUSES,
    append_timeline,
    booking_template_vars,
    get_booking_or_404,
    get_sevak_or_404,
    reassign,
    record_assignment,
    reload_booking,
)
from services.notification.router import bulk_insert_notifications, dispatch_notification
from shared.exceptions import ConflictError, NotFoundError, ValidationError
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    AssignmentHistory,
    AssignmentType,
    BlacklistRecord,
    BlacklistType,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Broadcast,
    BroadcastAudience,
    BroadcastStatus,
    DiscountType,
    Earning,
    NotificationType,
    Offer,
    Profile,
    Rating,
    Service,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    ApiResponse,
    AssignmentHistoryResponse,
    AssignSevakRequest,
    AuditLogResponse,
    BlacklistRecordResponse,
    BlacklistRequest,
    BookingCounts,
    BookingResponse,
    BroadcastRequest,
    BroadcastResponse,
    DashboardOverviewResponse,
    DocumentVerifyRequest,
    OfferCreateRequest,
    OfferResponse,
    PaginatedResponse,
    PlatformSettingsResponse,
    PlatformSettingsUpdate,
    ProfileDocument,
    ReinstateRequest,
    RevenueAnalyticsResponse,
    RevenuePoint,
    RevenueSummary,
    ServiceCounts,
    ServiceRevenue,
    SevakCounts,
    SevakDetailResponse,
    SevakPerformanceEntry,
    SevakPerformanceResponse,
    SevakStats,
    SevakSummaryResponse,
    UserResponse,
)
from shared.utils.helpers import PageParams, as_utc, to_money, today_utc, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

BROADCAST_ROLES = {
    BroadcastAudience.RESIDENTS: [UserRole.RESIDENT],
    BroadcastAudience.SEVAKS: [UserRole.SEVAK],
    BroadcastAudience.VENDORS: [UserRole.VENDOR],
    BroadcastAudience.ALL: [UserRole.RESIDENT, UserRole.SEVAK, UserRole.VENDOR],
}


# ── Helpers ────────────────────────────────────────────────────────────────────

async def log_admin_action(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    log = AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    )
    db.add(log)
    logger.info("Admin %s: %s %s %s", admin.id, action, entity_type, entity_id)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _pct(part: int, whole: int) -> float:
    return round(part * 100 / whole, 2) if whole else 0.0


async def _sevak_stats(db: AsyncSession, sevak_ids: List[UUID]) -> dict[UUID, SevakStats]:
    """Booking, rating and earning aggregates for a page of sevaks, three queries total."""
    if not sevak_ids:
        return {}

    booking_rows = await db.execute(
        select(
            Booking.sevak_id,
            func.count(Booking.id),
            func.sum(case((Booking.status == BookingStatus.COMPLETED, 1), else_=0)),
            func.sum(case((Booking.status == BookingStatus.CANCELLED, 1), else_=0)),
        )
        .where(Booking.sevak_id.in_(sevak_ids))
        .group_by(Booking.sevak_id)
    )
    bookings = {row[0]: row[1:] for row in booking_rows.all()}

    rating_rows = await db.execute(
        select(Rating.rated_to_id, func.avg(Rating.rating), func.count(Rating.id))
        .where(Rating.rated_to_id.in_(sevak_ids))
        .group_by(Rating.rated_to_id)
    )
    ratings = {row[0]: row[1:] for row in rating_rows.all()}

    earning_rows = await db.execute(
        select(Earning.sevak_id, func.sum(Earning.net_amount))
        .where(Earning.sevak_id.in_(sevak_ids))
        .group_by(Earning.sevak_id)
    )
    earnings = dict(earning_rows.all())

    stats = {}
    for sevak_id in sevak_ids:
        total, completed, cancelled = bookings.get(sevak_id, (0, 0, 0))
        average, rating_count = ratings.get(sevak_id, (0, 0))
        stats[sevak_id] = SevakStats(
            total_jobs=total or 0,
            completed_jobs=completed or 0,
            cancelled_jobs=cancelled or 0,
            average_rating=round(float(average or 0), 2),
            total_ratings=rating_count or 0,
            total_earnings=float(earnings.get(sevak_id) or 0),
        )
    return stats


async def _revenue_since(db: AsyncSession, start: datetime, end: Optional[datetime] = None) -> float:
    query = select(func.sum(Booking.total_amount)).where(
        Booking.payment_status == BookingPaymentStatus.PAID,
        Booking.paid_at >= start,
    )
    if end:
        query = query.where(Booking.paid_at < end)
    return float(await db.scalar(query) or 0)


# ── Dashboard ──────────────────────────────────────────────────────────────────

@router.get("/dashboard/overview", response_model=ApiResponse[DashboardOverviewResponse])
async def get_dashboard_overview(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counters. All queries run against the primary DB."""
    today = today_utc()
    today_start = _day_start(today)
    month_start = _day_start(today.replace(day=1))
    last_month_start = _day_start((today.replace(day=1) - timedelta(days=1)).replace(day=1))

    role_rows = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    users_by_role = {role.value: 0 for role in UserRole}
    users_by_role.update({role.value: count for role, count in role_rows.all()})

    sevak_row = (
        await db.execute(
            select(
                func.count(User.id),
                func.sum(case((User.is_active == True, 1), else_=0)),
                func.sum(case((User.is_verified == True, 1), else_=0)),
                func.sum(case((User.is_blacklisted == True, 1), else_=0)),
            ).where(User.role == UserRole.SEVAK)
        )
    ).one()

    status_rows = await db.execute(
        select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
    )
    by_status = {s.value: 0 for s in BookingStatus}
    by_status.update({s.value: count for s, count in status_rows.all()})

    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    bookings_this_month = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= month_start)
    )
    total_services = await db.scalar(select(func.count(Service.id)))
    active_services = await db.scalar(
        select(func.count(Service.id)).where(Service.is_active == True)
    )

    revenue_this_month = await _revenue_since(db, month_start)
    revenue_last_month = await _revenue_since(db, last_month_start, month_start)
    growth = (
        round((revenue_this_month - revenue_last_month) * 100 / revenue_last_month, 2)
        if revenue_last_month
        else 0.0
    )

    return ApiResponse(
        message="Dashboard overview retrieved successfully",
        data=DashboardOverviewResponse(
            users_by_role=users_by_role,
            sevaks=SevakCounts(
                total=sevak_row[0] or 0,
                active=sevak_row[1] or 0,
                verified=sevak_row[2] or 0,
                blacklisted=sevak_row[3] or 0,
            ),
            bookings=BookingCounts(
                total=sum(by_status.values()),
                by_status=by_status,
                today=bookings_today or 0,
                this_month=bookings_this_month or 0,
            ),
            services=ServiceCounts(total=total_services or 0, active=active_services or 0),
            revenue=RevenueSummary(
                today=await _revenue_since(db, today_start),
                this_month=revenue_this_month,
                last_month=revenue_last_month,
                growth=growth,
            ),
        ),
    )


# ── Sevak Moderation ───────────────────────────────────────────────────────────

@router.get("/sevaks", response_model=PaginatedResponse[List[SevakSummaryResponse]])
async def list_sevaks(
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = Query(None),
    is_blacklisted: Optional[bool] = Query(None),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User).where(User.role == UserRole.SEVAK)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                User.full_name.ilike(pattern),
                User.email.ilike(pattern),
                User.phone_number.ilike(pattern),
            )
        )
    if is_active is not None:
        query = query.where(User.is_active == is_active)
    if is_blacklisted is not None:
        query = query.where(User.is_blacklisted == is_blacklisted)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(User.created_at.desc()).offset(pagination.offset).limit(pagination.limit)
    )
    sevaks = result.scalars().all()
    stats = await _sevak_stats(db, [s.id for s in sevaks])

    return PaginatedResponse(
        message="Sevaks retrieved successfully",
        data=[
            SevakSummaryResponse(user=UserResponse.model_validate(s), stats=stats[s.id])
            for s in sevaks
        ],
        pagination=pagination.meta(total or 0),
    )


@router.get("/sevaks/{sevak_id}", response_model=ApiResponse[SevakDetailResponse])
async def get_sevak_detail(
    sevak_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    sevak = await get_sevak_or_404(sevak_id, db)
    stats = await _sevak_stats(db, [sevak.id])

    recent = await db.execute(
        select(Booking)
        .where(Booking.sevak_id == sevak.id)
        .order_by(Booking.created_at.desc())
        .limit(10)
    )
    history = await db.execute(
        select(BlacklistRecord)
        .where(BlacklistRecord.sevak_id == sevak.id)
        .order_by(BlacklistRecord.created_at.desc())
    )

    return ApiResponse(
        message="Sevak details retrieved successfully",
        data=SevakDetailResponse(
            user=UserResponse.model_validate(sevak),
            stats=stats[sevak.id],
            recent_bookings=[BookingResponse.model_validate(b) for b in recent.scalars()],
            blacklist_history=[BlacklistRecordResponse.model_validate(r) for r in history.scalars()],
        ),
    )


@router.put("/sevaks/{sevak_id}/toggle-active", response_model=ApiResponse[UserResponse])
async def toggle_sevak_active(
    sevak_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    sevak = await get_sevak_or_404(sevak_id, db)
    sevak.is_active = not sevak.is_active

    await log_admin_action(db, current_user, "TOGGLE_SEVAK_ACTIVE", "User", str(sevak_id),
                           {"is_active": sevak.is_active}, request)
    await db.commit()
    state = "activated" if sevak.is_active else "deactivated"
    return ApiResponse(message=f"Sevak {state} successfully", data=UserResponse.model_validate(sevak))


@router.post("/sevaks/{sevak_id}/blacklist", response_model=ApiResponse[BlacklistRecordResponse])
async def blacklist_sevak(
    sevak_id: UUID,
    data: BlacklistRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """
    Blacklist a sevak. The user flag is the gate checked at assignment;
    the record keeps the history.
    """
    sevak = await get_sevak_or_404(sevak_id, db)
    if sevak.is_blacklisted:
        raise ValidationError("Sevak is already blacklisted")

    now = utcnow()
    blacklist_type = BlacklistType(data.type)
    end_date = now + timedelta(days=data.duration) if blacklist_type == BlacklistType.TEMPORARY else None

    sevak.is_blacklisted = True
    sevak.blacklist_reason = data.reason
    sevak.blacklisted_at = now
    sevak.blacklisted_by_id = current_user.id

    record = BlacklistRecord(
        sevak_id=sevak.id,
        blacklisted_by_id=current_user.id,
        type=blacklist_type,
        reason=data.reason,
        detailed_notes=data.detailed_notes,
        duration_days=data.duration if blacklist_type == BlacklistType.TEMPORARY else None,
        end_date=end_date,
        is_active=True,
    )
    db.add(record)

    await log_admin_action(db, current_user, "BLACKLIST_SEVAK", "User", str(sevak_id),
                           {"type": blacklist_type.value, "reason": data.reason, "duration": data.duration}, request)
    await db.commit()
    return ApiResponse(message="Sevak blacklisted successfully", data=BlacklistRecordResponse.model_validate(record))


@router.put("/sevaks/{sevak_id}/reinstate", response_model=ApiResponse[UserResponse])
async def reinstate_sevak(
    sevak_id: UUID,
    data: ReinstateRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    sevak = await get_sevak_or_404(sevak_id, db)
    if not sevak.is_blacklisted:
        raise ValidationError("Sevak is not blacklisted")

    sevak.is_blacklisted = False
    sevak.blacklist_reason = None
    sevak.blacklisted_at = None
    sevak.blacklisted_by_id = None

    result = await db.execute(
        select(BlacklistRecord).where(
            BlacklistRecord.sevak_id == sevak.id,
            BlacklistRecord.is_active == True,
        )
    )
    now = utcnow()
    for record in result.scalars():
        record.is_active = False
        record.reinstated_by_id = current_user.id
        record.reinstatement_reason = data.reason
        record.reinstated_at = now

    await log_admin_action(db, current_user, "REINSTATE_SEVAK", "User", str(sevak_id), {"reason": data.reason}, request)
    await db.commit()
    return ApiResponse(message="Sevak reinstated successfully", data=UserResponse.model_validate(sevak))


@router.put("/sevaks/{sevak_id}/verify", response_model=ApiResponse[ProfileDocument])
async def verify_sevak_document(
    sevak_id: UUID,
    data: DocumentVerifyRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Mark one of a sevak's uploaded documents verified or rejected."""
    sevak = await get_sevak_or_404(sevak_id, db)
    profile = await db.scalar(select(Profile).where(Profile.user_id == sevak.id))
    if not profile:
        raise NotFoundError("Profile not found")

    documents = [dict(doc) for doc in profile.documents]
    document = next((doc for doc in documents if doc["id"] == data.document_id), None)
    if document is None:
        raise NotFoundError("Document not found")

    document["verification_status"] = data.status
    document["verification_notes"] = data.notes
    document["verified_by_id"] = str(current_user.id)
    document["verified_at"] = utcnow().isoformat()
    profile.documents = documents

    await log_admin_action(db, current_user, "VERIFY_SEVAK_DOCUMENT", "Profile", str(profile.id),
                           {"document_id": data.document_id, "status": data.status, "notes": data.notes}, request)
    await db.commit()
    return ApiResponse(message="Document verified successfully", data=ProfileDocument.model_validate(document))


# ── Booking Oversight ──────────────────────────────────────────────────────────

@router.get("/bookings", response_model=PaginatedResponse[List[BookingResponse]])
async def list_all_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    sevak_id: Optional[UUID] = Query(None),
    resident_id: Optional[UUID] = Query(None),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin: view all bookings with status, schedule window, sevak or resident filter."""
    query = select(Booking)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    if date_from:
        query = query.where(Booking.scheduled_date >= date_from)
    if date_to:
        query = query.where(Booking.scheduled_date <= date_to)
    if sevak_id:
        query = query.where(Booking.sevak_id == sevak_id)
    if resident_id:
        query = query.where(Booking.resident_id == resident_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset(pagination.offset).limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Bookings retrieved successfully",
        data=[BookingResponse.model_validate(b) for b in result.scalars()],
        pagination=pagination.meta(total or 0),
    )


@router.post("/bookings/{booking_id}/assign", response_model=ApiResponse[BookingResponse])
async def assign_sevak(
    booking_id: UUID,
    data: AssignSevakRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """
    Assign or reassign a sevak.
    The write is conditional on the sevak and status read here; if a sevak
    self-accepted in between, the admin gets 409 and can retry.
    """
    booking = await get_booking_or_404(booking_id, db)
    sevak = await get_sevak_or_404(data.sevak_id, db)
    if sevak.is_blacklisted:
        raise ValidationError("Cannot assign blacklisted sevak")
    if not sevak.is_active:
        raise ValidationError("Cannot assign an inactive sevak")
    if booking.status not in ASSIGNABLE_STATUSES:
        raise ValidationError("Cannot assign sevak to this booking")
    if booking.sevak_id == sevak.id:
        raise ValidationError("Sevak is already assigned to this booking")

    previous_sevak_id = booking.sevak_id
    swapped = await reassign(db, booking.id, sevak.id, previous_sevak_id, booking.status)
    if not swapped:
        raise ConflictError("Booking was modified concurrently, please retry")
    booking = await reload_booking(booking.id, db)

    is_reassignment = previous_sevak_id is not None
    assignment_type = AssignmentType.REASSIGNMENT if is_reassignment else AssignmentType.MANUAL
    append_timeline(
        booking,
        BookingStatus.ASSIGNED.value,
        "Reassigned by admin" if is_reassignment else "Assigned by admin",
    )
    record_assignment(
        db,
        booking,
        sevak.id,
        current_user,
        assignment_type,
        previous_sevak_id=previous_sevak_id,
        reason=data.reason,
        notes=data.notes,
    )

    template_vars = booking_template_vars(booking)
    await dispatch_notification(db, sevak.id, "JOB_ASSIGNED", template_vars, data={"booking_id": booking.id})
    if previous_sevak_id:
        await dispatch_notification(
            db, previous_sevak_id, "JOB_UNASSIGNED", template_vars, data={"booking_id": booking.id}
        )
    await dispatch_notification(
        db,
        booking.resident_id,
        "SEVAK_ASSIGNED",
        booking_template_vars(booking, sevak_name=sevak.full_name),
        data={"booking_id": booking.id, "sevak_id": sevak.id},
    )

    await log_admin_action(db, current_user, "ASSIGN_SEVAK", "Booking", str(booking_id), {
        "sevak_id": str(sevak.id),
        "previous_sevak_id": str(previous_sevak_id) if previous_sevak_id else None,
        "type": assignment_type.value,
    }, request)
    await db.commit()
    return ApiResponse(message="Sevak assigned successfully", data=BookingResponse.model_validate(booking))


@router.get(
    "/bookings/{booking_id}/assignment-history",
    response_model=ApiResponse[List[AssignmentHistoryResponse]],
)
async def get_assignment_history(
    booking_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await get_booking_or_404(booking_id, db)
    result = await db.execute(
        select(AssignmentHistory)
        .where(AssignmentHistory.booking_id == booking_id)
        .order_by(AssignmentHistory.created_at.asc())
    )
    return ApiResponse(
        message="Assignment history retrieved successfully",
        data=[AssignmentHistoryResponse.model_validate(h) for h in result.scalars()],
    )


# ── Analytics ─────────────────────────────────────────────────────────────────

def _period_key(paid_at: datetime, group_by: str) -> str:
    if group_by == "day":
        return paid_at.strftime("%Y-%m-%d")
    if group_by == "week":
        year, week, _ = paid_at.isocalendar()
        return f"{year}-W{week:02d}"
    return paid_at.strftime("%Y-%m")


@router.get("/analytics/revenue", response_model=ApiResponse[RevenueAnalyticsResponse])
async def get_revenue_analytics(
    group_by: Literal["day", "week", "month"] = Query("day"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Revenue from paid bookings, bucketed by paid_at, plus the top ten services."""
    filters = [
        Booking.payment_status == BookingPaymentStatus.PAID,
        Booking.paid_at.is_not(None),
    ]
    if start_date:
        filters.append(Booking.paid_at >= _day_start(start_date))
    if end_date:
        filters.append(Booking.paid_at < _day_start(end_date + timedelta(days=1)))

    result = await db.execute(select(Booking.paid_at, Booking.total_amount).where(*filters))
    rows = result.all()

    buckets: dict[str, list] = defaultdict(lambda: [0, 0])
    for paid_at, amount in rows:
        bucket = buckets[_period_key(as_utc(paid_at), group_by)]
        bucket[0] += amount
        bucket[1] += 1

    service_rows = await db.execute(
        select(
            Service.id,
            Service.name,
            func.sum(Booking.total_amount).label("revenue"),
            func.count(Booking.id),
        )
        .select_from(Booking)
        .join(Service, Service.id == Booking.service_id)
        .where(*filters)
        .group_by(Service.id, Service.name)
        .order_by(func.sum(Booking.total_amount).desc())
        .limit(10)
    )

    total_revenue = float(sum(amount for _, amount in rows))
    count = len(rows)
    return ApiResponse(
        message="Revenue analytics retrieved successfully",
        data=RevenueAnalyticsResponse(
            group_by=group_by,
            total_revenue=total_revenue,
            transaction_count=count,
            average_order_value=round(total_revenue / count, 2) if count else 0.0,
            revenue_by_period=[
                RevenuePoint(period=key, revenue=float(revenue), count=n)
                for key, (revenue, n) in sorted(buckets.items())
            ],
            revenue_by_service=[
                ServiceRevenue(service_id=sid, service_name=name, revenue=float(revenue or 0), count=n)
                for sid, name, revenue, n in service_rows.all()
            ],
        ),
    )


@router.get("/analytics/sevak-performance", response_model=ApiResponse[SevakPerformanceResponse])
async def get_sevak_performance(
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.role == UserRole.SEVAK))
    sevaks = result.scalars().all()
    stats = await _sevak_stats(db, [s.id for s in sevaks])

    entries = sorted(
        (
            SevakPerformanceEntry(
                sevak_id=s.id,
                full_name=s.full_name,
                total_jobs=stats[s.id].total_jobs,
                completed_jobs=stats[s.id].completed_jobs,
                cancelled_jobs=stats[s.id].cancelled_jobs,
                completion_rate=_pct(stats[s.id].completed_jobs, stats[s.id].total_jobs),
                cancellation_rate=_pct(stats[s.id].cancelled_jobs, stats[s.id].total_jobs),
                average_rating=stats[s.id].average_rating,
            )
            for s in sevaks
        ),
        key=lambda e: e.completed_jobs,
        reverse=True,
    )
    return ApiResponse(
        message="Sevak performance retrieved successfully",
        data=SevakPerformanceResponse(sevaks=entries[:limit], top_performers=entries[:5]),
    )


# ── Platform Settings & Offers ───────────────────────────────────────────────

@router.get("/settings", response_model=ApiResponse[PlatformSettingsResponse])
async def get_platform_settings(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    row = await load_platform_settings(db)
    await db.commit()
    return ApiResponse(
        message="Platform settings retrieved successfully",
        data=PlatformSettingsResponse.model_validate(row),
    )


@router.put("/settings", response_model=ApiResponse[PlatformSettingsResponse])
async def update_platform_settings(
    data: PlatformSettingsUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Partial update of the settings row. A new commission rate applies to jobs completed afterwards."""
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No settings to update")

    row = await load_platform_settings(db)
    for field, value in changes.items():
        if field == "commission_rate":
            value = to_money(value)
        elif field == "features":
            value = {**row.features, **value}
        setattr(row, field, value)
    row.updated_by_id = current_user.id

    await log_admin_action(db, current_user, "UPDATE_PLATFORM_SETTINGS", "PlatformSettings", str(row.id),
                           data.model_dump(exclude_unset=True, mode="json"), request)
    await db.commit()
    return ApiResponse(
        message="Platform settings updated successfully",
        data=PlatformSettingsResponse.model_validate(row),
    )


@router.get("/offers", response_model=PaginatedResponse[List[OfferResponse]])
async def list_offers(
    status_filter: Optional[Literal["active"]] = Query(None, alias="status"),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """All offers, newest first. status=active keeps the ones redeemable right now."""
    query = select(Offer)
    if status_filter == "active":
        now = utcnow()
        query = query.where(Offer.is_active == True, Offer.valid_from <= now, Offer.valid_to >= now)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Offer.created_at.desc()).offset(pagination.offset).limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Offers retrieved successfully",
        data=[OfferResponse.model_validate(o) for o in result.scalars()],
        pagination=pagination.meta(total or 0),
    )


@router.post(
    "/offers",
    response_model=ApiResponse[OfferResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_offer(
    data: OfferCreateRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    if await db.scalar(select(Offer.id).where(Offer.code == data.code)):
        raise ConflictError("Offer code already exists")

    if data.applicable_service_ids:
        found = await db.scalar(
            select(func.count(Service.id)).where(Service.id.in_(data.applicable_service_ids))
        )
        if found != len(set(data.applicable_service_ids)):
            raise ValidationError("One or more applicable services do not exist")

    offer = Offer(
        title=data.title,
        description=data.description,
        code=data.code,
        discount_type=DiscountType(data.discount_type),
        discount_value=to_money(data.discount_value),
        min_order_value=to_money(data.min_order_value) if data.min_order_value is not None else None,
        max_discount=to_money(data.max_discount) if data.max_discount is not None else None,
        valid_from=data.valid_from,
        valid_to=data.valid_to,
        usage_limit=data.usage_limit,
        usage_count=0,
        applicable_service_ids=[str(sid) for sid in data.applicable_service_ids],
        is_active=data.is_active,
        created_by_id=current_user.id,
    )
    db.add(offer)
    await db.flush()

    await log_admin_action(db, current_user, "CREATE_OFFER", "Offer", str(offer.id), {"code": offer.code}, request)
    await db.commit()
    return ApiResponse(message="Offer created successfully", data=OfferResponse.model_validate(offer))


# ── Broadcasts ────────────────────────────────────────────────────────────────

@router.post("/notifications/broadcast", response_model=ApiResponse[BroadcastResponse])
async def send_broadcast(
    data: BroadcastRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Fan a system notification out to an audience with one multi-row insert."""
    audience = BroadcastAudience(data.target_audience)
    if audience == BroadcastAudience.CUSTOM:
        result = await db.execute(select(User.id).where(User.id.in_(data.user_ids)))
    else:
        result = await db.execute(
            select(User.id).where(User.role.in_(BROADCAST_ROLES[audience]), User.is_active == True)
        )
    recipients = list(result.scalars())
    if not recipients:
        raise ValidationError("No recipients found for this audience")

    broadcast = Broadcast(
        title=data.title,
        message=data.message,
        target_audience=audience,
        target_user_ids=[str(uid) for uid in data.user_ids] if audience == BroadcastAudience.CUSTOM else [],
        sent_by_id=current_user.id,
        recipient_count=len(recipients),
        status=BroadcastStatus.PENDING,
    )
    db.add(broadcast)
    await db.flush()

    delivered = await bulk_insert_notifications(
        db,
        recipients,
        NotificationType.SYSTEM,
        data.title,
        data.message,
        data={"broadcast_id": broadcast.id},
    )
    broadcast.delivered_count = delivered
    broadcast.status = BroadcastStatus.SENT
    broadcast.sent_at = utcnow()

    await log_admin_action(db, current_user, "SEND_BROADCAST", "Broadcast", str(broadcast.id),
                           {"audience": audience.value, "recipients": delivered}, request)
    await db.commit()
    return ApiResponse(message="Broadcast sent successfully", data=BroadcastResponse.model_validate(broadcast))


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-logs", response_model=PaginatedResponse[List[AuditLogResponse]])
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type e.g. ASSIGN_SEVAK"),
    entity_type: Optional[str] = Query(None),
    pagination: PageParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, append-only and never editable."""
    query = select(AdminAuditLog)
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc())
        .offset(pagination.offset)
        .limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Audit logs retrieved successfully",
        data=[AuditLogResponse.model_validate(log) for log in result.scalars()],
        pagination=pagination.meta(total or 0),
    )
