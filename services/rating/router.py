"""
services/rating/router.py
Resident ratings of completed bookings and the service rating aggregate.
"""

import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import booking_template_vars, get_booking_or_404
from services.notification.router import dispatch_notification
from shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from shared.middleware.auth import get_current_user, require_resident
from shared.models.models import BookingStatus, Rating, Service, User, UserRole
from shared.schemas.schemas import (
    ApiResponse,
    PaginatedResponse,
    RatingCreateRequest,
    RatingReportRequest,
    RatingResponse,
    RatingUpdateRequest,
    SevakRatingsResponse,
)
from shared.utils.helpers import PageParams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ratings", tags=["Ratings"])

SORT_ORDERS = {
    "recent": (Rating.created_at.desc(),),
    "highest": (Rating.rating.desc(), Rating.created_at.desc()),
    "lowest": (Rating.rating.asc(), Rating.created_at.desc()),
}


async def _refresh_service_rating(db: AsyncSession, service_id: UUID) -> None:
    """Recompute the denormalized aggregate from the rating rows themselves."""
    avg_result = await db.execute(
        select(func.avg(Rating.rating), func.count(Rating.id)).where(Rating.service_id == service_id)
    )
    avg, count = avg_result.one()

    await db.execute(
        update(Service)
        .where(Service.id == service_id)
        .values(average_rating=round(float(avg or 0), 2), total_ratings=count)
    )


async def _get_rating_or_404(rating_id: UUID, db: AsyncSession) -> Rating:
    rating = await db.scalar(select(Rating).where(Rating.id == rating_id))
    if not rating:
        raise NotFoundError("Rating not found")
    return rating


@router.post("", response_model=ApiResponse[RatingResponse], status_code=status.HTTP_201_CREATED)
async def create_rating(
    data: RatingCreateRequest,
    current_user: User = Depends(require_resident),
    db: AsyncSession = Depends(get_db),
):
    """
    Rate the sevak on a completed booking.
    - One rating per booking (the unique index on booking_id is the final guard)
    - Only the resident who made the booking can rate
    """
    booking = await get_booking_or_404(data.booking_id, db)
    if booking.resident_id != current_user.id:
        raise ForbiddenError("You can only rate bookings you created")
    if booking.status != BookingStatus.COMPLETED:
        raise ValidationError("Can only rate completed bookings")
    if booking.sevak_id is None or data.rated_to != booking.sevak_id:
        raise ValidationError("You can only rate the sevak who served this booking")

    existing = await db.scalar(select(Rating.id).where(Rating.booking_id == booking.id))
    if existing:
        raise ValidationError("Rating already exists for this booking")

    rating = Rating(
        booking_id=booking.id,
        rated_by_id=current_user.id,
        rated_to_id=booking.sevak_id,
        service_id=booking.service_id,
        rating=data.rating,
        comment=data.comment,
    )
    db.add(rating)
    await db.flush()

    await _refresh_service_rating(db, booking.service_id)
    await dispatch_notification(
        db,
        booking.sevak_id,
        "RATING_RECEIVED",
        booking_template_vars(booking, rating=data.rating),
        data={"booking_id": booking.id, "rating_id": rating.id},
    )
    await db.commit()

    logger.info("Booking %s rated %d", booking.booking_number, data.rating)
    return ApiResponse(message="Rating submitted successfully", data=RatingResponse.model_validate(rating))


@router.get("/sevak/{sevak_id}", response_model=PaginatedResponse[SevakRatingsResponse])
async def get_sevak_ratings(
    sevak_id: UUID,
    sort: Literal["recent", "highest", "lowest"] = Query("recent"),
    pagination: PageParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Public: ratings a sevak has received."""
    query = select(Rating).where(Rating.rated_to_id == sevak_id)
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    average = await db.scalar(select(func.avg(Rating.rating)).where(Rating.rated_to_id == sevak_id))

    result = await db.execute(
        query.order_by(*SORT_ORDERS[sort]).offset(pagination.offset).limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Ratings retrieved successfully",
        data=SevakRatingsResponse(
            ratings=[RatingResponse.model_validate(r) for r in result.scalars()],
            average_rating=round(float(average or 0), 2),
            total_ratings=total or 0,
        ),
        pagination=pagination.meta(total or 0),
    )


@router.get("/booking/{booking_id}", response_model=ApiResponse[RatingResponse])
async def get_booking_rating(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking_or_404(booking_id, db)
    is_party = current_user.id in (booking.resident_id, booking.sevak_id)
    if not is_party and current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Access denied")

    rating = await db.scalar(select(Rating).where(Rating.booking_id == booking.id))
    if not rating:
        raise NotFoundError("Rating not found")
    return ApiResponse(message="Rating retrieved successfully", data=RatingResponse.model_validate(rating))


@router.put("/{rating_id}", response_model=ApiResponse[RatingResponse])
async def update_rating(
    rating_id: UUID,
    data: RatingUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rating = await _get_rating_or_404(rating_id, db)
    if rating.rated_by_id != current_user.id:
        raise ForbiddenError("You can only update your own ratings")

    if data.rating is not None:
        rating.rating = data.rating
    if data.comment is not None:
        rating.comment = data.comment
    await db.flush()

    await _refresh_service_rating(db, rating.service_id)
    await db.commit()
    return ApiResponse(message="Rating updated successfully", data=RatingResponse.model_validate(rating))


@router.post("/{rating_id}/report", response_model=ApiResponse[RatingResponse])
async def report_rating(
    rating_id: UUID,
    data: RatingReportRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Flag a rating for moderation. Open to the rated sevak and admins."""
    rating = await _get_rating_or_404(rating_id, db)
    if rating.rated_to_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Access denied")

    rating.is_reported = True
    rating.report_reason = data.reason
    await db.commit()

    logger.warning("Rating %s reported: %s", rating.id, data.reason)
    return ApiResponse(message="Rating reported successfully", data=RatingResponse.model_validate(rating))
