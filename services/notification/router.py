"""
services/notification/router.py
In-app notifications: template dispatch used by every lifecycle side effect,
per-user listing and read tracking, and notification preferences.
Push/SMS/email delivery is not wired; the stored row is the delivery.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.exceptions import NotFoundError
from shared.middleware.auth import get_current_user
from shared.models.models import Notification, NotificationSettings, NotificationType, User, utcnow
from shared.schemas.schemas import (
    ApiResponse,
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationSettingsResponse,
    NotificationSettingsUpdate,
    PaginatedResponse,
)
from shared.utils.helpers import PageParams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ── Notification Templates ────────────────────────────────────

TEMPLATES = {
    "BOOKING_CREATED": {
        "type": NotificationType.BOOKING,
        "title": "Booking Confirmed",
        "body": "Your booking #{booking_number} for {scheduled_date} at {scheduled_time} has been received.",
    },
    "BOOKING_RESCHEDULED": {
        "type": NotificationType.BOOKING,
        "title": "Booking Rescheduled",
        "body": "Booking #{booking_number} has been rescheduled to {scheduled_date} at {scheduled_time}.",
    },
    "BOOKING_CANCELLED": {
        "type": NotificationType.BOOKING,
        "title": "Booking Cancelled",
        "body": "Booking #{booking_number} has been cancelled by the resident.",
    },
    "SEVAK_ASSIGNED": {
        "type": NotificationType.BOOKING,
        "title": "Sevak Assigned",
        "body": "{sevak_name} will handle your booking #{booking_number}.",
    },
    "JOB_ASSIGNED": {
        "type": NotificationType.BOOKING,
        "title": "New Job Assigned",
        "body": "You have been assigned booking #{booking_number} on {scheduled_date} at {scheduled_time}.",
    },
    "JOB_UNASSIGNED": {
        "type": NotificationType.BOOKING,
        "title": "Job Reassigned",
        "body": "Booking #{booking_number} has been reassigned to another sevak.",
    },
    "SEVAK_CHECKED_IN": {
        "type": NotificationType.BOOKING,
        "title": "Service Started",
        "body": "Your sevak has checked in for booking #{booking_number}.",
    },
    "JOB_COMPLETED": {
        "type": NotificationType.BOOKING,
        "title": "Service Completed",
        "body": "Booking #{booking_number} is complete. Please rate your experience.",
    },
    "PAYMENT_SUCCESS": {
        "type": NotificationType.PAYMENT,
        "title": "Payment Successful",
        "body": "Payment of ₹{amount} received for booking #{booking_number}.",
    },
    "PAYMENT_FAILED": {
        "type": NotificationType.PAYMENT,
        "title": "Payment Failed",
        "body": "Payment for booking #{booking_number} could not be verified.",
    },
    "REFUND_PROCESSED": {
        "type": NotificationType.PAYMENT,
        "title": "Refund Processed",
        "body": "A refund of ₹{amount} for booking #{booking_number} has been initiated.",
    },
    "RATING_RECEIVED": {
        "type": NotificationType.RATING,
        "title": "New Rating",
        "body": "You received a {rating}-star rating for booking #{booking_number}.",
    },
}


def _jsonable(data: Optional[dict]) -> Optional[dict]:
    if data is None:
        return None
    return {k: (str(v) if isinstance(v, UUID) else v) for k, v in data.items()}


async def _enabled_types(db: AsyncSession, user_id: UUID) -> list[str]:
    enabled = await db.scalar(
        select(NotificationSettings.enabled_types).where(NotificationSettings.user_id == user_id)
    )
    if enabled is None:
        return [t.value for t in NotificationType]
    return enabled


async def dispatch_notification(
    db: AsyncSession,
    user_id: UUID,
    template_key: str,
    template_vars: Optional[dict] = None,
    data: Optional[dict] = None,
) -> Optional[Notification]:
    """
    Render a template and store an in-app notification for one user.
    Skipped when the user has switched that notification type off.
    """
    template = TEMPLATES[template_key]
    notif_type: NotificationType = template["type"]

    if notif_type.value not in await _enabled_types(db, user_id):
        logger.info("Notification %s suppressed for user %s", template_key, user_id)
        return None

    vars_ = template_vars or {}
    notif = Notification(
        user_id=user_id,
        type=notif_type,
        title=template["title"].format(**vars_),
        body=template["body"].format(**vars_),
        data=_jsonable(data),
    )
    db.add(notif)
    return notif


async def bulk_insert_notifications(
    db: AsyncSession,
    user_ids: Iterable[UUID],
    notif_type: NotificationType,
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> int:
    """Single multi-row INSERT for broadcast fan-out. Returns rows inserted."""
    now = utcnow()
    payload = _jsonable(data)
    rows: list[dict[str, Any]] = [
        {
            "user_id": uid,
            "type": notif_type,
            "title": title,
            "body": body,
            "data": payload,
            "is_read": False,
            "created_at": now,
            "updated_at": now,
        }
        for uid in user_ids
    ]
    if not rows:
        return 0
    await db.execute(insert(Notification), rows)
    return len(rows)


# ── REST Endpoints ────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[NotificationListResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    notification_type: Optional[NotificationType] = Query(None, alias="type"),
    pagination: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's in-app notifications, newest first."""
    query = select(Notification).where(Notification.user_id == current_user.id)
    if unread_only:
        query = query.where(Notification.is_read == False)
    if notification_type:
        query = query.where(Notification.type == notification_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Notification.created_at.desc())
        .offset(pagination.offset)
        .limit(pagination.limit)
    )
    unread = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read == False,
        )
    )

    return PaginatedResponse(
        message="Notifications retrieved successfully",
        data=NotificationListResponse(
            notifications=[NotificationResponse.model_validate(n) for n in result.scalars()],
            unread_count=unread or 0,
        ),
        pagination=pagination.meta(total or 0),
    )


@router.patch("/read-all", response_model=ApiResponse[MarkAllReadResponse])
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == current_user.id, Notification.is_read == False)
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return ApiResponse(
        message="All notifications marked as read",
        data=MarkAllReadResponse(updated=result.rowcount or 0),
    )


@router.get("/settings", response_model=ApiResponse[NotificationSettingsResponse])
async def get_notification_settings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(
        message="Notification settings retrieved successfully",
        data=NotificationSettingsResponse(enabled_types=await _enabled_types(db, current_user.id)),
    )


@router.put("/settings", response_model=ApiResponse[NotificationSettingsResponse])
async def update_notification_settings(
    data: NotificationSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prefs = await db.scalar(
        select(NotificationSettings).where(NotificationSettings.user_id == current_user.id)
    )
    enabled = list(dict.fromkeys(data.enabled_types))
    if prefs:
        prefs.enabled_types = enabled
    else:
        db.add(NotificationSettings(user_id=current_user.id, enabled_types=enabled))
    await db.commit()

    return ApiResponse(
        message="Notification settings updated successfully",
        data=NotificationSettingsResponse(enabled_types=enabled),
    )


@router.patch("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await db.scalar(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == current_user.id,
        )
    )
    if not notif:
        raise NotFoundError("Notification not found")

    if not notif.is_read:
        notif.is_read = True
        notif.read_at = datetime.now(timezone.utc)
    await db.commit()
    return ApiResponse(
        message="Notification marked as read",
        data=NotificationResponse.model_validate(notif),
    )
