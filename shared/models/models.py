"""
shared/models/models.py
All SQLAlchemy ORM models for the Sevak home-services platform.
UUID primary keys throughout; JSON columns become JSONB on PostgreSQL.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Persist enum values (e.g. 'in-progress') rather than member names."""
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    RESIDENT = "resident"
    SEVAK = "sevak"
    VENDOR = "vendor"
    ADMIN = "admin"


class OTPType(str, PyEnum):
    REGISTRATION = "registration"
    LOGIN = "login"
    PASSWORD_RESET = "password-reset"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_BOOKING_STATUSES = (
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REFUNDED,
)


class BookingPaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class RefundStatus(str, PyEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class AssignmentType(str, PyEnum):
    AUTO = "auto"
    MANUAL = "manual"
    REASSIGNMENT = "reassignment"


class IssueType(str, PyEnum):
    DAMAGE = "damage"
    MISSING_MATERIALS = "missing-materials"
    ACCESS_DENIED = "access-denied"
    SAFETY_CONCERN = "safety-concern"
    OTHER = "other"


class IssueStatus(str, PyEnum):
    OPEN = "open"
    RESOLVED = "resolved"


class EarningStatus(str, PyEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    PAID = "paid"


class BlacklistType(str, PyEnum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class PaymentStatus(str, PyEnum):
    CREATED = "created"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class NotificationType(str, PyEnum):
    BOOKING = "booking"
    PAYMENT = "payment"
    RATING = "rating"
    OFFER = "offer"
    SYSTEM = "system"


class BroadcastAudience(str, PyEnum):
    ALL = "all"
    RESIDENTS = "residents"
    SEVAKS = "sevaks"
    VENDORS = "vendors"
    CUSTOM = "custom"


class BroadcastStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DocumentType(str, PyEnum):
    AADHAAR = "aadhaar"
    PAN = "pan"
    CERTIFICATE = "certificate"
    OTHER = "other"


class VerificationStatus(str, PyEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DiscountType(str, PyEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Identity ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account for every role. Sevak moderation fields live here too."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), nullable=False, default=UserRole.RESIDENT
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Blacklist gate, checked at assignment time
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blacklist_reason: Mapped[Optional[str]] = mapped_column(Text)
    blacklisted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    blacklisted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class OTPCode(Base):
    """Short-lived one-time codes for registration and password reset."""
    __tablename__ = "otp_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(10), nullable=False)
    type: Mapped[OTPType] = mapped_column(_enum(OTPType, "otp_type"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_otp_codes_user_type", "user_id", "type"),)


class RefreshToken(Base):
    """Refresh tokens stored (hashed) for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class NotificationSettings(TimestampMixin, Base):
    """Per-user opt-in list of notification types."""
    __tablename__ = "notification_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    enabled_types: Mapped[list] = mapped_column(
        JSONType, nullable=False, default=lambda: [t.value for t in NotificationType]
    )


class Profile(TimestampMixin, Base):
    """
    Role-specific profile details kept apart from the login record.
    documents holds dicts: id, type, url, verification_status,
    verification_notes, verified_by_id, verified_at, uploaded_at.
    """
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    avatar_url: Mapped[Optional[str]] = mapped_column(Text)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    gender: Mapped[Optional[str]] = mapped_column(String(10))
    address: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    # Resident
    emergency_contact: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    # Sevak
    skills: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    experience_years: Mapped[Optional[int]] = mapped_column(Integer)
    bio: Mapped[Optional[str]] = mapped_column(String(500))
    documents: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Vendor
    business_name: Mapped[Optional[str]] = mapped_column(String(255))
    business_type: Mapped[Optional[str]] = mapped_column(String(100))
    gst_number: Mapped[Optional[str]] = mapped_column(String(20))
    services_offered: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    completion_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# ── Catalog ───────────────────────────────────────────────────

class Category(TimestampMixin, Base):
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Service(TimestampMixin, Base):
    """Bookable service. Ratings and booking count are denormalized counters."""
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(100))
    image_url: Mapped[Optional[str]] = mapped_column(Text)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_unit: Mapped[str] = mapped_column(String(30), default="per service", nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=60, nullable=False)  # minutes
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tags: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))

    average_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=0, nullable=False)
    total_ratings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    booking_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_services_category", "category"),
        CheckConstraint("base_price >= 0", name="ck_service_base_price"),
    )


class Favorite(Base):
    __tablename__ = "favorites"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "service_id", name="uq_favorite"),)


# ── Booking ───────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    Core booking entity.
    pending → assigned → in-progress → completed, with cancelled/refunded
    reachable from any non-terminal status.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    resident_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("services.id"), nullable=False)
    sevak_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))

    # Schedule
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(20), nullable=False)
    estimated_duration: Mapped[int] = mapped_column(Integer, default=60, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"), nullable=False, default=BookingStatus.PENDING
    )

    address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(String(500))

    # Pricing (frozen at creation)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    additional_charges: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Payment
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        _enum(BookingPaymentStatus, "booking_payment_status"),
        nullable=False,
        default=BookingPaymentStatus.PENDING,
    )
    payment_id: Mapped[Optional[str]] = mapped_column(String(100))
    payment_method: Mapped[Optional[str]] = mapped_column(String(30))
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Check-in OTP
    check_in_otp: Mapped[Optional[str]] = mapped_column(String(6))
    check_in_otp_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_in_otp_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Execution
    check_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_out_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_in_location: Mapped[Optional[dict]] = mapped_column(JSONType)
    check_out_location: Mapped[Optional[dict]] = mapped_column(JSONType)
    before_images: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    after_images: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    checklist_items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    completion_notes: Mapped[Optional[str]] = mapped_column(String(500))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Cancellation
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    refund_status: Mapped[Optional[RefundStatus]] = mapped_column(_enum(RefundStatus, "refund_status"))

    timeline: Mapped[List["BookingTimelineEntry"]] = relationship(
        back_populates="booking",
        lazy="selectin",
        order_by="BookingTimelineEntry.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_bookings_resident_id", "resident_id"),
        Index("ix_bookings_sevak_id", "sevak_id"),
        Index("ix_bookings_service_date", "service_id", "scheduled_date"),
        Index("ix_bookings_status", "status"),
    )


class BookingTimelineEntry(Base):
    """Append-only audit trail of booking transitions."""
    __tablename__ = "booking_timeline"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    booking: Mapped["Booking"] = relationship(back_populates="timeline")

    __table_args__ = (Index("ix_booking_timeline_booking_id", "booking_id"),)


class AssignmentHistory(Base):
    """Immutable row per assignment or reassignment."""
    __tablename__ = "assignment_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    sevak_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    assigned_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    assignment_type: Mapped[AssignmentType] = mapped_column(
        _enum(AssignmentType, "assignment_type"), nullable=False
    )
    previous_sevak_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))
    reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_assignment_history_booking_id", "booking_id"),)


class Issue(TimestampMixin, Base):
    """Problem reported by a sevak while on a job."""
    __tablename__ = "issues"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    reported_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    issue_type: Mapped[IssueType] = mapped_column(_enum(IssueType, "issue_type"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    images: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[IssueStatus] = mapped_column(
        _enum(IssueStatus, "issue_status"), default=IssueStatus.OPEN, nullable=False
    )

    __table_args__ = (Index("ix_issues_booking_id", "booking_id"),)


# ── Earnings & Moderation ─────────────────────────────────────

class Earning(TimestampMixin, Base):
    """Commission split for one completed booking."""
    __tablename__ = "earnings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sevak_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    commission: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[EarningStatus] = mapped_column(
        _enum(EarningStatus, "earning_status"), default=EarningStatus.PENDING, nullable=False
    )

    __table_args__ = (Index("ix_earnings_sevak_id", "sevak_id"),)


class BlacklistRecord(TimestampMixin, Base):
    """Historical record of a blacklist action. User.is_blacklisted is the gate."""
    __tablename__ = "blacklist_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sevak_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    blacklisted_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    type: Mapped[BlacklistType] = mapped_column(_enum(BlacklistType, "blacklist_type"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    detailed_notes: Mapped[Optional[str]] = mapped_column(Text)
    duration_days: Mapped[Optional[int]] = mapped_column(Integer)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reinstated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))
    reinstatement_reason: Mapped[Optional[str]] = mapped_column(Text)
    reinstated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_blacklist_records_sevak_id", "sevak_id"),)


# ── Payments ──────────────────────────────────────────────────

class Payment(TimestampMixin, Base):
    """Gateway order for a booking. A booking may accumulate several attempts."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    razorpay_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(String(100))
    razorpay_signature: Mapped[Optional[str]] = mapped_column(String(500))

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), default=PaymentStatus.CREATED, nullable=False
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    refund_id: Mapped[Optional[str]] = mapped_column(String(100))
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    refund_status: Mapped[Optional[RefundStatus]] = mapped_column(
        _enum(RefundStatus, "payment_refund_status")
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_payments_booking_id", "booking_id"),
        Index("ix_payments_user_id", "user_id"),
    )


class Invoice(TimestampMixin, Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    payment_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("payments.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    __table_args__ = (Index("ix_invoices_booking_id", "booking_id"),)


# ── Ratings ───────────────────────────────────────────────────

class Rating(TimestampMixin, Base):
    """Resident rating of a completed booking. One per booking."""
    __tablename__ = "ratings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    rated_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    rated_to_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("services.id"), nullable=False)
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    is_reported: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    report_reason: Mapped[Optional[str]] = mapped_column(String(255))

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),
        Index("ix_ratings_rated_to_id", "rated_to_id"),
        Index("ix_ratings_service_id", "service_id"),
    )


# ── Notifications ─────────────────────────────────────────────

class Notification(TimestampMixin, Base):
    """In-app notification. Only is_read/read_at change after insert."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONType)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


class Broadcast(TimestampMixin, Base):
    __tablename__ = "broadcasts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    target_audience: Mapped[BroadcastAudience] = mapped_column(
        _enum(BroadcastAudience, "broadcast_audience"), nullable=False
    )
    target_user_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    sent_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    recipient_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivered_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[BroadcastStatus] = mapped_column(
        _enum(BroadcastStatus, "broadcast_status"), default=BroadcastStatus.PENDING, nullable=False
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ── Admin ─────────────────────────────────────────────────────

class PlatformSettings(TimestampMixin, Base):
    """Single row of operator-tunable settings. Created with defaults on first read."""
    __tablename__ = "platform_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform_name: Mapped[str] = mapped_column(String(100), default="Sevak", nullable=False)
    support_email: Mapped[Optional[str]] = mapped_column(String(255))
    support_phone: Mapped[Optional[str]] = mapped_column(String(20))
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("10"), nullable=False)
    cancellation_window_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    refund_processing_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    maintenance_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    maintenance_message: Mapped[Optional[str]] = mapped_column(Text)
    features: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    updated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))


class Offer(TimestampMixin, Base):
    __tablename__ = "offers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    code: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(_enum(DiscountType, "discount_type"), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min_order_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    max_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    applicable_service_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    __table_args__ = (Index("ix_offers_active_window", "is_active", "valid_from", "valid_to"),)


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    payload: Mapped[Optional[dict]] = mapped_column(JSONType)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
