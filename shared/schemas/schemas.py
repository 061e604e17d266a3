"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Every response is wrapped in ApiResponse / PaginatedResponse.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import (
    AssignmentType,
    BlacklistType,
    BookingPaymentStatus,
    BookingStatus,
    BroadcastAudience,
    BroadcastStatus,
    DiscountType,
    DocumentType,
    EarningStatus,
    IssueStatus,
    IssueType,
    NotificationType,
    OTPType,
    PaymentStatus,
    RefundStatus,
    UserRole,
    VerificationStatus,
)

T = TypeVar("T")

TIME_SLOT_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginationMeta(BaseSchema):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None


class PaginatedResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: T
    pagination: PaginationMeta


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errors: Optional[List[Dict[str, Any]]] = None


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    full_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone_number: str = Field(..., pattern=r"^\+?[0-9]{10,15}$")
    password: str = Field(..., min_length=8, max_length=128)
    role: Literal["resident", "sevak", "vendor"] = "resident"


class RegisterResponse(BaseSchema):
    user_id: uuid.UUID
    email: EmailStr
    phone_number: str
    otp: Optional[str] = None  # only echoed in development


class VerifyOTPRequest(BaseSchema):
    user_id: uuid.UUID
    otp: str = Field(..., min_length=4, max_length=10)
    type: OTPType = OTPType.REGISTRATION


class LoginRequest(BaseSchema):
    phone_or_email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseSchema):
    refresh_token: str = Field(..., min_length=10)


class ForgotPasswordRequest(BaseSchema):
    phone_or_email: str = Field(..., min_length=3, max_length=255)


class ResetPasswordRequest(BaseSchema):
    phone_or_email: str = Field(..., min_length=3, max_length=255)
    otp: str = Field(..., min_length=4, max_length=10)
    new_password: str = Field(..., min_length=8, max_length=128)


class LogoutRequest(BaseSchema):
    refresh_token: Optional[str] = None


class UserResponse(BaseSchema):
    id: uuid.UUID
    full_name: str
    email: EmailStr
    phone_number: str
    role: UserRole
    is_verified: bool
    is_active: bool
    is_blacklisted: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class TokenResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class AuthResponse(TokenResponse):
    user: UserResponse


class ForgotPasswordResponse(BaseSchema):
    otp: Optional[str] = None


# ── Catalog ───────────────────────────────────────────────────

class CategoryResponse(BaseSchema):
    id: uuid.UUID
    name: str
    icon: Optional[str]
    description: Optional[str]
    display_order: int


class ServiceResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: str
    category: str
    subcategory: Optional[str]
    image_url: Optional[str]
    base_price: float
    price_unit: str
    duration: int
    is_active: bool
    tags: List[str]
    average_rating: float
    total_ratings: int
    booking_count: int


class FavoriteCreateRequest(BaseSchema):
    service_id: uuid.UUID


# ── Booking ───────────────────────────────────────────────────

class AddressSchema(BaseSchema):
    flat_number: str = Field(..., min_length=1, max_length=50)
    building: Optional[str] = Field(None, max_length=100)
    society: Optional[str] = Field(None, max_length=100)
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")
    landmark: Optional[str] = Field(None, max_length=255)


class BookingCreateRequest(BaseSchema):
    service_id: uuid.UUID
    scheduled_date: date
    scheduled_time: str = Field(..., pattern=TIME_SLOT_PATTERN)
    address: AddressSchema
    special_instructions: Optional[str] = Field(None, max_length=500)

    @field_validator("scheduled_date")
    @classmethod
    def must_not_be_past(cls, v: date) -> date:
        if v < datetime.now(timezone.utc).date():
            raise ValueError("Booking date cannot be in the past")
        return v


class BookingRescheduleRequest(BaseSchema):
    new_date: date
    new_time: str = Field(..., pattern=TIME_SLOT_PATTERN)

    @field_validator("new_date")
    @classmethod
    def must_not_be_past(cls, v: date) -> date:
        if v < datetime.now(timezone.utc).date():
            raise ValueError("Booking date cannot be in the past")
        return v


class BookingCancelRequest(BaseSchema):
    reason: str = Field(..., min_length=3, max_length=500)


class TimelineEntryResponse(BaseSchema):
    status: str
    notes: Optional[str]
    created_at: datetime


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    resident_id: uuid.UUID
    service_id: uuid.UUID
    sevak_id: Optional[uuid.UUID]
    scheduled_date: date
    scheduled_time: str
    estimated_duration: int
    status: BookingStatus
    address: Dict[str, Any]
    special_instructions: Optional[str]
    base_price: float
    additional_charges: float
    discount: float
    total_amount: float
    payment_status: BookingPaymentStatus
    paid_at: Optional[datetime]
    check_in_time: Optional[datetime]
    check_out_time: Optional[datetime]
    before_images: List[str]
    after_images: List[str]
    checklist_items: List[Any]
    completion_notes: Optional[str]
    completed_at: Optional[datetime]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    refund_amount: float
    refund_status: Optional[RefundStatus]
    timeline: List[TimelineEntryResponse]
    created_at: datetime


class ResidentBookingResponse(BookingResponse):
    """The resident holds the check-in code and hands it to the sevak on arrival."""
    check_in_otp: Optional[str]


class BookingCancelResponse(BaseSchema):
    booking: ResidentBookingResponse
    refund_amount: float


class AvailableSlotsResponse(BaseSchema):
    service_id: uuid.UUID
    date: date
    available_slots: List[str]
    booked_slots: List[str]


# ── Sevak ─────────────────────────────────────────────────────

class LocationSchema(BaseSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CheckInRequest(BaseSchema):
    booking_id: uuid.UUID
    otp: str = Field(..., min_length=1, max_length=10)
    location: Optional[LocationSchema] = None


class CheckOutRequest(BaseSchema):
    booking_id: uuid.UUID
    location: Optional[LocationSchema] = None


class SevakJobsResponse(BaseSchema):
    jobs: List[BookingResponse]
    today_count: int
    upcoming_count: int


class CheckOutResponse(BaseSchema):
    booking: BookingResponse
    duration_minutes: int


class IssueResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    reported_by_id: uuid.UUID
    issue_type: IssueType
    description: str
    images: List[str]
    status: IssueStatus
    created_at: datetime


class EarningResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    sevak_id: uuid.UUID
    amount: float
    commission: float
    net_amount: float
    status: EarningStatus
    created_at: datetime


class EarningsSummaryResponse(BaseSchema):
    period: str
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    total_earnings: float
    total_commission: float
    total_jobs: int
    breakdown: List[EarningResponse]


class PerformanceResponse(BaseSchema):
    average_rating: float
    total_ratings: int
    completion_rate: int
    on_time_percentage: int
    total_jobs: int
    completed_jobs: int


class AttendanceEntry(BaseSchema):
    booking_id: uuid.UUID
    scheduled_date: date
    check_in_time: Optional[datetime]
    check_out_time: Optional[datetime]
    status: BookingStatus


class AttendanceResponse(BaseSchema):
    attendance: List[AttendanceEntry]
    total_days: int
    present_days: int


# ── Assignment ────────────────────────────────────────────────

class AssignSevakRequest(BaseSchema):
    sevak_id: uuid.UUID
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class AssignmentHistoryResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    sevak_id: uuid.UUID
    assigned_by_id: uuid.UUID
    assignment_type: AssignmentType
    previous_sevak_id: Optional[uuid.UUID]
    reason: Optional[str]
    notes: Optional[str]
    created_at: datetime


# ── Rating ────────────────────────────────────────────────────

class RatingCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    rated_to: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class RatingUpdateRequest(BaseSchema):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class RatingReportRequest(BaseSchema):
    reason: str = Field(..., min_length=5, max_length=255)


class RatingResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    rated_by_id: uuid.UUID
    rated_to_id: uuid.UUID
    service_id: uuid.UUID
    rating: int
    comment: Optional[str]
    is_reported: bool
    created_at: datetime


class SevakRatingsResponse(BaseSchema):
    ratings: List[RatingResponse]
    average_rating: float
    total_ratings: int


# ── Payment ───────────────────────────────────────────────────

class CreateOrderRequest(BaseSchema):
    booking_id: uuid.UUID


class CreateOrderResponse(BaseSchema):
    payment_id: uuid.UUID
    booking_id: uuid.UUID
    razorpay_order_id: str
    razorpay_key_id: str
    amount: int  # paise
    currency: str


class PaymentVerifyRequest(BaseSchema):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class RefundRequest(BaseSchema):
    booking_id: uuid.UUID
    reason: Optional[str] = Field(None, max_length=500)
    amount: Optional[float] = Field(None, gt=0, description="Defaults to the refund due, else the booking total")


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    razorpay_order_id: str
    razorpay_payment_id: Optional[str]
    amount: float
    currency: str
    status: PaymentStatus
    failure_reason: Optional[str]
    refund_amount: float
    refund_status: Optional[RefundStatus]
    paid_at: Optional[datetime]
    created_at: datetime


class InvoiceResponse(BaseSchema):
    id: uuid.UUID
    invoice_number: str
    booking_id: uuid.UUID
    payment_id: uuid.UUID
    items: List[Dict[str, Any]]
    subtotal: float
    tax: float
    discount: float
    total: float
    created_at: datetime


class PaymentVerifyResponse(BaseSchema):
    payment: PaymentResponse
    invoice: InvoiceResponse


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: NotificationType
    title: str
    body: str
    data: Optional[Dict[str, Any]]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class NotificationListResponse(BaseSchema):
    notifications: List[NotificationResponse]
    unread_count: int


class NotificationSettingsResponse(BaseSchema):
    enabled_types: List[NotificationType]


class NotificationSettingsUpdate(BaseSchema):
    enabled_types: List[NotificationType]


class MarkAllReadResponse(BaseSchema):
    updated: int


class BroadcastRequest(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1, max_length=2000)
    target_audience: BroadcastAudience = BroadcastAudience.ALL
    user_ids: List[uuid.UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def custom_needs_users(self):
        if self.target_audience == BroadcastAudience.CUSTOM.value and not self.user_ids:
            raise ValueError("user_ids is required for a custom audience")
        return self


class BroadcastResponse(BaseSchema):
    id: uuid.UUID
    title: str
    message: str
    target_audience: BroadcastAudience
    recipient_count: int
    delivered_count: int
    status: BroadcastStatus
    sent_at: Optional[datetime]


# ── Admin ─────────────────────────────────────────────────────

class BlacklistRequest(BaseSchema):
    type: BlacklistType = BlacklistType.PERMANENT
    reason: str = Field(..., min_length=5, max_length=500)
    detailed_notes: Optional[str] = Field(None, max_length=2000)
    duration: Optional[int] = Field(None, ge=1, le=3650, description="Days, for temporary")

    @model_validator(mode="after")
    def temporary_needs_duration(self):
        if self.type == BlacklistType.TEMPORARY.value and not self.duration:
            raise ValueError("duration is required for a temporary blacklist")
        return self


class ReinstateRequest(BaseSchema):
    reason: str = Field(..., min_length=5, max_length=500)


class BlacklistRecordResponse(BaseSchema):
    id: uuid.UUID
    sevak_id: uuid.UUID
    blacklisted_by_id: uuid.UUID
    type: BlacklistType
    reason: str
    detailed_notes: Optional[str]
    duration_days: Optional[int]
    end_date: Optional[datetime]
    is_active: bool
    reinstated_by_id: Optional[uuid.UUID]
    reinstatement_reason: Optional[str]
    reinstated_at: Optional[datetime]
    created_at: datetime


class SevakStats(BaseSchema):
    total_jobs: int
    completed_jobs: int
    cancelled_jobs: int
    average_rating: float
    total_ratings: int
    total_earnings: float


class SevakSummaryResponse(BaseSchema):
    user: UserResponse
    stats: SevakStats


class SevakDetailResponse(SevakSummaryResponse):
    recent_bookings: List[BookingResponse]
    blacklist_history: List[BlacklistRecordResponse]


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    created_at: datetime


class RevenuePoint(BaseSchema):
    period: str
    revenue: float
    count: int


class ServiceRevenue(BaseSchema):
    service_id: uuid.UUID
    service_name: str
    revenue: float
    count: int


class RevenueAnalyticsResponse(BaseSchema):
    group_by: str
    total_revenue: float
    transaction_count: int
    average_order_value: float
    revenue_by_period: List[RevenuePoint]
    revenue_by_service: List[ServiceRevenue]


class SevakPerformanceEntry(BaseSchema):
    sevak_id: uuid.UUID
    full_name: str
    total_jobs: int
    completed_jobs: int
    cancelled_jobs: int
    completion_rate: float
    cancellation_rate: float
    average_rating: float


class SevakPerformanceResponse(BaseSchema):
    sevaks: List[SevakPerformanceEntry]
    top_performers: List[SevakPerformanceEntry]


class SevakCounts(BaseSchema):
    total: int
    active: int
    verified: int
    blacklisted: int


class BookingCounts(BaseSchema):
    total: int
    by_status: Dict[str, int]
    today: int
    this_month: int


class ServiceCounts(BaseSchema):
    total: int
    active: int


class RevenueSummary(BaseSchema):
    today: float
    this_month: float
    last_month: float
    growth: float


class DashboardOverviewResponse(BaseSchema):
    users_by_role: Dict[str, int]
    sevaks: SevakCounts
    bookings: BookingCounts
    services: ServiceCounts
    revenue: RevenueSummary


class PlatformSettingsResponse(BaseSchema):
    platform_name: str
    support_email: Optional[str]
    support_phone: Optional[str]
    commission_rate: float
    cancellation_window_hours: int
    refund_processing_days: int
    maintenance_mode: bool
    maintenance_message: Optional[str]
    features: Dict[str, Any]
    updated_by_id: Optional[uuid.UUID]
    updated_at: datetime


class PlatformSettingsUpdate(BaseSchema):
    platform_name: Optional[str] = Field(None, min_length=2, max_length=100)
    support_email: Optional[EmailStr] = None
    support_phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    cancellation_window_hours: Optional[int] = Field(None, ge=0, le=168)
    refund_processing_days: Optional[int] = Field(None, ge=1, le=60)
    maintenance_mode: Optional[bool] = None
    maintenance_message: Optional[str] = Field(None, max_length=1000)
    features: Optional[Dict[str, bool]] = None


class OfferCreateRequest(BaseSchema):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    code: str = Field(..., pattern=r"^[A-Za-z0-9]{3,30}$")
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, gt=0)
    valid_from: datetime
    valid_to: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    applicable_service_ids: List[uuid.UUID] = []
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def check_window_and_value(self):
        if self.valid_to <= self.valid_from:
            raise ValueError("valid_to must be after valid_from")
        if self.discount_type == DiscountType.PERCENTAGE.value and self.discount_value > 100:
            raise ValueError("A percentage discount cannot exceed 100")
        return self


class OfferResponse(BaseSchema):
    id: uuid.UUID
    title: str
    description: Optional[str]
    code: str
    discount_type: DiscountType
    discount_value: float
    min_order_value: Optional[float]
    max_discount: Optional[float]
    valid_from: datetime
    valid_to: datetime
    usage_limit: Optional[int]
    usage_count: int
    applicable_service_ids: List[uuid.UUID]
    is_active: bool
    created_at: datetime


class DocumentVerifyRequest(BaseSchema):
    document_id: str = Field(..., min_length=1)
    status: Literal["verified", "rejected"]
    notes: Optional[str] = Field(None, max_length=500)


# ── Profile ───────────────────────────────────────────────────

class ProfileAddress(BaseSchema):
    flat_number: Optional[str] = Field(None, max_length=50)
    building: Optional[str] = Field(None, max_length=100)
    society: Optional[str] = Field(None, max_length=100)
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")
    landmark: Optional[str] = Field(None, max_length=255)


class EmergencyContact(BaseSchema):
    name: str = Field(..., min_length=2, max_length=100)
    phone_number: str = Field(..., pattern=r"^\+?[0-9]{10,15}$")
    relationship: Optional[str] = Field(None, max_length=50)


class ProfileUpdateRequest(BaseSchema):
    avatar_url: Optional[str] = Field(None, max_length=500)
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    address: Optional[ProfileAddress] = None
    emergency_contact: Optional[EmergencyContact] = None
    skills: Optional[List[str]] = None
    experience_years: Optional[int] = Field(None, ge=0, le=60)
    bio: Optional[str] = Field(None, max_length=500)
    business_name: Optional[str] = Field(None, max_length=255)
    business_type: Optional[str] = Field(None, max_length=100)
    gst_number: Optional[str] = Field(None, pattern=r"^[0-9A-Z]{15}$")
    services_offered: Optional[List[str]] = None


class ProfileDocument(BaseSchema):
    id: str
    type: DocumentType
    url: str
    verification_status: VerificationStatus
    verification_notes: Optional[str] = None
    verified_by_id: Optional[str] = None
    verified_at: Optional[datetime] = None
    uploaded_at: datetime


class ProfileResponse(BaseSchema):
    avatar_url: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    date_of_birth: Optional[date]
    gender: Optional[str]
    address: Dict[str, Any]
    emergency_contact: Dict[str, Any]
    skills: List[str]
    experience_years: Optional[int]
    bio: Optional[str]
    documents: List[ProfileDocument]
    business_name: Optional[str]
    business_type: Optional[str]
    gst_number: Optional[str]
    services_offered: List[str]
    completion_percentage: int
    updated_at: datetime


class UserProfileResponse(BaseSchema):
    user: UserResponse
    profile: ProfileResponse
    is_complete: bool


# ── Vendor ────────────────────────────────────────────────────

class VendorServiceUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    base_price: Optional[float] = Field(None, gt=0)
    duration: Optional[int] = Field(None, ge=15, le=720)
    is_active: Optional[bool] = None
    tags: Optional[List[str]] = None


class VendorServiceResponse(ServiceResponse):
    total_bookings: int = 0
    revenue: float = 0.0


class VendorDashboardResponse(BaseSchema):
    total_services: int
    active_services: int
    total_bookings: int
    pending_bookings: int
    completed_bookings: int
    today_bookings: int
    total_revenue: float
    month_revenue: float
    average_rating: float
    recent_bookings: List[BookingResponse]
    top_services: List[ServiceResponse]


class VendorOrderListResponse(BaseSchema):
    orders: List[BookingResponse]
    status_counts: Dict[str, int]


class VendorOrderDetailResponse(BaseSchema):
    order: BookingResponse
    payment: Optional[PaymentResponse]
    rating: Optional[RatingResponse]


class VendorRevenueResponse(BaseSchema):
    period: str
    start_date: date
    end_date: date
    total_revenue: float
    total_orders: int
    average_order_value: float
    revenue_by_service: List[ServiceRevenue]
    daily_revenue: List[RevenuePoint]
