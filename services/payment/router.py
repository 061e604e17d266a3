"""
services/payment/router.py
Razorpay payment integration: order creation, checkout signature
verification with invoicing, admin refunds, invoices and history.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.admin.router import log_admin_action
from services.booking.lifecycle import append_timeline, booking_template_vars, get_booking_or_404
from services.notification.router import dispatch_notification
from shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import (
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Invoice,
    Payment,
    PaymentStatus,
    RefundStatus,
    Service,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    ApiResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    InvoiceResponse,
    PaginatedResponse,
    PaymentResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    RefundRequest,
)
from shared.utils.helpers import PageParams, allocate_reference, generate_invoice_number, to_money, utcnow
from shared.utils.payment_gateway import RazorpayGateway, get_payment_gateway
from shared.utils.security import verify_razorpay_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _to_paise(amount) -> int:
    """Razorpay takes integer paise."""
    return int(to_money(amount) * 100)


# ── Create Order ──────────────────────────────────────────────

@router.post(
    "/create-order",
    response_model=ApiResponse[CreateOrderResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    data: CreateOrderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    """
    Create a Razorpay order for a booking.
    Client uses order_id + key_id to open Razorpay checkout.
    """
    booking = await db.scalar(
        select(Booking).where(
            Booking.id == data.booking_id,
            Booking.resident_id == current_user.id,
        )
    )
    if not booking:
        raise NotFoundError("Booking not found")
    if booking.payment_status == BookingPaymentStatus.PAID:
        raise ValidationError("Booking is already paid")
    if booking.status in (BookingStatus.CANCELLED, BookingStatus.REFUNDED):
        raise ValidationError("Cannot pay for a cancelled booking")

    amount_paise = _to_paise(booking.total_amount)
    order = await gateway.create_order(
        amount_paise,
        receipt=booking.booking_number,
        notes={"booking_id": str(booking.id), "user_id": str(current_user.id)},
    )

    payment = Payment(
        booking_id=booking.id,
        user_id=current_user.id,
        razorpay_order_id=order["id"],
        amount=booking.total_amount,
        currency="INR",
        status=PaymentStatus.CREATED,
    )
    db.add(payment)
    await db.commit()

    logger.info("Razorpay order %s created for booking %s", order["id"], booking.booking_number)
    return ApiResponse(
        message="Payment order created successfully",
        data=CreateOrderResponse(
            payment_id=payment.id,
            booking_id=booking.id,
            razorpay_order_id=order["id"],
            razorpay_key_id=settings.RAZORPAY_KEY_ID,
            amount=amount_paise,
            currency="INR",
        ),
    )


# ── Verify Payment (called from client after checkout) ────────

@router.post("/verify", response_model=ApiResponse[PaymentVerifyResponse])
async def verify_payment(
    data: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Verify the Razorpay checkout signature.
    Success marks the booking paid and issues an invoice; a bad signature
    marks the payment failed and is committed before the 400 goes out.
    """
    payment = await db.scalar(
        select(Payment).where(
            Payment.razorpay_order_id == data.razorpay_order_id,
            Payment.user_id == current_user.id,
        )
    )
    if not payment:
        raise NotFoundError("Payment not found")
    if payment.status != PaymentStatus.CREATED:
        raise ValidationError("Payment has already been processed")

    booking = await get_booking_or_404(payment.booking_id, db, for_update=True)

    if not verify_razorpay_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        payment.status = PaymentStatus.FAILED
        payment.razorpay_payment_id = data.razorpay_payment_id
        payment.failure_reason = "Invalid payment signature"
        await dispatch_notification(
            db,
            current_user.id,
            "PAYMENT_FAILED",
            booking_template_vars(booking),
            data={"booking_id": booking.id, "payment_id": payment.id},
        )
        await db.commit()
        logger.warning("Signature mismatch for Razorpay order %s", data.razorpay_order_id)
        raise ValidationError("Payment verification failed")

    now = utcnow()
    payment.status = PaymentStatus.SUCCESS
    payment.razorpay_payment_id = data.razorpay_payment_id
    payment.razorpay_signature = data.razorpay_signature
    payment.paid_at = now

    booking.payment_status = BookingPaymentStatus.PAID
    booking.payment_id = data.razorpay_payment_id
    booking.payment_method = "razorpay"
    booking.paid_at = now
    if booking.status == BookingStatus.CANCELLED:
        # Checkout finished after the resident cancelled; the whole payment is owed back
        booking.refund_amount = to_money(booking.total_amount)
        booking.refund_status = RefundStatus.PENDING
        append_timeline(booking, BookingStatus.CANCELLED.value, "Payment received after cancellation, full refund due")
        logger.warning("Booking %s paid after cancellation; refund pending", booking.booking_number)

    service_name = await db.scalar(select(Service.name).where(Service.id == booking.service_id))
    items = [{"description": service_name, "quantity": 1, "amount": float(booking.base_price)}]
    if booking.additional_charges:
        items.append({"description": "Additional charges", "quantity": 1, "amount": float(booking.additional_charges)})

    invoice = Invoice(
        invoice_number=await allocate_reference(db, Invoice.invoice_number, generate_invoice_number),
        booking_id=booking.id,
        payment_id=payment.id,
        user_id=current_user.id,
        items=items,
        subtotal=to_money(booking.base_price + booking.additional_charges),
        tax=to_money(0),
        discount=to_money(booking.discount),
        total=to_money(booking.total_amount),
    )
    db.add(invoice)

    await dispatch_notification(
        db,
        current_user.id,
        "PAYMENT_SUCCESS",
        booking_template_vars(booking, amount=f"{to_money(booking.total_amount)}"),
        data={"booking_id": booking.id, "payment_id": payment.id},
    )
    await db.commit()

    logger.info("Payment %s verified for booking %s", payment.id, booking.booking_number)
    return ApiResponse(
        message="Payment verified successfully",
        data=PaymentVerifyResponse(
            payment=PaymentResponse.model_validate(payment),
            invoice=InvoiceResponse.model_validate(invoice),
        ),
    )


# ── Refund ────────────────────────────────────────────────────

@router.post("/refund", response_model=ApiResponse[PaymentResponse])
async def refund_payment(
    data: RefundRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    request: Request = None,
):
    """
    Admin-triggered refund via Razorpay.
    Refunds the admin-supplied amount (capped at the booking total), else the
    amount set at cancellation, else the full total. One refund per payment.
    """
    booking = await get_booking_or_404(data.booking_id, db, for_update=True)
    payment = await db.scalar(
        select(Payment)
        .where(Payment.booking_id == booking.id, Payment.status == PaymentStatus.SUCCESS)
        .order_by(Payment.paid_at.desc())
        .limit(1)
    )
    if not payment or not payment.razorpay_payment_id:
        raise ValidationError("No successful payment found for this booking")

    total = to_money(booking.total_amount)
    if data.amount is not None:
        amount = to_money(data.amount)
        if amount > total:
            raise ValidationError(f"Refund amount cannot exceed the booking total of ₹{total}")
    elif booking.refund_amount:
        amount = to_money(booking.refund_amount)
    else:
        amount = total

    refund = await gateway.refund(
        payment.razorpay_payment_id,
        _to_paise(amount),
        notes={"booking_number": booking.booking_number, "reason": data.reason or ""},
    )

    now = utcnow()
    payment.status = PaymentStatus.REFUNDED
    payment.refund_id = refund.get("id")
    payment.refund_amount = amount
    payment.refund_status = RefundStatus.PROCESSED
    payment.refunded_at = now

    booking.payment_status = BookingPaymentStatus.REFUNDED
    booking.refund_amount = amount
    booking.refund_status = RefundStatus.PROCESSED
    if booking.status not in TERMINAL_BOOKING_STATUSES:
        booking.status = BookingStatus.REFUNDED
        booking.check_in_otp = None
        append_timeline(
            booking,
            BookingStatus.REFUNDED.value,
            f"Refunded by admin: {data.reason}" if data.reason else "Refunded by admin",
        )

    await dispatch_notification(
        db,
        booking.resident_id,
        "REFUND_PROCESSED",
        booking_template_vars(booking, amount=f"{amount}"),
        data={"booking_id": booking.id, "payment_id": payment.id},
    )
    await log_admin_action(db, current_user, "REFUND_PAYMENT", "Payment", str(payment.id),
                           {"booking_id": str(booking.id), "amount": str(amount), "reason": data.reason}, request)
    await db.commit()

    logger.info("Refund %s of %s issued for booking %s", payment.refund_id, amount, booking.booking_number)
    return ApiResponse(message=f"Refund of ₹{amount} initiated successfully", data=PaymentResponse.model_validate(payment))


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/invoice/{booking_id}", response_model=ApiResponse[InvoiceResponse])
async def get_invoice(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking_or_404(booking_id, db)
    if booking.resident_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Access denied")

    invoice = await db.scalar(
        select(Invoice)
        .where(Invoice.booking_id == booking.id)
        .order_by(Invoice.created_at.desc())
        .limit(1)
    )
    if not invoice:
        raise NotFoundError("Invoice not found")
    return ApiResponse(message="Invoice retrieved successfully", data=InvoiceResponse.model_validate(invoice))


@router.get("/history", response_model=PaginatedResponse[List[PaymentResponse]])
async def my_payment_history(
    pagination: PageParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's successful payments."""
    query = select(Payment).where(
        Payment.user_id == current_user.id,
        Payment.status == PaymentStatus.SUCCESS,
    )
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Payment.created_at.desc()).offset(pagination.offset).limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Payment history retrieved successfully",
        data=[PaymentResponse.model_validate(p) for p in result.scalars()],
        pagination=pagination.meta(total or 0),
    )
