"""
services/auth/router.py
Phone/email + password authentication with OTP verification.
Implements: Register → Verify OTP → Login → Refresh (rotation) → Logout
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.exceptions import ConflictError, ForbiddenError, UnauthorizedError, ValidationError
from shared.middleware.auth import get_current_user, security
from shared.models.models import (
    NotificationSettings,
    Profile,
    OTPCode,
    OTPType,
    RefreshToken,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    ApiResponse,
    AuthResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LogoutRequest,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyOTPRequest,
)
from shared.utils.helpers import as_utc, utcnow
from shared.utils.security import (
    create_access_token,
    create_refresh_token,
    generate_otp,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    otp_matches,
    verify_access_token,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helpers ───────────────────────────────────────────────────

async def _find_by_phone_or_email(db: AsyncSession, identifier: str) -> Optional[User]:
    return await db.scalar(
        select(User).where(or_(User.email == identifier.lower(), User.phone_number == identifier))
    )


async def _issue_otp(db: AsyncSession, user: User, otp_type: OTPType) -> str:
    """Replace any earlier code of the same type with a fresh one."""
    await db.execute(delete(OTPCode).where(OTPCode.user_id == user.id, OTPCode.type == otp_type))

    code = settings.DEV_OTP if settings.is_development else generate_otp()
    db.add(
        OTPCode(
            user_id=user.id,
            code=code,
            type=otp_type,
            expires_at=utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
        )
    )
    return code


async def _consume_otp(db: AsyncSession, user: User, otp_type: OTPType, code: str) -> None:
    otp = await db.scalar(
        select(OTPCode)
        .where(OTPCode.user_id == user.id, OTPCode.type == otp_type, OTPCode.is_used == False)
        .order_by(OTPCode.created_at.desc())
        .limit(1)
    )
    if not otp or not otp_matches(otp.code, code) or as_utc(otp.expires_at) < utcnow():
        raise ValidationError("Invalid or expired OTP")
    otp.is_used = True


def _issue_tokens(user: User, db: AsyncSession, request: Request) -> TokenResponse:
    """Issue access + refresh tokens. Only the refresh token hash is stored."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
    )

    raw_refresh, hashed_refresh = create_refresh_token()
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hashed_refresh,
            expires_at=utcnow() + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
            user_agent=request.headers.get("user-agent"),
            ip_address=request.client.host if request.client else None,
        )
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def _auth_response(tokens: TokenResponse, user: User) -> AuthResponse:
    return AuthResponse(**tokens.model_dump(), user=UserResponse.model_validate(user))


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=ApiResponse[RegisterResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Create an unverified account and send a registration OTP.
    The OTP is echoed back in development only.
    """
    email = data.email.lower()
    existing = await db.scalar(
        select(User.id).where(or_(User.email == email, User.phone_number == data.phone_number))
    )
    if existing:
        raise ConflictError("User with this email or phone number already exists")

    user = User(
        full_name=data.full_name,
        email=email,
        phone_number=data.phone_number,
        password_hash=hash_password(data.password),
        role=UserRole(data.role),
        is_verified=False,
        is_active=True,
        is_blacklisted=False,
    )
    db.add(user)
    await db.flush()

    db.add(NotificationSettings(user_id=user.id))
    db.add(Profile(user_id=user.id))
    code = await _issue_otp(db, user, OTPType.REGISTRATION)
    await db.commit()

    logger.info("Registered %s user %s", user.role.value, user.id)
    return ApiResponse(
        message="Registration successful. Please verify the OTP.",
        data=RegisterResponse(
            user_id=user.id,
            email=user.email,
            phone_number=user.phone_number,
            otp=code if settings.is_development else None,
        ),
    )


@router.post("/verify-otp", response_model=ApiResponse[AuthResponse], summary="Verify an OTP")
async def verify_otp(
    data: VerifyOTPRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Consume the OTP, mark registration verified and sign the user in."""
    user = await db.scalar(select(User).where(User.id == data.user_id))
    if not user:
        raise ValidationError("Invalid or expired OTP")

    await _consume_otp(db, user, OTPType(data.type), data.otp)
    if data.type == OTPType.REGISTRATION.value:
        user.is_verified = True
    user.last_login = utcnow()

    tokens = _issue_tokens(user, db, request)
    await db.commit()
    return ApiResponse(message="OTP verified successfully", data=_auth_response(tokens, user))


@router.post("/login", response_model=ApiResponse[AuthResponse], summary="Login with password")
async def login(data: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    user = await _find_by_phone_or_email(db, data.phone_or_email)
    if not user or not verify_password(data.password, user.password_hash):
        raise UnauthorizedError("Invalid credentials")
    if not user.is_active:
        raise ForbiddenError("Account is disabled")
    if not user.is_verified:
        raise ForbiddenError("Please verify your account first")

    user.last_login = utcnow()
    tokens = _issue_tokens(user, db, request)
    await db.commit()

    logger.info("User %s logged in", user.id)
    return ApiResponse(message="Login successful", data=_auth_response(tokens, user))


@router.post("/refresh-token", response_model=ApiResponse[TokenResponse], summary="Refresh access token")
async def refresh_token(
    data: RefreshTokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new token pair from a valid refresh token.
    Implements refresh token rotation: the old token is deleted.
    """
    db_token = await db.scalar(
        select(RefreshToken).where(RefreshToken.token_hash == hash_token(data.refresh_token))
    )
    if not db_token:
        raise UnauthorizedError("Invalid refresh token")

    if as_utc(db_token.expires_at) < utcnow():
        await db.delete(db_token)
        await db.commit()
        raise UnauthorizedError("Refresh token expired")

    user = await db.scalar(select(User).where(User.id == db_token.user_id))
    if not user or not user.is_active:
        raise UnauthorizedError("User not found")

    await db.delete(db_token)
    tokens = _issue_tokens(user, db, request)
    await db.commit()
    return ApiResponse(message="Token refreshed successfully", data=tokens)


@router.post("/forgot-password", response_model=ApiResponse[ForgotPasswordResponse])
async def forgot_password(data: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    """Send a password-reset OTP. The response does not reveal whether the account exists."""
    user = await _find_by_phone_or_email(db, data.phone_or_email)
    code = None
    if user and user.is_active:
        code = await _issue_otp(db, user, OTPType.PASSWORD_RESET)
        await db.commit()
        logger.info("Password reset OTP issued for user %s", user.id)

    return ApiResponse(
        message="If the account exists, an OTP has been sent",
        data=ForgotPasswordResponse(otp=code if settings.is_development else None),
    )


@router.post("/reset-password", response_model=ApiResponse[None])
async def reset_password(data: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    """Set a new password and sign out every existing session."""
    user = await _find_by_phone_or_email(db, data.phone_or_email)
    if not user:
        raise ValidationError("Invalid or expired OTP")

    await _consume_otp(db, user, OTPType.PASSWORD_RESET, data.otp)
    user.password_hash = hash_password(data.new_password)
    await db.execute(delete(RefreshToken).where(RefreshToken.user_id == user.id))
    await db.commit()

    logger.info("Password reset for user %s", user.id)
    return ApiResponse(message="Password reset successfully")


@router.post("/logout", response_model=ApiResponse[None], summary="Logout user")
async def logout(
    data: Optional[LogoutRequest] = None,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Deny-list the access token in Redis and delete the refresh token.
    Always succeeds; failures are logged. Without Redis the deny-list step is skipped.
    """
    if credentials and redis is not None:
        try:
            payload = verify_access_token(credentials.credentials)
            jti = payload.get("jti")
            ttl = get_token_remaining_ttl(payload)
            if jti and ttl > 0:
                await RedisCache(redis).revoke_token(jti, ttl)
        except JWTError:
            logger.info("Logout with an invalid access token")
        except Exception:
            logger.warning("Could not deny-list access token on logout", exc_info=True)
    elif credentials:
        logger.warning("Redis not connected, access token not deny-listed on logout")

    if data and data.refresh_token:
        try:
            await db.execute(
                delete(RefreshToken).where(RefreshToken.token_hash == hash_token(data.refresh_token))
            )
            await db.commit()
        except SQLAlchemyError:
            logger.warning("Could not delete refresh token on logout", exc_info=True)
            await db.rollback()

    return ApiResponse(message="Logged out successfully")


@router.get("/me", response_model=ApiResponse[UserResponse], summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return ApiResponse(message="User retrieved successfully", data=UserResponse.model_validate(current_user))
