"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; revoked tokens are looked up in the Redis deny-list.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.exceptions import ForbiddenError, UnauthorizedError
from shared.models.models import User, UserRole
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise UnauthorizedError("No token provided")

    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        raise UnauthorizedError("Token expired or invalid")

    jti = payload.get("jti")
    if jti and await RedisCache(redis).is_token_revoked(jti):
        raise UnauthorizedError("Token has been revoked")

    return TokenData(payload)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    user = await db.scalar(select(User).where(User.id == _as_uuid(token_data.user_id)))

    if not user:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise ForbiddenError("Account is disabled")
    return user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise ForbiddenError("Insufficient permissions")
        return current_user


# Convenience role dependencies
require_resident = RoleRequired(UserRole.RESIDENT)
require_sevak = RoleRequired(UserRole.SEVAK)
require_vendor = RoleRequired(UserRole.VENDOR)
require_admin = RoleRequired(UserRole.ADMIN)


def _as_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise UnauthorizedError("Token expired or invalid")
