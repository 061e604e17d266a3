"""
services/catalog/router.py
Service catalog browsing: categories, service listing and detail, favorites.
"""

import logging
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.exceptions import ConflictError, NotFoundError
from shared.middleware.auth import get_current_user
from shared.models.models import Category, Favorite, Service, User
from shared.schemas.schemas import (
    ApiResponse,
    CategoryResponse,
    FavoriteCreateRequest,
    PaginatedResponse,
    ServiceResponse,
)
from shared.utils.helpers import PageParams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["Catalog"])

CATEGORIES_CACHE_KEY = "catalog:categories"

SORT_ORDERS = {
    "popular": (Service.booking_count.desc(), Service.name),
    "rating": (Service.average_rating.desc(), Service.name),
    "price_low": (Service.base_price.asc(), Service.name),
    "price_high": (Service.base_price.desc(), Service.name),
    "name": (Service.name,),
}


async def _get_active_service_or_404(service_id: UUID, db: AsyncSession) -> Service:
    service = await db.scalar(
        select(Service).where(Service.id == service_id, Service.is_active == True)
    )
    if not service:
        raise NotFoundError("Service not found")
    return service


# ── Public Endpoints ──────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[List[ServiceResponse]])
async def list_services(
    category: Optional[str] = Query(None),
    subcategory: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: Literal["popular", "rating", "price_low", "price_high", "name"] = Query("popular"),
    pagination: PageParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Active services with category, price and text filters."""
    query = select(Service).where(Service.is_active == True)
    if category:
        query = query.where(Service.category == category)
    if subcategory:
        query = query.where(Service.subcategory == subcategory)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Service.name.ilike(pattern), Service.description.ilike(pattern)))
    if min_price is not None:
        query = query.where(Service.base_price >= min_price)
    if max_price is not None:
        query = query.where(Service.base_price <= max_price)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(*SORT_ORDERS[sort]).offset(pagination.offset).limit(pagination.limit)
    )
    return PaginatedResponse(
        message="Services retrieved successfully",
        data=[ServiceResponse.model_validate(s) for s in result.scalars()],
        pagination=pagination.meta(total or 0),
    )


@router.get("/categories", response_model=ApiResponse[List[CategoryResponse]])
async def list_categories(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """Active categories in display order. Cached for REDIS_CACHE_TTL seconds."""
    cache = RedisCache(redis)
    cached = await cache.get(CATEGORIES_CACHE_KEY)
    if cached is not None:
        return ApiResponse(
            message="Categories retrieved successfully",
            data=[CategoryResponse(**c) for c in cached],
        )

    result = await db.execute(
        select(Category)
        .where(Category.is_active == True)
        .order_by(Category.display_order, Category.name)
    )
    categories = [CategoryResponse.model_validate(c) for c in result.scalars()]
    await cache.set(CATEGORIES_CACHE_KEY, [c.model_dump() for c in categories])
    return ApiResponse(message="Categories retrieved successfully", data=categories)


# ── Favorites ─────────────────────────────────────────────────

@router.get("/user/favorites", response_model=ApiResponse[List[ServiceResponse]])
async def list_favorites(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Service)
        .join(Favorite, Favorite.service_id == Service.id)
        .where(Favorite.user_id == current_user.id)
        .order_by(Favorite.created_at.desc())
    )
    return ApiResponse(
        message="Favorites retrieved successfully",
        data=[ServiceResponse.model_validate(s) for s in result.scalars()],
    )


@router.post(
    "/favorites",
    response_model=ApiResponse[ServiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_favorite(
    data: FavoriteCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = await _get_active_service_or_404(data.service_id, db)
    existing = await db.scalar(
        select(Favorite.id).where(
            Favorite.user_id == current_user.id,
            Favorite.service_id == service.id,
        )
    )
    if existing:
        raise ConflictError("Service is already in favorites")

    db.add(Favorite(user_id=current_user.id, service_id=service.id))
    await db.commit()
    return ApiResponse(message="Added to favorites", data=ServiceResponse.model_validate(service))


@router.delete("/favorites/{service_id}", response_model=ApiResponse[None])
async def remove_favorite(
    service_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        delete(Favorite).where(
            Favorite.user_id == current_user.id,
            Favorite.service_id == service_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Favorite not found")
    await db.commit()
    return ApiResponse(message="Removed from favorites")


@router.get("/{service_id}", response_model=ApiResponse[ServiceResponse])
async def get_service(service_id: UUID, db: AsyncSession = Depends(get_db)):
    service = await _get_active_service_or_404(service_id, db)
    return ApiResponse(message="Service retrieved successfully", data=ServiceResponse.model_validate(service))
