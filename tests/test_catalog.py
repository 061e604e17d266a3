"""
tests/test_catalog.py
Tests for service listing filters, cached categories, and favorites.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Category, Service, User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_list_services_filters(client: AsyncClient, db: AsyncSession, service: Service):
    db.add_all([
        Service(name="Tap Repair", description="Fix a leaking tap", category="Plumbing",
                base_price=Decimal("199"), duration=30, is_active=True, tags=[]),
        Service(name="Retired Service", description="No longer offered", category="Cleaning",
                base_price=Decimal("100"), duration=30, is_active=False, tags=[]),
    ])
    await db.commit()

    response = await client.get("/services")
    assert response.status_code == 200
    body = response.json()
    names = {s["name"] for s in body["data"]}
    assert names == {"Bathroom Cleaning", "Tap Repair"}
    assert body["pagination"]["total_items"] == 2

    cleaning = await client.get("/services", params={"category": "Cleaning"})
    assert [s["name"] for s in cleaning.json()["data"]] == ["Bathroom Cleaning"]

    cheap = await client.get("/services", params={"max_price": 300, "sort": "price_low"})
    assert [s["name"] for s in cheap.json()["data"]] == ["Tap Repair"]

    search = await client.get("/services", params={"search": "leak"})
    assert [s["name"] for s in search.json()["data"]] == ["Tap Repair"]


@pytest.mark.asyncio
async def test_get_service_detail_and_404(client: AsyncClient, service: Service):
    response = await client.get(f"/services/{service.id}")
    assert response.status_code == 200
    assert response.json()["data"]["base_price"] == 500.0

    missing = await client.get("/services/00000000-0000-0000-0000-000000000000")
    assert missing.status_code == 404
    assert missing.json()["message"] == "Service not found"


@pytest.mark.asyncio
async def test_categories_are_cached(client: AsyncClient, db: AsyncSession, category: Category, redis):
    first = await client.get("/services/categories")
    assert first.status_code == 200
    assert [c["name"] for c in first.json()["data"]] == ["Cleaning"]
    assert await redis.get("catalog:categories") is not None

    db.add(Category(name="Plumbing", display_order=2, is_active=True))
    await db.commit()

    # Served from cache until the TTL runs out
    second = await client.get("/services/categories")
    assert [c["name"] for c in second.json()["data"]] == ["Cleaning"]


@pytest.mark.asyncio
async def test_favorites_add_list_remove(client: AsyncClient, resident: User, service: Service):
    headers = auth_headers(resident)

    added = await client.post("/services/favorites", headers=headers, json={"service_id": str(service.id)})
    assert added.status_code == 201

    duplicate = await client.post("/services/favorites", headers=headers, json={"service_id": str(service.id)})
    assert duplicate.status_code == 409

    listed = await client.get("/services/user/favorites", headers=headers)
    assert [s["id"] for s in listed.json()["data"]] == [str(service.id)]

    removed = await client.delete(f"/services/favorites/{service.id}", headers=headers)
    assert removed.status_code == 200

    again = await client.delete(f"/services/favorites/{service.id}", headers=headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_favorites_require_auth(client: AsyncClient):
    response = await client.get("/services/user/favorites")
    assert response.status_code == 401
