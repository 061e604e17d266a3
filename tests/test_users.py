"""
tests/test_users.py
Tests for profiles: lazy creation, partial updates with the completion
score, and verification document uploads.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Profile, User
from shared.utils.storage import FileStore
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_register_creates_empty_profile(client: AsyncClient, db: AsyncSession):
    response = await client.post(
        "/auth/register",
        json={
            "full_name": "Kavya Rao",
            "email": "kavya@example.com",
            "phone_number": "9123456780",
            "password": "Secret@1234",
        },
    )
    assert response.status_code == 201

    profile = await db.scalar(select(Profile).join(User, User.id == Profile.user_id).where(User.email == "kavya@example.com"))
    assert profile is not None
    assert profile.completion_percentage == 0
    assert profile.documents == []


@pytest.mark.asyncio
async def test_get_profile_creates_on_first_read(client: AsyncClient, db: AsyncSession, resident: User):
    response = await client.get("/users/profile", headers=auth_headers(resident))
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Profile retrieved successfully"
    assert body["data"]["user"]["id"] == str(resident.id)
    assert body["data"]["profile"]["completion_percentage"] == 0
    assert body["data"]["is_complete"] is False

    count = len((await db.execute(select(Profile).where(Profile.user_id == resident.id))).scalars().all())
    assert count == 1


@pytest.mark.asyncio
async def test_update_profile_recomputes_completion(client: AsyncClient, resident: User):
    headers = auth_headers(resident)

    response = await client.put(
        "/users/profile",
        headers=headers,
        json={
            "first_name": "Asha",
            "last_name": "Kulkarni",
            "address": {"flat_number": "B-204", "society": "Green Park", "pincode": "411001"},
        },
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Profile updated successfully"
    profile = response.json()["data"]["profile"]
    assert profile["address"] == {"flat_number": "B-204", "society": "Green Park", "pincode": "411001"}
    assert profile["completion_percentage"] == 80

    done = await client.put("/users/profile", headers=headers, json={"avatar_url": "/uploads/avatars/asha.png"})
    data = done.json()["data"]
    assert data["profile"]["first_name"] == "Asha"
    assert data["profile"]["completion_percentage"] == 100
    assert data["is_complete"] is True


@pytest.mark.asyncio
async def test_sevak_completion_uses_sevak_fields(client: AsyncClient, sevak_user: User):
    response = await client.put(
        "/users/profile",
        headers=auth_headers(sevak_user),
        json={"first_name": "Ravi", "skills": ["plumbing", "electrical"], "experience_years": 6},
    )
    assert response.status_code == 200
    # 3 of 7 sevak fields
    assert response.json()["data"]["profile"]["completion_percentage"] == 43


@pytest.mark.asyncio
async def test_update_profile_validation(client: AsyncClient, resident: User):
    headers = auth_headers(resident)

    empty = await client.put("/users/profile", headers=headers, json={})
    assert empty.status_code == 400
    assert empty.json()["message"] == "No fields to update"

    bad_pin = await client.put("/users/profile", headers=headers, json={"address": {"pincode": "12"}})
    assert bad_pin.status_code == 422


# ── Documents ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_upload_and_delete_document(client: AsyncClient, sevak_user: User, file_store: FileStore):
    headers = auth_headers(sevak_user)

    response = await client.post(
        "/users/profile/documents",
        headers=headers,
        data={"document_type": "aadhaar"},
        files=[("documents", ("aadhaar.pdf", b"%PDF-1.4 fake", "application/pdf"))],
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Documents uploaded successfully"
    [document] = response.json()["data"]
    assert document["type"] == "aadhaar"
    assert document["verification_status"] == "pending"
    assert document["url"].startswith(f"/uploads/documents/{sevak_user.id}/")
    assert file_store.path_for(document["url"]).is_file()

    profile = (await client.get("/users/profile", headers=headers)).json()["data"]["profile"]
    assert [d["id"] for d in profile["documents"]] == [document["id"]]

    deleted = await client.delete(f"/users/profile/documents/{document['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Document deleted successfully"
    assert not file_store.path_for(document["url"]).exists()

    again = await client.delete(f"/users/profile/documents/{document['id']}", headers=headers)
    assert again.status_code == 404
    assert again.json()["message"] == "Document not found"


@pytest.mark.asyncio
async def test_document_upload_rejects_bad_type(client: AsyncClient, sevak_user: User, file_store: FileStore):
    response = await client.post(
        "/users/profile/documents",
        headers=auth_headers(sevak_user),
        files=[
            ("documents", ("pan.png", b"\x89PNG fake", "image/png")),
            ("documents", ("notes.txt", b"plain text", "text/plain")),
        ],
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Only .jpeg, .jpg, .png and .pdf files are allowed"
    assert not [p for p in file_store.root.rglob("*") if p.is_file()]
