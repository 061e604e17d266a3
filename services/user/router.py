"""
services/user/router.py
Profile endpoints for any signed-in user: role-specific details, a
completion score, and verification documents reviewed by admins.
"""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.exceptions import NotFoundError, ValidationError
from shared.middleware.auth import get_current_user
from shared.models.models import DocumentType, Profile, User, UserRole, VerificationStatus
from shared.schemas.schemas import (
    ApiResponse,
    ProfileDocument,
    ProfileResponse,
    ProfileUpdateRequest,
    UserProfileResponse,
    UserResponse,
)
from shared.utils.helpers import utcnow
from shared.utils.storage import FileStore, get_file_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

# Dotted names reach into the address dict
COMPLETION_FIELDS = {
    UserRole.RESIDENT: ["first_name", "last_name", "address.flat_number", "address.society", "avatar_url"],
    UserRole.SEVAK: ["first_name", "last_name", "skills", "experience_years", "bio", "documents", "avatar_url"],
    UserRole.VENDOR: ["first_name", "last_name", "business_name", "business_type", "services_offered", "avatar_url"],
}


def profile_completion(profile: Profile, role: UserRole) -> int:
    fields = COMPLETION_FIELDS.get(role, COMPLETION_FIELDS[UserRole.RESIDENT])
    filled = 0
    for name in fields:
        if "." in name:
            parent, child = name.split(".", 1)
            value = (getattr(profile, parent) or {}).get(child)
        else:
            value = getattr(profile, name)
        if value is not None and value != "" and value != [] and value != {}:
            filled += 1
    return round(filled * 100 / len(fields))


async def get_or_create_profile(db: AsyncSession, user: User) -> Profile:
    profile = await db.scalar(select(Profile).where(Profile.user_id == user.id))
    if profile is None:
        profile = Profile(
            user_id=user.id,
            address={},
            emergency_contact={},
            skills=[],
            documents=[],
            services_offered=[],
            completion_percentage=0,
        )
        db.add(profile)
        await db.flush()
    return profile


def _response(user: User, profile: Profile) -> UserProfileResponse:
    return UserProfileResponse(
        user=UserResponse.model_validate(user),
        profile=ProfileResponse.model_validate(profile),
        is_complete=profile.completion_percentage == 100,
    )


@router.get("/profile", response_model=ApiResponse[UserProfileResponse])
async def get_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profile = await get_or_create_profile(db, current_user)
    await db.commit()
    return ApiResponse(message="Profile retrieved successfully", data=_response(current_user, profile))


@router.put("/profile", response_model=ApiResponse[UserProfileResponse])
async def update_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Partial update; only the fields sent are changed. The completion score is recomputed."""
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    profile = await get_or_create_profile(db, current_user)
    for field, value in changes.items():
        if field in ("skills", "services_offered"):
            value = value or []
        elif field in ("address", "emergency_contact"):
            value = {k: v for k, v in (value or {}).items() if v is not None}
        setattr(profile, field, value)
    profile.completion_percentage = profile_completion(profile, current_user.role)

    await db.commit()
    logger.info("User %s updated profile (%d%% complete)", current_user.id, profile.completion_percentage)
    return ApiResponse(message="Profile updated successfully", data=_response(current_user, profile))


# ── Documents ─────────────────────────────────────────────────

@router.post("/profile/documents", response_model=ApiResponse[List[ProfileDocument]])
async def upload_documents(
    document_type: DocumentType = Form(DocumentType.OTHER),
    documents: List[UploadFile] = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: FileStore = Depends(get_file_store),
):
    """Store identity or skill documents; each starts pending admin verification."""
    profile = await get_or_create_profile(db, current_user)
    urls = await store.save_many(documents, f"documents/{current_user.id}")
    if not urls:
        raise ValidationError("No files uploaded")

    now = utcnow().isoformat()
    added = [
        {
            "id": uuid.uuid4().hex,
            "type": document_type.value,
            "url": url,
            "verification_status": VerificationStatus.PENDING.value,
            "verification_notes": None,
            "verified_by_id": None,
            "verified_at": None,
            "uploaded_at": now,
        }
        for url in urls
    ]
    profile.documents = [*profile.documents, *added]
    profile.completion_percentage = profile_completion(profile, current_user.role)
    try:
        await db.commit()
    except Exception:
        await store.delete_many(urls)
        raise

    return ApiResponse(
        message="Documents uploaded successfully",
        data=[ProfileDocument.model_validate(doc) for doc in added],
    )


@router.delete("/profile/documents/{document_id}", response_model=ApiResponse[None])
async def delete_document(
    document_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: FileStore = Depends(get_file_store),
):
    profile = await get_or_create_profile(db, current_user)
    document = next((doc for doc in profile.documents if doc["id"] == document_id), None)
    if document is None:
        raise NotFoundError("Document not found")

    profile.documents = [doc for doc in profile.documents if doc["id"] != document_id]
    profile.completion_percentage = profile_completion(profile, current_user.role)
    await db.commit()
    await store.delete(document["url"])
    return ApiResponse(message="Document deleted successfully")
