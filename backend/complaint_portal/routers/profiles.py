"""
Complaint Portal - Profiles Router
Profiles are readable by every signed-in account and editable by their owner.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor
from ..models.db_models import ProfileDB
from ..services.access import Actor
from ..services.complaint_store import ComplaintStore

router = APIRouter(prefix="/profiles", tags=["profiles"])


class ProfileResponse(BaseModel):
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    batch: Optional[str] = None
    created_at: str
    updated_at: str


class ProfileUpdateRequest(BaseModel):
    """Only provided fields are updated."""
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    batch: Optional[str] = None


def _profile_response(profile: ProfileDB) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        full_name=profile.full_name,
        avatar_url=profile.avatar_url,
        phone=profile.phone,
        department=profile.department,
        batch=profile.batch,
        created_at=profile.created_at.isoformat(),
        updated_at=profile.updated_at.isoformat(),
    )


@router.get("", response_model=List[ProfileResponse])
async def list_profiles(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return [_profile_response(p) for p in ComplaintStore(db).list_profiles(actor)]


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return _profile_response(ComplaintStore(db).get_profile(actor, actor.id))


@router.put("/me", response_model=ProfileResponse)
async def update_my_profile(
    request: ProfileUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    changes = request.model_dump(exclude_unset=True)
    profile = ComplaintStore(db).update_profile(actor, actor.id, changes)
    return _profile_response(profile)


@router.get("/{user_id}", response_model=ProfileResponse)
async def get_profile(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return _profile_response(ComplaintStore(db).get_profile(actor, user_id))
