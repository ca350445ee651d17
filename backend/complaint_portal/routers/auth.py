"""
Complaint Portal - Authentication Router
Handles sign-up, sign-in, sign-out and session lookup.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor
from ..models.db_models import AccountDB, AppRole, UserRoleDB
from ..services.access import Actor
from ..services.accounts import AccountService
from ..services.gateway import ComplaintGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class SignupRequest(BaseModel):
    email: EmailStr
    password: str
    full_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: str


class MessageResponse(BaseModel):
    message: str


class AccountResponse(BaseModel):
    id: str
    email: str


class MeResponse(BaseModel):
    """Current account with its roles, as the dashboard header needs it."""
    id: str
    email: str
    roles: List[str]
    is_admin: bool


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/signup", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def signup(request: SignupRequest, db: Session = Depends(get_db)):
    """
    Register a new account.
    Its profile and student role are created in the same transaction.
    """
    metadata = {"full_name": request.full_name} if request.full_name is not None else {}
    account = AccountService(db).create_account(request.email, request.password, metadata)
    return AccountResponse(id=account.id, email=account.email)


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate and return a JWT bound to a new session.
    """
    token, session = AccountService(db).sign_in(request.email, request.password)
    return TokenResponse(access_token=token, expires_at=session.expires_at.isoformat())


@router.post("/logout", response_model=MessageResponse)
async def logout(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """
    End the current session. The token is rejected from now on.
    """
    ComplaintGateway(db).sign_out(actor)
    return MessageResponse(message="Signed out")


@router.get("/me", response_model=MeResponse)
async def get_me(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """
    Get current authenticated account info.
    """
    account = db.query(AccountDB).filter(AccountDB.id == actor.id).first()
    roles = [
        r.role.value for r in
        db.query(UserRoleDB).filter(UserRoleDB.user_id == actor.id).order_by(UserRoleDB.created_at).all()
    ]
    return MeResponse(
        id=actor.id,
        email=account.email if account else (actor.email or ""),
        roles=roles,
        is_admin=AppRole.ADMIN.value in roles,
    )
