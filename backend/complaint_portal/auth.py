"""
Complaint Portal - Authentication Utilities
Password hashing, JWT tokens, and auth dependencies
"""
import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .exceptions import AuthenticationRequired, AuthorizationDenied
from .models.db_models import AppRole, AuthSessionDB, utcnow
from .services.access import Actor, has_role

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "complaint-portal-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))

# Bearer token security; missing headers are reported by get_current_actor
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def token_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)


def create_access_token(user_id: str, email: str, session_id: str, expires_at: datetime) -> str:
    """Create a JWT access token bound to an auth session."""
    to_encode = {
        "sub": user_id,
        "email": email,
        "jti": session_id,
        "exp": expires_at,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token. Expired or tampered tokens give None."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


def resolve_actor(db: Session, token: str) -> Actor:
    """
    Turn a bearer token into an Actor.
    The token must decode and its session must exist, be live and not revoked.
    """
    payload = decode_token(token)
    if payload is None:
        raise AuthenticationRequired("Could not validate credentials")

    user_id = payload.get("sub")
    session_id = payload.get("jti")
    if user_id is None or session_id is None:
        raise AuthenticationRequired("Could not validate credentials")

    session = db.query(AuthSessionDB).filter(
        AuthSessionDB.id == session_id,
        AuthSessionDB.user_id == user_id,
    ).first()
    if session is None or session.revoked:
        raise AuthenticationRequired("Session has ended")
    if session.expires_at < utcnow():
        raise AuthenticationRequired("Token has expired")

    return Actor(id=user_id, email=payload.get("email"), session_id=session_id)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Actor:
    """
    Dependency to get the current authenticated actor.
    Validates the JWT and its session row.
    """
    if credentials is None:
        raise AuthenticationRequired()
    return resolve_actor(db, credentials.credentials)


async def require_admin(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
) -> Actor:
    """
    Dependency to require the admin role.
    Use this on admin-only routes.
    """
    if not has_role(db, actor.id, AppRole.ADMIN):
        raise AuthorizationDenied("Admin access required")
    return actor
