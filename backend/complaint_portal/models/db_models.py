"""
Complaint Portal - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Enum as SQLEnum, ForeignKey,
    Integer, JSON, String, Text, UniqueConstraint, event,
)
from sqlalchemy.orm import relationship, validates

from ..database import Base
from ..exceptions import ValidationFailure


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# =============================================================================
# ENUMERATIONS
# =============================================================================

class AppRole(str, Enum):
    """Capabilities an account can hold."""
    STUDENT = "student"
    ADMIN = "admin"


class ComplaintStatus(str, Enum):
    """Complaint lifecycle states. Any state may follow any other."""
    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ComplaintPriority(str, Enum):
    """Triage priority chosen by the submitter."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def _enum_column(enum_cls, name):
    # Store the lowercase values, reject anything outside the enumeration
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=_enum_values,
        validate_strings=True,
    )


# =============================================================================
# IDENTITY PROVIDER TABLES
# =============================================================================

class AccountDB(Base):
    """Identity-provider account. The schema layer references it, never mutates it."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    user_metadata = Column(JSON, nullable=True, default=dict)  # signup metadata, e.g. {"full_name": ...}
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    profile = relationship("ProfileDB", back_populates="account", uselist=False, cascade="all, delete-orphan")
    roles = relationship("UserRoleDB", back_populates="account", cascade="all, delete-orphan")
    complaints = relationship(
        "ComplaintDB",
        back_populates="owner",
        foreign_keys="ComplaintDB.user_id",
        cascade="all, delete-orphan",
    )
    sessions = relationship("AuthSessionDB", back_populates="account", cascade="all, delete-orphan")


class AuthSessionDB(Base):
    """One row per sign-in. Sign-out flips `revoked`."""
    __tablename__ = "auth_sessions"

    id = Column(String(36), primary_key=True, default=new_id)  # JWT jti
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    account = relationship("AccountDB", back_populates="sessions")


# =============================================================================
# APPLICATION SCHEMA
# =============================================================================

class ProfileDB(Base):
    """Public profile, one-to-one with an account."""
    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    department = Column(Text, nullable=True)
    batch = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    account = relationship("AccountDB", back_populates="profile")


class UserRoleDB(Base):
    """Role assignment. The only source of the admin capability."""
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="user_roles_user_id_role_key"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(_enum_column(AppRole, "app_role"), nullable=False, default=AppRole.STUDENT)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    account = relationship("AccountDB", back_populates="roles")


class ComplaintDB(Base):
    """
    A complaint filed by a student.
    The owner is fixed at creation; status and assignment move with triage.
    """
    __tablename__ = "complaints"
    __table_args__ = (
        CheckConstraint("upvotes >= 0", name="complaints_upvotes_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(Text, nullable=False)  # free text: Infrastructure, Facilities, ...

    status = Column(_enum_column(ComplaintStatus, "complaint_status"), nullable=False, default=ComplaintStatus.NEW)
    priority = Column(_enum_column(ComplaintPriority, "complaint_priority"), nullable=False, default=ComplaintPriority.MEDIUM)
    is_anonymous = Column(Boolean, nullable=False, default=False)

    assigned_to = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    upvotes = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    owner = relationship("AccountDB", back_populates="complaints", foreign_keys=[user_id])
    assignee = relationship("AccountDB", foreign_keys=[assigned_to])
    attachments = relationship("ComplaintAttachmentDB", back_populates="complaint", cascade="all, delete-orphan")
    status_history = relationship(
        "ComplaintStatusHistoryDB",
        back_populates="complaint",
        cascade="all, delete-orphan",
        order_by="ComplaintStatusHistoryDB.created_at",
    )
    admin_notes = relationship("AdminNoteDB", back_populates="complaint", cascade="all, delete-orphan")

    @validates("user_id")
    def _validate_owner(self, key, value):
        if self.user_id is not None and value != self.user_id:
            raise ValidationFailure("Complaint owner cannot be changed")
        return value

    @validates("upvotes")
    def _validate_upvotes(self, key, value):
        if value is not None and value < 0:
            raise ValidationFailure("upvotes cannot be negative")
        return value


class ComplaintAttachmentDB(Base):
    """File attached to a complaint. The blob lives in the complaint-attachments bucket."""
    __tablename__ = "complaint_attachments"

    id = Column(String(36), primary_key=True, default=new_id)
    complaint_id = Column(String(36), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(Text, nullable=False)
    file_url = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    complaint = relationship("ComplaintDB", back_populates="attachments")


class ComplaintStatusHistoryDB(Base):
    """
    Immutable log of status changes made by admins.
    Append-only - nothing updates or deletes these rows.
    """
    __tablename__ = "complaint_status_history"

    id = Column(String(36), primary_key=True, default=new_id)
    complaint_id = Column(String(36), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(_enum_column(ComplaintStatus, "complaint_status"), nullable=False)
    changed_by = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    complaint = relationship("ComplaintDB", back_populates="status_history")


class AdminNoteDB(Base):
    """Internal note on a complaint, visible to admins only."""
    __tablename__ = "admin_notes"

    id = Column(String(36), primary_key=True, default=new_id)
    complaint_id = Column(String(36), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    admin_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    complaint = relationship("ComplaintDB", back_populates="admin_notes")


# =============================================================================
# TIMESTAMP MAINTENANCE
# =============================================================================

@event.listens_for(ProfileDB, "before_update")
@event.listens_for(ComplaintDB, "before_update")
def _touch_updated_at(mapper, connection, target):
    """Stamp updated_at on every UPDATE, whatever the caller assigned."""
    target.updated_at = utcnow()
