"""
Complaint Store

Schema-layer operations for profiles, roles, complaints, attachments,
status history and admin notes. Every call takes the acting account
explicitly and is checked by RowLevelSecurity before touching a table.

A status change made by an admin is written together with its
status-history row in one transaction.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import NotFound, PortalError, ValidationFailure
from ..models.db_models import (
    AppRole, ComplaintStatus, ComplaintPriority,
    ProfileDB, UserRoleDB, ComplaintDB, ComplaintAttachmentDB,
    ComplaintStatusHistoryDB, AdminNoteDB, new_id,
)
from .access import Actor, Operation, RowLevelSecurity

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {"full_name", "avatar_url", "phone", "department", "batch"}
COMPLAINT_FIELDS = {
    "title", "description", "category", "status", "priority",
    "is_anonymous", "assigned_to", "upvotes",
}
REQUIRED_COMPLAINT_FIELDS = ("title", "description", "category")


def coerce_enum(enum_cls: type, value: Any, field: str) -> Enum:
    """Map a raw value onto `enum_cls` or raise ValidationFailure."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationFailure(f"Invalid {field}. Must be one of: {allowed}")


class ComplaintStore:
    """Policy-checked access to the complaint schema."""

    def __init__(self, db: Session):
        self.db = db
        self.rls = RowLevelSecurity(db)

    # =========================================================================
    # PROFILES
    # =========================================================================

    def list_profiles(self, actor: Actor) -> List[ProfileDB]:
        return self.rls.query(actor, ProfileDB).order_by(ProfileDB.created_at).all()

    def get_profile(self, actor: Actor, user_id: str) -> ProfileDB:
        profile = self.rls.query(actor, ProfileDB).filter(ProfileDB.id == user_id).first()
        if profile is None:
            raise NotFound("Profile not found")
        return profile

    def update_profile(self, actor: Actor, user_id: str, changes: Dict[str, Any]) -> ProfileDB:
        """Owner-only update. updated_at is stamped by the mapper hook."""
        self._reject_unknown(changes, PROFILE_FIELDS)
        profile = self.get_profile(actor, user_id)
        self.rls.authorize(actor, Operation.UPDATE, profile)

        for field, value in changes.items():
            setattr(profile, field, value)

        self._commit()
        self.db.refresh(profile)
        logger.info(f"Profile updated: {profile.id}")
        return profile

    # =========================================================================
    # ROLE ASSIGNMENTS
    # =========================================================================

    def list_roles(self, actor: Actor, user_id: Optional[str] = None) -> List[UserRoleDB]:
        query = self.rls.query(actor, UserRoleDB)
        if user_id is not None:
            query = query.filter(UserRoleDB.user_id == user_id)
        return query.order_by(UserRoleDB.created_at).all()

    def grant_role(self, actor: Actor, user_id: str, role: Any) -> UserRoleDB:
        """
        Admin-only. Granting a role the account already holds is a no-op
        that returns the existing assignment.
        """
        role = coerce_enum(AppRole, role, "role")
        assignment = UserRoleDB(id=new_id(), user_id=user_id, role=role)
        self.rls.authorize(actor, Operation.INSERT, assignment)

        existing = self._find_role(user_id, role)
        if existing is not None:
            return existing

        self.db.add(assignment)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent grant of the same pair
            self.db.rollback()
            existing = self._find_role(user_id, role)
            if existing is None:
                raise ValidationFailure("Role could not be granted")
            return existing

        self.db.refresh(assignment)
        logger.info(f"Role granted: user={user_id}, role={role.value}, by={actor.id}")
        return assignment

    def update_role(self, actor: Actor, role_id: str, role: Any) -> UserRoleDB:
        role = coerce_enum(AppRole, role, "role")
        assignment = self.rls.query(actor, UserRoleDB).filter(UserRoleDB.id == role_id).first()
        if assignment is None:
            raise NotFound("Role assignment not found")
        self.rls.authorize(actor, Operation.UPDATE, assignment)

        assignment.role = role
        self._commit()
        self.db.refresh(assignment)
        return assignment

    def revoke_role(self, actor: Actor, user_id: str, role: Any) -> None:
        role = coerce_enum(AppRole, role, "role")
        assignment = self._find_role(user_id, role)
        if assignment is None:
            raise NotFound("Role assignment not found")
        self.rls.authorize(actor, Operation.DELETE, assignment)

        self.db.delete(assignment)
        self._commit()
        logger.info(f"Role revoked: user={user_id}, role={role.value}, by={actor.id}")

    def _find_role(self, user_id: str, role: AppRole) -> Optional[UserRoleDB]:
        return self.db.query(UserRoleDB).filter(
            UserRoleDB.user_id == user_id,
            UserRoleDB.role == role,
        ).first()

    # =========================================================================
    # COMPLAINTS
    # =========================================================================

    def insert_complaint(
        self,
        actor: Actor,
        user_id: str,
        title: str,
        description: str,
        category: str,
        priority: Any = ComplaintPriority.MEDIUM,
        is_anonymous: bool = False,
    ) -> ComplaintDB:
        """Insert a complaint owned by `user_id`. Status always starts as new."""
        values = {"title": title, "description": description, "category": category}
        for field in REQUIRED_COMPLAINT_FIELDS:
            if not values[field] or not str(values[field]).strip():
                raise ValidationFailure(f"{field} is required")

        complaint = ComplaintDB(
            id=new_id(),
            user_id=user_id,
            title=title,
            description=description,
            category=category,
            status=ComplaintStatus.NEW,
            priority=coerce_enum(ComplaintPriority, priority, "priority"),
            is_anonymous=bool(is_anonymous),
            upvotes=0,
        )
        self.rls.authorize(actor, Operation.INSERT, complaint)

        self.db.add(complaint)
        self._commit()
        self.db.refresh(complaint)
        logger.info(f"Complaint created: {complaint.id} by {actor.id}")
        return complaint

    def list_complaints(self, actor: Actor, owner_id: Optional[str] = None) -> List[ComplaintDB]:
        """Visible complaints, newest first, optionally narrowed to one owner."""
        query = self.rls.query(actor, ComplaintDB)
        if owner_id is not None:
            query = query.filter(ComplaintDB.user_id == owner_id)
        return query.order_by(ComplaintDB.created_at.desc()).all()

    def get_complaint(self, actor: Actor, complaint_id: str) -> ComplaintDB:
        complaint = self.rls.query(actor, ComplaintDB).filter(ComplaintDB.id == complaint_id).first()
        if complaint is None:
            raise NotFound("Complaint not found")
        return complaint

    def update_complaint(
        self,
        actor: Actor,
        complaint_id: str,
        changes: Dict[str, Any],
        notes: Optional[str] = None,
    ) -> ComplaintDB:
        """
        Owner or admin update.

        When an admin changes the status, the matching status-history row
        is added in the same commit. `notes` goes on that row.
        """
        if "user_id" in changes:
            raise ValidationFailure("Complaint owner cannot be changed")
        self._reject_unknown(changes, COMPLAINT_FIELDS)

        complaint = self.get_complaint(actor, complaint_id)
        self.rls.authorize(actor, Operation.UPDATE, complaint)

        changes = dict(changes)
        if "status" in changes:
            changes["status"] = coerce_enum(ComplaintStatus, changes["status"], "status")
        if "priority" in changes:
            changes["priority"] = coerce_enum(ComplaintPriority, changes["priority"], "priority")
        for field in REQUIRED_COMPLAINT_FIELDS:
            if field in changes and (changes[field] is None or not str(changes[field]).strip()):
                raise ValidationFailure(f"{field} is required")

        try:
            previous_status = complaint.status
            for field, value in changes.items():
                setattr(complaint, field, value)

            new_status = changes.get("status")
            if new_status is not None and new_status != previous_status and self.rls.is_admin(actor):
                entry = ComplaintStatusHistoryDB(
                    id=new_id(),
                    complaint_id=complaint.id,
                    status=new_status,
                    changed_by=actor.id,
                    notes=notes,
                )
                self.rls.authorize(actor, Operation.INSERT, entry)
                self.db.add(entry)
        except PortalError:
            self.db.rollback()
            raise

        self._commit()
        self.db.refresh(complaint)
        logger.info(f"Complaint updated: {complaint.id} fields={sorted(changes)} by {actor.id}")
        return complaint

    def set_status(
        self,
        actor: Actor,
        complaint_id: str,
        status: Any,
        notes: Optional[str] = None,
    ) -> ComplaintDB:
        return self.update_complaint(actor, complaint_id, {"status": status}, notes=notes)

    # =========================================================================
    # ATTACHMENTS
    # =========================================================================

    def insert_attachment(
        self,
        actor: Actor,
        complaint_id: str,
        file_name: str,
        file_url: str,
        file_size: int,
        file_type: str,
    ) -> ComplaintAttachmentDB:
        self.get_complaint(actor, complaint_id)
        attachment = ComplaintAttachmentDB(
            id=new_id(),
            complaint_id=complaint_id,
            file_name=file_name,
            file_url=file_url,
            file_size=file_size,
            file_type=file_type,
        )
        self.rls.authorize(actor, Operation.INSERT, attachment)

        self.db.add(attachment)
        self._commit()
        self.db.refresh(attachment)
        return attachment

    def get_attachment(self, actor: Actor, complaint_id: str, attachment_id: str) -> ComplaintAttachmentDB:
        attachment = self.rls.query(actor, ComplaintAttachmentDB).filter(
            ComplaintAttachmentDB.id == attachment_id,
            ComplaintAttachmentDB.complaint_id == complaint_id,
        ).first()
        if attachment is None:
            raise NotFound("Attachment not found")
        return attachment

    def list_attachments(self, actor: Actor, complaint_id: str) -> List[ComplaintAttachmentDB]:
        return self.rls.query(actor, ComplaintAttachmentDB).filter(
            ComplaintAttachmentDB.complaint_id == complaint_id
        ).order_by(ComplaintAttachmentDB.created_at).all()

    # =========================================================================
    # STATUS HISTORY (append-only)
    # =========================================================================

    def insert_status_history(
        self,
        actor: Actor,
        complaint_id: str,
        status: Any,
        notes: Optional[str] = None,
    ) -> ComplaintStatusHistoryDB:
        """Append a history entry recorded as changed by the acting admin."""
        self.get_complaint(actor, complaint_id)
        entry = ComplaintStatusHistoryDB(
            id=new_id(),
            complaint_id=complaint_id,
            status=coerce_enum(ComplaintStatus, status, "status"),
            changed_by=actor.id,
            notes=notes,
        )
        self.rls.authorize(actor, Operation.INSERT, entry)

        self.db.add(entry)
        self._commit()
        self.db.refresh(entry)
        return entry

    def list_status_history(self, actor: Actor, complaint_id: str) -> List[ComplaintStatusHistoryDB]:
        return self.rls.query(actor, ComplaintStatusHistoryDB).filter(
            ComplaintStatusHistoryDB.complaint_id == complaint_id
        ).order_by(ComplaintStatusHistoryDB.created_at).all()

    # =========================================================================
    # ADMIN NOTES
    # =========================================================================

    def insert_admin_note(
        self,
        actor: Actor,
        complaint_id: str,
        note: str,
        admin_id: Optional[str] = None,
    ) -> AdminNoteDB:
        if not note or not note.strip():
            raise ValidationFailure("note is required")
        self.get_complaint(actor, complaint_id)
        entry = AdminNoteDB(
            id=new_id(),
            complaint_id=complaint_id,
            admin_id=admin_id or actor.id,
            note=note,
        )
        self.rls.authorize(actor, Operation.INSERT, entry)

        self.db.add(entry)
        self._commit()
        self.db.refresh(entry)
        return entry

    def list_admin_notes(self, actor: Actor, complaint_id: str) -> List[AdminNoteDB]:
        return self.rls.query(actor, AdminNoteDB).filter(
            AdminNoteDB.complaint_id == complaint_id
        ).order_by(AdminNoteDB.created_at).all()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _reject_unknown(self, changes: Dict[str, Any], allowed: set) -> None:
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationFailure(f"Unknown or read-only fields: {', '.join(sorted(unknown))}")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Integrity error on commit: {e.orig}")
            raise ValidationFailure("The write violates a schema constraint")
