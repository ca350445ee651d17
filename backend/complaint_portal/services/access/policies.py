"""
Row-Level Security

Per-table, per-operation policies for the complaint schema.
Every schema-layer read and write passes through RowLevelSecurity;
the actor is always passed in explicitly.

Semantics follow PostgreSQL permissive policies:
- SELECT policies contribute row filters, OR-ed together
- INSERT/UPDATE/DELETE policies are row predicates, any one passing admits the write
- No policy for an operation means nobody may perform it
"""
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy import exists, false, or_, true
from sqlalchemy.orm import Query, Session

from ...exceptions import AuthenticationRequired, AuthorizationDenied
from ...models.db_models import (
    AppRole, ProfileDB, UserRoleDB, ComplaintDB, ComplaintAttachmentDB,
    ComplaintStatusHistoryDB, AdminNoteDB,
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("complaint_portal.security")


@dataclass(frozen=True)
class Actor:
    """The authenticated account performing an operation."""
    id: str
    email: Optional[str] = None
    session_id: Optional[str] = None


class Operation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def has_role(db: Session, user_id: str, role: AppRole) -> bool:
    """
    True iff a user_roles row exists for exactly (user_id, role).

    Runs as a direct lookup, outside RowLevelSecurity, so admin-only
    policies on user_roles never re-enter their own evaluation.
    """
    if user_id is None:
        return False
    return db.query(
        exists().where(UserRoleDB.user_id == user_id, UserRoleDB.role == AppRole(role))
    ).scalar()


# =============================================================================
# POLICY PREDICATES
# =============================================================================
#
# Row filters take (db, actor) and return a SQL clause.
# Row checks take (db, actor, row) and return a bool.
#

def _all_rows(db, actor):
    return true()


def _admin_rows(db, actor):
    return true() if has_role(db, actor.id, AppRole.ADMIN) else false()


def _is_admin(db, actor, row):
    return has_role(db, actor.id, AppRole.ADMIN)


def _owns_profile(db, actor, row):
    return row.id == actor.id


def _owns_complaint(db, actor, row):
    return row.user_id == actor.id


def _owns_parent_complaint(db, actor, row):
    owner_id = db.query(ComplaintDB.user_id).filter(ComplaintDB.id == row.complaint_id).scalar()
    return owner_id is not None and owner_id == actor.id


def _admin_authoring_note(db, actor, row):
    return has_role(db, actor.id, AppRole.ADMIN) and row.admin_id == actor.id


def _admin_recording_change(db, actor, row):
    return has_role(db, actor.id, AppRole.ADMIN) and row.changed_by == actor.id


@dataclass(frozen=True)
class Policy:
    name: str
    operation: Operation
    using: Optional[Callable] = None  # SELECT row filter
    check: Optional[Callable] = None  # write predicate


POLICIES: Dict[type, List[Policy]] = {
    ProfileDB: [
        Policy("Users can view all profiles", Operation.SELECT, using=_all_rows),
        Policy("Users can update own profile", Operation.UPDATE, check=_owns_profile),
    ],
    UserRoleDB: [
        Policy("Anyone can view user roles", Operation.SELECT, using=_all_rows),
        Policy("Only admins can insert roles", Operation.INSERT, check=_is_admin),
        Policy("Only admins can update roles", Operation.UPDATE, check=_is_admin),
        Policy("Only admins can delete roles", Operation.DELETE, check=_is_admin),
    ],
    ComplaintDB: [
        Policy("Anyone can view complaints", Operation.SELECT, using=_all_rows),
        Policy("Users can create complaints", Operation.INSERT, check=_owns_complaint),
        Policy("Users can update own complaints", Operation.UPDATE, check=_owns_complaint),
        Policy("Admins can update any complaint", Operation.UPDATE, check=_is_admin),
    ],
    ComplaintAttachmentDB: [
        Policy("Anyone can view attachments", Operation.SELECT, using=_all_rows),
        Policy("Users can add attachments to own complaints", Operation.INSERT, check=_owns_parent_complaint),
    ],
    ComplaintStatusHistoryDB: [
        Policy("Anyone can view status history", Operation.SELECT, using=_all_rows),
        Policy("Admins can add status history", Operation.INSERT, check=_admin_recording_change),
    ],
    AdminNoteDB: [
        Policy("Only admins can view admin notes", Operation.SELECT, using=_admin_rows),
        Policy("Only admins can create admin notes", Operation.INSERT, check=_admin_authoring_note),
    ],
}


def policies_for(model: type, operation: Operation) -> List[Policy]:
    return [p for p in POLICIES.get(model, []) if p.operation == operation]


# =============================================================================
# ENFORCEMENT
# =============================================================================

class RowLevelSecurity:
    """
    Evaluates POLICIES against a database session.

    query() hides rows the actor may not read.
    authorize() raises AuthorizationDenied for writes no policy admits.
    """

    def __init__(self, db: Session):
        self.db = db

    def is_admin(self, actor: Optional[Actor]) -> bool:
        return actor is not None and has_role(self.db, actor.id, AppRole.ADMIN)

    def query(self, actor: Optional[Actor], model: type) -> Query:
        """Base query over `model` restricted to the rows `actor` may see."""
        self.require_actor(actor)
        filters = [p.using(self.db, actor) for p in policies_for(model, Operation.SELECT)]
        if not filters:
            return self.db.query(model).filter(false())
        return self.db.query(model).filter(or_(*filters))

    def can(self, actor: Optional[Actor], operation: Operation, row) -> bool:
        if actor is None:
            return False
        return any(p.check(self.db, actor, row) for p in policies_for(type(row), operation))

    def authorize(self, actor: Optional[Actor], operation: Operation, row) -> None:
        self.require_actor(actor)
        if not self.can(actor, operation, row):
            table = getattr(type(row), "__tablename__", type(row).__name__)
            security_logger.warning(
                f"Policy denied: actor={actor.id}, operation={operation.value}, table={table}"
            )
            raise AuthorizationDenied()

    def require_actor(self, actor: Optional[Actor]) -> None:
        if actor is None:
            raise AuthenticationRequired()
