"""
Account Service

Identity-provider side of the portal: sign-up with its profile/role
bootstrap, sign-in and sign-out sessions, and account removal.

These operations run in definer context: they write profiles, roles and
sessions directly, without going through RowLevelSecurity.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import create_access_token, hash_password, token_expiry, verify_password
from ..exceptions import AuthenticationRequired, Conflict, NotFound, ValidationFailure
from ..models.db_models import (
    AccountDB, AuthSessionDB, ProfileDB, UserRoleDB, ComplaintDB,
    ComplaintAttachmentDB, ComplaintStatusHistoryDB, AdminNoteDB,
    AppRole, new_id, utcnow,
)
from .access import Actor

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("complaint_portal.security")

MIN_PASSWORD_LENGTH = 8


class AccountService:
    """Account lifecycle. Each public method is one transaction."""

    def __init__(self, db: Session):
        self.db = db

    def create_account(
        self,
        email: str,
        password: str,
        user_metadata: Optional[Dict[str, Any]] = None,
    ) -> AccountDB:
        """
        Create an account together with its profile and student role.

        The three inserts commit together; if any of them fails nothing
        is persisted and the error propagates.
        """
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        email = email.strip().lower()
        if self._email_taken(email):
            raise Conflict("Email already registered")

        metadata = dict(user_metadata or {})
        account = AccountDB(
            id=new_id(),
            email=email,
            password_hash=hash_password(password),
            user_metadata=metadata,
        )
        profile = ProfileDB(id=account.id, full_name=metadata.get("full_name"))
        role = UserRoleDB(id=new_id(), user_id=account.id, role=AppRole.STUDENT)

        try:
            self.db.add(account)
            self.db.flush()
            self.db.add_all([profile, role])
            self.db.commit()
        except IntegrityError:
            # Concurrent sign-up with the same email got there first
            self.db.rollback()
            if self._email_taken(email):
                raise Conflict("Email already registered")
            logger.exception(f"Account bootstrap failed for {email}")
            raise
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Account bootstrap failed for {email}")
            raise

        self.db.refresh(account)
        logger.info(f"User registered: {email}")
        return account

    def _email_taken(self, email: str) -> bool:
        return self.db.query(AccountDB.id).filter(AccountDB.email == email).first() is not None

    def authenticate(self, email: str, password: str) -> Optional[AccountDB]:
        account = self.db.query(AccountDB).filter(AccountDB.email == email.strip().lower()).first()
        if account is None or not verify_password(password, account.password_hash):
            return None
        return account

    def sign_in(self, email: str, password: str) -> Tuple[str, AuthSessionDB]:
        """Open a session and return its bearer token."""
        account = self.authenticate(email, password)
        if account is None:
            security_logger.warning(f"Failed sign-in for {email}")
            raise AuthenticationRequired("Invalid email or password")

        session = AuthSessionDB(
            id=new_id(),
            user_id=account.id,
            expires_at=token_expiry(),
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)

        token = create_access_token(account.id, account.email, session.id, session.expires_at)
        logger.info(f"User logged in: {account.email}")
        return token, session

    def sign_out(self, actor: Actor) -> None:
        """Revoke the actor's session. The token stops resolving immediately."""
        if actor is None or actor.session_id is None:
            raise AuthenticationRequired()

        session = self.db.query(AuthSessionDB).filter(
            AuthSessionDB.id == actor.session_id,
            AuthSessionDB.user_id == actor.id,
        ).first()
        if session is None:
            raise AuthenticationRequired("Session has ended")

        if not session.revoked:
            session.revoked = True
            session.revoked_at = utcnow()
            self.db.commit()
        logger.info(f"User logged out: {actor.email or actor.id}")

    def delete_account(self, account_id: str) -> Dict[str, int]:
        """
        Remove an account and everything it owns.

        Returns cascade counts for confirmation.
        """
        account = self.db.query(AccountDB).filter(AccountDB.id == account_id).first()
        if account is None:
            raise NotFound("Account not found")

        complaint_ids = [
            c.id for c in
            self.db.query(ComplaintDB.id).filter(ComplaintDB.user_id == account_id).all()
        ]
        cascade = {
            "complaints": len(complaint_ids),
            "attachments": 0,
            "status_history": self.db.query(ComplaintStatusHistoryDB).filter(
                ComplaintStatusHistoryDB.changed_by == account_id
            ).count(),
            "admin_notes": self.db.query(AdminNoteDB).filter(
                AdminNoteDB.admin_id == account_id
            ).count(),
            "roles": self.db.query(UserRoleDB).filter(UserRoleDB.user_id == account_id).count(),
        }
        if complaint_ids:
            cascade["attachments"] = self.db.query(ComplaintAttachmentDB).filter(
                ComplaintAttachmentDB.complaint_id.in_(complaint_ids)
            ).count()

        # Rows authored by this account on other people's complaints,
        # and assignments pointing at it
        self.db.query(ComplaintStatusHistoryDB).filter(
            ComplaintStatusHistoryDB.changed_by == account_id
        ).delete(synchronize_session=False)
        self.db.query(AdminNoteDB).filter(
            AdminNoteDB.admin_id == account_id
        ).delete(synchronize_session=False)
        self.db.query(ComplaintDB).filter(
            ComplaintDB.assigned_to == account_id
        ).update({ComplaintDB.assigned_to: None}, synchronize_session=False)
        self.db.expire_all()

        self.db.delete(account)
        self.db.commit()

        logger.info(f"Account deleted: {account_id} cascade={cascade}")
        return cascade
