"""Complaint Portal - Data Models"""
from .db_models import (
    # Enums
    AppRole, ComplaintStatus, ComplaintPriority,
    # Identity provider
    AccountDB, AuthSessionDB,
    # Application schema
    ProfileDB, UserRoleDB, ComplaintDB, ComplaintAttachmentDB,
    ComplaintStatusHistoryDB, AdminNoteDB,
)

__all__ = [
    "AppRole", "ComplaintStatus", "ComplaintPriority",
    "AccountDB", "AuthSessionDB",
    "ProfileDB", "UserRoleDB", "ComplaintDB", "ComplaintAttachmentDB",
    "ComplaintStatusHistoryDB", "AdminNoteDB",
]
