"""
Complaint Portal - Exceptions

Error taxonomy shared by the schema layer, the gateway and the API.
Messages are safe to show to the user; they never carry row data.
"""
from typing import List, Optional

from fastapi import status


class PortalError(Exception):
    """Base exception class for Complaint Portal errors."""

    default_code = "ERROR"
    default_message = "An error occurred."
    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message=None, code=None, status_code=None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status_code
        super().__init__(self.message)


class AuthenticationRequired(PortalError):
    """Raised when there is no valid session for the request."""
    default_code = "UNAUTHORIZED"
    default_message = "Authentication required."
    default_status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationDenied(PortalError):
    """Raised when a row-level policy rejects a write."""
    default_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action."
    default_status_code = status.HTTP_403_FORBIDDEN


class NotFound(PortalError):
    """Raised when a row does not exist or is not visible to the actor."""
    default_code = "NOT_FOUND"
    default_message = "The requested resource was not found."
    default_status_code = status.HTTP_404_NOT_FOUND


class ValidationFailure(PortalError):
    """Raised when a required field is missing or an enum value is out of range."""
    default_code = "VALIDATION_ERROR"
    default_message = "Unable to process the request."
    default_status_code = 422


class Conflict(PortalError):
    """Raised when a write collides with an existing row."""
    default_code = "CONFLICT"
    default_message = "Request conflicts with current state."
    default_status_code = status.HTTP_409_CONFLICT


class StorageError(PortalError):
    """Raised when the blob store rejects an object."""
    default_code = "STORAGE_ERROR"
    default_message = "The file could not be stored."
    default_status_code = status.HTTP_400_BAD_REQUEST


class AttachmentUploadError(PortalError):
    """
    Raised when a multi-file upload stops partway.

    Files stored before the failure stay stored and their attachment rows stay
    persisted; `attachments` lists them. `cause` is the first failure.
    """

    def __init__(
        self,
        cause: PortalError,
        attachments: Optional[List] = None,
        failed_file: Optional[str] = None,
        complaint_id: Optional[str] = None,
    ):
        self.cause = cause
        self.attachments = list(attachments or [])
        self.failed_file = failed_file
        self.complaint_id = complaint_id
        message = cause.message
        if failed_file:
            message = f"{failed_file}: {cause.message}"
        super().__init__(message=message, code=cause.code, status_code=cause.status_code)
