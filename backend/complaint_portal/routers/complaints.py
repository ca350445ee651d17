"""
Complaint Portal - Complaints Router

Complaint submission, triage and history.
Authorization is decided by the row-level policies in ComplaintStore;
these endpoints only translate HTTP to gateway/store calls.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor
from ..models.db_models import (
    ComplaintDB, ComplaintAttachmentDB, ComplaintStatusHistoryDB, AdminNoteDB,
    ComplaintStatus, ComplaintPriority,
)
from ..services.access import Actor
from ..services.gateway import ComplaintGateway
from ..services.storage import BlobStore, UploadedFile, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/complaints", tags=["complaints"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateComplaintRequest(BaseModel):
    """Request to file a complaint. Status is not accepted; it starts as new."""
    title: str = Field(..., min_length=1, description="Brief summary of the complaint")
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, description="Infrastructure, Facilities, Safety, ...")
    priority: ComplaintPriority = Field(default=ComplaintPriority.MEDIUM)
    is_anonymous: bool = Field(default=False, description="Hide identity from other students")


class UpdateComplaintRequest(BaseModel):
    """Only provided fields are updated."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    status: Optional[ComplaintStatus] = None
    priority: Optional[ComplaintPriority] = None
    is_anonymous: Optional[bool] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = Field(None, description="Recorded on the status-history entry")


class StatusChangeRequest(BaseModel):
    status: ComplaintStatus
    notes: Optional[str] = None


class AdminNoteRequest(BaseModel):
    note: str = Field(..., min_length=1)


class ComplaintResponse(BaseModel):
    id: str
    user_id: Optional[str] = None  # None when anonymous and viewer is neither owner nor admin
    title: str
    description: str
    category: str
    status: str
    priority: str
    is_anonymous: bool
    assigned_to: Optional[str] = None
    upvotes: int
    created_at: str
    updated_at: str


class AttachmentResponse(BaseModel):
    id: str
    complaint_id: str
    file_name: str
    file_url: str
    file_size: int
    file_type: str
    created_at: str


class StatusHistoryResponse(BaseModel):
    id: str
    complaint_id: str
    status: str
    changed_by: str
    notes: Optional[str] = None
    created_at: str


class AdminNoteResponse(BaseModel):
    id: str
    complaint_id: str
    admin_id: str
    note: str
    created_at: str


# =============================================================================
# SERIALIZATION
# =============================================================================

def show_owner(complaint: ComplaintDB, actor: Actor, viewer_is_admin: bool) -> bool:
    return (
        not complaint.is_anonymous
        or complaint.user_id == actor.id
        or viewer_is_admin
    )


def complaint_response(complaint: ComplaintDB, actor: Actor, viewer_is_admin: bool) -> ComplaintResponse:
    return ComplaintResponse(
        id=complaint.id,
        user_id=complaint.user_id if show_owner(complaint, actor, viewer_is_admin) else None,
        title=complaint.title,
        description=complaint.description,
        category=complaint.category,
        status=complaint.status.value,
        priority=complaint.priority.value,
        is_anonymous=complaint.is_anonymous,
        assigned_to=complaint.assigned_to,
        upvotes=complaint.upvotes,
        created_at=complaint.created_at.isoformat(),
        updated_at=complaint.updated_at.isoformat(),
    )


def attachment_content_url(attachment: ComplaintAttachmentDB) -> str:
    return f"/complaints/{attachment.complaint_id}/attachments/{attachment.id}/content"


def attachment_response(
    attachment: ComplaintAttachmentDB,
    complaint: ComplaintDB,
    actor: Actor,
    viewer_is_admin: bool,
) -> AttachmentResponse:
    # Storage paths start with the uploader id, so anonymous complaints get an id-keyed URL
    file_url = attachment.file_url
    if not show_owner(complaint, actor, viewer_is_admin):
        file_url = attachment_content_url(attachment)
    return AttachmentResponse(
        id=attachment.id,
        complaint_id=attachment.complaint_id,
        file_name=attachment.file_name,
        file_url=file_url,
        file_size=attachment.file_size,
        file_type=attachment.file_type,
        created_at=attachment.created_at.isoformat(),
    )


def history_response(entry: ComplaintStatusHistoryDB) -> StatusHistoryResponse:
    return StatusHistoryResponse(
        id=entry.id,
        complaint_id=entry.complaint_id,
        status=entry.status.value,
        changed_by=entry.changed_by,
        notes=entry.notes,
        created_at=entry.created_at.isoformat(),
    )


def note_response(note: AdminNoteDB) -> AdminNoteResponse:
    return AdminNoteResponse(
        id=note.id,
        complaint_id=note.complaint_id,
        admin_id=note.admin_id,
        note=note.note,
        created_at=note.created_at.isoformat(),
    )


def get_gateway(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> ComplaintGateway:
    return ComplaintGateway(db, blob_store)


# =============================================================================
# COMPLAINT ENDPOINTS
# =============================================================================

@router.get("", response_model=List[ComplaintResponse])
async def list_complaints(
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    """
    Own complaints for students, all complaints for admins. Newest first.
    """
    is_admin = gateway.store.rls.is_admin(actor)
    return [complaint_response(c, actor, is_admin) for c in gateway.list_complaints(actor)]


@router.post("", response_model=ComplaintResponse, status_code=status.HTTP_201_CREATED)
async def create_complaint(
    request: CreateComplaintRequest,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    complaint = gateway.create_complaint(
        actor,
        title=request.title,
        description=request.description,
        category=request.category,
        priority=request.priority,
        is_anonymous=request.is_anonymous,
    )
    return complaint_response(complaint, actor, gateway.store.rls.is_admin(actor))


@router.get("/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(
    complaint_id: str,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    complaint = gateway.store.get_complaint(actor, complaint_id)
    return complaint_response(complaint, actor, gateway.store.rls.is_admin(actor))


@router.patch("/{complaint_id}", response_model=ComplaintResponse)
async def update_complaint(
    complaint_id: str,
    request: UpdateComplaintRequest,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    """
    Update a complaint. Allowed for its owner and for admins.
    """
    changes = request.model_dump(exclude_unset=True)
    notes = changes.pop("notes", None)
    complaint = gateway.store.update_complaint(actor, complaint_id, changes, notes=notes)
    return complaint_response(complaint, actor, gateway.store.rls.is_admin(actor))


@router.post("/{complaint_id}/status", response_model=ComplaintResponse)
async def change_status(
    complaint_id: str,
    request: StatusChangeRequest,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    """
    Move a complaint to a new status.
    Admin changes are recorded in the status history in the same transaction.
    """
    complaint = gateway.store.set_status(actor, complaint_id, request.status, notes=request.notes)
    return complaint_response(complaint, actor, gateway.store.rls.is_admin(actor))


@router.get("/{complaint_id}/history", response_model=List[StatusHistoryResponse])
async def list_status_history(
    complaint_id: str,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    gateway.store.get_complaint(actor, complaint_id)
    return [history_response(e) for e in gateway.store.list_status_history(actor, complaint_id)]


# =============================================================================
# ATTACHMENTS
# =============================================================================

@router.post("/{complaint_id}/attachments", response_model=List[AttachmentResponse], status_code=status.HTTP_201_CREATED)
async def upload_attachments(
    complaint_id: str,
    files: List[UploadFile] = File(...),
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    """
    Upload files to a complaint, one after another.
    If one fails, the ones before it stay attached and the error names the file.
    """
    uploads = []
    for file in files:
        uploads.append(UploadedFile(
            file_name=file.filename or "upload",
            content_type=file.content_type or "application/octet-stream",
            data=await file.read(),
        ))
    attachments = gateway.upload_attachments(actor, complaint_id, uploads)
    complaint = gateway.store.get_complaint(actor, complaint_id)
    is_admin = gateway.store.rls.is_admin(actor)
    return [attachment_response(a, complaint, actor, is_admin) for a in attachments]


@router.get("/{complaint_id}/attachments", response_model=List[AttachmentResponse])
async def list_attachments(
    complaint_id: str,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    complaint = gateway.store.get_complaint(actor, complaint_id)
    is_admin = gateway.store.rls.is_admin(actor)
    return [
        attachment_response(a, complaint, actor, is_admin)
        for a in gateway.store.list_attachments(actor, complaint_id)
    ]


@router.get("/{complaint_id}/attachments/{attachment_id}/content")
async def read_attachment_content(
    complaint_id: str,
    attachment_id: str,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    """
    File contents by attachment id. Used where the storage path would
    reveal the uploader of an anonymous complaint.
    """
    attachment, data = gateway.read_attachment(actor, complaint_id, attachment_id)
    return Response(content=data, media_type=attachment.file_type)


# =============================================================================
# ADMIN NOTES
# =============================================================================

@router.get("/{complaint_id}/notes", response_model=List[AdminNoteResponse])
async def list_admin_notes(
    complaint_id: str,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    """
    Admin notes on a complaint. Non-admins always get an empty list.
    """
    return [note_response(n) for n in gateway.store.list_admin_notes(actor, complaint_id)]


@router.post("/{complaint_id}/notes", response_model=AdminNoteResponse, status_code=status.HTTP_201_CREATED)
async def create_admin_note(
    complaint_id: str,
    request: AdminNoteRequest,
    actor: Actor = Depends(get_current_actor),
    gateway: ComplaintGateway = Depends(get_gateway)
):
    note = gateway.store.insert_admin_note(actor, complaint_id, request.note)
    return note_response(note)
