"""
Complaint Gateway

What the UI calls: list, create and submit complaints, upload attachments,
sign out. Thin on purpose - authorization lives in ComplaintStore's
row-level policies, this layer only sequences calls.

No caching and no retries. After a write the caller re-fetches.
"""
import logging
import time
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ..exceptions import AttachmentUploadError, PortalError
from ..models.db_models import ComplaintAttachmentDB, ComplaintDB, ComplaintPriority, new_id
from .access import Actor, Operation
from .accounts import AccountService
from .complaint_store import ComplaintStore
from .storage import BlobStore, UploadedFile

logger = logging.getLogger(__name__)


def attachment_object_name(complaint_id: str, upload: UploadedFile) -> str:
    """<complaint id>/<millis>-<random>.<ext>, unique per upload."""
    millis = int(time.time() * 1000)
    return f"{complaint_id}/{millis}-{uuid4().hex[:8]}.{upload.extension}"


class ComplaintGateway:
    """Client-facing operations over the complaint schema."""

    def __init__(self, db: Session, blob_store: Optional[BlobStore] = None):
        self.db = db
        self.store = ComplaintStore(db)
        self.blobs = blob_store or BlobStore()

    def list_complaints(self, actor: Actor) -> List[ComplaintDB]:
        """Own complaints for students, every complaint for admins. Newest first."""
        self.store.rls.require_actor(actor)
        if self.store.rls.is_admin(actor):
            return self.store.list_complaints(actor)
        return self.store.list_complaints(actor, owner_id=actor.id)

    def create_complaint(
        self,
        actor: Actor,
        title: str,
        description: str,
        category: str,
        priority=ComplaintPriority.MEDIUM,
        is_anonymous: bool = False,
    ) -> ComplaintDB:
        """Create a complaint owned by the actor. Status is always new."""
        return self.store.insert_complaint(
            actor,
            user_id=actor.id if actor else None,
            title=title,
            description=description,
            category=category,
            priority=priority,
            is_anonymous=is_anonymous,
        )

    def upload_attachments(
        self,
        actor: Actor,
        complaint_id: str,
        files: Iterable[UploadedFile],
    ) -> List[ComplaintAttachmentDB]:
        """
        Store files one at a time and record each as an attachment.

        The row for a file is inserted only after its blob is written.
        The first failure stops the loop; earlier files are kept and
        reported on the raised AttachmentUploadError.
        """
        complaint = self.store.get_complaint(actor, complaint_id)
        self.store.rls.authorize(
            actor,
            Operation.INSERT,
            ComplaintAttachmentDB(id=new_id(), complaint_id=complaint.id),
        )

        attachments: List[ComplaintAttachmentDB] = []
        for upload in files:
            try:
                path = self.blobs.upload(
                    actor,
                    self.blobs.owner_path(actor, attachment_object_name(complaint.id, upload)),
                    upload.data,
                    upload.content_type,
                )
                attachment = self.store.insert_attachment(
                    actor,
                    complaint_id=complaint.id,
                    file_name=upload.file_name,
                    file_url=self.blobs.public_url(path),
                    file_size=upload.size,
                    file_type=upload.content_type,
                )
            except PortalError as e:
                logger.warning(
                    f"Attachment upload aborted for complaint {complaint.id} at {upload.file_name}: "
                    f"{e.message} ({len(attachments)} stored)"
                )
                raise AttachmentUploadError(
                    e, attachments=attachments, failed_file=upload.file_name, complaint_id=complaint.id
                )
            attachments.append(attachment)

        return attachments

    def submit_complaint(
        self,
        actor: Actor,
        title: str,
        description: str,
        category: str,
        priority=ComplaintPriority.MEDIUM,
        is_anonymous: bool = False,
        files: Iterable[UploadedFile] = (),
    ) -> Tuple[ComplaintDB, List[ComplaintAttachmentDB]]:
        """Create a complaint, then upload its files. A failed upload leaves the complaint in place."""
        complaint = self.create_complaint(
            actor, title, description, category, priority=priority, is_anonymous=is_anonymous
        )
        files = list(files)
        attachments = self.upload_attachments(actor, complaint.id, files) if files else []
        return complaint, attachments

    def read_attachment(
        self,
        actor: Actor,
        complaint_id: str,
        attachment_id: str,
    ) -> Tuple[ComplaintAttachmentDB, bytes]:
        """Attachment row and its blob, looked up by id rather than by storage path."""
        attachment = self.store.get_attachment(actor, complaint_id, attachment_id)
        data = self.blobs.read(actor, self.blobs.path_from_url(attachment.file_url))
        return attachment, data

    def sign_out(self, actor: Actor) -> None:
        AccountService(self.db).sign_out(actor)
