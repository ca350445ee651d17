"""
Tests for the client gateway: listing, creation, submission and the
sequential attachment upload.

1. Students list their own complaints, admins list all, newest first
2. Created complaints are owned by the caller and start as new
3. Upload stops at the first failing file and reports what was kept
4. Blob paths live under the uploader's folder, keyed by complaint
"""
import os
import pytest
from datetime import datetime

from complaint_portal.exceptions import (
    AttachmentUploadError, AuthenticationRequired, AuthorizationDenied, NotFound,
)
from complaint_portal.models.db_models import ComplaintAttachmentDB, ComplaintStatus
from complaint_portal.services.access import Actor
from complaint_portal.services.accounts import AccountService
from complaint_portal.services.gateway import ComplaintGateway, attachment_object_name
from complaint_portal.services.storage import UploadedFile


@pytest.fixture
def gateway(db, blob_store):
    return ComplaintGateway(db, blob_store)


@pytest.fixture
def complaint(gateway, student):
    return gateway.create_complaint(student, "Broken AC", "Lab 3 AC is broken", "Facilities", priority="high")


def photo(name="ac.jpg", size=100):
    return UploadedFile(file_name=name, content_type="image/jpeg", data=b"\xff" * size)


def stored_files(root):
    found = []
    for dirpath, _, filenames in os.walk(root):
        found.extend(os.path.join(dirpath, f) for f in filenames)
    return found


# =============================================================================
# TEST: LIST AND CREATE
# =============================================================================

class TestListComplaints:

    def test_student_sees_own_admin_sees_all(self, db, gateway, student, other_student, admin):
        mine = gateway.create_complaint(student, "Mine", "Body", "Other")
        theirs = gateway.create_complaint(other_student, "Theirs", "Body", "Other")

        assert [c.id for c in gateway.list_complaints(student)] == [mine.id]
        assert {c.id for c in gateway.list_complaints(admin)} == {mine.id, theirs.id}

    def test_newest_first(self, db, gateway, student):
        older = gateway.create_complaint(student, "Older", "Body", "Other")
        newer = gateway.create_complaint(student, "Newer", "Body", "Other")
        older.created_at = datetime(2024, 1, 1)
        newer.created_at = datetime(2024, 6, 1)
        db.commit()

        assert [c.title for c in gateway.list_complaints(student)] == ["Newer", "Older"]

    def test_requires_actor(self, gateway):
        with pytest.raises(AuthenticationRequired):
            gateway.list_complaints(None)


class TestCreateComplaint:

    def test_owned_by_caller(self, complaint, student):
        assert complaint.user_id == student.id
        assert complaint.status == ComplaintStatus.NEW

    def test_requires_actor(self, gateway):
        with pytest.raises(AuthenticationRequired):
            gateway.create_complaint(None, "Title", "Body", "Other")

    def test_submit_without_files(self, gateway, student):
        created, attachments = gateway.submit_complaint(student, "Noise", "Hostel C at night", "Hostel")
        assert created.status == ComplaintStatus.NEW
        assert attachments == []

    def test_submit_with_files(self, gateway, student):
        created, attachments = gateway.submit_complaint(
            student, "Wifi", "No signal in library", "Infrastructure",
            files=[photo("one.jpg"), photo("two.jpg")],
        )
        assert [a.file_name for a in attachments] == ["one.jpg", "two.jpg"]
        assert all(a.complaint_id == created.id for a in attachments)


# =============================================================================
# TEST: ATTACHMENT UPLOAD
# =============================================================================

class TestUploadAttachments:

    def test_all_files_stored(self, gateway, blob_store, complaint, student):
        pdf = UploadedFile(file_name="quote.pdf", content_type="application/pdf", data=b"%PDF-1.4")
        attachments = gateway.upload_attachments(student, complaint.id, [photo(), pdf])

        assert [a.file_type for a in attachments] == ["image/jpeg", "application/pdf"]
        assert attachments[0].file_size == 100
        assert len(stored_files(blob_store.root)) == 2

    def test_stops_at_first_rejected_file(self, db, gateway, blob_store, complaint, student):
        files = [
            photo("first.jpg"),
            UploadedFile(file_name="notes.txt", content_type="text/plain", data=b"hello"),
            photo("third.jpg"),
        ]
        with pytest.raises(AttachmentUploadError) as exc_info:
            gateway.upload_attachments(student, complaint.id, files)

        error = exc_info.value
        assert error.failed_file == "notes.txt"
        assert error.complaint_id == complaint.id
        assert error.status_code == 415
        assert [a.file_name for a in error.attachments] == ["first.jpg"]

        rows = db.query(ComplaintAttachmentDB).filter(ComplaintAttachmentDB.complaint_id == complaint.id).all()
        assert [r.file_name for r in rows] == ["first.jpg"]
        assert len(stored_files(blob_store.root)) == 1

    def test_oversized_file(self, db, gateway, complaint, student):
        with pytest.raises(AttachmentUploadError) as exc_info:
            gateway.upload_attachments(student, complaint.id, [photo("huge.jpg", size=2048)])

        assert exc_info.value.status_code == 413
        assert exc_info.value.cause.code == "PAYLOAD_TOO_LARGE"
        assert exc_info.value.attachments == []
        assert db.query(ComplaintAttachmentDB).count() == 0

    def test_non_owner_rejected_before_storing(self, gateway, blob_store, complaint, other_student):
        with pytest.raises(AuthorizationDenied):
            gateway.upload_attachments(other_student, complaint.id, [photo()])
        assert stored_files(blob_store.root) == []

    def test_admin_cannot_attach(self, gateway, complaint, admin):
        with pytest.raises(AuthorizationDenied):
            gateway.upload_attachments(admin, complaint.id, [photo()])

    def test_unknown_complaint(self, gateway, student):
        with pytest.raises(NotFound):
            gateway.upload_attachments(student, "no-such-complaint", [photo()])

    def test_url_points_into_uploader_folder(self, gateway, complaint, student):
        attachment = gateway.upload_attachments(student, complaint.id, [photo("ac.JPG")])[0]

        assert attachment.file_url.startswith("http://testserver/storage/complaint-attachments/")
        assert f"/{student.id}/{complaint.id}/" in attachment.file_url
        assert attachment.file_url.endswith(".jpg")

    def test_object_names_are_unique(self, complaint):
        first = attachment_object_name(complaint.id, photo())
        second = attachment_object_name(complaint.id, photo())
        assert first != second
        assert first.startswith(f"{complaint.id}/")

    def test_row_refers_to_readable_blob(self, gateway, blob_store, complaint, student, other_student):
        attachment = gateway.upload_attachments(student, complaint.id, [photo(size=10)])[0]
        path = attachment.file_url.split("/storage/complaint-attachments/", 1)[1]
        assert blob_store.read(other_student, path) == b"\xff" * 10

    def test_read_attachment_by_id(self, gateway, complaint, student, other_student):
        stored = gateway.upload_attachments(student, complaint.id, [photo(size=4)])[0]

        attachment, data = gateway.read_attachment(other_student, complaint.id, stored.id)
        assert attachment.id == stored.id
        assert data == b"\xff" * 4

    def test_read_attachment_of_another_complaint(self, gateway, complaint, student):
        stored = gateway.upload_attachments(student, complaint.id, [photo()])[0]
        with pytest.raises(NotFound):
            gateway.read_attachment(student, "other-complaint", stored.id)


# =============================================================================
# TEST: SIGN OUT
# =============================================================================

class TestSignOut:

    def test_sign_out_delegates_to_account_service(self, db, gateway, student):
        _, session = AccountService(db).sign_in("student@college.edu", "password123")
        actor = Actor(id=student.id, email=student.email, session_id=session.id)

        gateway.sign_out(actor)

        db.refresh(session)
        assert session.revoked is True
