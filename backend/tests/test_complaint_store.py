"""
Tests for the complaint lifecycle and its authorization rules.

Covers:
1. Creation: owner == actor, status forced to new, enum validation
2. Universal read of complaints, attachments and status history
3. Owner-or-admin updates, immutable owner, non-negative upvotes
4. Admin status change recorded atomically with its history row
5. Status history and admin notes restricted to admins
6. Role assignment uniqueness and admin-only management
7. updated_at maintained by the mapper hook
"""
import pytest
from datetime import datetime
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from complaint_portal.exceptions import AuthorizationDenied, NotFound, ValidationFailure
from complaint_portal.models.db_models import (
    AppRole, ComplaintDB, ComplaintPriority, ComplaintStatus,
    ComplaintStatusHistoryDB, UserRoleDB, new_id,
)
from complaint_portal.services.access import Operation
from complaint_portal.services.accounts import AccountService
from complaint_portal.services.complaint_store import ComplaintStore
from complaint_portal.services.gateway import ComplaintGateway


@pytest.fixture
def store(db):
    return ComplaintStore(db)


@pytest.fixture
def broken_ac(store, student):
    """A fresh high-priority complaint filed by the student."""
    return store.insert_complaint(
        student,
        user_id=student.id,
        title="Broken AC",
        description="The AC in lab 3 has not worked for a week",
        category="Facilities",
        priority="high",
        is_anonymous=False,
    )


# =============================================================================
# TEST: CREATION
# =============================================================================

class TestCreateComplaint:

    def test_new_complaint_defaults(self, broken_ac, student):
        assert broken_ac.status == ComplaintStatus.NEW
        assert broken_ac.user_id == student.id
        assert broken_ac.upvotes == 0
        assert broken_ac.priority == ComplaintPriority.HIGH
        assert broken_ac.is_anonymous is False
        assert broken_ac.assigned_to is None

    def test_forged_owner_rejected(self, db, store, student, other_student):
        with pytest.raises(AuthorizationDenied):
            store.insert_complaint(
                student,
                user_id=other_student.id,
                title="Forged",
                description="Filed in someone else's name",
                category="Other",
            )
        assert db.query(ComplaintDB).count() == 0

    def test_admin_cannot_file_for_a_student(self, store, admin, student):
        with pytest.raises(AuthorizationDenied):
            store.insert_complaint(admin, student.id, "On behalf", "Filed by admin", "Other")

    def test_priority_outside_enumeration_rejected(self, store, student):
        with pytest.raises(ValidationFailure):
            store.insert_complaint(student, student.id, "Title", "Body", "Other", priority="critical")

    @pytest.mark.parametrize("field", ["title", "description", "category"])
    def test_required_fields(self, store, student, field):
        values = {"title": "Title", "description": "Body", "category": "Other"}
        values[field] = "   "
        with pytest.raises(ValidationFailure):
            store.insert_complaint(student, student.id, **values)

    def test_default_priority_is_medium(self, store, student):
        complaint = store.insert_complaint(student, student.id, "Title", "Body", "Other")
        assert complaint.priority == ComplaintPriority.MEDIUM


# =============================================================================
# TEST: VISIBILITY
# =============================================================================

class TestVisibility:

    def test_other_students_complaint_is_readable(self, store, broken_ac, other_student):
        """Configured rule: complaints are visible to every authenticated account."""
        assert store.get_complaint(other_student, broken_ac.id).id == broken_ac.id
        assert [c.id for c in store.list_complaints(other_student)] == [broken_ac.id]

    def test_attachments_and_history_readable_by_all(self, store, broken_ac, student, other_student, admin):
        store.insert_attachment(student, broken_ac.id, "ac.jpg", "http://x/ac.jpg", 10, "image/jpeg")
        store.set_status(admin, broken_ac.id, "in_progress")

        assert len(store.list_attachments(other_student, broken_ac.id)) == 1
        assert len(store.list_status_history(other_student, broken_ac.id)) == 1

    def test_missing_complaint(self, store, student):
        with pytest.raises(NotFound):
            store.get_complaint(student, "does-not-exist")


# =============================================================================
# TEST: UPDATES AND LIFECYCLE
# =============================================================================

class TestUpdateComplaint:

    def test_admin_status_change_visible_to_owner(self, db, store, broken_ac, student, admin):
        store.set_status(admin, broken_ac.id, "in_progress", notes="Technician booked")

        listed = ComplaintGateway(db).list_complaints(student)
        assert [c.status for c in listed] == [ComplaintStatus.IN_PROGRESS]

        history = store.list_status_history(student, broken_ac.id)
        assert len(history) == 1
        assert history[0].status == ComplaintStatus.IN_PROGRESS
        assert history[0].changed_by == admin.id
        assert history[0].notes == "Technician booked"

    def test_non_owner_update_rejected(self, db, store, broken_ac, other_student):
        with pytest.raises(AuthorizationDenied):
            store.update_complaint(other_student, broken_ac.id, {"status": "closed"})
        db.expire_all()
        assert store.get_complaint(other_student, broken_ac.id).status == ComplaintStatus.NEW

    def test_non_owner_with_admin_role_allowed(self, db, store, broken_ac, other_student):
        db.add(UserRoleDB(id=new_id(), user_id=other_student.id, role=AppRole.ADMIN))
        db.commit()

        updated = store.update_complaint(other_student, broken_ac.id, {"status": "resolved"})
        assert updated.status == ComplaintStatus.RESOLVED

    def test_owner_can_update_without_history(self, store, broken_ac, student):
        updated = store.update_complaint(student, broken_ac.id, {"title": "Broken AC in lab 3", "status": "closed"})
        assert updated.title == "Broken AC in lab 3"
        assert updated.status == ComplaintStatus.CLOSED
        assert store.list_status_history(student, broken_ac.id) == []

    def test_any_transition_is_allowed(self, store, broken_ac, admin):
        for status in ("closed", "new", "resolved", "in_progress"):
            assert store.set_status(admin, broken_ac.id, status).status.value == status
        assert len(store.list_status_history(admin, broken_ac.id)) == 4

    def test_unchanged_status_adds_no_history(self, store, broken_ac, admin):
        store.set_status(admin, broken_ac.id, "new")
        assert store.list_status_history(admin, broken_ac.id) == []

    def test_owner_is_immutable(self, store, broken_ac, student, other_student):
        with pytest.raises(ValidationFailure):
            store.update_complaint(student, broken_ac.id, {"user_id": other_student.id})

    def test_owner_is_immutable_on_the_model(self, broken_ac, other_student):
        with pytest.raises(ValidationFailure):
            broken_ac.user_id = other_student.id

    def test_upvotes_never_negative(self, store, broken_ac, student):
        with pytest.raises(ValidationFailure):
            store.update_complaint(student, broken_ac.id, {"upvotes": -1})
        assert store.get_complaint(student, broken_ac.id).upvotes == 0

    def test_status_outside_enumeration_rejected(self, store, broken_ac, admin):
        with pytest.raises(ValidationFailure):
            store.set_status(admin, broken_ac.id, "reopened")

    def test_unknown_fields_rejected(self, store, broken_ac, student):
        with pytest.raises(ValidationFailure):
            store.update_complaint(student, broken_ac.id, {"created_at": datetime(2000, 1, 1)})

    def test_admin_assigns_complaint(self, store, broken_ac, admin):
        updated = store.update_complaint(admin, broken_ac.id, {"assigned_to": admin.id})
        assert updated.assigned_to == admin.id


class TestStatusChangeAtomicity:

    def test_failed_write_leaves_no_history(self, db, store, broken_ac, admin):
        """A status change and its history row commit together or not at all."""
        with pytest.raises(ValidationFailure):
            store.update_complaint(admin, broken_ac.id, {"status": "resolved", "assigned_to": "no-such-account"})

        db.expire_all()
        assert store.get_complaint(admin, broken_ac.id).status == ComplaintStatus.NEW
        assert db.query(ComplaintStatusHistoryDB).count() == 0

    def test_rejected_history_leaves_status_unchanged(self, db, store, broken_ac, admin):
        original_authorize = store.rls.authorize

        def deny_history(actor, operation, row):
            if isinstance(row, ComplaintStatusHistoryDB):
                raise AuthorizationDenied()
            return original_authorize(actor, operation, row)

        with patch.object(store.rls, "authorize", side_effect=deny_history):
            with pytest.raises(AuthorizationDenied):
                store.set_status(admin, broken_ac.id, "closed")

        db.expire_all()
        assert store.get_complaint(admin, broken_ac.id).status == ComplaintStatus.NEW


# =============================================================================
# TEST: STATUS HISTORY AND ADMIN NOTES
# =============================================================================

class TestAdminOnlyRecords:

    def test_student_cannot_insert_history(self, db, store, broken_ac, student):
        with pytest.raises(AuthorizationDenied):
            store.insert_status_history(student, broken_ac.id, "resolved")
        assert db.query(ComplaintStatusHistoryDB).count() == 0

    def test_admin_inserts_history(self, store, broken_ac, admin):
        entry = store.insert_status_history(admin, broken_ac.id, "resolved", notes="Fixed")
        assert entry.changed_by == admin.id
        assert entry.status == ComplaintStatus.RESOLVED

    def test_history_author_cannot_be_overridden(self, db, store, broken_ac, admin, student):
        with pytest.raises(TypeError):
            store.insert_status_history(admin, broken_ac.id, "resolved", changed_by=student.id)
        assert db.query(ComplaintStatusHistoryDB).count() == 0

    def test_student_cannot_insert_note(self, store, broken_ac, student):
        with pytest.raises(AuthorizationDenied):
            store.insert_admin_note(student, broken_ac.id, "I am not an admin")

    def test_admin_note_author_must_be_actor(self, db, store, broken_ac, admin):
        account = AccountService(db).create_account("second-admin@college.edu", "password123")
        db.add(UserRoleDB(id=new_id(), user_id=account.id, role=AppRole.ADMIN))
        db.commit()

        with pytest.raises(AuthorizationDenied):
            store.insert_admin_note(admin, broken_ac.id, "Signed as someone else", admin_id=account.id)

    def test_admin_inserts_and_reads_note(self, store, broken_ac, admin, student):
        note = store.insert_admin_note(admin, broken_ac.id, "Escalate to facilities")
        assert note.admin_id == admin.id
        assert [n.id for n in store.list_admin_notes(admin, broken_ac.id)] == [note.id]
        assert store.list_admin_notes(student, broken_ac.id) == []

    def test_empty_note_rejected(self, store, broken_ac, admin):
        with pytest.raises(ValidationFailure):
            store.insert_admin_note(admin, broken_ac.id, "  ")


# =============================================================================
# TEST: ATTACHMENTS
# =============================================================================

class TestAttachments:

    def test_owner_adds_attachment(self, store, broken_ac, student):
        attachment = store.insert_attachment(student, broken_ac.id, "ac.jpg", "http://x/ac.jpg", 2048, "image/jpeg")
        assert attachment.complaint_id == broken_ac.id
        assert attachment.file_size == 2048

    @pytest.mark.parametrize("actor_fixture", ["other_student", "admin"])
    def test_only_owner_adds_attachment(self, request, store, broken_ac, actor_fixture):
        actor = request.getfixturevalue(actor_fixture)
        with pytest.raises(AuthorizationDenied):
            store.insert_attachment(actor, broken_ac.id, "x.png", "http://x/x.png", 1, "image/png")


# =============================================================================
# TEST: ROLE ASSIGNMENTS
# =============================================================================

class TestRoles:

    def test_duplicate_grant_is_noop(self, db, store, admin, student):
        first = store.grant_role(admin, student.id, "student")
        assert db.query(UserRoleDB).filter(
            UserRoleDB.user_id == student.id, UserRoleDB.role == AppRole.STUDENT
        ).count() == 1
        assert first.user_id == student.id

    def test_duplicate_pair_rejected_by_schema(self, db, student):
        db.add(UserRoleDB(id=new_id(), user_id=student.id, role=AppRole.STUDENT))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
        assert db.query(UserRoleDB).filter(UserRoleDB.user_id == student.id).count() == 1

    def test_student_cannot_grant(self, store, student, other_student):
        with pytest.raises(AuthorizationDenied):
            store.grant_role(student, student.id, "admin")

    def test_admin_grants_and_revokes(self, db, store, admin, student):
        store.grant_role(admin, student.id, AppRole.ADMIN)
        assert store.rls.is_admin(student) is True

        store.revoke_role(admin, student.id, "admin")
        assert store.rls.is_admin(student) is False

    def test_student_cannot_revoke(self, store, admin, student):
        with pytest.raises(AuthorizationDenied):
            store.revoke_role(student, admin.id, "admin")

    def test_admin_updates_role(self, store, admin, student):
        assignment = store.list_roles(admin, user_id=student.id)[0]
        updated = store.update_role(admin, assignment.id, "admin")
        assert updated.role == AppRole.ADMIN

    def test_roles_readable_by_all(self, store, admin, student):
        assert {r.user_id for r in store.list_roles(student)} == {admin.id, student.id}


# =============================================================================
# TEST: PROFILES AND TIMESTAMPS
# =============================================================================

class TestProfilesAndTimestamps:

    def test_owner_updates_profile(self, store, student):
        profile = store.update_profile(student, student.id, {"department": "CSE", "batch": "2024"})
        assert profile.department == "CSE"
        assert profile.batch == "2024"

    def test_other_account_cannot_update_profile(self, store, student, other_student):
        with pytest.raises(AuthorizationDenied):
            store.update_profile(other_student, student.id, {"phone": "555-0100"})

    def test_admin_cannot_update_profile(self, store, admin, student):
        with pytest.raises(AuthorizationDenied):
            store.update_profile(admin, student.id, {"phone": "555-0100"})

    def test_updated_at_ignores_supplied_value(self, db, broken_ac):
        stale = datetime(2000, 1, 1)
        broken_ac.title = "Broken AC (lab 3)"
        broken_ac.updated_at = stale
        db.commit()
        db.refresh(broken_ac)
        assert broken_ac.updated_at > stale

    def test_profile_updated_at_stamped(self, db, store, student):
        profile = store.get_profile(student, student.id)
        profile.updated_at = datetime(2000, 1, 1)
        profile.phone = "555-0199"
        db.commit()
        db.refresh(profile)
        assert profile.updated_at.year > 2000

    def test_operation_enum_values(self):
        assert {op.value for op in Operation} == {"select", "insert", "update", "delete"}
