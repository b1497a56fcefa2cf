"""
Tests for the request lifecycle engine: creation, duplicates, status
transitions, updates, assignment, comments, deletion, and scoping.
"""

from datetime import date, datetime

import pytest

from docreq.config import LifecycleConfig
from docreq.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    ValidationError,
)
from docreq.lifecycle.retention import add_months
from docreq.lifecycle.uploads import UploadFile
from docreq.store.models import RequestPriority, RequestStatus
from docreq.store.requests import RequestFilter


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreateRequest:
    def test_create_notifies_sender_members_except_actor(self, tracker, world, new_request, titles):
        req = new_request(actor_id="u1")

        assert req.status == RequestStatus.PENDING
        assert req.is_duplicate is False
        assert req.created_by == "u1"
        assert req.date_received == date(2025, 1, 15)
        assert req.priority == RequestPriority.NORMAL

        assert titles("u2") == ["New Request"]
        assert titles("u1") == []
        assert titles("admin-1") == []
        assert titles("u3") == []

        notification = tracker.feed.list_for_user("u2")[0]
        assert notification.related_request_id == req.id
        assert "REF-100" in notification.message

    def test_missing_fields_persist_nothing(self, tracker, world, titles):
        with pytest.raises(ValidationError) as exc:
            tracker.engine.create_request(
                {"reference_number": "REF-1", "sender": world.org_a.id}, "u1"
            )
        assert set(exc.value.fields) == {"date_received", "subject"}
        assert tracker.engine.list_requests() == []
        assert titles("u2") == []

    def test_blank_subject_is_missing(self, tracker, world):
        with pytest.raises(ValidationError):
            tracker.engine.create_request(
                {
                    "reference_number": "REF-1",
                    "date_received": "2025-01-15",
                    "sender": world.org_a.id,
                    "subject": "   ",
                },
                "u1",
            )

    def test_unknown_sender_rejected(self, tracker, world):
        with pytest.raises(ValidationError) as exc:
            tracker.engine.create_request(
                {
                    "reference_number": "REF-1",
                    "date_received": "2025-01-15",
                    "sender": "no-such-org",
                    "subject": "x",
                },
                "u1",
            )
        assert exc.value.fields == ["sender"]

    def test_invalid_date_and_priority(self, new_request):
        with pytest.raises(ValidationError):
            new_request(date_received="15/01/2025")
        with pytest.raises(ValidationError):
            new_request(priority="critical")

    def test_status_in_input_is_ignored(self, new_request):
        req = new_request(status="completed")
        assert req.status == RequestStatus.PENDING
        assert req.completed_at is None

    def test_priority_parsed(self, new_request):
        req = new_request(priority="URGENT")
        assert req.priority == RequestPriority.URGENT


# ---------------------------------------------------------------------------
# Duplicates
# ---------------------------------------------------------------------------

class TestDuplicateReference:
    def test_second_request_flagged_first_untouched(self, tracker, new_request):
        first = new_request(reference="REF-100")
        second = new_request(actor_id="u2", reference="REF-100")

        assert second.is_duplicate is True
        assert tracker.engine.get_request(first.id).is_duplicate is False
        assert len(tracker.engine.list_requests()) == 2

    def test_check_returns_earliest_match(self, tracker, world, new_request, clock):
        first = new_request(reference="REF-7")
        clock.advance(minutes=5)
        new_request(reference="REF-7")

        check = tracker.engine.check_duplicate_reference("REF-7")
        assert check.is_duplicate is True
        assert check.existing.id == first.id
        assert check.existing.sender == world.org_a.id
        assert check.existing.status == RequestStatus.PENDING
        assert check.existing.date_received == date(2025, 1, 15)

    def test_match_is_case_sensitive(self, tracker, new_request):
        new_request(reference="REF-100")
        assert tracker.engine.check_duplicate_reference("ref-100").is_duplicate is False

    def test_exclude_self(self, tracker, new_request):
        req = new_request(reference="REF-9")
        check = tracker.engine.check_duplicate_reference("REF-9", exclude_id=req.id)
        assert check.is_duplicate is False
        assert check.existing is None


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

class TestChangeStatus:
    def test_complete_scenario(self, tracker, new_request, titles):
        req = new_request(actor_id="u3")
        # u3 is not a member of org A, so creation notified only u1 and u2
        assert titles("u3") == []

        done = tracker.engine.change_status(req.id, "completed", "admin-1")

        assert done.status == RequestStatus.COMPLETED
        assert done.completed_at == datetime(2025, 1, 31, 10, 0)
        assert done.deletion_date == datetime(2025, 4, 30, 10, 0)
        assert done.deletion_date == add_months(done.completed_at, 3)
        assert done.updated_by == "admin-1"

        pair = ["Request Completed", "Request Status Updated"]
        assert titles("u3") == pair
        assert titles("u1") == sorted(pair + ["New Request"])
        assert titles("u2") == sorted(pair + ["New Request"])
        assert titles("admin-1") == []

    def test_in_progress_sends_one_notification(self, tracker, new_request, titles):
        req = new_request(actor_id="u3")
        updated = tracker.engine.change_status(req.id, RequestStatus.IN_PROGRESS, "u1")

        assert updated.completed_at is None
        assert updated.deletion_date is None
        assert titles("u3") == ["Request Status Updated"]
        assert titles("u1") == ["New Request"]

        message = tracker.feed.list_for_user("u3")[0].message
        assert "Pending" in message and "In Progress" in message

    def test_reopen_clears_completion(self, tracker, new_request):
        req = new_request()
        tracker.engine.change_status(req.id, "completed", "admin-1")
        reopened = tracker.engine.change_status(req.id, "in_progress", "admin-1")

        assert reopened.status == RequestStatus.IN_PROGRESS
        assert reopened.completed_at is None
        assert reopened.deletion_date is None

    def test_same_status_is_noop(self, tracker, new_request, titles):
        req = new_request()
        before = titles("u2")
        same = tracker.engine.change_status(req.id, "pending", "admin-1")
        assert same.updated_by == "u1"
        assert titles("u2") == before

    def test_invalid_status(self, tracker, new_request):
        req = new_request()
        with pytest.raises(ValidationError):
            tracker.engine.change_status(req.id, "archived", "admin-1")

    def test_missing_request(self, tracker, world):
        with pytest.raises(NotFoundError):
            tracker.engine.change_status("nope", "completed", "admin-1")

    def test_directory_failure_after_write_still_succeeds(self, tracker, new_request, titles, monkeypatch):
        req = new_request(actor_id="u3")

        def members_down(org_id):
            raise StoreError("down")

        monkeypatch.setattr(tracker.directory, "members_of", members_down)
        done = tracker.engine.change_status(req.id, "completed", "admin-1")

        assert done.status == RequestStatus.COMPLETED
        assert tracker.engine.get_request(req.id).deletion_date is not None
        assert titles("u3") == []


class TestReopenDisabled:
    @pytest.fixture
    def lifecycle_config(self):
        return LifecycleConfig(allow_reopen=False)

    def test_reopen_rejected(self, tracker, new_request):
        req = new_request()
        tracker.engine.change_status(req.id, "completed", "admin-1")
        with pytest.raises(InvalidTransitionError):
            tracker.engine.change_status(req.id, "pending", "admin-1")
        assert tracker.engine.get_request(req.id).status == RequestStatus.COMPLETED


# ---------------------------------------------------------------------------
# Field updates
# ---------------------------------------------------------------------------

class TestUpdateFields:
    def test_audience_deduplicated(self, tracker, new_request, titles):
        # creator u1 is also a member of org A
        req = new_request(actor_id="u1")
        updated = tracker.engine.update_request_fields(req.id, {"subject": "Revised"}, "admin-1")

        assert updated.subject == "Revised"
        assert updated.updated_by == "admin-1"
        assert titles("u1") == ["Request Updated"]
        assert titles("u2") == ["New Request", "Request Updated"]
        assert titles("admin-1") == []

    def test_creator_may_edit(self, tracker, new_request, titles):
        req = new_request(actor_id="u3")
        tracker.engine.update_request_fields(req.id, {"description": "More detail"}, "u3")
        assert titles("u3") == []
        assert "Request Updated" in titles("u1")

    def test_other_users_may_not_edit(self, tracker, new_request):
        req = new_request(actor_id="u1")
        with pytest.raises(PermissionDeniedError):
            tracker.engine.update_request_fields(req.id, {"subject": "x"}, "u2")

    def test_protected_and_blank_fields(self, tracker, new_request):
        req = new_request()
        with pytest.raises(ValidationError):
            tracker.engine.update_request_fields(req.id, {"created_by": "u2"}, "u1")
        with pytest.raises(ValidationError):
            tracker.engine.update_request_fields(req.id, {"subject": ""}, "u1")
        with pytest.raises(ValidationError):
            tracker.engine.update_request_fields(req.id, {}, "u1")

    def test_unchanged_values_send_nothing(self, tracker, new_request, titles):
        req = new_request()
        tracker.engine.update_request_fields(req.id, {"subject": req.subject}, "u1")
        assert titles("u2") == ["New Request"]

    def test_reference_change_recomputes_duplicate(self, tracker, new_request):
        new_request(reference="REF-1")
        other = new_request(reference="REF-2")
        assert other.is_duplicate is False

        moved = tracker.engine.update_request_fields(other.id, {"reference_number": "REF-1"}, "u1")
        assert moved.is_duplicate is True

        back = tracker.engine.update_request_fields(other.id, {"reference_number": "REF-3"}, "u1")
        assert back.is_duplicate is False

    def test_status_in_patch_goes_through_change_status(self, tracker, new_request, titles):
        req = new_request(actor_id="u3")
        updated = tracker.engine.update_request_fields(
            req.id, {"subject": "Final", "status": "completed"}, "u3"
        )
        assert updated.status == RequestStatus.COMPLETED
        assert updated.deletion_date is not None
        assert titles("u1") == [
            "New Request", "Request Completed", "Request Status Updated", "Request Updated",
        ]


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

class TestAssign:
    def test_assign_starts_pending_request(self, tracker, new_request, titles):
        req = new_request(actor_id="u1")
        assigned = tracker.engine.assign_request(req.id, "u3", "admin-1")

        assert assigned.assigned_to == "u3"
        assert assigned.status == RequestStatus.IN_PROGRESS
        assert titles("u3") == ["Request Assigned"]
        assert titles("u1") == ["Request Status Updated"]

    def test_self_assignment_sends_no_assign_notice(self, tracker, new_request, titles):
        req = new_request(actor_id="u1")
        tracker.engine.change_status(req.id, "in_progress", "u1")
        tracker.engine.assign_request(req.id, "u3", "u3")
        assert titles("u3") == []

    def test_unknown_assignee(self, tracker, new_request):
        req = new_request()
        with pytest.raises(ValidationError):
            tracker.engine.assign_request(req.id, "ghost", "admin-1")


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

class TestComments:
    def test_comment_notifies_everyone_but_author(self, tracker, new_request, titles):
        req = new_request(actor_id="u3")
        comment = tracker.engine.add_comment(req.id, "  Please attach the deed.  ", "u2")

        assert comment.content == "Please attach the deed."
        assert titles("u3") == ["New Comment"]
        assert titles("u1") == ["New Comment", "New Request"]
        assert titles("u2") == ["New Request"]

    def test_comments_listed_in_order(self, tracker, new_request):
        req = new_request()
        tracker.engine.add_comment(req.id, "first", "u1")
        tracker.engine.add_comment(req.id, "second", "u2", is_internal=True)
        comments = tracker.engine.list_comments(req.id)
        assert [c.content for c in comments] == ["first", "second"]
        assert comments[1].is_internal is True

    def test_empty_comment_rejected(self, tracker, new_request):
        req = new_request()
        with pytest.raises(ValidationError):
            tracker.engine.add_comment(req.id, "   ", "u1")

    def test_long_comment_excerpted(self, tracker, new_request):
        req = new_request(actor_id="u3")
        tracker.engine.add_comment(req.id, "x" * 300, "u1")
        message = tracker.feed.list_for_user("u3")[0].message
        assert message.endswith("...")
        assert len(message) < 200


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDeleteRequest:
    def _with_files(self, tracker, req, pdf_bytes):
        batch = tracker.engine.upload_files(
            req.id,
            [
                UploadFile("letter.pdf", pdf_bytes, "application/pdf"),
                UploadFile("scan.png", b"\x89PNG fake", "image/png"),
            ],
            actor_id=req.created_by,
        )
        assert batch.complete
        return [r.record.file_path for r in batch.results]

    def test_delete_removes_blobs_and_record(self, tracker, new_request, pdf_bytes, titles):
        req = new_request(actor_id="u3")
        paths = self._with_files(tracker, req, pdf_bytes)
        assert all(tracker.storage.exists(p) for p in paths)

        tracker.engine.delete_request(req.id, "u3")

        assert not any(tracker.storage.exists(p) for p in paths)
        with pytest.raises(NotFoundError):
            tracker.engine.get_request(req.id)
        assert tracker.engine.list_files(req.id) == []

        assert "Request Deleted" in titles("u1")
        assert "Request Deleted" in titles("u2")
        assert "Request Deleted" not in titles("u3")
        # every notification about the request now has a null reference
        for uid in ("u1", "u2"):
            assert all(n.related_request_id is None for n in tracker.feed.list_for_user(uid, limit=0))

    def test_creator_in_members_notified_once(self, tracker, new_request, titles):
        req = new_request(actor_id="u1")
        tracker.engine.delete_request(req.id, "admin-1")
        assert titles("u1").count("Request Deleted") == 1
        assert titles("u2").count("Request Deleted") == 1

    def test_only_admin_or_creator(self, tracker, new_request):
        req = new_request(actor_id="u1")
        with pytest.raises(PermissionDeniedError):
            tracker.engine.delete_request(req.id, "u2")
        assert tracker.engine.get_request(req.id).id == req.id

    def test_storage_failure_does_not_block_delete(self, tracker, new_request, pdf_bytes, monkeypatch):
        req = new_request()
        self._with_files(tracker, req, pdf_bytes)

        def broken_remove(paths):
            raise OSError("bucket unavailable")

        monkeypatch.setattr(tracker.storage, "remove", broken_remove)
        tracker.engine.delete_request(req.id, "u1")
        assert not tracker.store.exists(req.id)

    def test_directory_failure_does_not_block_delete(self, tracker, new_request, pdf_bytes, titles, monkeypatch):
        req = new_request(actor_id="u3")
        paths = self._with_files(tracker, req, pdf_bytes)

        def members_down(org_id):
            raise StoreError("directory unavailable")

        monkeypatch.setattr(tracker.directory, "members_of", members_down)
        tracker.engine.delete_request(req.id, "admin-1")

        assert not tracker.store.exists(req.id)
        assert not any(tracker.storage.exists(p) for p in paths)
        # the creator is notified directly, without a member lookup
        assert "Request Deleted" in titles("u3")
        assert "Request Deleted" not in titles("u2")

    def test_events_published(self, tracker, new_request):
        req = new_request()
        seen = []
        tracker.hub.subscribe(f"requests:{req.id}", lambda topic, payload: seen.append(payload["event"]))
        tracker.engine.change_status(req.id, "in_progress", "u1")
        tracker.engine.delete_request(req.id, "u1")
        assert seen == ["request.status_changed", "request.deleted"]


# ---------------------------------------------------------------------------
# Listing and scoping
# ---------------------------------------------------------------------------

class TestListRequests:
    def test_organization_users_see_only_their_organizations(self, tracker, world, new_request):
        new_request(reference="A-1")
        tracker.engine.create_request(
            {
                "reference_number": "B-1",
                "date_received": "2025-01-20",
                "sender": world.org_b.id,
                "subject": "Berth schedule",
            },
            "u3",
        )

        staff_view = tracker.engine.list_requests(actor_id="u3")
        org_view = tracker.engine.list_requests(actor_id="org-user")

        assert {r.reference_number for r in staff_view} == {"A-1", "B-1"}
        assert [r.reference_number for r in org_view] == ["B-1"]

    def test_caller_filter_not_scoped_in_place(self, tracker, world, new_request):
        new_request(reference="A-1")
        flt = RequestFilter()
        assert tracker.engine.list_requests(flt, actor_id="org-user") == []
        assert flt.organization_ids is None
        assert [r.reference_number for r in tracker.engine.list_requests(flt)] == ["A-1"]

    def test_unknown_actor_sees_nothing(self, tracker, new_request):
        new_request()
        assert tracker.engine.list_requests(actor_id="stranger") == []

    def test_filters(self, tracker, new_request):
        new_request(reference="REF-1", subject="Deed copy", date_received="2025-01-01")
        req = new_request(reference="REF-2", subject="Survey map", date_received="2025-02-01")
        tracker.engine.change_status(req.id, "in_progress", "u1")

        found = tracker.engine.list_requests(RequestFilter(search="survey"))
        assert [r.reference_number for r in found] == ["REF-2"]

        found = tracker.engine.list_requests(RequestFilter(status=RequestStatus.PENDING))
        assert [r.reference_number for r in found] == ["REF-1"]

        ordered = tracker.engine.list_requests()
        assert [r.reference_number for r in ordered] == ["REF-2", "REF-1"]
