"""
Request lifecycle engine.

Owns status transitions, duplicate detection, deletion-date scheduling,
uploads, comments, and deletion, and fires the notification fan-out each
of them implies.

Store writes are authoritative and happen first. Fan-out follows and is
best-effort: a failure there is logged and never undoes the write, and
notifications lost to a crash in between are not replayed. Concurrent
edits are last-write-wins.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from datetime import date, datetime
from functools import partial
from typing import Any, Callable, Iterable, Optional

from docreq.config import LifecycleConfig
from docreq.errors import (
    DocreqError,
    InvalidTransitionError,
    PermissionDeniedError,
    UploadError,
    ValidationError,
)
from docreq.lifecycle.retention import deletion_date_for
from docreq.lifecycle.uploads import FileUploadResult, UploadBatchResult, UploadFile
from docreq.notifications.fanout import NotificationService
from docreq.notifications.realtime import EventHub, request_topic
from docreq.security.pdf_security import PdfSecurityPipeline, is_securable
from docreq.storage.objects import ObjectStorage, build_object_path, validate_upload
from docreq.store.directory import OrganizationDirectory
from docreq.store.models import (
    Comment,
    Request,
    RequestFile,
    RequestPriority,
    RequestStatus,
    UserRole,
    utcnow,
)
from docreq.store.requests import RequestFilter, RequestStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("reference_number", "date_received", "sender", "subject")
EDITABLE_FIELDS = frozenset(
    REQUIRED_FIELDS + ("description", "priority", "assigned_to", "status")
)
# Roles that see every request; everyone else only sees their organizations'.
STAFF_ROLES = frozenset(
    {UserRole.ADMIN, UserRole.SUPERVISOR, UserRole.PROCESSOR, UserRole.USER}
)


@dataclass
class ExistingRequestSummary:
    """What a user is shown about the request a new one duplicates."""

    id: str
    reference_number: str
    date_received: date
    sender: str
    status: RequestStatus


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    existing: Optional[ExistingRequestSummary] = None


def parse_status(value: Any) -> RequestStatus:
    if isinstance(value, RequestStatus):
        return value
    try:
        return RequestStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Options: {[s.value for s in RequestStatus]}", ["status"]
        ) from None


def parse_priority(value: Any) -> RequestPriority:
    if isinstance(value, RequestPriority):
        return value
    try:
        return RequestPriority(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid priority '{value}'. Options: {[p.value for p in RequestPriority]}",
            ["priority"],
        ) from None


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(
            f"Invalid date_received '{value}'. Use YYYY-MM-DD.", ["date_received"]
        ) from None


class RequestLifecycleEngine:
    """
    Orchestrates every mutation of a request and its side effects.

    Usage:
        engine = RequestLifecycleEngine(store, directory, notifier, storage)
        req = engine.create_request({
            "reference_number": "REF-100",
            "date_received": "2025-03-01",
            "sender": org.id,
            "subject": "Land registry extract",
        }, actor_id="u1")
        engine.change_status(req.id, "completed", actor_id="admin-1")
    """

    def __init__(
        self,
        store: RequestStore,
        directory: OrganizationDirectory,
        notifier: NotificationService,
        storage: ObjectStorage,
        security: Optional[PdfSecurityPipeline] = None,
        hub: Optional[EventHub] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.directory = directory
        self.notifier = notifier
        self.storage = storage
        self.security = security or PdfSecurityPipeline()
        self.hub = hub
        self.config = config or LifecycleConfig()
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_request(self, data: dict[str, Any], actor_id: str) -> Request:
        """Validate, flag duplicates, persist as pending, and notify the sender's members."""
        values = self._clean_fields(data, partial=False)
        # New requests always start pending
        values.pop("status", None)
        self._require_organization(values["sender"])

        duplicate = self.check_duplicate_reference(values["reference_number"])
        now = self.now()
        req = self.store.insert(
            **values,
            status=RequestStatus.PENDING,
            is_duplicate=duplicate.is_duplicate,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        logger.info(
            "Request %s (%s) created by %s%s",
            req.id, req.reference_number, actor_id,
            " [duplicate reference]" if req.is_duplicate else "",
        )
        self._publish(req.id, "request.created")

        audience = partial(self.notifier.organization_audience, req.sender, actor_id)
        self.notifier.notify_event("new_request", audience, related_request_id=req.id, request=req)
        return req

    def check_duplicate_reference(
        self, reference_number: str, exclude_id: Optional[str] = None
    ) -> DuplicateCheck:
        """Advisory exact-match check on the reference number.

        Never blocks creation and never touches the existing record.
        """
        matches = self.store.find_by_reference(reference_number, exclude_id=exclude_id)
        if not matches:
            return DuplicateCheck(is_duplicate=False)
        first = matches[0]
        return DuplicateCheck(
            is_duplicate=True,
            existing=ExistingRequestSummary(
                id=first.id,
                reference_number=first.reference_number,
                date_received=first.date_received,
                sender=first.sender,
                status=first.status,
            ),
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_request_fields(
        self, request_id: str, patch: dict[str, Any], actor_id: str
    ) -> Request:
        """Apply a field patch. Only an administrator or the creator may edit.

        A ``status`` key is applied afterwards through change_status.
        """
        req = self.store.get(request_id)
        self._require_owner_or_admin(req, actor_id, "edit")
        if not patch:
            raise ValidationError("Nothing to update")

        values = self._clean_fields(patch, partial=True)
        new_status = values.pop("status", None)
        if "sender" in values:
            self._require_organization(values["sender"])

        changed = {k: v for k, v in values.items() if getattr(req, k) != v}
        if "reference_number" in changed:
            changed["is_duplicate"] = self.check_duplicate_reference(
                changed["reference_number"], exclude_id=req.id
            ).is_duplicate

        updated = req
        if changed:
            changed_names = sorted(k for k in changed if k != "is_duplicate")
            updated = self.store.update(
                req.id, {**changed, "updated_by": actor_id, "updated_at": self.now()}
            )
            logger.info("Request %s fields updated by %s: %s", req.id, actor_id, changed_names)
            self._publish(req.id, "request.updated", fields=changed_names)
            self.notifier.notify_event(
                "request_updated",
                partial(self.notifier.audience, updated, actor_id),
                related_request_id=updated.id,
                request=updated,
                changed=changed_names,
            )

        if new_status is not None and new_status != updated.status:
            updated = self.change_status(req.id, new_status, actor_id)
        return updated

    def change_status(self, request_id: str, new_status: Any, actor_id: str) -> Request:
        """Move a request to ``new_status``.

        Completing stamps completed_at and deletion_date and sends both a
        status-update and a completion notification to each recipient.
        Leaving completed clears both stamps.
        """
        status = parse_status(new_status)
        req = self.store.get(request_id)
        old_status = req.status
        if old_status == status:
            return req
        if old_status == RequestStatus.COMPLETED and not self.config.allow_reopen:
            raise InvalidTransitionError(
                f"Request {req.id} is completed and re-opening is disabled"
            )

        now = self.now()
        values: dict[str, Any] = {
            "status": status,
            "updated_by": actor_id,
            "updated_at": now,
            "deletion_reminder_sent_at": None,
        }
        if status == RequestStatus.COMPLETED:
            values["completed_at"] = now
            values["deletion_date"] = deletion_date_for(now, self.config.retention_months)
        else:
            values["completed_at"] = None
            values["deletion_date"] = None

        updated = self.store.update(req.id, values)
        if old_status == RequestStatus.COMPLETED:
            logger.warning("Request %s re-opened (%s -> %s) by %s", req.id, old_status.value, status.value, actor_id)
        else:
            logger.info("Request %s %s -> %s by %s", req.id, old_status.value, status.value, actor_id)
        self._publish(req.id, "request.status_changed", old=old_status.value, new=status.value)

        audience = partial(self.notifier.audience, updated, actor_id)
        self.notifier.notify_event(
            "status_updated", audience, related_request_id=updated.id,
            request=updated, old_status=old_status,
        )
        if status == RequestStatus.COMPLETED:
            self.notifier.notify_event(
                "request_completed", audience, related_request_id=updated.id, request=updated
            )
        return updated

    def assign_request(self, request_id: str, assignee_id: str, actor_id: str) -> Request:
        """Assign a processor. A pending request moves to in_progress."""
        req = self.store.get(request_id)
        if self.directory.get_user(assignee_id) is None:
            raise ValidationError(f"Unknown assignee '{assignee_id}'", ["assigned_to"])

        values: dict[str, Any] = {
            "assigned_to": assignee_id,
            "updated_by": actor_id,
            "updated_at": self.now(),
        }
        started = req.status == RequestStatus.PENDING
        if started:
            values["status"] = RequestStatus.IN_PROGRESS

        updated = self.store.update(req.id, values)
        logger.info("Request %s assigned to %s by %s", req.id, assignee_id, actor_id)
        self._publish(req.id, "request.assigned", assigned_to=assignee_id)

        if assignee_id != actor_id:
            self.notifier.notify_event(
                "request_assigned", [assignee_id], related_request_id=updated.id, request=updated
            )
        if started:
            self.notifier.notify_event(
                "status_updated",
                partial(self.notifier.audience, updated, actor_id, exclude=[assignee_id]),
                related_request_id=updated.id,
                request=updated,
                old_status=req.status,
            )
        return updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_request(self, request_id: str, actor_id: str) -> None:
        """Delete a request. Only an administrator or the creator may delete."""
        req = self.store.get(request_id)
        self._require_owner_or_admin(req, actor_id, "delete")
        self._delete(req, actor_id)

    def expire_request(self, request_id: str) -> None:
        """Delete a completed request whose deletion date has passed."""
        req = self.store.get(request_id)
        if not req.is_completed or req.deletion_date is None or req.deletion_date > self.now():
            raise InvalidTransitionError(f"Request {req.id} has not reached its deletion date")
        self._delete(req, actor_id=None, reason="retention period ended")

    def _delete(self, req: Request, actor_id: Optional[str], reason: Optional[str] = None) -> None:
        # Deletion notices carry no request reference
        title, message = self.notifier.render("request_deleted", request=req, reason=reason)

        if req.created_by and req.created_by != actor_id:
            self.notifier.notify([req.created_by], title, message, related_request_id=None)
        members = partial(
            self.notifier.audience, req, actor_id, include_creator=False, exclude=[req.created_by]
        )
        self.notifier.notify(members, title, message, related_request_id=None)

        try:
            paths = [f.file_path for f in self.store.list_files(req.id)]
        except DocreqError as e:
            logger.error("Could not list files of request %s before delete: %s", req.id, e)
            paths = []
        for path in paths:
            try:
                self.storage.remove([path])
            except Exception as e:
                logger.error("Could not remove stored file %s: %s", path, e)

        self.store.delete(req.id)
        logger.info(
            "Request %s (%s) deleted by %s with %d file(s)",
            req.id, req.reference_number, actor_id or "retention", len(paths),
        )
        self._publish(req.id, "request.deleted")

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upload_files(
        self,
        request_id: str,
        files: Iterable[UploadFile],
        actor_id: str,
        is_response: bool = False,
    ) -> UploadBatchResult:
        """Upload a batch sequentially, one file fully before the next.

        Response PDFs are secured first. Only a batch in which every file
        succeeded notifies the audience and, for responses, auto-completes
        the request. Successful files of a failed batch are kept.
        """
        files = list(files)
        if not files:
            raise ValidationError("No files to upload")
        req = self.store.get(request_id)

        batch = UploadBatchResult(request_id=req.id, is_response=is_response, request=req)
        for upload in files:
            batch.results.append(self._upload_one(req, upload, actor_id, is_response))

        if not batch.complete:
            logger.warning(
                "Upload batch for request %s incomplete (%d/%d): %s",
                req.id, len(batch.uploaded), len(batch.results), batch.error_summary(),
            )
            return batch

        self._publish(req.id, "request.files_uploaded", count=len(batch.uploaded))
        self.notifier.notify_event(
            "files_uploaded",
            partial(self.notifier.audience, req, actor_id),
            related_request_id=req.id,
            request=req,
            count=len(batch.uploaded),
            is_response=is_response,
        )
        batch.notified = True

        if is_response and self.config.auto_complete_on_response and not req.is_completed:
            batch.request = self.change_status(req.id, RequestStatus.COMPLETED, actor_id)
            batch.auto_completed = True
        return batch

    def upload_response_file(self, request_id: str, upload: UploadFile, actor_id: str) -> RequestFile:
        """Upload a single response file as a batch of one.

        Raises UploadError naming the file when it could not be stored.
        """
        batch = self.upload_files(request_id, [upload], actor_id, is_response=True)
        result = batch.results[0]
        if not result.uploaded:
            raise UploadError(upload.file_name, result.error or "unknown error")
        return result.record

    def _upload_one(
        self, req: Request, upload: UploadFile, actor_id: str, is_response: bool
    ) -> FileUploadResult:
        result = FileUploadResult(file_name=upload.file_name)
        try:
            validate_upload(
                upload.file_name,
                upload.mime_type,
                upload.size,
                allowed_types=self.config.allowed_file_types,
                max_size=self.config.max_file_size,
            )

            content = upload.content
            if is_response and is_securable(upload.mime_type):
                secured = self.security.secure(content, upload.mime_type)
                content = secured.content
                result.is_secured = secured.is_secured
                result.warning = secured.warning

            path = self._free_object_path(req.id, upload.file_name)
            self.storage.put(path, content, upload.mime_type)
            try:
                record = self.store.add_file(
                    request_id=req.id,
                    file_name=upload.file_name,
                    file_path=path,
                    file_size=len(content),
                    file_type=upload.mime_type,
                    is_original_request=not is_response,
                    is_response=is_response,
                    is_secured=result.is_secured,
                    uploaded_by=actor_id,
                    created_at=self.now(),
                )
            except Exception:
                self._discard_blob(path)
                raise
        except Exception as e:
            logger.warning("Upload of %s to request %s failed: %s", upload.file_name, req.id, e)
            result.error = str(e)
            result.is_secured = False
            return result

        result.record = record
        result.uploaded = True
        return result

    def _free_object_path(self, request_id: str, file_name: str) -> str:
        timestamp_ms = int(time.time() * 1000)
        path = build_object_path(request_id, file_name, timestamp_ms)
        while self.storage.exists(path):
            timestamp_ms += 1
            path = build_object_path(request_id, file_name, timestamp_ms)
        return path

    def _discard_blob(self, path: str) -> None:
        try:
            self.storage.remove([path])
        except Exception as e:
            logger.error("Could not remove orphaned blob %s: %s", path, e)

    def delete_file(self, file_id: str, actor_id: str) -> None:
        """Remove one file, blob first. Only an administrator or the uploader may delete."""
        record = self.store.get_file(file_id)
        if actor_id != record.uploaded_by and not self.directory.is_admin(actor_id):
            raise PermissionDeniedError(f"User {actor_id} may not delete file {file_id}")
        self.storage.remove([record.file_path])
        self.store.delete_file(file_id)
        logger.info("File %s removed from request %s by %s", file_id, record.request_id, actor_id)
        self._publish(record.request_id, "request.file_deleted", file_id=file_id)

    def file_url(self, file_id: str, expires_in: int = 3600) -> str:
        record = self.store.get_file(file_id)
        return self.storage.signed_url(record.file_path, expires_in=expires_in)

    def download_file(self, file_id: str) -> bytes:
        record = self.store.get_file(file_id)
        return self.storage.get(record.file_path)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(
        self, request_id: str, content: str, author_id: str, is_internal: bool = False
    ) -> Comment:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment cannot be empty", ["content"])
        req = self.store.get(request_id)
        comment = self.store.add_comment(
            request_id=req.id,
            user_id=author_id,
            content=text,
            is_internal=is_internal,
            created_at=self.now(),
        )
        self._publish(req.id, "request.comment_added", comment_id=comment.id)

        excerpt = text if len(text) <= 100 else text[:97] + "..."
        self.notifier.notify_event(
            "new_comment",
            partial(self.notifier.audience, req, author_id, exclude=[author_id]),
            related_request_id=req.id,
            request=req,
            excerpt=excerpt,
        )
        return comment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> Request:
        return self.store.get(request_id)

    def list_requests(
        self, flt: Optional[RequestFilter] = None, actor_id: Optional[str] = None
    ) -> list[Request]:
        """List requests. Actors outside staff roles only see their organizations'."""
        flt = flt or RequestFilter()
        if actor_id is not None:
            user = self.directory.get_user(actor_id)
            if user is None or user.role not in STAFF_ROLES:
                flt = replace(flt, organization_ids=self.directory.organizations_of(actor_id))
        return self.store.find(flt)

    def list_files(self, request_id: str) -> list[RequestFile]:
        return self.store.list_files(request_id)

    def list_comments(self, request_id: str) -> list[Comment]:
        return self.store.list_comments(request_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _clean_fields(self, data: dict[str, Any], partial: bool) -> dict[str, Any]:
        unknown = sorted(set(data) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be set: {unknown}", unknown)

        values: dict[str, Any] = {}
        for key, raw in data.items():
            if isinstance(raw, str):
                raw = raw.strip()
            if key in REQUIRED_FIELDS:
                if raw in (None, ""):
                    continue
                if key == "date_received":
                    raw = parse_date(raw)
            elif key == "priority":
                raw = parse_priority(raw) if raw not in (None, "") else RequestPriority.NORMAL
            elif key == "status":
                raw = parse_status(raw)
            elif raw == "":
                raw = None
            values[key] = raw

        if partial:
            blanked = [k for k in REQUIRED_FIELDS if k in data and k not in values]
            if blanked:
                raise ValidationError(f"Required fields cannot be empty: {blanked}", blanked)
        else:
            missing = [k for k in REQUIRED_FIELDS if k not in values]
            if missing:
                raise ValidationError(f"Missing required fields: {missing}", missing)
        return values

    def _require_organization(self, org_id: str) -> None:
        if self.directory.find_organization(org_id) is None:
            raise ValidationError(f"Unknown sender organization '{org_id}'", ["sender"])

    def _require_owner_or_admin(self, req: Request, actor_id: str, action: str) -> None:
        if actor_id and actor_id == req.created_by:
            return
        if self.directory.is_admin(actor_id):
            return
        raise PermissionDeniedError(f"User {actor_id} may not {action} request {req.id}")

    def _publish(self, request_id: str, event: str, **extra: Any) -> None:
        if self.hub is None:
            return
        self.hub.publish(request_topic(request_id), {"event": event, "request_id": request_id, **extra})
