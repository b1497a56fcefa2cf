"""
Request store adapter: CRUD over request records and their file and
comment metadata.

Business rules live in the lifecycle engine; this layer only filters,
reads, and writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import or_

from docreq.errors import NotFoundError
from docreq.store.database import Database
from docreq.store.models import (
    Comment,
    Notification,
    Request,
    RequestFile,
    RequestPriority,
    RequestStatus,
)


@dataclass
class RequestFilter:
    """Query parameters for listing requests.

    ``organization_ids`` restricts results to requests sent by those
    organizations; it is how non-privileged actors are scoped.
    """

    status: Optional[RequestStatus] = None
    sender: Optional[str] = None
    priority: Optional[RequestPriority] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None
    assigned_to: Optional[str] = None
    organization_ids: Optional[list[str]] = None
    limit: int = 100
    offset: int = 0


@dataclass
class RequestStats:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    duplicates: int = 0


class RequestStore:
    """
    CRUD interface for request records.

    Usage:
        store = RequestStore(db)
        req = store.insert(reference_number="REF-1", date_received=date.today(), ...)
        store.update(req.id, {"status": RequestStatus.IN_PROGRESS})
        store.find(RequestFilter(status=RequestStatus.PENDING))
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ---- Create ----

    def insert(self, **values: Any) -> Request:
        with self.db.session() as session:
            req = Request(**values)
            session.add(req)
            session.flush()
            session.refresh(req)
            return req

    # ---- Read ----

    def get(self, request_id: str) -> Request:
        with self.db.session() as session:
            req = session.get(Request, request_id)
            if req is None:
                raise NotFoundError("Request", request_id)
            return req

    def exists(self, request_id: str) -> bool:
        with self.db.session() as session:
            return session.get(Request, request_id) is not None

    def find(self, flt: Optional[RequestFilter] = None) -> list[Request]:
        flt = flt or RequestFilter()
        with self.db.session() as session:
            q = session.query(Request)
            if flt.status:
                q = q.filter(Request.status == flt.status)
            if flt.sender:
                q = q.filter(Request.sender == flt.sender)
            if flt.priority:
                q = q.filter(Request.priority == flt.priority)
            if flt.date_from:
                q = q.filter(Request.date_received >= flt.date_from)
            if flt.date_to:
                q = q.filter(Request.date_received <= flt.date_to)
            if flt.search:
                pattern = f"%{flt.search}%"
                q = q.filter(
                    or_(
                        Request.reference_number.ilike(pattern),
                        Request.subject.ilike(pattern),
                    )
                )
            if flt.assigned_to:
                q = q.filter(Request.assigned_to == flt.assigned_to)
            if flt.organization_ids is not None:
                q = q.filter(Request.sender.in_(flt.organization_ids))
            q = q.order_by(Request.date_received.desc(), Request.created_at.desc())
            return q.offset(flt.offset).limit(flt.limit).all()

    def find_by_reference(
        self, reference_number: str, exclude_id: Optional[str] = None
    ) -> list[Request]:
        """Requests whose reference number matches exactly, oldest first."""
        with self.db.session() as session:
            q = session.query(Request).filter(Request.reference_number == reference_number)
            if exclude_id:
                q = q.filter(Request.id != exclude_id)
            return q.order_by(Request.created_at.asc()).all()

    def find_expired(self, now: datetime) -> list[Request]:
        with self.db.session() as session:
            return (
                session.query(Request)
                .filter(
                    Request.status == RequestStatus.COMPLETED,
                    Request.deletion_date != None,  # noqa: E711
                    Request.deletion_date <= now,
                )
                .order_by(Request.deletion_date.asc())
                .all()
            )

    def find_expiring(self, now: datetime, until: datetime) -> list[Request]:
        """Completed requests due for deletion in (now, until] that have not been reminded."""
        with self.db.session() as session:
            return (
                session.query(Request)
                .filter(
                    Request.status == RequestStatus.COMPLETED,
                    Request.deletion_date > now,
                    Request.deletion_date <= until,
                    Request.deletion_reminder_sent_at == None,  # noqa: E711
                )
                .order_by(Request.deletion_date.asc())
                .all()
            )

    def stats(self) -> RequestStats:
        with self.db.session() as session:
            result = RequestStats(total=session.query(Request).count())
            for st in RequestStatus:
                count = session.query(Request).filter(Request.status == st).count()
                if count > 0:
                    result.by_status[st.value] = count
            for pr in RequestPriority:
                count = session.query(Request).filter(Request.priority == pr).count()
                if count > 0:
                    result.by_priority[pr.value] = count
            result.duplicates = (
                session.query(Request).filter(Request.is_duplicate.is_(True)).count()
            )
            return result

    # ---- Update ----

    def update(self, request_id: str, values: dict[str, Any]) -> Request:
        with self.db.session() as session:
            req = session.get(Request, request_id)
            if req is None:
                raise NotFoundError("Request", request_id)
            for key, val in values.items():
                if hasattr(req, key):
                    setattr(req, key, val)
            session.flush()
            session.refresh(req)
            return req

    # ---- Delete ----

    def delete(self, request_id: str) -> None:
        """Delete a request with its file and comment metadata.

        Notifications pointing at the request keep existing with a null
        reference.
        """
        with self.db.session() as session:
            req = session.get(Request, request_id)
            if req is None:
                raise NotFoundError("Request", request_id)
            session.query(Notification).filter(
                Notification.related_request_id == request_id
            ).update({Notification.related_request_id: None}, synchronize_session=False)
            session.query(RequestFile).filter(RequestFile.request_id == request_id).delete(
                synchronize_session=False
            )
            session.query(Comment).filter(Comment.request_id == request_id).delete(
                synchronize_session=False
            )
            session.delete(req)

    # ---- Files ----

    def add_file(self, **values: Any) -> RequestFile:
        with self.db.session() as session:
            record = RequestFile(**values)
            session.add(record)
            session.flush()
            session.refresh(record)
            return record

    def get_file(self, file_id: str) -> RequestFile:
        with self.db.session() as session:
            record = session.get(RequestFile, file_id)
            if record is None:
                raise NotFoundError("RequestFile", file_id)
            return record

    def list_files(self, request_id: str) -> list[RequestFile]:
        with self.db.session() as session:
            return (
                session.query(RequestFile)
                .filter(RequestFile.request_id == request_id)
                .order_by(RequestFile.created_at.asc())
                .all()
            )

    def delete_file(self, file_id: str) -> bool:
        with self.db.session() as session:
            deleted = session.query(RequestFile).filter(RequestFile.id == file_id).delete()
            return deleted > 0

    # ---- Comments ----

    def add_comment(self, **values: Any) -> Comment:
        with self.db.session() as session:
            comment = Comment(**values)
            session.add(comment)
            session.flush()
            session.refresh(comment)
            return comment

    def list_comments(self, request_id: str) -> list[Comment]:
        with self.db.session() as session:
            return (
                session.query(Comment)
                .filter(Comment.request_id == request_id)
                .order_by(Comment.created_at.asc(), Comment.id.asc())
                .all()
            )
