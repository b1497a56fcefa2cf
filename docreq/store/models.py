"""
SQLAlchemy models for document requests, their files and comments,
organizations and their members, and per-user notifications.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class RequestStatus(enum.Enum):
    """Lifecycle states for a document request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class RequestPriority(enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class UserRole(enum.Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    PROCESSOR = "processor"
    ORGANIZATION = "organization"
    USER = "user"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    full_name = Column(String(256), nullable=False, default="")
    email = Column(String(256), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role.value})>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Organization(Base):
    """A sending organization. Requests reference it as their sender."""

    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(256), unique=True, nullable=False)
    contact_person = Column(String(256), nullable=True)
    email = Column(String(256), nullable=True)
    phone = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name='{self.name}')>"


class OrganizationMember(Base):
    __tablename__ = "organization_members"
    __table_args__ = (UniqueConstraint("user_id", "organization_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Request(Base):
    """A tracked document request and its lifecycle data."""

    __tablename__ = "requests"

    id = Column(String(36), primary_key=True, default=new_id)
    # --- identification ---
    reference_number = Column(String(128), nullable=False, index=True)
    date_received = Column(Date, nullable=False, index=True)
    sender = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    subject = Column(String(512), nullable=False)
    description = Column(Text, nullable=True)
    # --- state ---
    status = Column(Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False, index=True)
    priority = Column(Enum(RequestPriority), default=RequestPriority.NORMAL, nullable=False)
    is_duplicate = Column(Boolean, default=False, nullable=False)
    # --- people ---
    created_by = Column(String(36), nullable=False)
    assigned_to = Column(String(36), nullable=True, index=True)
    updated_by = Column(String(36), nullable=True)
    # --- timestamps ---
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    deletion_date = Column(DateTime, nullable=True, index=True)
    deletion_reminder_sent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Request(id={self.id}, reference='{self.reference_number}', "
            f"status={self.status.value})>"
        )

    @property
    def is_completed(self) -> bool:
        return self.status == RequestStatus.COMPLETED


class RequestFile(Base):
    """Metadata for one uploaded blob. Immutable once recorded."""

    __tablename__ = "request_files"

    id = Column(String(36), primary_key=True, default=new_id)
    request_id = Column(String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(512), nullable=False)
    file_path = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(128), nullable=False)
    is_original_request = Column(Boolean, default=True, nullable=False)
    is_response = Column(Boolean, default=False, nullable=False)
    is_secured = Column(Boolean, default=False, nullable=False)
    uploaded_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        kind = "response" if self.is_response else "original"
        return f"<RequestFile(id={self.id}, name='{self.file_name}', {kind})>"


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    """One notification for one recipient.

    ``related_request_id`` is nulled when the request is deleted.
    """

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    message = Column(Text, nullable=False)
    related_request_id = Column(
        String(36), ForeignKey("requests.id", ondelete="SET NULL"), nullable=True, index=True
    )
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "related_request_id": self.related_request_id,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
