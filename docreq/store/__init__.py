"""
Request store: relational models, the CRUD adapter and the organization directory.
"""

from docreq.store.models import (
    Base,
    Comment,
    Notification,
    Organization,
    OrganizationMember,
    Request,
    RequestFile,
    RequestPriority,
    RequestStatus,
    User,
    UserRole,
)
from docreq.store.database import Database
from docreq.store.requests import RequestFilter, RequestStats, RequestStore
from docreq.store.directory import OrganizationDirectory

__all__ = [
    "Base",
    "Comment",
    "Database",
    "Notification",
    "Organization",
    "OrganizationDirectory",
    "OrganizationMember",
    "Request",
    "RequestFile",
    "RequestFilter",
    "RequestPriority",
    "RequestStats",
    "RequestStatus",
    "RequestStore",
    "User",
    "UserRole",
]
