"""
Exception taxonomy for the request tracker.
"""

from __future__ import annotations

from typing import Optional


class DocreqError(Exception):
    """Base class for all tracker errors."""


class ValidationError(DocreqError):
    """Input is missing required fields or carries invalid values.

    Raised before anything is written, so no side effects have fired.
    """

    def __init__(self, message: str, fields: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class NotFoundError(DocreqError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDeniedError(DocreqError):
    pass


class InvalidTransitionError(DocreqError):
    pass


class StoreError(DocreqError):
    """A read or write against the relational store failed."""


class StorageError(DocreqError):
    """An object storage operation failed."""


class UploadError(DocreqError):
    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"Upload of '{file_name}' failed: {reason}")
        self.file_name = file_name
        self.reason = reason
