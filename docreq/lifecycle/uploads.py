"""
Upload inputs and per-file / per-batch results for the lifecycle engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from docreq.store.models import Request, RequestFile

_EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


@dataclass
class UploadFile:
    """A file handed to the engine for upload."""

    file_name: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: str | Path, mime_type: Optional[str] = None) -> "UploadFile":
        p = Path(path)
        if mime_type is None:
            mime_type = _EXTENSION_TYPES.get(p.suffix.lower(), "application/octet-stream")
        return cls(file_name=p.name, content=p.read_bytes(), mime_type=mime_type)


@dataclass
class FileUploadResult:
    """Outcome of one file within a batch."""

    file_name: str
    uploaded: bool = False
    is_secured: bool = False
    record: Optional[RequestFile] = None
    warning: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UploadBatchResult:
    """Outcome of a sequential upload batch.

    A batch is complete only when every file uploaded. Successful files
    of an incomplete batch stay stored.
    """

    request_id: str
    is_response: bool
    results: list[FileUploadResult] = field(default_factory=list)
    notified: bool = False
    auto_completed: bool = False
    request: Optional[Request] = None

    @property
    def complete(self) -> bool:
        return bool(self.results) and all(r.uploaded for r in self.results)

    @property
    def uploaded(self) -> list[FileUploadResult]:
        return [r for r in self.results if r.uploaded]

    @property
    def failed(self) -> list[FileUploadResult]:
        return [r for r in self.results if not r.uploaded]

    @property
    def warnings(self) -> list[str]:
        return [f"{r.file_name}: {r.warning}" for r in self.results if r.warning]

    def error_summary(self) -> Optional[str]:
        if not self.failed:
            return None
        return "; ".join(f"{r.file_name}: {r.error}" for r in self.failed)
