"""
Request lifecycle: state transitions, uploads and retention.
"""

from docreq.lifecycle.uploads import FileUploadResult, UploadBatchResult, UploadFile
from docreq.lifecycle.retention import (
    RETENTION_MONTHS,
    RetentionSweeper,
    SweepReport,
    add_months,
    deletion_date_for,
)
from docreq.lifecycle.engine import (
    DuplicateCheck,
    ExistingRequestSummary,
    RequestLifecycleEngine,
)

__all__ = [
    "DuplicateCheck",
    "ExistingRequestSummary",
    "FileUploadResult",
    "RETENTION_MONTHS",
    "RequestLifecycleEngine",
    "RetentionSweeper",
    "SweepReport",
    "UploadBatchResult",
    "UploadFile",
    "add_months",
    "deletion_date_for",
]
