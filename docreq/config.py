"""
Tracker configuration model.

Defines the database, object storage, and lifecycle policy settings.
Supports loading from a JSON config file with storage credentials
sourced from environment variables.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


# 20 MB
MAX_FILE_SIZE = 20 * 1024 * 1024

ALLOWED_FILE_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "image/jpeg",
    "image/png",
)


@dataclass
class StorageConfig:
    """Where uploaded file blobs are kept.

    Attributes:
        backend: "local" for a directory tree, "s3" for an S3-compatible bucket.
        root: Root directory for the local backend.
        bucket: Bucket name for the S3 backend.
        endpoint_url: Optional custom endpoint (MinIO, localstack).
        region: S3 region.
        access_key: S3 access key (loaded from env var at runtime).
        secret_key: S3 secret key (loaded from env var at runtime).
        signed_url_expires_s: Lifetime of download URLs.
    """

    backend: str = "local"
    root: str = "./storage"
    bucket: str = "request-files"
    endpoint_url: Optional[str] = None
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    signed_url_expires_s: int = 3600


@dataclass
class LifecycleConfig:
    """Policy switches for the request lifecycle engine.

    Attributes:
        retention_months: Months after completion before a request is purged.
        reminder_days: Days before the deletion date to send a reminder.
        auto_complete_on_response: Complete a request when a response batch
                                   uploads without any failure.
        allow_reopen: Permit moving a completed request back to another status.
        max_file_size: Upload size limit in bytes.
        allowed_file_types: MIME types accepted for upload.
    """

    retention_months: int = 3
    reminder_days: int = 7
    auto_complete_on_response: bool = True
    allow_reopen: bool = True
    max_file_size: int = MAX_FILE_SIZE
    allowed_file_types: tuple[str, ...] = ALLOWED_FILE_TYPES


@dataclass
class TrackerConfig:
    database_url: str = "sqlite:///docreq.db"
    storage: StorageConfig = field(default_factory=StorageConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)


def load_config(config_path: str | Path) -> TrackerConfig:
    """Load a TrackerConfig from a JSON file.

    S3 credentials are loaded from environment variables. The JSON file
    names the variables in ``access_key_env`` and ``secret_key_env`` of
    the ``storage`` section. Unset variables leave the credential empty,
    which lets boto3 fall back to its own credential chain.

    Args:
        config_path: Path to the tracker config JSON file.

    Returns:
        A fully populated TrackerConfig instance.

    Raises:
        FileNotFoundError: If config_path does not exist.
        json.JSONDecodeError: If the JSON is malformed.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Tracker config not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = json.load(f)

    # --- Storage ---
    storage_raw = raw.get("storage", {})
    access_env = storage_raw.get("access_key_env", "")
    secret_env = storage_raw.get("secret_key_env", "")
    storage = StorageConfig(
        backend=storage_raw.get("backend", "local"),
        root=storage_raw.get("root", "./storage"),
        bucket=storage_raw.get("bucket", "request-files"),
        endpoint_url=storage_raw.get("endpoint_url"),
        region=storage_raw.get("region", "us-east-1"),
        access_key=os.environ.get(access_env, "") if access_env else "",
        secret_key=os.environ.get(secret_env, "") if secret_env else "",
        signed_url_expires_s=storage_raw.get("signed_url_expires_s", 3600),
    )

    # --- Lifecycle ---
    lc_raw = raw.get("lifecycle", {})
    lifecycle = LifecycleConfig(
        retention_months=lc_raw.get("retention_months", 3),
        reminder_days=lc_raw.get("reminder_days", 7),
        auto_complete_on_response=lc_raw.get("auto_complete_on_response", True),
        allow_reopen=lc_raw.get("allow_reopen", True),
        max_file_size=lc_raw.get("max_file_size", MAX_FILE_SIZE),
        allowed_file_types=tuple(lc_raw.get("allowed_file_types", ALLOWED_FILE_TYPES)),
    )

    return TrackerConfig(
        database_url=raw.get("database_url", "sqlite:///docreq.db"),
        storage=storage,
        lifecycle=lifecycle,
    )
