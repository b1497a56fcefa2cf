"""
Object storage for uploaded request files.

Blobs live under ``requests/{request_id}/{base}-{timestamp}.{ext}``.
Two backends are provided: a local directory tree and an S3-compatible
bucket.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from docreq.config import ALLOWED_FILE_TYPES, MAX_FILE_SIZE, StorageConfig
from docreq.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


def build_object_path(request_id: str, file_name: str, timestamp_ms: Optional[int] = None) -> str:
    """Storage key for an upload: ``requests/{request_id}/{base}-{timestamp}.{ext}``.

    The base name is lower-cased and every non-alphanumeric character is
    replaced by an underscore. Names without an extension keep no suffix.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    base, dot, ext = file_name.rpartition(".")
    if not dot:
        base, ext = file_name, ""
    sanitized = re.sub(r"[^a-z0-9]", "_", base.lower()) or "file"
    name = f"{sanitized}-{timestamp_ms}"
    if ext:
        name = f"{name}.{ext.lower()}"
    return f"requests/{request_id}/{name}"


def validate_upload(
    file_name: str,
    mime_type: str,
    size: int,
    allowed_types: Iterable[str] = ALLOWED_FILE_TYPES,
    max_size: int = MAX_FILE_SIZE,
) -> None:
    """Raise ValidationError if the file type or size is not accepted."""
    if mime_type not in tuple(allowed_types):
        raise ValidationError(f"File type '{mime_type}' is not allowed for '{file_name}'", ["file_type"])
    if size <= 0:
        raise ValidationError(f"File '{file_name}' is empty", ["file_size"])
    if size > max_size:
        limit_mb = max_size / (1024 * 1024)
        raise ValidationError(
            f"File '{file_name}' exceeds the {limit_mb:.0f}MB limit", ["file_size"]
        )


class ObjectStorage(ABC):
    """Abstract blob store the lifecycle engine writes uploads to."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``path``. Existing objects are never overwritten."""
        ...

    @abstractmethod
    def get(self, path: str) -> bytes:
        ...

    @abstractmethod
    def remove(self, paths: list[str]) -> None:
        """Remove objects. Missing paths are ignored."""
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def signed_url(self, path: str, expires_in: int = 3600) -> str:
        """Time-limited download URL for ``path``."""
        ...


class LocalObjectStorage(ObjectStorage):
    """
    Blob store backed by a directory tree.

    Usage:
        storage = LocalObjectStorage("./storage")
        storage.put("requests/abc/report-1700000000000.pdf", data, "application/pdf")
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise StorageError(f"Invalid object path: {path}")
        return self.root.joinpath(*rel.parts)

    def put(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        if target.exists():
            raise StorageError(f"Object already exists: {path}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e
        logger.debug("Stored %s (%d bytes)", path, len(data))

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {path}") from e
        except OSError as e:
            raise StorageError(f"Could not read {path}: {e}") from e

    def remove(self, paths: list[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Could not remove {path}: {e}") from e
            # Drop the per-request directory once it is empty
            parent = target.parent
            if parent != self.root and not any(parent.iterdir()):
                parent.rmdir()

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def signed_url(self, path: str, expires_in: int = 3600) -> str:
        # Local files carry no signature; the URI is valid while the file exists.
        return self._resolve(path).as_uri()


class S3ObjectStorage(ObjectStorage):
    """
    Blob store backed by an S3-compatible bucket (AWS S3, MinIO).

    Usage:
        storage = S3ObjectStorage(StorageConfig(backend="s3", bucket="request-files"))
    """

    def __init__(self, cfg: StorageConfig, client=None) -> None:
        self.cfg = cfg
        self.bucket = cfg.bucket
        self._client = client or self._make_client(cfg)

    @staticmethod
    def _make_client(cfg: StorageConfig):
        kwargs = {
            "endpoint_url": cfg.endpoint_url,
            "region_name": cfg.region,
            "config": BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
        }
        if cfg.access_key and cfg.secret_key:
            kwargs["aws_access_key_id"] = cfg.access_key
            kwargs["aws_secret_access_key"] = cfg.secret_key
        return boto3.client("s3", **kwargs)

    def put(self, path: str, data: bytes, content_type: str) -> None:
        if self.exists(path):
            raise StorageError(f"Object already exists: {path}")
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type or "application/octet-stream",
                CacheControl="max-age=3600",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not write {path}: {e}") from e

    def get(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not read {path}: {e}") from e

    def remove(self, paths: list[str]) -> None:
        if not paths:
            return
        try:
            self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": p} for p in paths], "Quiet": True},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not remove {len(paths)} object(s): {e}") from e

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Could not stat {path}: {e}") from e

    def signed_url(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=int(expires_in),
        )


def build_storage(cfg: StorageConfig) -> ObjectStorage:
    """Construct the storage backend named by ``cfg.backend``."""
    if cfg.backend == "local":
        return LocalObjectStorage(cfg.root)
    if cfg.backend == "s3":
        return S3ObjectStorage(cfg)
    raise ValueError(f"Unknown storage backend '{cfg.backend}'. Supported: ['local', 's3']")
