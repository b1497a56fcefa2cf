"""
Object storage backends for request file blobs.
"""

from docreq.storage.objects import (
    LocalObjectStorage,
    ObjectStorage,
    S3ObjectStorage,
    build_object_path,
    build_storage,
    validate_upload,
)

__all__ = [
    "LocalObjectStorage",
    "ObjectStorage",
    "S3ObjectStorage",
    "build_object_path",
    "build_storage",
    "validate_upload",
]
