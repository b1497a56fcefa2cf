"""
Security pipeline for response documents.

PDF responses are re-encrypted with a random owner password and a
restrictive permission set before they are stored: readers may open and
print them at full resolution, assistive technology may extract their
content, and everything else (editing, copying, annotating, form
filling, page assembly) is denied. The owner password is discarded.

Any failure falls back to the original bytes so an upload is never
blocked by the transform.
"""

from __future__ import annotations

import io
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from pypdf import PdfReader, PdfWriter
from pypdf.constants import UserAccessPermissions

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"

DENIED_PERMISSIONS = (
    UserAccessPermissions.MODIFY
    | UserAccessPermissions.EXTRACT
    | UserAccessPermissions.ADD_OR_MODIFY
    | UserAccessPermissions.FILL_FORM_FIELDS
    | UserAccessPermissions.ASSEMBLE_DOC
)
# Reserved bits stay set as the PDF format requires.
RESPONSE_PERMISSIONS = UserAccessPermissions(
    int(UserAccessPermissions.all()) & ~int(DENIED_PERMISSIONS)
)


@dataclass
class SecuredFile:
    """Output of the pipeline.

    ``content`` is either the encrypted PDF or the untouched input.
    ``warning`` is set when a PDF could not be secured.
    """

    content: bytes
    is_secured: bool
    warning: Optional[str] = None


def is_securable(mime_type: str) -> bool:
    return mime_type == PDF_MIME_TYPE


class PdfSecurityPipeline:
    """
    Apply owner-password permissions to PDF files.

    Usage:
        pipeline = PdfSecurityPipeline()
        result = pipeline.secure(pdf_bytes, "application/pdf")
        if not result.is_secured:
            print(result.warning)
    """

    def __init__(self, password_bytes: int = 24) -> None:
        self.password_bytes = password_bytes

    def secure(self, content: bytes, mime_type: str) -> SecuredFile:
        if not is_securable(mime_type):
            return SecuredFile(content=content, is_secured=False)

        try:
            secured = self._encrypt(content)
        except Exception as e:
            logger.warning("Could not apply PDF security, storing original: %s", e)
            return SecuredFile(
                content=content,
                is_secured=False,
                warning=f"Could not apply security features: {e}",
            )
        return SecuredFile(content=secured, is_secured=True)

    def _encrypt(self, content: bytes) -> bytes:
        reader = PdfReader(io.BytesIO(content))
        if reader.is_encrypted:
            raise ValueError("PDF is already encrypted")

        writer = PdfWriter(clone_from=reader)
        writer.encrypt(
            user_password="",
            owner_password=secrets.token_urlsafe(self.password_bytes),
            permissions_flag=RESPONSE_PERMISSIONS,
        )
        out = io.BytesIO()
        writer.write(out)
        return out.getvalue()
