"""
File security: permission-restricted encryption for response PDFs.
"""

from docreq.security.pdf_security import (
    PDF_MIME_TYPE,
    PdfSecurityPipeline,
    SecuredFile,
    is_securable,
)

__all__ = [
    "PDF_MIME_TYPE",
    "PdfSecurityPipeline",
    "SecuredFile",
    "is_securable",
]
