"""
Payment receipt handling for STANDARD invoices.

A receipt is checked the moment it is selected: files over the size limit or
outside PDF/JPEG/PNG never reach the wizard state. Accepted files are parked
in the default storage until the wizard is submitted or closed, and the state
only keeps a small :class:`ReceiptAttachment` pointer to them.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from pydantic import BaseModel
from pydantic import ConfigDict

from tenantadmin.core.filesafety import build_safe_filename
from tenantadmin.core.filesafety import normalize_content_type
from tenantadmin.core.filesafety import sniff_content_type
from tenantadmin.subscriptions.constants import RECEIPT_ALLOWED_CONTENT_TYPES
from tenantadmin.subscriptions.constants import RECEIPT_ALLOWED_EXTENSIONS
from tenantadmin.subscriptions.constants import RECEIPT_MAX_BYTES

logger = logging.getLogger(__name__)

RECEIPT_STORAGE_PREFIX = "plan-wizard-receipts"

# Enough bytes to cover the longest magic prefix (PNG, 8 bytes).
_SNIFF_BYTES = 16


class ReceiptRejectedError(Exception):
    """Raised when a selected receipt file is refused."""

    def __init__(self, detail: str, code: str = "receipt_rejected"):
        self.detail = detail
        self.code = code
        super().__init__(detail)


class ReceiptAttachment(BaseModel):
    """Pointer to a receipt parked in storage for an open wizard."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_type: str
    size: int
    storage_path: str


def max_receipt_bytes() -> int:
    return getattr(settings, "RECEIPT_MAX_UPLOAD_BYTES", RECEIPT_MAX_BYTES)


def check_receipt(name: str, content_type: str | None, size: int, head: bytes) -> str:
    """
    Validate a receipt's metadata and first bytes.

    Returns the content type to store the file under.

    Raises:
        ReceiptRejectedError: the file is too large, has an unsupported
            extension or declared type, or its contents do not match.
    """
    limit = max_receipt_bytes()
    if size > limit:
        raise ReceiptRejectedError(
            f"The receipt must not exceed {limit // (1024 * 1024)} MB.",
            code="receipt_too_large",
        )
    if size == 0:
        raise ReceiptRejectedError("The receipt file is empty.", code="receipt_empty")

    suffix = PurePosixPath(name or "").suffix.lower()
    if suffix not in RECEIPT_ALLOWED_EXTENSIONS:
        raise ReceiptRejectedError(
            "Only PDF, JPEG or PNG receipts are accepted.",
            code="receipt_bad_extension",
        )

    declared = normalize_content_type(content_type)
    if declared not in RECEIPT_ALLOWED_CONTENT_TYPES:
        raise ReceiptRejectedError(
            "Only PDF, JPEG or PNG receipts are accepted.",
            code="receipt_bad_type",
        )

    detected = sniff_content_type(head)
    if detected != declared:
        raise ReceiptRejectedError(
            "The receipt content does not match its file type.",
            code="receipt_content_mismatch",
        )
    return declared


def store_receipt(uploaded_file, wizard_id: str) -> ReceiptAttachment:
    """
    Validate ``uploaded_file`` (a Django ``UploadedFile``) and park it in storage.

    Raises:
        ReceiptRejectedError: see :func:`check_receipt`.
    """
    uploaded_file.seek(0)
    head = uploaded_file.read(_SNIFF_BYTES)
    content_type = check_receipt(
        uploaded_file.name,
        getattr(uploaded_file, "content_type", None),
        uploaded_file.size,
        head,
    )
    uploaded_file.seek(0)

    safe_name = build_safe_filename(uploaded_file.name, content_type=content_type)
    path = default_storage.save(
        f"{RECEIPT_STORAGE_PREFIX}/{wizard_id}/{safe_name}",
        ContentFile(uploaded_file.read()),
    )
    logger.info("Stored receipt %s for wizard %s", path, wizard_id)
    return ReceiptAttachment(
        name=safe_name,
        content_type=content_type,
        size=uploaded_file.size,
        storage_path=path,
    )


def read_receipt(attachment: ReceiptAttachment) -> bytes:
    with default_storage.open(attachment.storage_path, "rb") as handle:
        return handle.read()


def discard_receipt(attachment: ReceiptAttachment | None) -> None:
    """Remove a parked receipt; missing files are ignored."""
    if attachment is None:
        return
    if default_storage.exists(attachment.storage_path):
        default_storage.delete(attachment.storage_path)
        logger.debug("Discarded receipt %s", attachment.storage_path)
