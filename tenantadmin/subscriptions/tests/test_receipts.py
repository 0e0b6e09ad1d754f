import pytest
from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile

from tenantadmin.subscriptions.receipts import RECEIPT_STORAGE_PREFIX
from tenantadmin.subscriptions.receipts import ReceiptRejectedError
from tenantadmin.subscriptions.receipts import check_receipt
from tenantadmin.subscriptions.receipts import discard_receipt
from tenantadmin.subscriptions.receipts import read_receipt
from tenantadmin.subscriptions.receipts import store_receipt

PDF = b"%PDF-1.4\nfake receipt body"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 32


class TestCheckReceipt:
    @pytest.mark.parametrize(
        ("name", "content_type", "head", "expected"),
        [
            ("receipt.pdf", "application/pdf", PDF, "application/pdf"),
            ("scan.PNG", "image/png", PNG, "image/png"),
            ("photo.jpeg", "image/jpg", JPEG, "image/jpeg"),
            ("photo.jpg", "image/jpeg; charset=binary", JPEG, "image/jpeg"),
        ],
    )
    def test_accepted(self, name, content_type, head, expected):
        assert check_receipt(name, content_type, len(head), head) == expected

    @pytest.mark.parametrize(
        ("name", "content_type", "size", "head", "code"),
        [
            ("big.pdf", "application/pdf", 2 * 1024 * 1024 + 1, PDF, "receipt_too_large"),
            ("empty.pdf", "application/pdf", 0, b"", "receipt_empty"),
            ("notes.txt", "text/plain", 10, b"hello", "receipt_bad_extension"),
            ("noext", "application/pdf", 10, PDF, "receipt_bad_extension"),
            ("receipt.pdf", "text/plain", 10, PDF, "receipt_bad_type"),
            ("receipt.pdf", None, 10, PDF, "receipt_bad_type"),
            ("receipt.pdf", "application/pdf", 10, PNG, "receipt_content_mismatch"),
            ("receipt.png", "image/png", 10, b"MZ\x90\x00", "receipt_content_mismatch"),
        ],
    )
    def test_rejected(self, name, content_type, size, head, code):
        with pytest.raises(ReceiptRejectedError) as exc_info:
            check_receipt(name, content_type, size, head)

        assert exc_info.value.code == code

    def test_exact_limit_is_accepted(self):
        size = 2 * 1024 * 1024

        assert check_receipt("r.pdf", "application/pdf", size, PDF) == "application/pdf"

    def test_limit_comes_from_settings(self, settings):
        settings.RECEIPT_MAX_UPLOAD_BYTES = 1024 * 1024

        with pytest.raises(ReceiptRejectedError) as exc_info:
            check_receipt("r.pdf", "application/pdf", 1024 * 1024 + 1, PDF)

        assert exc_info.value.detail == "The receipt must not exceed 1 MB."


class TestStorage:
    def test_store_read_and_discard(self):
        upload = SimpleUploadedFile("../../Virement 2024.pdf", PDF, content_type="application/pdf")

        attachment = store_receipt(upload, "wizard-1")

        assert attachment.storage_path.startswith(f"{RECEIPT_STORAGE_PREFIX}/wizard-1/")
        assert attachment.name == "Virement 2024.pdf"
        assert attachment.content_type == "application/pdf"
        assert attachment.size == len(PDF)
        assert read_receipt(attachment) == PDF

        discard_receipt(attachment)

        assert not default_storage.exists(attachment.storage_path)

    def test_extension_follows_content(self):
        upload = SimpleUploadedFile("scan.jpeg", JPEG, content_type="image/jpeg")

        assert store_receipt(upload, "wizard-2").name == "scan.jpeg"

    def test_rejected_upload_is_not_stored(self):
        upload = SimpleUploadedFile("receipt.pdf", PNG, content_type="application/pdf")

        with pytest.raises(ReceiptRejectedError):
            store_receipt(upload, "wizard-3")

        assert not default_storage.exists(f"{RECEIPT_STORAGE_PREFIX}/wizard-3/receipt.pdf")

    def test_discard_tolerates_missing_files(self):
        upload = SimpleUploadedFile("receipt.pdf", PDF, content_type="application/pdf")
        attachment = store_receipt(upload, "wizard-4")
        default_storage.delete(attachment.storage_path)

        discard_receipt(attachment)
        discard_receipt(None)
