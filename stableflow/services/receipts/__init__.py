"""Receipt blob storage."""

from stableflow.services.receipts.cloudinary_service import CloudinaryReceiptStorage
from stableflow.services.receipts.interface import (
    ProgressCallback,
    ReceiptStorageInterface,
    ReceiptUploadError,
)

__all__ = [
    "CloudinaryReceiptStorage",
    "ProgressCallback",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
]
