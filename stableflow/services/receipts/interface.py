"""
Abstract Receipt Storage Interface

Receipts are opaque blobs: we upload the bytes under a path scoped to the
account and get back a publicly fetchable URL, which is stored on the
claim as ``receiptUrl``. Image capture and compression happen before this.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional


ProgressCallback = Callable[[float], None]


class ReceiptStorageInterface(ABC):
    """
    Abstract interface for receipt blob storage.

    Any blob store (Cloudinary, in-memory, etc.) must implement this.
    """

    @abstractmethod
    async def upload_receipt(
        self,
        account_id: str,
        data: bytes,
        filename: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Upload a receipt and return its public URL.

        Args:
            account_id: Owner of the receipt; scopes the storage path
            data: Raw file bytes
            filename: Original file name (used for the extension only)
            on_progress: Called with the uploaded fraction, 0.0 to 1.0.
                Implementations may report coarsely; the Cloudinary one
                reports only 0.0 at the start and 1.0 on success.

        Raises:
            ReceiptUploadError: If the upload fails or the file is rejected
        """
        pass


class ReceiptUploadError(Exception):
    """Failed to upload a receipt. Nothing was stored."""
    pass
