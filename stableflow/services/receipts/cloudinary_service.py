"""
Receipt Storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. It returns a stable public HTTPS URL we can store on the claim
2. Reliable cloud infrastructure
3. Simple API

Receipts are stored as-is. Layout:
    {folder}/receipts/{account_id}/{uuid}
"""

import asyncio
import functools
from pathlib import PurePath
from typing import Optional
from uuid import uuid4

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stableflow.config import get_settings
from stableflow.config.settings import CloudinarySettings
from stableflow.services.receipts.interface import (
    ProgressCallback,
    ReceiptStorageInterface,
    ReceiptUploadError,
)


logger = structlog.get_logger(__name__)


class CloudinaryReceiptStorage(ReceiptStorageInterface):
    """
    Receipt uploads to Cloudinary.

    The SDK call is blocking; it runs on the default executor so the event
    loop stays free during the upload.

    Progress is coarse: 0.0 when the upload starts and 1.0 once Cloudinary
    returns a URL. Neither ``upload`` nor ``upload_large`` exposes a
    per-chunk callback, and receipts are capped well below the size where
    chunked uploads matter.
    """

    def __init__(
        self,
        settings: Optional[CloudinarySettings] = None,
        max_size_bytes: Optional[int] = None,
    ):
        self._settings = settings or get_settings().cloudinary
        self._max_size_bytes = max_size_bytes or get_settings().app.max_receipt_size_bytes
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    @staticmethod
    def receipt_public_id(account_id: str) -> str:
        """
        Generate a unique public ID for a receipt.

        Format: receipts/{account_id}/{uuid}
        """
        return f"receipts/{account_id}/{uuid4().hex}"

    @retry(
        retry=retry_if_exception_type(cloudinary.exceptions.Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload(self, data: bytes, public_id: str, filename: str) -> dict:
        return cloudinary.uploader.upload(
            data,
            public_id=public_id,
            folder=self._settings.folder,
            resource_type="auto",
            filename_override=filename,
            overwrite=False,
        )

    async def upload_receipt(
        self,
        account_id: str,
        data: bytes,
        filename: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        if not account_id:
            raise ReceiptUploadError("You must be signed in to upload a receipt")
        if not data:
            raise ReceiptUploadError("Receipt file is empty")
        if len(data) > self._max_size_bytes:
            raise ReceiptUploadError(
                f"Receipt is larger than {self._max_size_bytes // (1024 * 1024)} MB"
            )

        self._configure()
        public_id = self.receipt_public_id(account_id)
        if on_progress:
            on_progress(0.0)

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None,
                functools.partial(self._upload, data, public_id, PurePath(filename).name),
            )
        except cloudinary.exceptions.Error as e:
            raise ReceiptUploadError(f"Cloudinary error: {e}")
        except Exception as e:
            raise ReceiptUploadError(f"Failed to upload receipt: {e}")

        url = result.get("secure_url") or result.get("url")
        if not url:
            raise ReceiptUploadError("No URL returned from Cloudinary")

        if on_progress:
            on_progress(1.0)

        logger.info(
            "receipt_uploaded",
            account_id=account_id,
            public_id=public_id,
            size_bytes=len(data),
        )
        return url
