"""
Object storage for QR code images (Supabase Storage REST API).
"""

from typing import Optional
from urllib.parse import quote

import httpx
import structlog

from qbo_einvoice.config import Settings

logger = structlog.get_logger()


class ObjectStorageError(Exception):
    """Raised when an object cannot be stored."""

    pass


class SupabaseStorageClient:
    """
    Uploads files to a public Supabase Storage bucket.

    Attributes:
        base_url: Supabase project URL
        bucket: Target bucket name
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.supabase_url.rstrip("/")
        self.bucket = settings.supabase_bucket
        self._key = settings.supabase_key
        self._timeout = settings.supabase_timeout_seconds
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._key)

    def public_url(self, file_name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(file_name)}"

    async def upload(self, content: bytes, file_name: str, content_type: str = "image/png") -> str:
        """
        Upload bytes under ``file_name`` and return the public URL.

        Raises:
            ObjectStorageError: If storage is not configured or the upload fails
        """
        if not self.is_configured:
            raise ObjectStorageError("Supabase storage is not configured")

        logger.info("object_upload_started", bucket=self.bucket, file_name=file_name)

        try:
            response = await self._client().post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(file_name)}",
                content=content,
                headers={
                    "Authorization": f"Bearer {self._key}",
                    "apikey": self._key,
                    "Content-Type": content_type,
                    "x-upsert": "false",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "object_upload_failed",
                file_name=file_name,
                status_code=e.response.status_code,
                error=e.response.text,
            )
            raise ObjectStorageError(f"Failed to upload {file_name}: {e.response.text}") from e
        except httpx.HTTPError as e:
            logger.error("object_upload_error", file_name=file_name, error=str(e))
            raise ObjectStorageError(f"Failed to upload {file_name}: {e}") from e

        url = self.public_url(file_name)
        logger.info("object_uploaded", file_name=file_name, url=url)
        return url
