"""
Image CDN Client

Unsigned uploads to the image CDN. The upload preset configured on the CDN
account decides folder, size limits and allowed formats, so no API secret is
needed server side.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.libs.settings import get_settings

logger = logging.getLogger("stylo.cdn")


class UploadError(Exception):
    """Custom exception for CDN upload failures"""
    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Dict] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


def image_name_from_filename(filename: str) -> str:
    """Strip the final extension: ``hero.banner.png`` -> ``hero.banner``."""
    stem = ".".join(filename.split(".")[:-1])
    return stem or filename


class CloudinaryClient:
    """Thin wrapper around the unsigned image upload endpoint."""

    def __init__(self, cloud_name: Optional[str] = None, upload_preset: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.upload_preset = upload_preset or settings.cloudinary_upload_preset
        self.transport = transport

    @property
    def upload_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/upload"

    async def upload(self, filename: str, content: bytes, content_type: str = "application/octet-stream") -> Dict[str, Any]:
        """
        Upload one image.

        Returns:
            Dict with ``secure_url`` and ``public_id``

        Raises:
            UploadError: If the CDN rejects the file or cannot be reached
        """
        files = {"file": (filename, content, content_type)}
        data = {"upload_preset": self.upload_preset}
        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self.transport) as client:
                response = await client.post(self.upload_url, files=files, data=data)
        except httpx.HTTPError as e:
            raise UploadError(f"Upload failed: {e}")

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = (body.get("error") or {}).get("message", "Image upload failed.")
            logger.warning("CDN rejected %s: %s", filename, message)
            raise UploadError(message, status_code=response.status_code, response=body)

        body = response.json()
        return {"secure_url": body["secure_url"], "public_id": body.get("public_id")}
