"""Cloudinary receipt image store.

Uses the signed upload/destroy REST endpoints directly.
Docs: https://cloudinary.com/documentation/image_upload_api_reference
"""

import base64
import hashlib
import logging
import time

import httpx

from escrowbot.errors import ImageStoreUnavailable
from escrowbot.receipts.base import ReceiptImageStore, StoredImage

logger = logging.getLogger(__name__)


class CloudinaryImageStore(ReceiptImageStore):
    """Hosts receipt screenshots on Cloudinary."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url or f"https://api.cloudinary.com/v1_1/{cloud_name}"
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "cloudinary"

    def _sign(self, params: dict) -> str:
        """Signature over the sorted parameters followed by the API secret."""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    async def upload(self, content: bytes) -> StoredImage:
        params = {"timestamp": int(time.time())}
        data_uri = "data:image/jpeg;base64," + base64.b64encode(content).decode()
        form = {
            **params,
            "file": data_uri,
            "api_key": self.api_key,
            "signature": self._sign(params),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/image/upload", data=form)
        except httpx.HTTPError as e:
            logger.error(f"Cloudinary upload failed: {e}")
            raise ImageStoreUnavailable(str(e))

        if response.status_code != 200:
            logger.error(f"Cloudinary upload error: {response.status_code} {response.text[:200]}")
            raise ImageStoreUnavailable(f"HTTP {response.status_code}")

        data = response.json()
        return StoredImage(url=data["secure_url"], public_id=data["public_id"])

    async def delete(self, image: StoredImage) -> bool:
        params = {"public_id": image.public_id, "timestamp": int(time.time())}
        form = {**params, "api_key": self.api_key, "signature": self._sign(params)}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/image/destroy", data=form)
        except httpx.HTTPError as e:
            logger.error(f"Cloudinary delete failed for {image.public_id}: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Cloudinary delete error for {image.public_id}: {response.status_code}")
            return False

        return response.json().get("result") == "ok"
