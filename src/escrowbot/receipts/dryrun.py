"""In-memory receipt store for development and tests."""

import hashlib

from escrowbot.receipts.base import ReceiptImageStore, StoredImage


class DryRunImageStore(ReceiptImageStore):
    """Keeps uploaded images in memory and serves fake URLs."""

    def __init__(self):
        self.images: dict[str, bytes] = {}

    @property
    def name(self) -> str:
        return "dryrun"

    async def upload(self, content: bytes) -> StoredImage:
        public_id = hashlib.sha256(content).hexdigest()[:20]
        self.images[public_id] = content
        return StoredImage(url=f"https://receipts.invalid/{public_id}.jpg", public_id=public_id)

    async def delete(self, image: StoredImage) -> bool:
        return self.images.pop(image.public_id, None) is not None
