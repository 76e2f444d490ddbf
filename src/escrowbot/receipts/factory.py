"""Receipt image store factory."""

from escrowbot.config import get_settings
from escrowbot.receipts.base import ReceiptImageStore
from escrowbot.receipts.cloudinary import CloudinaryImageStore
from escrowbot.receipts.dryrun import DryRunImageStore

# Singleton instance
_store_instance: ReceiptImageStore | None = None


def get_image_store() -> ReceiptImageStore:
    """Get the configured receipt image store.

    Selected by the RECEIPT_STORE environment variable:
    - dryrun (default): in-memory store
    - cloudinary: Cloudinary signed uploads
    """
    global _store_instance

    if _store_instance is not None:
        return _store_instance

    settings = get_settings()
    if settings.receipt_store.lower() == "cloudinary":
        _store_instance = CloudinaryImageStore(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
        )
    else:
        _store_instance = DryRunImageStore()

    return _store_instance


def reset_image_store() -> None:
    """Reset store instance (useful for testing)."""
    global _store_instance
    _store_instance = None
