"""Hosting for receipt screenshots sent to image-based verifiers."""

from escrowbot.receipts.base import ReceiptImageStore, StoredImage
from escrowbot.receipts.factory import get_image_store, reset_image_store

__all__ = ["ReceiptImageStore", "StoredImage", "get_image_store", "reset_image_store"]
