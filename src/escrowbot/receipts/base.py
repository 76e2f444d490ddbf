"""Receipt image store base interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class StoredImage:
    """A receipt screenshot hosted where the verifier can fetch it."""

    url: str
    public_id: str


class ReceiptImageStore(ABC):
    """Abstract base class for receipt screenshot hosts."""

    @abstractmethod
    async def upload(self, content: bytes) -> StoredImage:
        """Upload image bytes and return its public location.

        Raises:
            ImageStoreUnavailable: if the host rejected or failed the upload
        """
        raise NotImplementedError()

    @abstractmethod
    async def delete(self, image: StoredImage) -> bool:
        """Delete a previously uploaded image.

        Returns:
            True if the host confirmed the deletion
        """
        raise NotImplementedError()

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name."""
        raise NotImplementedError()
