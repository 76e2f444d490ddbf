"""Payment verifier base interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from escrowbot.errors import VerifierUnavailable

logger = logging.getLogger(__name__)

# Message the receipt services return for a receipt that was already settled
ALREADY_USED_MESSAGE = "transaction already exist"


@dataclass
class VerificationResult:
    """What a verifier found for a receipt."""

    accepted: bool
    payer: Optional[str] = None
    receiver: Optional[str] = None
    settled_amount: Optional[int] = None
    transaction_id: Optional[str] = None
    message: Optional[str] = None
    already_used: bool = False


def parse_amount(value: Any) -> Optional[int]:
    """Parse a settled amount into whole currency units.

    Fractions are truncated, never rounded up, so a short payment can not pass
    the amount check.
    """
    if value is None or value == "":
        return None
    try:
        return int(Decimal(str(value).replace(",", "").strip()))
    except (InvalidOperation, ValueError):
        return None


class PaymentVerifier(ABC):
    """Abstract base class for payment receipt verifiers."""

    # Verifiers that read a screenshot get an image URL as the reference
    requires_image: bool = False

    @abstractmethod
    async def verify(self, reference: str, expected_amount: int) -> VerificationResult:
        """Look up a settled payment.

        Args:
            reference: Receipt number, or hosted image URL for image verifiers
            expected_amount: Amount the buyer should have paid

        Returns:
            VerificationResult; ``accepted`` is False for unknown receipts

        Raises:
            VerifierUnavailable: on transport or upstream failure
        """
        raise NotImplementedError()

    async def record_settlement(self, result: VerificationResult) -> bool:
        """Tell the verifier a receipt has been consumed by an order.

        Returns:
            True if recorded (or nothing to record)
        """
        return True

    @property
    @abstractmethod
    def name(self) -> str:
        """Verifier name."""
        raise NotImplementedError()


class HttpReceiptVerifier(PaymentVerifier):
    """Shared plumbing for receipt services speaking the
    ``{"success": bool, "message": str, "data": {...}}`` envelope.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{self.name} verifier request failed: {e}")
            raise VerifierUnavailable(self.name, str(e))

        if response.status_code >= 500:
            logger.error(f"{self.name} verifier error: {response.status_code}")
            raise VerifierUnavailable(self.name, f"HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError:
            logger.error(
                f"{self.name} verifier returned non-JSON body ({response.status_code}): "
                f"{response.text[:200]}"
            )
            raise VerifierUnavailable(self.name, "invalid response")

    def _to_result(self, payload: dict) -> VerificationResult:
        message = payload.get("message") or payload.get("error")
        if not payload.get("success"):
            return VerificationResult(
                accepted=False,
                message=message,
                already_used=(message or "").strip().lower() == ALREADY_USED_MESSAGE,
            )

        data = payload.get("data") or {}
        return VerificationResult(
            accepted=True,
            payer=data.get("payer") or data.get("payerName"),
            receiver=data.get("receiver") or data.get("receiverName"),
            settled_amount=parse_amount(data.get("amount")),
            transaction_id=data.get("transactionNumber") or data.get("transaction") or data.get("reference"),
            message=message,
        )
