"""CBE receipt verifier (buyer uploads a screenshot of the transfer)."""

import logging

from escrowbot.verifiers.base import HttpReceiptVerifier, VerificationResult

logger = logging.getLogger(__name__)


class CBEVerifier(HttpReceiptVerifier):
    """Parses a hosted CBE receipt screenshot.

    The service remembers settled transactions once ``save-transaction`` is
    called and afterwards answers "transaction already exist" for them.
    """

    requires_image = True

    @property
    def name(self) -> str:
        return "cbe"

    async def verify(self, reference: str, expected_amount: int) -> VerificationResult:
        payload = await self._request("GET", "/parse", params={"image_url": reference})
        result = self._to_result(payload)

        logger.info(
            f"CBE verification: accepted={result.accepted} tx={result.transaction_id} "
            f"amount={result.settled_amount} receiver={result.receiver!r}"
        )
        return result

    async def record_settlement(self, result: VerificationResult) -> bool:
        payload = await self._request(
            "POST",
            "/save-transaction",
            json={
                "transactionNumber": result.transaction_id,
                "amount": result.settled_amount,
                "receiver": result.receiver,
            },
        )
        if not payload.get("success", True):
            logger.error(f"Failed to save transaction record: {payload}")
            return False
        return True
