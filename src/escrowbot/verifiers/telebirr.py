"""Telebirr receipt verifier (buyer types the receipt number)."""

import logging

from escrowbot.verifiers.base import HttpReceiptVerifier, VerificationResult

logger = logging.getLogger(__name__)


class TelebirrVerifier(HttpReceiptVerifier):
    """Checks a Telebirr transaction reference against the receipt service."""

    @property
    def name(self) -> str:
        return "telebirr"

    async def verify(self, reference: str, expected_amount: int) -> VerificationResult:
        reference = reference.strip()
        payload = await self._request(
            "POST",
            "/verify",
            json={"reference": reference, "amount": expected_amount},
        )
        result = self._to_result(payload)
        if result.accepted and not result.transaction_id:
            result.transaction_id = reference

        logger.info(
            f"Telebirr verification for {reference}: accepted={result.accepted} "
            f"amount={result.settled_amount} receiver={result.receiver!r}"
        )
        return result
