"""Dry-run verifier for development and tests (no real receipts)."""

from dataclasses import dataclass
from typing import Optional

from escrowbot.verifiers.base import ALREADY_USED_MESSAGE, PaymentVerifier, VerificationResult


@dataclass
class _Receipt:
    amount: int
    receiver: str
    payer: Optional[str]
    transaction_id: str


class DryRunVerifier(PaymentVerifier):
    """Simulated verifier backed by an in-memory receipt book.

    Receipts can be registered explicitly; unknown references are either
    accepted as an exact payment to ``default_receiver`` (development) or
    rejected (tests).
    """

    def __init__(
        self,
        name: str = "dryrun",
        requires_image: bool = False,
        default_receiver: Optional[str] = None,
        accept_unknown: bool = True,
    ):
        self._name = name
        self.requires_image = requires_image
        self.default_receiver = default_receiver
        self.accept_unknown = accept_unknown
        self.receipts: dict[str, _Receipt] = {}
        self.settled: set[str] = set()
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    def register(
        self,
        reference: str,
        amount: int,
        receiver: str,
        payer: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> None:
        """Add a settled payment to the receipt book."""
        self.receipts[reference] = _Receipt(
            amount=amount,
            receiver=receiver,
            payer=payer,
            transaction_id=transaction_id or reference,
        )

    async def verify(self, reference: str, expected_amount: int) -> VerificationResult:
        self.calls.append(reference)
        receipt = self.receipts.get(reference)

        if receipt is None:
            if not self.accept_unknown or not self.default_receiver:
                return VerificationResult(accepted=False, message="Transaction not found")
            receipt = _Receipt(
                amount=expected_amount,
                receiver=self.default_receiver,
                payer="Dry Run",
                transaction_id=reference,
            )

        if receipt.transaction_id in self.settled:
            return VerificationResult(
                accepted=False, message=ALREADY_USED_MESSAGE, already_used=True
            )

        return VerificationResult(
            accepted=True,
            payer=receipt.payer,
            receiver=receipt.receiver,
            settled_amount=receipt.amount,
            transaction_id=receipt.transaction_id,
        )

    async def record_settlement(self, result: VerificationResult) -> bool:
        if result.transaction_id:
            self.settled.add(result.transaction_id)
        return True
