"""Payment verifiers (Telebirr reference lookup, CBE receipt screenshots)."""

from escrowbot.verifiers.base import PaymentVerifier, VerificationResult
from escrowbot.verifiers.factory import get_verifier, reset_verifiers, set_verifier

__all__ = [
    "PaymentVerifier",
    "VerificationResult",
    "get_verifier",
    "reset_verifiers",
    "set_verifier",
]
