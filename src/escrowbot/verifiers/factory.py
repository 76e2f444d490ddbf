"""Payment verifier factory."""

from escrowbot.config import get_settings
from escrowbot.ledger.models import PaymentMethod
from escrowbot.verifiers.base import PaymentVerifier
from escrowbot.verifiers.cbe import CBEVerifier
from escrowbot.verifiers.dryrun import DryRunVerifier
from escrowbot.verifiers.telebirr import TelebirrVerifier

# One instance per payment method
_verifier_instances: dict[PaymentMethod, PaymentVerifier] = {}


def get_verifier(method: PaymentMethod | str) -> PaymentVerifier:
    """Get the verifier for a payment method.

    Selected by the VERIFIER_PROVIDER environment variable:
    - dryrun (default): in-memory receipts, unknown references accepted
    - live: Telebirr and CBE receipt services
    """
    method = PaymentMethod(method)
    if method in _verifier_instances:
        return _verifier_instances[method]

    settings = get_settings()
    verifier: PaymentVerifier

    if settings.verifier_provider.lower() == "live":
        if method == PaymentMethod.CBE:
            verifier = CBEVerifier(
                settings.cbe_verifier_url, timeout=settings.verifier_timeout_seconds
            )
        else:
            verifier = TelebirrVerifier(
                settings.telebirr_verifier_url, timeout=settings.verifier_timeout_seconds
            )
    else:
        receivers = settings.escrow_receiver_names
        verifier = DryRunVerifier(
            name=f"dryrun-{method.value}",
            requires_image=method == PaymentMethod.CBE,
            default_receiver=receivers[0] if receivers else None,
        )

    _verifier_instances[method] = verifier
    return verifier


def set_verifier(method: PaymentMethod | str, verifier: PaymentVerifier) -> None:
    """Install a verifier for a payment method (tests, custom backends)."""
    _verifier_instances[PaymentMethod(method)] = verifier


def reset_verifiers() -> None:
    """Reset verifier instances (useful for testing)."""
    _verifier_instances.clear()
