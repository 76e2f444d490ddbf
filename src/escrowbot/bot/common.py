"""Helpers shared by the bot handlers."""

from typing import Optional

from aiogram.types import User as TelegramUser

from escrowbot.config import get_settings
from escrowbot.errors import (
    BelowWithdrawalMinimum,
    DuplicateActiveOrder,
    DuplicateReceipt,
    EscrowError,
    Forbidden,
    HasPendingOrders,
    MissingBankDetails,
    NotAvailable,
    NotDeletable,
    PaymentMismatch,
)
from escrowbot.ledger.database import get_db
from escrowbot.ledger.models import User
from escrowbot.ledger.repository import LedgerRepository


async def ensure_user(tg_user: TelegramUser) -> User:
    """Get or create the ledger user for a Telegram sender."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        return await repo.get_or_create_user(telegram_id=tg_user.id, username=tg_user.username)


def parse_id(data: Optional[str]) -> Optional[int]:
    """Trailing integer of ``prefix:...:<id>`` callback data."""
    if not data:
        return None
    try:
        return int(data.rsplit(":", 1)[1])
    except (IndexError, ValueError):
        return None


def describe_error(error: EscrowError) -> str:
    """User-facing text for a rejected operation."""
    if isinstance(error, NotAvailable):
        return "Sorry, this account is no longer available."
    if isinstance(error, DuplicateActiveOrder):
        return "You already have an active order for this account. Please check your orders list."
    if isinstance(error, DuplicateReceipt):
        return "This transaction receipt has already been used. Please use a new receipt."
    if isinstance(error, PaymentMismatch):
        return f"Payment verification failed: {error.reason}"
    if isinstance(error, BelowWithdrawalMinimum):
        currency = get_settings().currency
        return (
            f"Minimum withdrawal threshold is {error.minimum} {currency}. "
            f"Your current balance is {error.balance} {currency}."
        )
    if isinstance(error, MissingBankDetails):
        return "Please add your bank account details before withdrawing."
    if isinstance(error, NotDeletable):
        return "This account has an order in progress and cannot be deleted."
    if isinstance(error, HasPendingOrders):
        return "This account has pending orders. Complete or cancel them first."
    if isinstance(error, Forbidden):
        return error.message
    if error.retryable:
        return "The payment service is temporarily unavailable. Please try again in a few minutes."
    return error.message
