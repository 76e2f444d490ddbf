"""Ledger module: users, listed accounts, orders and withdrawals."""

from escrowbot.ledger.database import get_db, init_db
from escrowbot.ledger.models import (
    Account,
    AccountStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    Platform,
    User,
    Withdrawal,
    WithdrawalReason,
    WithdrawalStatus,
)
from escrowbot.ledger.repository import LedgerRepository

__all__ = [
    # Models
    "User",
    "Account",
    "Order",
    "Withdrawal",
    # Enums
    "AccountStatus",
    "OrderStatus",
    "PaymentMethod",
    "Platform",
    "WithdrawalReason",
    "WithdrawalStatus",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
]
