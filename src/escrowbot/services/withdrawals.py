"""Withdrawal service: seller payouts and admin settlement of payout requests."""

import logging
from typing import Optional

from escrowbot.config import get_settings
from escrowbot.errors import (
    BelowWithdrawalMinimum,
    InsufficientBalance,
    InvalidWithdrawalState,
    MissingBankDetails,
    UserNotFound,
    WithdrawalNotFound,
)
from escrowbot.ledger.database import SessionScope, get_db
from escrowbot.ledger.models import Withdrawal, WithdrawalReason, WithdrawalStatus
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.notifications import TelegramNotifier, get_notifier

logger = logging.getLogger(__name__)


class WithdrawalService:
    """Turns user balances into payout obligations."""

    def __init__(
        self,
        db: SessionScope = get_db,
        notifier: Optional[TelegramNotifier] = None,
        min_amount: Optional[int] = None,
    ):
        self.db = db
        self.notifier = notifier or get_notifier()
        if min_amount is None:
            min_amount = get_settings().min_withdrawal_amount
        self.min_amount = min_amount

    async def request_payout(self, user_id: int, amount: Optional[int] = None) -> Withdrawal:
        """Withdraw ``amount`` (default: the whole balance) to the user's bank account.

        The balance debit and the withdrawal record commit together.

        Raises:
            UserNotFound: unknown user
            BelowWithdrawalMinimum: balance or amount under the minimum
            InsufficientBalance: amount larger than the balance
            MissingBankDetails: no payout bank account on file
        """
        async with self.db() as session:
            repo = LedgerRepository(session)
            user = await repo.get_user(user_id)
            if user is None:
                raise UserNotFound(user_id)

            balance = user.balance
            if balance < self.min_amount:
                raise BelowWithdrawalMinimum(balance, self.min_amount)

            if amount is None:
                amount = balance
            if amount < self.min_amount:
                raise BelowWithdrawalMinimum(balance, self.min_amount)
            if amount > balance:
                raise InsufficientBalance(balance, amount)

            if not user.has_bank_details:
                raise MissingBankDetails(user_id)

            new_balance = await repo.debit_balance(user_id, amount)
            withdrawal = await repo.create_withdrawal(
                user_id=user_id,
                amount=amount,
                reason=WithdrawalReason.SELLER_PAYOUT,
                note=f"{user.account_holder_name} / {user.bank_name} / {user.account_number}",
            )
            telegram_id = user.telegram_id

        logger.info(
            f"Payout {withdrawal.id} requested by user {user_id}: {amount} "
            f"(balance now {new_balance})"
        )
        await self.notifier.notify_payout_requested(telegram_id, amount)
        return withdrawal

    async def update_status(self, withdrawal_id: int, status: WithdrawalStatus | str) -> Withdrawal:
        """Settle a pending withdrawal as completed or rejected.

        Rejecting a seller payout returns the amount to the seller's balance.
        """
        status = WithdrawalStatus(status)

        async with self.db() as session:
            repo = LedgerRepository(session)
            withdrawal = await repo.get_withdrawal(withdrawal_id)
            if withdrawal is None:
                raise WithdrawalNotFound(withdrawal_id)

            if status == WithdrawalStatus.PENDING or not await repo.set_withdrawal_status(
                withdrawal_id, WithdrawalStatus.PENDING, status
            ):
                current = await repo.get_withdrawal(withdrawal_id)
                raise InvalidWithdrawalState(withdrawal_id, current.status, status.value)

            if (
                status == WithdrawalStatus.REJECTED
                and withdrawal.reason == WithdrawalReason.SELLER_PAYOUT
            ):
                balance = await repo.credit_balance(withdrawal.user_id, withdrawal.amount)
                logger.info(
                    f"Payout {withdrawal_id} rejected, {withdrawal.amount} returned to "
                    f"user {withdrawal.user_id} (balance {balance})"
                )

            withdrawal = await repo.get_withdrawal(withdrawal_id)

        logger.info(f"Withdrawal {withdrawal_id} marked {status.value}")
        return withdrawal

    async def get_user_withdrawals(self, user_id: int, limit: int = 20, offset: int = 0) -> list[Withdrawal]:
        async with self.db() as session:
            repo = LedgerRepository(session)
            return await repo.get_user_withdrawals(user_id, limit=limit, offset=offset)
