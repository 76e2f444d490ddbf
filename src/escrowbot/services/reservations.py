"""Reservation manager.

A reservation is a time-bounded claim on an account: the account moves from
available to pending with a single conditional UPDATE, and a deferred task
puts it back if no order shows up before the timeout.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from escrowbot.config import get_settings
from escrowbot.errors import AccountNotFound, Forbidden, NotAvailable
from escrowbot.ledger.database import SessionScope, get_db
from escrowbot.ledger.models import Account, AccountStatus
from escrowbot.ledger.repository import LedgerRepository, utcnow
from escrowbot.notifications import TelegramNotifier, get_notifier
from escrowbot.services.scheduler import DeferredTaskScheduler

logger = logging.getLogger(__name__)


class ReservationService:
    """Acquires and releases reservations on listed accounts."""

    def __init__(
        self,
        db: SessionScope = get_db,
        scheduler: Optional[DeferredTaskScheduler] = None,
        notifier: Optional[TelegramNotifier] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.db = db
        self.scheduler = scheduler or DeferredTaskScheduler()
        self.notifier = notifier or get_notifier()
        if timeout_seconds is None:
            timeout_seconds = get_settings().reservation_timeout_seconds
        self.timeout_seconds = timeout_seconds

    async def reserve(self, account_id: int, buyer_id: int) -> Account:
        """Claim an available account for a buyer.

        Raises:
            AccountNotFound: no such account
            Forbidden: the buyer owns the account
            NotAvailable: the account is already pending or sold
        """
        async with self.db() as session:
            repo = LedgerRepository(session)
            account = await repo.get_account(account_id)
            if account is None:
                raise AccountNotFound(account_id)
            if account.owner_id == buyer_id:
                raise Forbidden("You cannot buy your own account")

            if not await repo.reserve_account(account_id, buyer_id):
                current = await repo.get_account(account_id)
                if current is None:
                    raise AccountNotFound(account_id)
                raise NotAvailable(account_id, current.status)

            account = await repo.get_account(account_id)

        logger.info(f"Account {account_id} reserved by user {buyer_id} for {self.timeout_seconds}s")
        self.scheduler.schedule(
            self.timeout_seconds,
            "expire_reservation",
            self.expire_reservation,
            account_id,
            buyer_id,
            account.reserved_at,
        )
        return account

    async def expire_reservation(
        self,
        account_id: int,
        buyer_id: Optional[int] = None,
        reserved_at: Optional[datetime] = None,
    ) -> bool:
        """Timer body: release the reservation unless an order now exists.

        With ``buyer_id`` and ``reserved_at`` only that reservation is released.
        A timer left over from a cancelled reservation must not free the account
        after someone else has claimed it.

        Returns:
            True if the account went back to available
        """
        buyer = None
        async with self.db() as session:
            repo = LedgerRepository(session)
            account = await repo.get_account(account_id)
            if account is None or account.status != AccountStatus.PENDING:
                logger.debug(f"Reservation timer for account {account_id}: nothing to release")
                return False

            holder_id = account.reserved_by_id
            account_name = account.name
            released = await repo.release_reservation(
                account_id, reserved_by_id=buyer_id, reserved_at=reserved_at
            )
            if released and holder_id is not None:
                buyer = await repo.get_user(holder_id)

        if not released:
            logger.debug(f"Reservation on account {account_id} was renewed or has an order, keeping it")
            return False

        logger.info(f"Reservation on account {account_id} expired, account available again")
        if buyer is not None:
            await self.notifier.notify_reservation_expired(buyer.telegram_id, account_name)
        return True

    async def cancel(self, account_id: int, buyer_id: int) -> bool:
        """Give up a reservation before paying. Only the holder can cancel it."""
        async with self.db() as session:
            repo = LedgerRepository(session)
            released = await repo.release_reservation(account_id, reserved_by_id=buyer_id)

        if released:
            logger.info(f"User {buyer_id} released reservation on account {account_id}")
        return released

    async def release_expired(self, now: Optional[datetime] = None) -> list[int]:
        """Release every stale, orderless reservation (restart recovery).

        Returns:
            IDs of released accounts
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.timeout_seconds)

        released = []
        async with self.db() as session:
            repo = LedgerRepository(session)
            for account_id in await repo.get_expired_reservations(cutoff):
                if await repo.release_reservation(account_id, reserved_before=cutoff):
                    released.append(account_id)

        if released:
            logger.info(f"Released {len(released)} stale reservation(s): {released}")
        return released
