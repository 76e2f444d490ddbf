"""Order state machine.

Orders move ``pending -> completed | cancelled | failed`` and never leave a
terminal state. Every transition is one ledger transaction built from
conditional UPDATEs, so two requests racing on the same order or account
can not both win. Verifier calls, notifications and deferred teardown all
happen outside the transaction.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from escrowbot.config import get_settings
from escrowbot.errors import (
    AccountNotFound,
    DuplicateReceipt,
    Forbidden,
    HasPendingOrders,
    InvalidOrderState,
    NotAvailable,
    NotDeletable,
    OrderNotFound,
    PaymentMismatch,
)
from escrowbot.ledger.database import SessionScope, get_db
from escrowbot.ledger.models import (
    AccountStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    WithdrawalReason,
)
from escrowbot.ledger.repository import LedgerRepository, utcnow
from escrowbot.notifications import TelegramNotifier, get_notifier
from escrowbot.receipts import ReceiptImageStore, StoredImage, get_image_store
from escrowbot.services.scheduler import DeferredTaskScheduler
from escrowbot.verifiers import PaymentVerifier, VerificationResult, get_verifier

logger = logging.getLogger(__name__)


@dataclass
class PurchaseContext:
    """What the buyer is paying for, carried by the caller between steps."""

    buyer_id: int
    account_id: int
    amount: int
    payment_method: PaymentMethod


@dataclass
class PaymentReceipt:
    """Proof of payment: a typed reference number or a screenshot."""

    method: PaymentMethod
    reference: Optional[str] = None
    image: Optional[bytes] = None


def normalize_receiver(name: Optional[str]) -> str:
    return (name or "").strip().upper()


class OrderService:
    """Drives orders through their lifecycle."""

    def __init__(
        self,
        db: SessionScope = get_db,
        scheduler: Optional[DeferredTaskScheduler] = None,
        notifier: Optional[TelegramNotifier] = None,
        verifiers: Optional[Mapping[PaymentMethod, PaymentVerifier]] = None,
        image_store: Optional[ReceiptImageStore] = None,
        escrow_receivers: Optional[list[str]] = None,
        teardown_delay_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.db = db
        self.scheduler = scheduler or DeferredTaskScheduler()
        self.notifier = notifier or get_notifier()
        self._verifiers = dict(verifiers) if verifiers else {}
        self._image_store = image_store
        if escrow_receivers is None:
            escrow_receivers = settings.escrow_receiver_names
        self.escrow_receivers = {normalize_receiver(name) for name in escrow_receivers}
        if teardown_delay_seconds is None:
            teardown_delay_seconds = settings.teardown_delay_seconds
        self.teardown_delay_seconds = teardown_delay_seconds

    def verifier_for(self, method: PaymentMethod | str) -> PaymentVerifier:
        method = PaymentMethod(method)
        return self._verifiers.get(method) or get_verifier(method)

    @property
    def image_store(self) -> ReceiptImageStore:
        if self._image_store is None:
            self._image_store = get_image_store()
        return self._image_store

    # Payment verification
    async def verify_payment(self, receipt: PaymentReceipt, expected_amount: int) -> VerificationResult:
        """Check a receipt against the verifier and the escrow rules.

        The settled amount must be at least ``expected_amount`` and the receiver
        must be one of the escrow identities. Uploaded screenshots are deleted
        whatever the outcome.

        Raises:
            PaymentMismatch: rejected, short, or paid to someone else
            DuplicateReceipt: the verifier has already seen this receipt settled
            VerifierUnavailable: the verifier could not be reached
            ImageStoreUnavailable: the screenshot could not be hosted
        """
        verifier = self.verifier_for(receipt.method)
        image: Optional[StoredImage] = None

        try:
            if verifier.requires_image:
                if not receipt.image:
                    raise PaymentMismatch("A screenshot of the payment receipt is required")
                image = await self.image_store.upload(receipt.image)
                reference = image.url
            else:
                reference = (receipt.reference or "").strip()
                if not reference:
                    raise PaymentMismatch("A payment reference number is required")

            result = await verifier.verify(reference, expected_amount)
        finally:
            if image is not None:
                await self._discard_image(image)

        self._check_result(result, expected_amount, receipt.reference)
        return result

    def _check_result(
        self, result: VerificationResult, expected_amount: int, reference: Optional[str]
    ) -> None:
        if result.already_used:
            raise DuplicateReceipt(result.transaction_id or reference)

        if not result.accepted:
            raise PaymentMismatch(
                result.message or "Payment could not be verified",
                expected_amount=expected_amount,
            )

        if normalize_receiver(result.receiver) not in self.escrow_receivers:
            logger.warning(f"Payment {result.transaction_id} sent to unexpected receiver {result.receiver!r}")
            raise PaymentMismatch(
                "Payment was not sent to the escrow account",
                expected_amount=expected_amount,
                settled_amount=result.settled_amount,
                receiver=result.receiver,
            )

        if result.settled_amount is None or result.settled_amount < expected_amount:
            logger.warning(
                f"Payment {result.transaction_id} short: paid {result.settled_amount}, "
                f"expected {expected_amount}"
            )
            raise PaymentMismatch(
                f"Paid amount {result.settled_amount} is less than the price {expected_amount}",
                expected_amount=expected_amount,
                settled_amount=result.settled_amount,
                receiver=result.receiver,
            )

    async def _discard_image(self, image: StoredImage) -> None:
        try:
            if not await self.image_store.delete(image):
                logger.warning(f"Receipt image {image.public_id} was not deleted")
        except Exception as e:
            logger.error(f"Failed to delete receipt image {image.public_id}: {e}")

    # Order creation
    async def create_order(
        self,
        buyer_id: int,
        account_id: int,
        amount: int,
        receipt_ref: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None,
        paid_amount: Optional[int] = None,
    ) -> Order:
        """Insert a pending order for a reserved account.

        ``paid_amount`` is the settled amount a verifier confirmed. Orders
        opened without one owe the buyer no refund.

        Raises:
            AccountNotFound: no such account
            NotAvailable: the account is not reserved by this buyer
            PaymentMismatch: the amount is below the account price
            DuplicateActiveOrder: the account already has a pending order
            DuplicateReceipt: the receipt was used by another order
        """
        if amount <= 0:
            raise ValueError("Order amount must be positive")

        async with self.db() as session:
            repo = LedgerRepository(session)
            account = await repo.get_account(account_id, for_update=True)
            if account is None:
                raise AccountNotFound(account_id)
            if account.status != AccountStatus.PENDING or account.reserved_by_id != buyer_id:
                raise NotAvailable(account_id, account.status)
            if amount < account.price:
                raise PaymentMismatch(
                    f"Order amount {amount} is less than the price {account.price}",
                    expected_amount=account.price,
                    settled_amount=amount,
                )

            order = await repo.create_order(
                buyer_id=buyer_id,
                account_id=account_id,
                amount=amount,
                receipt_ref=receipt_ref,
                payment_method=payment_method,
                paid_amount=paid_amount,
            )

        logger.info(
            f"Order {order.id} created: buyer={buyer_id} account={account_id} "
            f"amount={amount} receipt={receipt_ref}"
        )
        return order

    async def submit_payment(self, context: PurchaseContext, receipt: PaymentReceipt) -> Order:
        """Verify a payment and open the order for it.

        On a mismatch nothing is written and the reservation stays in place
        until it is cancelled or times out.
        """
        result = await self.verify_payment(receipt, context.amount)
        receipt_ref = result.transaction_id or (receipt.reference or "").strip() or None

        order = await self.create_order(
            buyer_id=context.buyer_id,
            account_id=context.account_id,
            amount=context.amount,
            receipt_ref=receipt_ref,
            payment_method=context.payment_method,
            paid_amount=result.settled_amount,
        )

        await self._record_settlement(self.verifier_for(receipt.method), result)
        await self._notify_order_created(order.id)
        return order

    async def _record_settlement(self, verifier: PaymentVerifier, result: VerificationResult) -> None:
        try:
            if not await verifier.record_settlement(result):
                logger.warning(f"Verifier {verifier.name} did not record settlement {result.transaction_id}")
        except Exception as e:
            logger.error(f"Failed to record settlement {result.transaction_id} with {verifier.name}: {e}")

    async def _notify_order_created(self, order_id: int) -> None:
        order = await self.get_order(order_id)
        if order is None:
            return
        await self.notifier.notify_order_created(
            seller_telegram_id=order.account.owner.telegram_id,
            buyer_telegram_id=order.buyer.telegram_id,
            order_id=order.id,
            account_name=order.account.name,
            amount=order.amount,
            buyer_username=order.buyer.username or None,
        )

    async def get_order(self, order_id: int) -> Optional[Order]:
        """Load an order with its buyer, account and seller."""
        async with self.db() as session:
            repo = LedgerRepository(session)
            return await repo.get_order(order_id, with_relations=True)

    # Transitions
    async def _load_pending(self, repo: LedgerRepository, order_id: int, target: OrderStatus) -> Order:
        order = await repo.get_order(order_id, for_update=True, with_relations=True)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidOrderState(order_id, order.status, target.value)
        return order

    async def complete_order(self, order_id: int) -> Order:
        """Seller handed the account over: close the order and pay the seller.

        Order to completed, account to sold and the seller credited with the
        price in one transaction. The account and its orders are torn down
        after ``teardown_delay_seconds``.
        """
        async with self.db() as session:
            repo = LedgerRepository(session)
            order = await self._load_pending(repo, order_id, OrderStatus.COMPLETED)
            account_id = order.account_id

            if not await repo.set_order_status(
                order_id, OrderStatus.PENDING, OrderStatus.COMPLETED, completed_at=utcnow()
            ):
                raise InvalidOrderState(order_id, "unknown", OrderStatus.COMPLETED.value)

            if not await repo.compare_and_set_account_status(
                account_id, AccountStatus.PENDING, AccountStatus.SOLD
            ):
                account = await repo.get_account(account_id)
                raise NotAvailable(account_id, account.status if account else None)

            account = await repo.get_account(account_id)
            seller_balance = await repo.credit_balance(account.owner_id, account.price)
            order = await repo.get_order(order_id, with_relations=True)

        logger.info(
            f"Order {order_id} completed: account {account_id} sold, seller {account.owner_id} "
            f"credited {account.price} (balance {seller_balance})"
        )

        self.scheduler.schedule(
            self.teardown_delay_seconds, "teardown_sold_account", self.teardown_account, account_id
        )
        await self.notifier.notify_order_completed(order.buyer.telegram_id, account.name)
        return order

    async def teardown_account(self, account_id: int) -> bool:
        """Delete a sold account and its orders. No-op unless the account is sold."""
        async with self.db() as session:
            repo = LedgerRepository(session)
            deleted = await repo.delete_account(account_id, only_status=AccountStatus.SOLD)

        if deleted:
            logger.info(f"Sold account {account_id} and its orders deleted")
        return deleted

    async def purge_sold_accounts(self) -> list[int]:
        """Tear down sold accounts left behind by a restart."""
        async with self.db() as session:
            repo = LedgerRepository(session)
            account_ids = await repo.get_sold_account_ids()

        purged = []
        for account_id in account_ids:
            if await self.teardown_account(account_id):
                purged.append(account_id)
        return purged

    async def cancel_order(self, order_id: int) -> Order:
        """Cancel a pending order: delete it, free the account, refund the buyer.

        Returns:
            Detached snapshot of the order with status ``cancelled``
        """
        async with self.db() as session:
            repo = LedgerRepository(session)
            order = await self._load_pending(repo, order_id, OrderStatus.CANCELLED)

            if not await repo.delete_order(order_id, only_status=OrderStatus.PENDING):
                raise InvalidOrderState(order_id, "unknown", OrderStatus.CANCELLED.value)
            await self._reopen_account(repo, order.account_id)
            refund = await self._queue_refund(repo, order, "cancelled")

            session.expunge(order)
            order.status = OrderStatus.CANCELLED.value

        logger.info(f"Order {order_id} cancelled, refund of {refund} queued for user {order.buyer_id}")
        if refund:
            await self.notifier.notify_order_refunded(
                buyer_telegram_id=order.buyer.telegram_id,
                account_name=order.account.name,
                amount=refund,
                seller_telegram_id=order.account.owner.telegram_id,
            )
        return order

    async def fail_order(self, order_id: int) -> Order:
        """Mark a pending order failed, free the account, refund the buyer."""
        async with self.db() as session:
            repo = LedgerRepository(session)
            order = await self._load_pending(repo, order_id, OrderStatus.FAILED)

            if not await repo.set_order_status(order_id, OrderStatus.PENDING, OrderStatus.FAILED):
                raise InvalidOrderState(order_id, "unknown", OrderStatus.FAILED.value)
            await self._reopen_account(repo, order.account_id)
            refund = await self._queue_refund(repo, order, "failed")
            order = await repo.get_order(order_id, with_relations=True)

        logger.info(f"Order {order_id} failed, refund of {refund} queued for user {order.buyer_id}")
        if refund:
            await self.notifier.notify_order_refunded(
                buyer_telegram_id=order.buyer.telegram_id,
                account_name=order.account.name,
                amount=refund,
            )
        return order

    async def _queue_refund(self, repo: LedgerRepository, order: Order, outcome: str) -> int:
        """Record an order_refund withdrawal for what the buyer actually paid.

        Returns:
            Refunded amount, 0 when no payment was verified for the order
        """
        if not order.paid_amount:
            logger.warning(f"Order {order.id} {outcome} without a verified payment, nothing to refund")
            return 0

        await repo.create_withdrawal(
            user_id=order.buyer_id,
            amount=order.paid_amount,
            reason=WithdrawalReason.ORDER_REFUND,
            order_id=order.id,
            note=f"Refund for {outcome} order {order.id}",
        )
        return order.paid_amount

    async def _reopen_account(self, repo: LedgerRepository, account_id: int) -> None:
        reopened = await repo.compare_and_set_account_status(
            account_id,
            AccountStatus.PENDING,
            AccountStatus.AVAILABLE,
            reserved_by_id=None,
            reserved_at=None,
        )
        if not reopened:
            logger.warning(f"Account {account_id} was not pending while its order was open")
        await repo.get_account(account_id, with_owner=True)

    async def update_status(self, order_id: int, status: OrderStatus | str) -> Order:
        """Apply a requested status to an order."""
        status = OrderStatus(status)
        if status == OrderStatus.COMPLETED:
            return await self.complete_order(order_id)
        if status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id)
        if status == OrderStatus.FAILED:
            return await self.fail_order(order_id)

        order = await self.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        raise InvalidOrderState(order_id, order.status, status.value)

    # Listings
    async def delete_account(self, account_id: int, requester_id: int) -> bool:
        """Delete a listing on the owner's request.

        Raises:
            AccountNotFound: no such account
            Forbidden: requester is not the owner
            NotDeletable: the account is reserved or sold
            HasPendingOrders: a pending order still references it
        """
        async with self.db() as session:
            repo = LedgerRepository(session)
            account = await repo.get_account(account_id, for_update=True)
            if account is None:
                raise AccountNotFound(account_id)
            if account.owner_id != requester_id:
                raise Forbidden()
            if account.status != AccountStatus.AVAILABLE:
                raise NotDeletable(account_id, account.status)

            pending = await repo.count_pending_orders(account_id)
            if pending:
                raise HasPendingOrders(account_id, pending)

            deleted = await repo.delete_account(account_id, only_status=AccountStatus.AVAILABLE)
            if not deleted:
                current = await repo.get_account(account_id)
                raise NotDeletable(account_id, current.status if current else "deleted")

        logger.info(f"Account {account_id} deleted by owner {requester_id}")
        return deleted


