"""Repository for ledger operations.

Status changes are conditional UPDATEs (compare-and-set on the persisted
status column) and balance changes are SQL increments, so correctness never
depends on what a caller read earlier in the request.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from escrowbot.errors import DuplicateActiveOrder, DuplicateReceipt, InsufficientBalance
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


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _no_pending_order():
    """Correlated ``NOT EXISTS`` for a pending order on the outer Account row."""
    return ~exists().where(
        Order.account_id == Account.id,
        Order.status == OrderStatus.PENDING.value,
    )


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def _supports_row_locks(self) -> bool:
        # SQLite serializes whole transactions instead (BEGIN IMMEDIATE)
        bind = self.session.bind
        return bind is not None and bind.dialect.name == "postgresql"

    # User operations
    async def get_or_create_user(
        self,
        telegram_id: int,
        username: Optional[str] = None,
    ) -> User:
        """Get existing user or create a new one, refreshing last_visit."""
        user = await self.get_user_by_telegram_id(telegram_id)

        if user is None:
            user = User(telegram_id=telegram_id, username=username or "", last_visit=utcnow())
            try:
                async with self.session.begin_nested():
                    self.session.add(user)
                    await self.session.flush()
            except IntegrityError:
                # Registered concurrently by another request
                user = await self.get_user_by_telegram_id(telegram_id)
                if user is None:
                    raise
        else:
            user.last_visit = utcnow()
            if username and user.username != username:
                user.username = username
            await self.session.flush()

        return user

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get user by internal ID, always re-reading the row."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get user by Telegram ID."""
        stmt = select(User).where(User.telegram_id == telegram_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_bank_details(
        self,
        user_id: int,
        account_holder_name: str,
        bank_name: str,
        account_number: str,
    ) -> Optional[User]:
        """Store payout bank details for a user."""
        user = await self.get_user(user_id)
        if user is None:
            return None
        user.account_holder_name = account_holder_name
        user.bank_name = bank_name
        user.account_number = account_number
        await self.session.flush()
        return user

    # Balance operations
    async def credit_balance(self, user_id: int, amount: int) -> int:
        """Add amount to user balance and return the new balance.

        A single ``balance = balance + :amount`` statement: the database holds
        the row lock until commit, so overlapping credits never lose updates.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise ValueError(f"User {user_id} not found")
        return await self._read_balance(user_id)

    async def debit_balance(self, user_id: int, amount: int) -> int:
        """Subtract amount from user balance. Raises InsufficientBalance if short."""
        stmt = (
            update(User)
            .where(User.id == user_id, User.balance >= amount)
            .values(balance=User.balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            balance = await self._read_balance(user_id)
            raise InsufficientBalance(balance, amount)
        return await self._read_balance(user_id)

    async def _read_balance(self, user_id: int) -> int:
        result = await self.session.execute(select(User.balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise ValueError(f"User {user_id} not found")
        return balance

    # Account operations
    async def create_account(
        self,
        owner_id: int,
        platform: Platform,
        name: str,
        url: str,
        price: int,
        subscriber_count: int = 0,
        creation_year: Optional[int] = None,
        is_monetized: Optional[bool] = None,
    ) -> Account:
        """List a new account for sale."""
        if price <= 0:
            raise ValueError("Price must be positive")

        account = Account(
            owner_id=owner_id,
            platform=Platform(platform).value,
            name=name,
            url=url,
            price=price,
            subscriber_count=subscriber_count,
            creation_year=creation_year,
            is_monetized=is_monetized,
            status=AccountStatus.AVAILABLE.value,
        )
        self.session.add(account)
        await self.session.flush()
        return account

    async def get_account(
        self, account_id: int, for_update: bool = False, with_owner: bool = False
    ) -> Optional[Account]:
        """Get an account, always re-reading the row."""
        stmt = (
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        if with_owner:
            stmt = stmt.options(selectinload(Account.owner))
        if for_update and self._supports_row_locks:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_accounts(self, limit: int = 6, offset: int = 0) -> tuple[list[Account], int]:
        """Page through accounts, newest first."""
        return await self.search_accounts(limit=limit, offset=offset)

    async def get_user_accounts(self, owner_id: int) -> list[Account]:
        """Listings owned by a seller, newest first."""
        stmt = (
            select(Account)
            .where(Account.owner_id == owner_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def search_accounts(
        self,
        query: Optional[str] = None,
        platform: Optional[str] = None,
        min_subscribers: Optional[int] = None,
        max_subscribers: Optional[int] = None,
        is_monetized: Optional[bool] = None,
        limit: int = 6,
        offset: int = 0,
    ) -> tuple[list[Account], int]:
        """Filter accounts and return one page plus the total match count."""
        conditions = []
        if query:
            conditions.append(Account.name.ilike(f"%{query}%"))
        if platform:
            conditions.append(Account.platform == platform.lower())
        if min_subscribers is not None:
            conditions.append(Account.subscriber_count >= min_subscribers)
        if max_subscribers is not None:
            conditions.append(Account.subscriber_count <= max_subscribers)
        if is_monetized is not None:
            conditions.append(Account.is_monetized == is_monetized)

        count_stmt = select(func.count()).select_from(Account).where(*conditions)
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(Account)
            .where(*conditions)
            .order_by(Account.created_at.desc(), Account.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def compare_and_set_account_status(
        self,
        account_id: int,
        expected: AccountStatus,
        new: AccountStatus,
        **values,
    ) -> bool:
        """Atomically move an account from ``expected`` to ``new``.

        Returns False when the persisted status was not ``expected``.
        """
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.status == expected.value)
            .values(status=new.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def reserve_account(self, account_id: int, buyer_id: int) -> bool:
        """Claim an available account for a buyer."""
        return await self.compare_and_set_account_status(
            account_id,
            AccountStatus.AVAILABLE,
            AccountStatus.PENDING,
            reserved_by_id=buyer_id,
            reserved_at=utcnow(),
        )

    async def release_reservation(
        self,
        account_id: int,
        reserved_by_id: Optional[int] = None,
        reserved_before: Optional[datetime] = None,
        reserved_at: Optional[datetime] = None,
    ) -> bool:
        """Return a pending account to available if no pending order references it.

        The "no pending order" check is part of the same UPDATE, so a reservation that
        was consumed concurrently is never released. ``reserved_by_id`` and
        ``reserved_before`` narrow the release to one holder or to stale
        reservations; ``reserved_at`` pins it to one particular reservation.
        """
        conditions = [
            Account.id == account_id,
            Account.status == AccountStatus.PENDING.value,
            _no_pending_order(),
        ]
        if reserved_by_id is not None:
            conditions.append(Account.reserved_by_id == reserved_by_id)
        if reserved_before is not None:
            conditions.append(Account.reserved_at < reserved_before)
        if reserved_at is not None:
            conditions.append(Account.reserved_at == reserved_at)

        stmt = (
            update(Account)
            .where(*conditions)
            .values(
                status=AccountStatus.AVAILABLE.value,
                reserved_by_id=None,
                reserved_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_expired_reservations(self, cutoff: datetime) -> list[int]:
        """IDs of pending accounts reserved before ``cutoff`` that have no pending order."""
        stmt = select(Account.id).where(
            Account.status == AccountStatus.PENDING.value,
            Account.reserved_at < cutoff,
            _no_pending_order(),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_sold_account_ids(self) -> list[int]:
        """IDs of sold accounts still waiting for teardown."""
        stmt = select(Account.id).where(Account.status == AccountStatus.SOLD.value)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_account(self, account_id: int, only_status: Optional[AccountStatus] = None) -> bool:
        """Hard-delete an account and its orders.

        With ``only_status`` the delete only happens if the account still has
        that status.
        """
        account_stmt = delete(Account).where(Account.id == account_id)
        if only_status is not None:
            account_stmt = account_stmt.where(Account.status == only_status.value)
            current = await self.session.execute(
                select(Account.status).where(Account.id == account_id)
            )
            if current.scalar_one_or_none() != only_status.value:
                return False

        await self.session.execute(
            delete(Order)
            .where(Order.account_id == account_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            account_stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Order operations
    async def get_order(
        self, order_id: int, for_update: bool = False, with_relations: bool = False
    ) -> Optional[Order]:
        """Get an order, always re-reading the row."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if with_relations:
            stmt = stmt.options(
                selectinload(Order.buyer),
                selectinload(Order.account).selectinload(Account.owner),
            )
        if for_update and self._supports_row_locks:
            stmt = stmt.with_for_update(of=Order)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_order(self, account_id: int, buyer_id: Optional[int] = None) -> Optional[Order]:
        """Get the pending order for an account, optionally for one buyer."""
        stmt = select(Order).where(
            Order.account_id == account_id,
            Order.status == OrderStatus.PENDING.value,
        )
        if buyer_id is not None:
            stmt = stmt.where(Order.buyer_id == buyer_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order_by_receipt(self, receipt_ref: str) -> Optional[Order]:
        stmt = select(Order).where(Order.receipt_ref == receipt_ref)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_order(
        self,
        buyer_id: int,
        account_id: int,
        amount: int,
        receipt_ref: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None,
        paid_amount: Optional[int] = None,
    ) -> Order:
        """Insert a pending order.

        The store's unique constraints decide races: a second pending order
        for the account raises DuplicateActiveOrder, a reused receipt raises
        DuplicateReceipt.
        """
        existing = await self.get_active_order(account_id)
        if existing is not None:
            raise DuplicateActiveOrder(account_id, existing.id)
        if receipt_ref and await self.get_order_by_receipt(receipt_ref) is not None:
            raise DuplicateReceipt(receipt_ref)

        order = Order(
            buyer_id=buyer_id,
            account_id=account_id,
            amount=amount,
            status=OrderStatus.PENDING.value,
            paid_amount=paid_amount,
            receipt_ref=receipt_ref,
            payment_method=PaymentMethod(payment_method).value if payment_method else None,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(order)
                await self.session.flush()
        except IntegrityError:
            if receipt_ref and await self.get_order_by_receipt(receipt_ref) is not None:
                raise DuplicateReceipt(receipt_ref)
            raise DuplicateActiveOrder(account_id)
        return order

    async def set_order_status(
        self, order_id: int, expected: OrderStatus, new: OrderStatus, **values
    ) -> bool:
        """Atomically move an order from ``expected`` to ``new``."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == expected.value)
            .values(status=new.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delete_order(self, order_id: int, only_status: Optional[OrderStatus] = None) -> bool:
        stmt = delete(Order).where(Order.id == order_id)
        if only_status is not None:
            stmt = stmt.where(Order.status == only_status.value)
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount == 1

    async def count_pending_orders(self, account_id: int) -> int:
        stmt = select(func.count()).select_from(Order).where(
            Order.account_id == account_id,
            Order.status == OrderStatus.PENDING.value,
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def get_account_orders(self, account_id: int) -> list[Order]:
        stmt = select(Order).where(Order.account_id == account_id).order_by(Order.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_user_purchases(self, user_id: int) -> list[Order]:
        """Orders placed by a buyer, with account and seller loaded."""
        stmt = (
            select(Order)
            .where(Order.buyer_id == user_id)
            .options(
                selectinload(Order.buyer),
                selectinload(Order.account).selectinload(Account.owner),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_user_sales(self, user_id: int) -> list[Order]:
        """Orders on accounts owned by a seller, with buyer and account loaded."""
        stmt = (
            select(Order)
            .join(Account, Order.account_id == Account.id)
            .where(Account.owner_id == user_id)
            .options(
                selectinload(Order.buyer),
                selectinload(Order.account).selectinload(Account.owner),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Withdrawal operations
    async def create_withdrawal(
        self,
        user_id: int,
        amount: int,
        reason: WithdrawalReason,
        order_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Withdrawal:
        """Record a payout obligation."""
        withdrawal = Withdrawal(
            user_id=user_id,
            amount=amount,
            reason=WithdrawalReason(reason).value,
            status=WithdrawalStatus.PENDING.value,
            order_id=order_id,
            note=note,
        )
        self.session.add(withdrawal)
        await self.session.flush()
        return withdrawal

    async def get_withdrawal(self, withdrawal_id: int) -> Optional[Withdrawal]:
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_withdrawals(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> list[Withdrawal]:
        """Get withdrawal history for a user."""
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.user_id == user_id)
            .order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_withdrawal_status(
        self, withdrawal_id: int, expected: WithdrawalStatus, new: WithdrawalStatus
    ) -> bool:
        stmt = (
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == expected.value)
            .values(status=new.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
