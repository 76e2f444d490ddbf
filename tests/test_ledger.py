"""Tests for the ledger repository."""

from datetime import timedelta

import pytest

from escrowbot.errors import DuplicateActiveOrder, DuplicateReceipt, InsufficientBalance
from escrowbot.ledger.models import (
    AccountStatus,
    OrderStatus,
    PaymentMethod,
    Platform,
    WithdrawalReason,
    WithdrawalStatus,
)
from escrowbot.ledger.repository import LedgerRepository, utcnow


async def _seller_and_account(repo: LedgerRepository, price: int = 500, name: str = "Tech Channel"):
    seller = await repo.get_or_create_user(1001, "seller")
    account = await repo.create_account(
        owner_id=seller.id,
        platform=Platform.YOUTUBE_CHANNEL,
        name=name,
        url="https://youtube.com/@tech",
        price=price,
        subscriber_count=5000,
    )
    return seller, account


class TestUsers:
    """Tests for user operations."""

    @pytest.mark.asyncio
    async def test_get_or_create_user(self, ledger_repo: LedgerRepository):
        """Test creating a new user."""
        user = await ledger_repo.get_or_create_user(12345, "testuser")

        assert user.id is not None
        assert user.telegram_id == 12345
        assert user.username == "testuser"
        assert user.balance == 0
        assert user.last_visit is not None

    @pytest.mark.asyncio
    async def test_get_existing_user(self, ledger_repo: LedgerRepository):
        """Test getting an existing user refreshes the username."""
        user1 = await ledger_repo.get_or_create_user(12345, "testuser")
        user2 = await ledger_repo.get_or_create_user(12345, "renamed")

        assert user1.id == user2.id
        assert user2.username == "renamed"

    @pytest.mark.asyncio
    async def test_bank_details(self, ledger_repo: LedgerRepository):
        """Test storing payout bank details."""
        user = await ledger_repo.get_or_create_user(12345, "testuser")
        assert user.has_bank_details is False

        updated = await ledger_repo.update_bank_details(user.id, "Abebe Kebede", "CBE", "1000123")

        assert updated.has_bank_details is True
        assert updated.account_number == "1000123"

    @pytest.mark.asyncio
    async def test_bank_details_unknown_user(self, ledger_repo: LedgerRepository):
        assert await ledger_repo.update_bank_details(999, "A", "B", "C") is None


class TestBalances:
    """Tests for balance operations."""

    @pytest.mark.asyncio
    async def test_credit_balance(self, ledger_repo: LedgerRepository):
        """Test crediting a balance."""
        user = await ledger_repo.get_or_create_user(12345, "testuser")

        assert await ledger_repo.credit_balance(user.id, 500) == 500
        assert await ledger_repo.credit_balance(user.id, 250) == 750

        refreshed = await ledger_repo.get_user(user.id)
        assert refreshed.balance == 750

    @pytest.mark.asyncio
    async def test_debit_balance(self, ledger_repo: LedgerRepository):
        user = await ledger_repo.get_or_create_user(12345, "testuser")
        await ledger_repo.credit_balance(user.id, 500)

        assert await ledger_repo.debit_balance(user.id, 200) == 300

    @pytest.mark.asyncio
    async def test_debit_more_than_balance(self, ledger_repo: LedgerRepository):
        """Test that a balance can never go negative."""
        user = await ledger_repo.get_or_create_user(12345, "testuser")
        await ledger_repo.credit_balance(user.id, 100)

        with pytest.raises(InsufficientBalance) as exc_info:
            await ledger_repo.debit_balance(user.id, 150)

        assert exc_info.value.balance == 100
        assert (await ledger_repo.get_user(user.id)).balance == 100

    @pytest.mark.asyncio
    async def test_credit_unknown_user(self, ledger_repo: LedgerRepository):
        with pytest.raises(ValueError):
            await ledger_repo.credit_balance(999, 100)


class TestAccounts:
    """Tests for listing and reservation operations."""

    @pytest.mark.asyncio
    async def test_create_account(self, ledger_repo: LedgerRepository):
        """Test listing an account."""
        seller, account = await _seller_and_account(ledger_repo)

        assert account.owner_id == seller.id
        assert account.status == AccountStatus.AVAILABLE
        assert account.platform == Platform.YOUTUBE_CHANNEL
        assert account.reserved_by_id is None
        assert account.created_at is not None

    @pytest.mark.asyncio
    async def test_create_account_requires_positive_price(self, ledger_repo: LedgerRepository):
        seller = await ledger_repo.get_or_create_user(1001, "seller")

        with pytest.raises(ValueError):
            await ledger_repo.create_account(
                owner_id=seller.id,
                platform=Platform.TIKTOK_ACCOUNT,
                name="Free",
                url="@free",
                price=0,
            )

    @pytest.mark.asyncio
    async def test_reserve_is_compare_and_set(self, ledger_repo: LedgerRepository):
        """Test that only the first reservation wins."""
        _, account = await _seller_and_account(ledger_repo)
        buyer1 = await ledger_repo.get_or_create_user(2001, "buyer1")
        buyer2 = await ledger_repo.get_or_create_user(2002, "buyer2")

        assert await ledger_repo.reserve_account(account.id, buyer1.id) is True
        assert await ledger_repo.reserve_account(account.id, buyer2.id) is False

        account = await ledger_repo.get_account(account.id)
        assert account.status == AccountStatus.PENDING
        assert account.reserved_by_id == buyer1.id
        assert account.reserved_at is not None

    @pytest.mark.asyncio
    async def test_release_reservation(self, ledger_repo: LedgerRepository):
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        await ledger_repo.reserve_account(account.id, buyer.id)

        assert await ledger_repo.release_reservation(account.id, reserved_by_id=buyer.id + 1) is False
        assert await ledger_repo.release_reservation(account.id, reserved_by_id=buyer.id) is True

        account = await ledger_repo.get_account(account.id)
        assert account.status == AccountStatus.AVAILABLE
        assert account.reserved_by_id is None
        assert account.reserved_at is None

    @pytest.mark.asyncio
    async def test_release_blocked_by_pending_order(self, ledger_repo: LedgerRepository):
        """Test that a reservation with a pending order is never released."""
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        await ledger_repo.reserve_account(account.id, buyer.id)
        await ledger_repo.create_order(buyer.id, account.id, 500, receipt_ref="FT001")

        assert await ledger_repo.release_reservation(account.id) is False
        assert (await ledger_repo.get_account(account.id)).status == AccountStatus.PENDING

    @pytest.mark.asyncio
    async def test_release_not_blocked_by_failed_order(self, ledger_repo: LedgerRepository):
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        await ledger_repo.reserve_account(account.id, buyer.id)
        order = await ledger_repo.create_order(buyer.id, account.id, 500, receipt_ref="FT001")
        await ledger_repo.set_order_status(order.id, OrderStatus.PENDING, OrderStatus.FAILED)

        assert await ledger_repo.release_reservation(account.id) is True

    @pytest.mark.asyncio
    async def test_get_expired_reservations(self, ledger_repo: LedgerRepository):
        _, stale = await _seller_and_account(ledger_repo, name="Stale")
        _, ordered = await _seller_and_account(ledger_repo, name="Ordered")
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        await ledger_repo.reserve_account(stale.id, buyer.id)
        await ledger_repo.reserve_account(ordered.id, buyer.id)
        await ledger_repo.create_order(buyer.id, ordered.id, 500)

        assert await ledger_repo.get_expired_reservations(utcnow() - timedelta(minutes=10)) == []
        assert await ledger_repo.get_expired_reservations(utcnow() + timedelta(minutes=10)) == [stale.id]

    @pytest.mark.asyncio
    async def test_search_accounts(self, ledger_repo: LedgerRepository):
        """Test search filters and the total count."""
        seller = await ledger_repo.get_or_create_user(1001, "seller")
        await ledger_repo.create_account(
            owner_id=seller.id, platform=Platform.YOUTUBE_CHANNEL, name="Cooking Daily",
            url="https://youtube.com/@cook", price=500, subscriber_count=12000, is_monetized=True,
        )
        await ledger_repo.create_account(
            owner_id=seller.id, platform=Platform.TELEGRAM_CHANNEL, name="Crypto News",
            url="t.me/cryptonews", price=900, subscriber_count=3000, is_monetized=False,
        )
        await ledger_repo.create_account(
            owner_id=seller.id, platform=Platform.YOUTUBE_CHANNEL, name="Gaming Clips",
            url="https://youtube.com/@gaming", price=300, subscriber_count=800,
        )

        accounts, total = await ledger_repo.search_accounts(platform="youtube_channel")
        assert total == 2
        assert {a.name for a in accounts} == {"Cooking Daily", "Gaming Clips"}

        accounts, total = await ledger_repo.search_accounts(query="crypto")
        assert total == 1
        assert accounts[0].name == "Crypto News"

        accounts, total = await ledger_repo.search_accounts(min_subscribers=1000, max_subscribers=5000)
        assert [a.name for a in accounts] == ["Crypto News"]

        accounts, total = await ledger_repo.search_accounts(is_monetized=True)
        assert [a.name for a in accounts] == ["Cooking Daily"]

    @pytest.mark.asyncio
    async def test_list_accounts_newest_first(self, ledger_repo: LedgerRepository):
        seller = await ledger_repo.get_or_create_user(1001, "seller")
        for i in range(8):
            await ledger_repo.create_account(
                owner_id=seller.id, platform=Platform.TIKTOK_ACCOUNT, name=f"Account {i}",
                url=f"@account{i}", price=100 + i,
            )

        page1, total = await ledger_repo.list_accounts(limit=6, offset=0)
        page2, _ = await ledger_repo.list_accounts(limit=6, offset=6)

        assert total == 8
        assert len(page1) == 6
        assert [a.name for a in page2] == ["Account 1", "Account 0"]

    @pytest.mark.asyncio
    async def test_delete_account_removes_orders(self, ledger_repo: LedgerRepository):
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        await ledger_repo.reserve_account(account.id, buyer.id)
        order = await ledger_repo.create_order(buyer.id, account.id, 500)

        assert await ledger_repo.delete_account(account.id, only_status=AccountStatus.SOLD) is False
        assert await ledger_repo.delete_account(account.id, only_status=AccountStatus.PENDING) is True

        assert await ledger_repo.get_account(account.id) is None
        assert await ledger_repo.get_order(order.id) is None


class TestOrders:
    """Tests for order operations."""

    @pytest.mark.asyncio
    async def test_create_order(self, ledger_repo: LedgerRepository):
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")

        order = await ledger_repo.create_order(
            buyer.id, account.id, 500, receipt_ref="FT001", payment_method=PaymentMethod.TELEBIRR
        )

        assert order.status == OrderStatus.PENDING
        assert order.payment_method == PaymentMethod.TELEBIRR
        assert order.completed_at is None
        assert (await ledger_repo.get_active_order(account.id, buyer_id=buyer.id)).id == order.id
        assert await ledger_repo.get_active_order(account.id, buyer_id=buyer.id + 1) is None

    @pytest.mark.asyncio
    async def test_one_pending_order_per_account(self, ledger_repo: LedgerRepository):
        """Test that a second pending order for an account is rejected."""
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        first = await ledger_repo.create_order(buyer.id, account.id, 500, receipt_ref="FT001")

        with pytest.raises(DuplicateActiveOrder) as exc_info:
            await ledger_repo.create_order(buyer.id, account.id, 500, receipt_ref="FT002")

        assert exc_info.value.order_id == first.id
        assert await ledger_repo.count_pending_orders(account.id) == 1

    @pytest.mark.asyncio
    async def test_new_order_after_failure(self, ledger_repo: LedgerRepository):
        """Test that terminal orders do not block a new pending order."""
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        first = await ledger_repo.create_order(buyer.id, account.id, 500, receipt_ref="FT001")
        await ledger_repo.set_order_status(first.id, OrderStatus.PENDING, OrderStatus.FAILED)

        second = await ledger_repo.create_order(buyer.id, account.id, 500, receipt_ref="FT002")

        assert second.id != first.id
        assert len(await ledger_repo.get_account_orders(account.id)) == 2

    @pytest.mark.asyncio
    async def test_receipt_used_once(self, ledger_repo: LedgerRepository):
        """Test that one receipt can back only one order."""
        _, account1 = await _seller_and_account(ledger_repo, name="First")
        _, account2 = await _seller_and_account(ledger_repo, name="Second")
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        await ledger_repo.create_order(buyer.id, account1.id, 500, receipt_ref="FT001")

        with pytest.raises(DuplicateReceipt):
            await ledger_repo.create_order(buyer.id, account2.id, 500, receipt_ref="FT001")

        assert await ledger_repo.count_pending_orders(account2.id) == 0

    @pytest.mark.asyncio
    async def test_set_order_status_compare_and_set(self, ledger_repo: LedgerRepository):
        _, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        order = await ledger_repo.create_order(buyer.id, account.id, 500)

        assert await ledger_repo.set_order_status(
            order.id, OrderStatus.PENDING, OrderStatus.COMPLETED, completed_at=utcnow()
        ) is True
        assert await ledger_repo.set_order_status(
            order.id, OrderStatus.PENDING, OrderStatus.CANCELLED
        ) is False

        order = await ledger_repo.get_order(order.id)
        assert order.status == OrderStatus.COMPLETED
        assert order.completed_at is not None

    @pytest.mark.asyncio
    async def test_purchases_and_sales(self, ledger_repo: LedgerRepository):
        seller, account = await _seller_and_account(ledger_repo)
        buyer = await ledger_repo.get_or_create_user(2001, "buyer")
        order = await ledger_repo.create_order(buyer.id, account.id, 500)

        purchases = await ledger_repo.get_user_purchases(buyer.id)
        sales = await ledger_repo.get_user_sales(seller.id)

        assert [o.id for o in purchases] == [order.id]
        assert [o.id for o in sales] == [order.id]
        assert sales[0].buyer.username == "buyer"
        assert purchases[0].account.owner.id == seller.id
        assert await ledger_repo.get_user_sales(buyer.id) == []


class TestWithdrawals:
    """Tests for withdrawal records."""

    @pytest.mark.asyncio
    async def test_create_and_settle(self, ledger_repo: LedgerRepository):
        user = await ledger_repo.get_or_create_user(2001, "buyer")

        withdrawal = await ledger_repo.create_withdrawal(
            user.id, 500, WithdrawalReason.ORDER_REFUND, order_id=7, note="Refund"
        )
        assert withdrawal.status == WithdrawalStatus.PENDING
        assert withdrawal.order_id == 7

        assert await ledger_repo.set_withdrawal_status(
            withdrawal.id, WithdrawalStatus.PENDING, WithdrawalStatus.COMPLETED
        ) is True
        assert await ledger_repo.set_withdrawal_status(
            withdrawal.id, WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED
        ) is False

        assert (await ledger_repo.get_withdrawal(withdrawal.id)).status == WithdrawalStatus.COMPLETED
        assert [w.id for w in await ledger_repo.get_user_withdrawals(user.id)] == [withdrawal.id]
