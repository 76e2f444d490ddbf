"""Escrow integrity tests: concurrent requests must never double-spend."""

import asyncio

import pytest

from escrowbot.errors import EscrowError, InsufficientBalance, InvalidOrderState, NotAvailable
from escrowbot.ledger.models import AccountStatus, OrderStatus


@pytest.mark.asyncio
async def test_concurrent_completes_credit_once(orders, reservations, make_user, make_account, fetch_user):
    """Completing the same order twice at once pays the seller once."""
    seller = await make_user(1001)
    buyer = await make_user(2001)
    account = await make_account(seller, price=500)
    await reservations.reserve(account.id, buyer.id)
    order = await orders.create_order(buyer.id, account.id, 500)

    results = await asyncio.gather(
        orders.complete_order(order.id),
        orders.complete_order(order.id),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert sum(1 for r in results if isinstance(r, InvalidOrderState)) == 1
    assert (await fetch_user(seller.id)).balance == 500


@pytest.mark.asyncio
async def test_concurrent_sales_sum_balance(orders, reservations, make_user, make_account, fetch_user):
    """Two sales by one seller completing together both land in the balance."""
    seller = await make_user(1001)
    buyer1 = await make_user(2001)
    buyer2 = await make_user(2002)
    account1 = await make_account(seller, price=500, name="First")
    account2 = await make_account(seller, price=700, name="Second")
    await reservations.reserve(account1.id, buyer1.id)
    await reservations.reserve(account2.id, buyer2.id)
    order1 = await orders.create_order(buyer1.id, account1.id, 500)
    order2 = await orders.create_order(buyer2.id, account2.id, 700)

    await asyncio.gather(orders.complete_order(order1.id), orders.complete_order(order2.id))

    assert (await fetch_user(seller.id)).balance == 1200


@pytest.mark.asyncio
async def test_cancel_races_complete(
    orders, reservations, withdrawals, make_user, make_account, fetch_user, fetch_account
):
    """Either the seller is paid or the buyer is refunded, never both."""
    seller = await make_user(1001)
    buyer = await make_user(2001)
    account = await make_account(seller, price=500)
    await reservations.reserve(account.id, buyer.id)
    order = await orders.create_order(buyer.id, account.id, 500, paid_amount=500)

    results = await asyncio.gather(
        orders.complete_order(order.id),
        orders.cancel_order(order.id),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(r, EscrowError) for r in results if isinstance(r, Exception))

    balance = (await fetch_user(seller.id)).balance
    refunds = await withdrawals.get_user_withdrawals(buyer.id)
    if winners[0].status == OrderStatus.COMPLETED:
        assert balance == 500
        assert refunds == []
        assert (await fetch_account(account.id)).status == AccountStatus.SOLD
    else:
        assert balance == 0
        assert len(refunds) == 1
        assert (await fetch_account(account.id)).status == AccountStatus.AVAILABLE


@pytest.mark.asyncio
async def test_expiry_races_order(orders, reservations, make_user, make_account, fetch_account):
    """A reservation timer firing while the order is created leaves a consistent state."""
    seller = await make_user(1001)
    buyer = await make_user(2001)
    account = await make_account(seller, price=500)
    await reservations.reserve(account.id, buyer.id)

    released, created = await asyncio.gather(
        reservations.expire_reservation(account.id),
        orders.create_order(buyer.id, account.id, 500),
        return_exceptions=True,
    )

    account = await fetch_account(account.id)
    if isinstance(created, NotAvailable):
        # Timer won: no order, account back on sale
        assert released is True
        assert account.status == AccountStatus.AVAILABLE
    else:
        # Order won: the timer found it and kept the reservation
        assert released is False
        assert created.status == OrderStatus.PENDING
        assert account.status == AccountStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_payouts_single_debit(withdrawals, make_user, fetch_user):
    """Two whole-balance payouts at once produce one withdrawal and no negative balance."""
    seller = await make_user(1001, balance=500, bank_details=True)

    results = await asyncio.gather(
        withdrawals.request_payout(seller.id),
        withdrawals.request_payout(seller.id),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert sum(1 for r in results if isinstance(r, InsufficientBalance)) == 1
    assert (await fetch_user(seller.id)).balance == 0
    assert len(await withdrawals.get_user_withdrawals(seller.id)) == 1
