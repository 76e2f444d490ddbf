"""Purchase and sale listings, cancellation and the transfer hand-off."""

import logging

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from escrowbot.bot.common import describe_error, ensure_user, parse_id
from escrowbot.bot.keyboards import (
    purchase_actions_keyboard,
    sale_actions_keyboard,
    transfer_complete_keyboard,
)
from escrowbot.config import get_settings
from escrowbot.errors import EscrowError
from escrowbot.ledger.database import get_db
from escrowbot.ledger.models import OrderStatus
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.services import get_order_service

logger = logging.getLogger(__name__)

router = Router()

STATUS_LABELS = {
    OrderStatus.PENDING.value: "⏳ Pending",
    OrderStatus.COMPLETED.value: "✅ Completed",
    OrderStatus.CANCELLED.value: "❌ Cancelled",
    OrderStatus.FAILED.value: "⚠️ Failed",
}


@router.message(Command("purchases"))
@router.message(F.text == "🧾 My Purchases")
async def cmd_purchases(message: Message) -> None:
    if not message.from_user:
        return

    user = await ensure_user(message.from_user)
    async with get_db() as session:
        repo = LedgerRepository(session)
        orders = await repo.get_user_purchases(user.id)

    if not orders:
        await message.answer("You have no purchases yet.")
        return

    currency = get_settings().currency
    for order in orders:
        text = (
            f"Order #{order.id}: {order.account.name}\n"
            f"Amount: {order.amount} {currency}\n"
            f"Seller: @{order.account.owner.username or 'unknown'}\n"
            f"Status: {STATUS_LABELS.get(order.status, order.status)}"
        )
        keyboard = purchase_actions_keyboard(order.id) if order.status == OrderStatus.PENDING else None
        await message.answer(text, reply_markup=keyboard)


@router.message(Command("sales"))
@router.message(F.text == "📦 My Sales")
async def cmd_sales(message: Message) -> None:
    if not message.from_user:
        return

    user = await ensure_user(message.from_user)
    async with get_db() as session:
        repo = LedgerRepository(session)
        orders = await repo.get_user_sales(user.id)

    if not orders:
        await message.answer("You have no sales yet.")
        return

    currency = get_settings().currency
    for order in orders:
        text = (
            f"Order #{order.id}: {order.account.name}\n"
            f"Amount: {order.amount} {currency}\n"
            f"Buyer: @{order.buyer.username or 'unknown'}\n"
            f"Status: {STATUS_LABELS.get(order.status, order.status)}"
        )
        keyboard = sale_actions_keyboard(order.id) if order.status == OrderStatus.PENDING else None
        await message.answer(text, reply_markup=keyboard)


@router.callback_query(F.data.startswith("cancel_order:"))
async def handle_cancel_order(callback: CallbackQuery) -> None:
    """Buyer cancels a pending order; a refund is queued."""
    order_id = parse_id(callback.data)
    if order_id is None or not callback.from_user:
        await callback.answer()
        return

    user = await ensure_user(callback.from_user)
    service = get_order_service()
    order = await service.get_order(order_id)
    if order is None or order.buyer_id != user.id:
        await callback.answer("Order not found.", show_alert=True)
        return

    try:
        await service.cancel_order(order_id)
    except EscrowError as e:
        await callback.answer(describe_error(e), show_alert=True)
        return

    await callback.answer("Order cancelled")
    await callback.message.edit_text(
        f"✅ Order #{order_id} cancelled. A refund will be sent within 24 hours up to 7 days."
    )


@router.callback_query(F.data.startswith("initiate_transfer:"))
async def handle_initiate_transfer(callback: CallbackQuery) -> None:
    """Show the seller the hand-off guidelines."""
    order_id = parse_id(callback.data)
    if order_id is None or not callback.from_user:
        await callback.answer()
        return

    order = await get_order_service().get_order(order_id)
    if order is None or order.account.owner.telegram_id != callback.from_user.id:
        await callback.answer("Order not found.", show_alert=True)
        return

    text = f"""⚠️ Account Transfer Guidelines

You are about to transfer "{order.account.name}" to the buyer (@{order.buyer.username or 'unknown'}).

1. Contact the buyer directly through Telegram to coordinate the transfer.
2. Securely provide the account credentials to the buyer.
3. Make sure the buyer confirms full access to the account.
4. Then press "Transfer Complete" below.

This action is final: it completes the order and credits your balance."""

    await callback.message.edit_text(text, reply_markup=transfer_complete_keyboard(order_id))
    await callback.answer()


@router.callback_query(F.data.startswith("transfer_complete:"))
async def handle_transfer_complete(callback: CallbackQuery) -> None:
    order_id = parse_id(callback.data)
    if order_id is None or not callback.from_user:
        await callback.answer()
        return

    service = get_order_service()
    order = await service.get_order(order_id)
    if order is None or order.account.owner.telegram_id != callback.from_user.id:
        await callback.answer("Order not found.", show_alert=True)
        return

    try:
        await service.complete_order(order_id)
    except EscrowError as e:
        await callback.answer(describe_error(e), show_alert=True)
        return

    await callback.answer("Transfer complete")
    await callback.message.edit_text(
        "🎉 Transfer Complete! Your balance has been credited. Thank you for your business."
    )
