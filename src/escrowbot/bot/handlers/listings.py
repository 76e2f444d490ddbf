"""Seller listings and account deletion."""

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from escrowbot.bot.common import describe_error, ensure_user, parse_id
from escrowbot.bot.keyboards import confirm_delete_keyboard, listing_actions_keyboard
from escrowbot.config import get_settings
from escrowbot.errors import EscrowError
from escrowbot.ledger.database import get_db
from escrowbot.ledger.models import AccountStatus
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.services import get_order_service

router = Router()


@router.message(Command("listings"))
@router.message(F.text == "📋 My Listings")
async def cmd_listings(message: Message) -> None:
    if not message.from_user:
        return

    user = await ensure_user(message.from_user)
    async with get_db() as session:
        repo = LedgerRepository(session)
        accounts = await repo.get_user_accounts(user.id)

    if not accounts:
        await message.answer("You have no listed accounts.")
        return

    currency = get_settings().currency
    for account in accounts:
        text = (
            f"{account.name} ({account.platform})\n"
            f"Price: {account.price} {currency}\n"
            f"Status: {account.status}"
        )
        keyboard = listing_actions_keyboard(account.id) if account.status == AccountStatus.AVAILABLE else None
        await message.answer(text, reply_markup=keyboard)


@router.callback_query(F.data.startswith("delete_account:"))
async def handle_delete_account(callback: CallbackQuery) -> None:
    """Ask for confirmation before deleting a listing."""
    account_id = parse_id(callback.data)
    if account_id is None:
        await callback.answer()
        return

    await callback.message.edit_text(
        "⚠️ Are you sure you want to delete this account from the marketplace?\n\n"
        "This action cannot be undone.",
        reply_markup=confirm_delete_keyboard(account_id),
    )
    await callback.answer()


@router.callback_query(F.data == "cancel_delete")
async def handle_cancel_delete(callback: CallbackQuery) -> None:
    await callback.message.edit_text("❌ Account deletion cancelled.")
    await callback.answer("Deletion cancelled")


@router.callback_query(F.data.startswith("confirm_delete:"))
async def handle_confirm_delete(callback: CallbackQuery) -> None:
    account_id = parse_id(callback.data)
    if account_id is None or not callback.from_user:
        await callback.answer()
        return

    user = await ensure_user(callback.from_user)
    try:
        await get_order_service().delete_account(account_id, user.id)
    except EscrowError as e:
        await callback.answer(describe_error(e), show_alert=True)
        return

    await callback.message.edit_text("✅ Account successfully deleted from the marketplace.")
    await callback.answer("Account deleted")
