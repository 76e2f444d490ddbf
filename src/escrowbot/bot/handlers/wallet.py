"""Balance and payout handlers."""

import logging

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from escrowbot.bot.common import describe_error, ensure_user
from escrowbot.bot.keyboards import balance_keyboard
from escrowbot.config import get_settings
from escrowbot.errors import EscrowError
from escrowbot.services import get_withdrawal_service

logger = logging.getLogger(__name__)

router = Router()


@router.message(Command("balance"))
@router.message(F.text == "💰 Balance")
async def cmd_balance(message: Message) -> None:
    """Show the seller balance with a withdraw button."""
    if not message.from_user:
        return

    user = await ensure_user(message.from_user)
    settings = get_settings()

    text = f"""Your Balance

Balance: {user.balance} {settings.currency}
Minimum withdrawal: {settings.min_withdrawal_amount} {settings.currency}"""

    if not user.has_bank_details:
        text += "\n\nNo payout bank account on file yet. It is saved when you list an account."

    await message.answer(text, reply_markup=balance_keyboard())


@router.callback_query(F.data == "withdraw_balance")
async def handle_withdraw(callback: CallbackQuery) -> None:
    """Withdraw the whole balance to the bank account on file."""
    if not callback.from_user:
        return

    user = await ensure_user(callback.from_user)

    try:
        withdrawal = await get_withdrawal_service().request_payout(user.id)
    except EscrowError as e:
        logger.info(f"Payout refused for user {user.id}: {e.code}")
        await callback.answer()
        await callback.message.answer(f"❌ {describe_error(e)}")
        return

    await callback.answer("Withdrawal requested")
    await callback.message.answer(
        f"✅ Seller payout of {withdrawal.amount} {get_settings().currency} initiated. "
        f"Funds will be processed within 24 hours."
    )
