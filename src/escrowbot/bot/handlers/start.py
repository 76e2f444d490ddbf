"""Start and basic command handlers."""

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from escrowbot.bot.common import ensure_user
from escrowbot.bot.keyboards import main_menu_keyboard
from escrowbot.config import get_settings

router = Router()


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    """Handle /start command - register user and show welcome."""
    if not message.from_user:
        return

    await ensure_user(message.from_user)

    first_name = message.from_user.first_name or "there"
    welcome_text = f"""Welcome to the Account Trading Bot, {first_name}!

Buy and sell YouTube channels, Telegram groups and channels, and TikTok
accounts. Payments are held in escrow until the seller hands the account over.

Use the menu below or type /help for commands."""

    await message.answer(welcome_text, reply_markup=main_menu_keyboard(get_settings().mini_app_url))


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    """Handle /help command."""
    help_text = """Account Trading Bot Commands

  /balance    - View your balance and withdraw
  /purchases  - Accounts you bought
  /sales      - Orders on your accounts
  /listings   - Your listed accounts
  /about      - About this bot
  /help       - Show this help message

How buying works:
  1. Pick an account in the mini app and press Order
  2. Pay the escrow account shown (Telebirr or CBE)
  3. Send the receipt number or a screenshot of the receipt
  4. The seller transfers the account and the order completes

Reservations expire after 10 minutes without a verified payment."""

    await message.answer(help_text)


@router.message(Command("about"))
async def cmd_about(message: Message) -> None:
    await message.answer(
        "This bot facilitates account trading through an escrow: buyer payments "
        "are verified and held until the account is transferred."
    )
