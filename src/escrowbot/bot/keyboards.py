"""Telegram keyboard builders."""

from typing import Optional

from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    WebAppInfo,
)


def main_menu_keyboard(mini_app_url: Optional[str] = None) -> ReplyKeyboardMarkup:
    """Create main menu keyboard."""
    keyboard = []
    if mini_app_url:
        base = mini_app_url.rstrip("/")
        keyboard.append(
            [
                KeyboardButton(text="🛒 Browse Accounts", web_app=WebAppInfo(url=f"{base}/")),
                KeyboardButton(text="➕ Sell Account", web_app=WebAppInfo(url=f"{base}/sell")),
            ]
        )
    keyboard.extend(
        [
            [KeyboardButton(text="🧾 My Purchases"), KeyboardButton(text="📦 My Sales")],
            [KeyboardButton(text="📋 My Listings"), KeyboardButton(text="💰 Balance")],
        ]
    )
    return ReplyKeyboardMarkup(keyboard=keyboard, resize_keyboard=True)


def payment_method_keyboard(account_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="Pay with Telebirr", callback_data=f"pay_method:telebirr:{account_id}")],
            [InlineKeyboardButton(text="Pay with CBE", callback_data=f"pay_method:cbe:{account_id}")],
            [InlineKeyboardButton(text="❌ Cancel", callback_data=f"cancel_reservation:{account_id}")],
        ]
    )


def balance_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="💸 Withdraw", callback_data="withdraw_balance")]]
    )


def purchase_actions_keyboard(order_id: int) -> InlineKeyboardMarkup:
    """Buttons under a pending purchase."""
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="❌ Cancel Order", callback_data=f"cancel_order:{order_id}")]]
    )


def sale_actions_keyboard(order_id: int) -> InlineKeyboardMarkup:
    """Buttons under a pending sale."""
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="🔄 Initiate Transfer", callback_data=f"initiate_transfer:{order_id}")]
        ]
    )


def transfer_complete_keyboard(order_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="✅ Transfer Complete", callback_data=f"transfer_complete:{order_id}")]
        ]
    )


def listing_actions_keyboard(account_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="🗑️ Delete", callback_data=f"delete_account:{account_id}")]
        ]
    )


def confirm_delete_keyboard(account_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="❌ Cancel", callback_data="cancel_delete"),
                InlineKeyboardButton(text="🗑️ Confirm Delete", callback_data=f"confirm_delete:{account_id}"),
            ]
        ]
    )
