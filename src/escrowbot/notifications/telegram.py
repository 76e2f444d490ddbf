"""Telegram notification service.

Sends order lifecycle notifications to buyers and sellers. Delivery is
best-effort: every method returns False instead of raising, so a blocked bot
or a Telegram outage never rolls back a ledger change.
"""

import asyncio
import logging
from html import escape
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from escrowbot.config import get_settings

logger = logging.getLogger(__name__)

# Singleton bot instance
_bot_instance: Optional[Bot] = None
_bot_lock = asyncio.Lock()


async def get_bot() -> Optional[Bot]:
    """Get or create the bot instance for notifications."""
    global _bot_instance

    if _bot_instance is not None:
        return _bot_instance

    async with _bot_lock:
        # Double-check after acquiring lock
        if _bot_instance is not None:
            return _bot_instance

        settings = get_settings()
        if not settings.telegram_bot_token:
            logger.warning("Telegram bot token not configured - notifications disabled")
            return None

        _bot_instance = Bot(token=settings.telegram_bot_token)
        return _bot_instance


async def close_bot() -> None:
    """Close the bot session (call on shutdown)."""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.session.close()
        _bot_instance = None


class TelegramNotifier:
    """Service for sending Telegram notifications to users."""

    def __init__(self, bot: Optional[Bot] = None):
        """Initialize with optional bot instance.

        If no bot provided, will use the singleton instance.
        """
        self._bot = bot

    async def _get_bot(self) -> Optional[Bot]:
        if self._bot:
            return self._bot
        return await get_bot()

    async def send_message(
        self,
        telegram_id: int,
        message: str,
        parse_mode: Optional[str] = "HTML",
    ) -> bool:
        """Send a message to a user.

        Returns:
            True if message was sent successfully
        """
        bot = await self._get_bot()
        if not bot:
            logger.warning("Cannot send notification - bot not initialized")
            return False

        try:
            await bot.send_message(
                chat_id=telegram_id,
                text=message,
                parse_mode=parse_mode,
            )
            return True
        except TelegramForbiddenError:
            logger.warning(f"User {telegram_id} has blocked the bot")
            return False
        except TelegramBadRequest as e:
            logger.error(f"Bad request sending to {telegram_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to send notification to {telegram_id}: {e}")
            return False

    async def notify_order_created(
        self,
        seller_telegram_id: int,
        buyer_telegram_id: int,
        order_id: int,
        account_name: str,
        amount: int,
        buyer_username: Optional[str] = None,
    ) -> bool:
        """Tell the seller a paid order is waiting and confirm to the buyer."""
        currency = get_settings().currency
        buyer = f"@{escape(buyer_username)}" if buyer_username else "a buyer"

        seller_message = (
            f"<b>New Order</b>\n\n"
            f"Your account <b>{escape(account_name)}</b> was purchased by {buyer}.\n"
            f"Amount: <code>{amount} {currency}</code>\n"
            f"Order ID: <code>{order_id}</code>\n\n"
            f"Open /sales to start the transfer."
        )
        buyer_message = (
            f"<b>Payment Verified</b>\n\n"
            f"Order <code>{order_id}</code> for <b>{escape(account_name)}</b> was created.\n"
            f"The seller has been asked to transfer the account."
        )

        seller_sent = await self.send_message(seller_telegram_id, seller_message)
        buyer_sent = await self.send_message(buyer_telegram_id, buyer_message)
        return seller_sent and buyer_sent

    async def notify_order_completed(
        self,
        buyer_telegram_id: int,
        account_name: str,
    ) -> bool:
        """Tell the buyer the account has been handed over."""
        message = (
            f"<b>Transfer Complete</b>\n\n"
            f"The account <b>{escape(account_name)}</b> has been transferred to you. "
            f"The order is now complete."
        )
        return await self.send_message(buyer_telegram_id, message)

    async def notify_order_refunded(
        self,
        buyer_telegram_id: int,
        account_name: str,
        amount: int,
        seller_telegram_id: Optional[int] = None,
    ) -> bool:
        """Tell the buyer a refund is on its way and, optionally, the seller the order ended."""
        currency = get_settings().currency
        message = (
            f"<b>Order Cancelled</b>\n\n"
            f"Your order for <b>{escape(account_name)}</b> was cancelled.\n"
            f"A refund of <code>{amount} {currency}</code> will be sent within 24 hours up to 7 days."
        )
        sent = await self.send_message(buyer_telegram_id, message)

        if seller_telegram_id is not None:
            seller_message = (
                f"The order for <b>{escape(account_name)}</b> was cancelled. "
                f"The account is listed as available again."
            )
            sent = await self.send_message(seller_telegram_id, seller_message) and sent

        return sent

    async def notify_reservation_expired(self, buyer_telegram_id: int, account_name: str) -> bool:
        message = (
            f"Your reservation of <b>{escape(account_name)}</b> expired before a payment "
            f"was verified. The account is available again."
        )
        return await self.send_message(buyer_telegram_id, message)

    async def notify_payout_requested(self, telegram_id: int, amount: int) -> bool:
        currency = get_settings().currency
        message = (
            f"<b>Payout Requested</b>\n\n"
            f"Amount: <code>{amount} {currency}</code>\n"
            f"Funds will be sent to your bank account within 24 hours."
        )
        return await self.send_message(telegram_id, message)


# Global notifier instance
_notifier: Optional[TelegramNotifier] = None


def get_notifier() -> TelegramNotifier:
    """Get the global notifier instance."""
    global _notifier
    if _notifier is None:
        _notifier = TelegramNotifier()
    return _notifier
