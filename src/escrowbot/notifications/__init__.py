"""User notifications."""

from escrowbot.notifications.telegram import TelegramNotifier, close_bot, get_notifier

__all__ = ["TelegramNotifier", "close_bot", "get_notifier"]
