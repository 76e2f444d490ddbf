"""Component tests for notifications, the deferred task scheduler and bot helpers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiogram.exceptions import TelegramForbiddenError

from escrowbot.bot.common import describe_error, parse_id
from escrowbot.errors import (
    BelowWithdrawalMinimum,
    DuplicateReceipt,
    NotAvailable,
    PaymentMismatch,
    VerifierUnavailable,
)
from escrowbot.notifications.telegram import TelegramNotifier
from escrowbot.services.scheduler import DeferredTaskScheduler


class TestNotifications:
    """Tests for the Telegram notifier."""

    @pytest.mark.asyncio
    async def test_send_message_success(self):
        mock_bot = AsyncMock()
        mock_bot.send_message = AsyncMock(return_value=True)

        notifier = TelegramNotifier(bot=mock_bot)

        assert await notifier.send_message(123456789, "Test message") is True
        mock_bot.send_message.assert_awaited_once_with(
            chat_id=123456789, text="Test message", parse_mode="HTML"
        )

    @pytest.mark.asyncio
    async def test_notifier_handles_blocked_user(self):
        """Test that a blocked bot does not raise."""
        mock_bot = AsyncMock()
        mock_bot.send_message = AsyncMock(
            side_effect=TelegramForbiddenError(
                method=MagicMock(),
                message="Forbidden: bot was blocked by the user",
            )
        )

        notifier = TelegramNotifier(bot=mock_bot)

        assert await notifier.send_message(123456789, "Test message") is False

    @pytest.mark.asyncio
    async def test_notifier_no_bot_configured(self):
        """Test that notifier handles missing bot gracefully."""
        notifier = TelegramNotifier(bot=None)

        with patch("escrowbot.notifications.telegram.get_bot", return_value=None):
            result = await notifier.send_message(123456789, "Test message")

        assert result is False

    @pytest.mark.asyncio
    async def test_order_created_notifies_both_parties(self):
        mock_bot = AsyncMock()
        mock_bot.send_message = AsyncMock(return_value=True)

        notifier = TelegramNotifier(bot=mock_bot)

        result = await notifier.notify_order_created(
            seller_telegram_id=1001,
            buyer_telegram_id=2001,
            order_id=42,
            account_name="Cooking <Daily>",
            amount=500,
            buyer_username="abebe",
        )

        assert result is True
        calls = mock_bot.send_message.call_args_list
        assert [c.kwargs["chat_id"] for c in calls] == [1001, 2001]
        seller_text = calls[0].kwargs["text"]
        assert "Cooking &lt;Daily&gt;" in seller_text
        assert "500 ETB" in seller_text
        assert "@abebe" in seller_text

    @pytest.mark.asyncio
    async def test_refund_notifies_seller_when_given(self):
        mock_bot = AsyncMock()
        mock_bot.send_message = AsyncMock(return_value=True)

        notifier = TelegramNotifier(bot=mock_bot)

        await notifier.notify_order_refunded(2001, "Cooking Daily", 500)
        assert mock_bot.send_message.await_count == 1

        await notifier.notify_order_refunded(2001, "Cooking Daily", 500, seller_telegram_id=1001)
        assert mock_bot.send_message.await_count == 3
        message = mock_bot.send_message.call_args_list[1].kwargs["text"]
        assert "24 hours up to 7 days" in message


class TestScheduler:
    """Tests for deferred tasks."""

    @pytest.mark.asyncio
    async def test_runs_after_delay(self):
        scheduler = DeferredTaskScheduler()
        func = AsyncMock()

        scheduler.schedule(0.01, "job", func, 7)
        assert scheduler.pending == 1
        await scheduler.wait_idle()

        func.assert_awaited_once_with(7)
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_contained(self):
        scheduler = DeferredTaskScheduler()
        func = AsyncMock(side_effect=RuntimeError("boom"))

        task = scheduler.schedule(0, "job", func)
        await scheduler.wait_idle()

        assert task.done()
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_wait_idle_follows_chained_tasks(self):
        scheduler = DeferredTaskScheduler()
        seen = []

        async def second():
            seen.append("second")

        async def first():
            seen.append("first")
            scheduler.schedule(0.01, "second", second)

        scheduler.schedule(0.01, "first", first)
        await scheduler.wait_idle()

        assert seen == ["first", "second"]

    @pytest.mark.asyncio
    async def test_shutdown_cancels(self):
        scheduler = DeferredTaskScheduler()
        func = AsyncMock()

        task = scheduler.schedule(60, "job", func)
        await scheduler.shutdown()

        assert task.cancelled()
        func.assert_not_awaited()
        assert scheduler.schedule(0, "late", func) is None

    @pytest.mark.asyncio
    async def test_tasks_run_concurrently(self):
        scheduler = DeferredTaskScheduler()
        started = asyncio.Event()

        async def waiter():
            await started.wait()

        async def starter():
            started.set()

        scheduler.schedule(0, "waiter", waiter)
        scheduler.schedule(0.01, "starter", starter)

        await asyncio.wait_for(scheduler.wait_idle(), timeout=1)


class TestBotHelpers:
    """Tests for callback parsing and rejection messages."""

    def test_parse_id(self):
        assert parse_id("order_account:12") == 12
        assert parse_id("pay_method:telebirr:7") == 7
        assert parse_id("withdraw_balance") is None
        assert parse_id("cancel_order:abc") is None
        assert parse_id(None) is None

    def test_describe_error(self):
        assert "no longer available" in describe_error(NotAvailable(1, "pending"))
        assert "already been used" in describe_error(DuplicateReceipt("FT1"))
        assert "too short" in describe_error(PaymentMismatch("too short"))
        assert "100 ETB" in describe_error(BelowWithdrawalMinimum(50, 100))
        assert "try again" in describe_error(VerifierUnavailable("telebirr"))


class TestRunner:
    """Tests for the combined bot and API runner."""

    @pytest.mark.asyncio
    async def test_stops_when_api_exits(self, monkeypatch):
        from escrowbot import main

        served = []

        async def serve_api(settings):
            served.append(settings.api_port)

        close_db = AsyncMock()
        monkeypatch.setattr(main, "serve_api", serve_api)
        monkeypatch.setattr(main, "init_db", AsyncMock())
        monkeypatch.setattr(main, "close_db", close_db)
        monkeypatch.setattr(main, "configure_logging", lambda debug: None)

        await asyncio.wait_for(main.run(), timeout=5)

        assert len(served) == 1
        close_db.assert_awaited_once()
