"""Combined runner: Telegram bot polling and the REST API in one process."""

import asyncio
import logging
import signal

import uvicorn
from aiogram import Bot, Dispatcher
from dotenv import load_dotenv

from escrowbot.api.app import create_app
from escrowbot.bot.bot import create_bot
from escrowbot.config import Settings, get_settings
from escrowbot.ledger.database import close_db, init_db
from escrowbot.notifications import close_bot
from escrowbot.services import shutdown_services

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    for noisy in ("sqlalchemy.engine", "aiosqlite", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def serve_api(settings: Settings) -> None:
    """Serve the API; its lifespan releases stale reservations on startup."""
    config = uvicorn.Config(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )
    logger.info(f"API listening on {settings.api_host}:{settings.api_port}")
    await uvicorn.Server(config).serve()


async def poll_bot(bot: Bot, dp: Dispatcher) -> None:
    await bot.delete_webhook(drop_pending_updates=True)
    logger.info("Bot polling started")
    await dp.start_polling(bot, handle_signals=False)


async def run() -> None:
    settings = get_settings()
    configure_logging(settings.debug)
    logger.info(f"Starting escrowbot ({settings.environment})")

    await init_db()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    bot = None
    workers = [asyncio.create_task(serve_api(settings), name="api")]
    if settings.telegram_bot_token:
        bot, dp = create_bot()
        workers.append(asyncio.create_task(poll_bot(bot, dp), name="bot"))
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set, running the API only")

    # A signal or either worker exiting stops the whole process
    stopper = asyncio.create_task(stop.wait(), name="stop")
    await asyncio.wait([stopper, *workers], return_when=asyncio.FIRST_COMPLETED)

    for task in (stopper, *workers):
        task.cancel()
    results = await asyncio.gather(stopper, *workers, return_exceptions=True)
    for task, result in zip(workers, results[1:]):
        if isinstance(result, Exception):
            logger.error(f"{task.get_name()} worker failed: {result}")

    await shutdown_services()
    if bot is not None:
        await bot.session.close()
    await close_bot()
    await close_db()
    logger.info("Shutdown complete")


def main():
    load_dotenv()
    asyncio.run(run())


if __name__ == "__main__":
    main()
