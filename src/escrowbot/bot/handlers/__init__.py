"""Bot handlers module."""

from aiogram import Router

from escrowbot.bot.handlers import listings, orders, purchase, start, wallet


def setup_routers() -> Router:
    """Create and configure all routers."""
    main_router = Router()

    # Register all routers
    main_router.include_router(start.router)
    main_router.include_router(wallet.router)
    main_router.include_router(purchase.router)
    main_router.include_router(orders.router)
    main_router.include_router(listings.router)

    return main_router
