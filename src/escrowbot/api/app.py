"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from escrowbot import __version__
from escrowbot.config import get_settings
from escrowbot.errors import EscrowError
from escrowbot.ledger.database import close_db, init_db
from escrowbot.services import get_order_service, get_reservation_service, shutdown_services

logger = logging.getLogger(__name__)


async def recover_state() -> None:
    """Finish work that deferred tasks of a previous process never ran."""
    released = await get_reservation_service().release_expired()
    purged = await get_order_service().purge_sold_accounts()
    if released or purged:
        logger.info(f"Startup recovery: released {len(released)} reservation(s), purged {len(purged)} sold account(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    await recover_state()
    yield
    # Shutdown
    await shutdown_services()
    await close_db()


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Escrowbot API",
        description="Escrow marketplace backend for social media account sales",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EscrowError, escrow_error_handler)

    # Register routes
    from escrowbot.api.routers import accounts, orders, users, withdrawals
    from escrowbot.api.routes import health

    app.include_router(health.router, tags=["Health"])
    app.include_router(users.router)
    app.include_router(accounts.router)
    app.include_router(orders.router)
    app.include_router(withdrawals.router)

    return app


# Default app instance
app = create_app()
