"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["DEBUG"] = "false"
os.environ["ADMIN_TOKEN"] = ""
os.environ["VERIFIER_PROVIDER"] = "dryrun"
os.environ["RECEIPT_STORE"] = "dryrun"
os.environ["ESCROW_RECEIVERS"] = "Kaleb Mate,KALEB MATE MEGANE"
os.environ["MIN_WITHDRAWAL_AMOUNT"] = "100"
os.environ["TEARDOWN_DELAY_SECONDS"] = "3600"

from escrowbot.ledger import database
from escrowbot.ledger.database import create_engine_for_url, get_db, make_session_factory
from escrowbot.ledger.models import Account, Base, PaymentMethod, Platform, User
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.notifications import TelegramNotifier
from escrowbot.receipts import reset_image_store
from escrowbot.receipts.dryrun import DryRunImageStore
from escrowbot.services import (
    OrderService,
    ReservationService,
    WithdrawalService,
    shutdown_services,
)
from escrowbot.services.scheduler import DeferredTaskScheduler
from escrowbot.verifiers import reset_verifiers
from escrowbot.verifiers.dryrun import DryRunVerifier

ESCROW_RECEIVERS = ["Kaleb Mate", "KALEB MATE MEGANE"]


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch):
    """File-backed SQLite engine installed as the application database.

    A file (not :memory:) so concurrent sessions get their own connections
    and really contend for the write lock.
    """
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    monkeypatch.setattr(database, "_engine", engine)
    monkeypatch.setattr(database, "_session_factory", make_session_factory(engine))

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = make_session_factory(db_engine)

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest_asyncio.fixture(autouse=True)
async def reset_singletons():
    """Forget per-process singletons between tests."""
    yield
    await shutdown_services()
    reset_verifiers()
    reset_image_store()


@pytest.fixture
def notifier():
    return AsyncMock(spec=TelegramNotifier)


@pytest_asyncio.fixture
async def scheduler():
    scheduler = DeferredTaskScheduler()
    yield scheduler
    await scheduler.shutdown()


@pytest.fixture
def telebirr():
    """Telebirr stand-in that only knows registered receipts."""
    return DryRunVerifier(name="telebirr-test", accept_unknown=False)


@pytest.fixture
def cbe():
    """CBE stand-in: reads screenshots, accepts any hosted image as an exact payment."""
    return DryRunVerifier(
        name="cbe-test",
        requires_image=True,
        default_receiver="KALEB MATE MEGANE",
        accept_unknown=True,
    )


@pytest.fixture
def image_store():
    return DryRunImageStore()


@pytest.fixture
def reservations(db_engine, scheduler, notifier):
    return ReservationService(scheduler=scheduler, notifier=notifier, timeout_seconds=600)


@pytest.fixture
def orders(db_engine, scheduler, notifier, telebirr, cbe, image_store):
    return OrderService(
        scheduler=scheduler,
        notifier=notifier,
        verifiers={PaymentMethod.TELEBIRR: telebirr, PaymentMethod.CBE: cbe},
        image_store=image_store,
        escrow_receivers=ESCROW_RECEIVERS,
        teardown_delay_seconds=3600,
    )


@pytest.fixture
def withdrawals(db_engine, notifier):
    return WithdrawalService(notifier=notifier, min_amount=100)


@pytest.fixture
def make_user(db_engine):
    """Factory for committed users."""

    async def _make_user(
        telegram_id: int,
        username: Optional[str] = None,
        balance: int = 0,
        bank_details: bool = False,
    ) -> User:
        async with get_db() as session:
            repo = LedgerRepository(session)
            user = await repo.get_or_create_user(telegram_id, username or f"user{telegram_id}")
            if balance:
                await repo.credit_balance(user.id, balance)
            if bank_details:
                await repo.update_bank_details(user.id, "Abebe Kebede", "CBE", "1000123456789")
            return await repo.get_user(user.id)

    return _make_user


@pytest.fixture
def make_account(db_engine):
    """Factory for committed, available listings."""

    async def _make_account(
        owner: User,
        price: int = 500,
        name: str = "Cooking Channel",
        platform: Platform = Platform.YOUTUBE_CHANNEL,
        subscriber_count: int = 1000,
        is_monetized: Optional[bool] = None,
    ) -> Account:
        async with get_db() as session:
            repo = LedgerRepository(session)
            return await repo.create_account(
                owner_id=owner.id,
                platform=platform,
                name=name,
                url="https://youtube.com/@cooking",
                price=price,
                subscriber_count=subscriber_count,
                is_monetized=is_monetized,
            )

    return _make_account


@pytest.fixture
def fetch_account(db_engine):
    """Re-read an account in a fresh session."""

    async def _fetch(account_id: int) -> Optional[Account]:
        async with get_db() as session:
            return await LedgerRepository(session).get_account(account_id)

    return _fetch


@pytest.fixture
def fetch_user(db_engine):
    """Re-read a user in a fresh session."""

    async def _fetch(user_id: int) -> Optional[User]:
        async with get_db() as session:
            return await LedgerRepository(session).get_user(user_id)

    return _fetch
