"""Listing API endpoints: browse, search, list for sale, reserve, delete."""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field, field_validator

from escrowbot.api.schemas import AccountOut, AccountPage, OrderOut
from escrowbot.errors import AccountNotFound
from escrowbot.ledger.database import get_db
from escrowbot.ledger.models import Platform
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.services import get_order_service, get_reservation_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Accounts"])


class CreateAccountRequest(BaseModel):
    """A seller listing an account, with the bank account payouts go to."""

    telegram_id: int = Field(..., gt=0)
    username: Optional[str] = Field(None, max_length=255)
    platform: Platform
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    price: int = Field(..., gt=0)
    subscriber_count: int = Field(default=0, ge=0)
    creation_year: Optional[int] = Field(None, ge=2000, le=2100)
    is_monetized: Optional[bool] = None
    account_holder_name: Optional[str] = Field(None, max_length=255)
    bank_name: Optional[str] = Field(None, max_length=255)
    account_number: Optional[str] = Field(None, max_length=64)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://", "t.me/", "@")):
            raise ValueError("Listing URL must be a link or @handle")
        return v


class ReserveRequest(BaseModel):
    buyer_id: int = Field(..., gt=0)


def _page(accounts, total: int, page: int, limit: int) -> AccountPage:
    return AccountPage(
        accounts=[AccountOut.model_validate(a) for a in accounts],
        total=total,
        page=page,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/accounts", response_model=AccountPage)
async def list_accounts(
    page: int = Query(1, ge=1),
    limit: int = Query(6, ge=1, le=100),
) -> AccountPage:
    """Newest listings first."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        accounts, total = await repo.list_accounts(limit=limit, offset=(page - 1) * limit)
        return _page(accounts, total, page, limit)


@router.get("/search/accounts", response_model=AccountPage)
async def search_accounts(
    q: Optional[str] = None,
    platform: Optional[Platform] = None,
    min_subscribers: Optional[int] = Query(None, ge=0),
    max_subscribers: Optional[int] = Query(None, ge=0),
    monetized: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(6, ge=1, le=100),
) -> AccountPage:
    async with get_db() as session:
        repo = LedgerRepository(session)
        accounts, total = await repo.search_accounts(
            query=q.strip() if q else None,
            platform=platform.value if platform else None,
            min_subscribers=min_subscribers,
            max_subscribers=max_subscribers,
            is_monetized=monetized,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return _page(accounts, total, page, limit)


@router.post("/accounts", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
async def create_account(request: CreateAccountRequest) -> AccountOut:
    """List an account for sale. Seller registration, bank details and the
    listing are written in one transaction.
    """
    async with get_db() as session:
        repo = LedgerRepository(session)
        seller = await repo.get_or_create_user(request.telegram_id, request.username)

        if request.account_holder_name and request.bank_name and request.account_number:
            await repo.update_bank_details(
                seller.id,
                account_holder_name=request.account_holder_name.strip(),
                bank_name=request.bank_name.strip(),
                account_number=request.account_number.strip(),
            )

        account = await repo.create_account(
            owner_id=seller.id,
            platform=request.platform,
            name=request.name.strip(),
            url=request.url,
            price=request.price,
            subscriber_count=request.subscriber_count,
            creation_year=request.creation_year,
            is_monetized=request.is_monetized,
        )
        result = AccountOut.model_validate(account)

    logger.info(f"Account {result.id} listed by user {result.owner_id} for {result.price}")
    return result


@router.get("/accounts/{account_id}", response_model=AccountOut)
async def get_account(account_id: int) -> AccountOut:
    async with get_db() as session:
        repo = LedgerRepository(session)
        account = await repo.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return AccountOut.model_validate(account)


@router.post("/accounts/{account_id}/reserve", response_model=AccountOut)
async def reserve_account(account_id: int, request: ReserveRequest) -> AccountOut:
    account = await get_reservation_service().reserve(account_id, request.buyer_id)
    return AccountOut.model_validate(account)


@router.delete("/accounts/{account_id}")
async def delete_account(account_id: int, requester_id: int = Query(..., gt=0)) -> dict:
    deleted = await get_order_service().delete_account(account_id, requester_id)
    return {"deleted": deleted, "account_id": account_id}


@router.get("/accounts/{account_id}/orders", response_model=list[OrderOut])
async def get_account_orders(account_id: int) -> list[OrderOut]:
    async with get_db() as session:
        repo = LedgerRepository(session)
        orders = await repo.get_account_orders(account_id)
        return [OrderOut.model_validate(o) for o in orders]
