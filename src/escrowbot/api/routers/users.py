"""User API endpoints: registration, bank details, purchase and sale history."""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from escrowbot.api.schemas import OrderDetail, UserOut, WithdrawalOut
from escrowbot.errors import UserNotFound
from escrowbot.ledger.database import get_db
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.services import get_withdrawal_service

router = APIRouter(prefix="/users", tags=["Users"])


class RegisterUserRequest(BaseModel):
    telegram_id: int = Field(..., gt=0)
    username: Optional[str] = Field(None, max_length=255)


class BankDetailsRequest(BaseModel):
    account_holder_name: str = Field(..., min_length=1, max_length=255)
    bank_name: str = Field(..., min_length=1, max_length=255)
    account_number: str = Field(..., min_length=1, max_length=64)


@router.post("", response_model=UserOut)
async def register_user(request: RegisterUserRequest) -> UserOut:
    """Get or create the user for a Telegram ID."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        user = await repo.get_or_create_user(request.telegram_id, request.username)
        return UserOut.model_validate(user)


@router.get("/by-telegram/{telegram_id}", response_model=UserOut)
async def get_user_by_telegram(telegram_id: int) -> UserOut:
    async with get_db() as session:
        repo = LedgerRepository(session)
        user = await repo.get_user_by_telegram_id(telegram_id)
        if user is None:
            raise UserNotFound(telegram_id)
        return UserOut.model_validate(user)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: int) -> UserOut:
    async with get_db() as session:
        repo = LedgerRepository(session)
        user = await repo.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return UserOut.model_validate(user)


@router.put("/{user_id}/bank-details", response_model=UserOut)
async def update_bank_details(user_id: int, request: BankDetailsRequest) -> UserOut:
    """Store where seller payouts are sent."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        user = await repo.update_bank_details(
            user_id,
            account_holder_name=request.account_holder_name.strip(),
            bank_name=request.bank_name.strip(),
            account_number=request.account_number.strip(),
        )
        if user is None:
            raise UserNotFound(user_id)
        return UserOut.model_validate(user)


@router.get("/{user_id}/purchases", response_model=list[OrderDetail])
async def get_purchases(user_id: int) -> list[OrderDetail]:
    """Orders the user placed as a buyer."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        orders = await repo.get_user_purchases(user_id)
        return [OrderDetail.from_order(order) for order in orders]


@router.get("/{user_id}/sales", response_model=list[OrderDetail])
async def get_sales(user_id: int) -> list[OrderDetail]:
    """Orders placed on the user's listings."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        orders = await repo.get_user_sales(user_id)
        return [OrderDetail.from_order(order) for order in orders]


@router.get("/{user_id}/withdrawals", response_model=list[WithdrawalOut])
async def get_withdrawals(user_id: int, limit: int = 20, offset: int = 0) -> list[WithdrawalOut]:
    withdrawals = await get_withdrawal_service().get_user_withdrawals(user_id, limit=limit, offset=offset)
    return [WithdrawalOut.model_validate(w) for w in withdrawals]
