"""Withdrawal API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from escrowbot.api.schemas import WithdrawalOut
from escrowbot.config import get_settings
from escrowbot.ledger.models import WithdrawalStatus
from escrowbot.services import get_withdrawal_service

router = APIRouter(prefix="/withdrawals", tags=["Withdrawals"])


async def require_admin_token(x_admin_token: str = Header(None)) -> bool:
    """Verify admin token from header.

    If ADMIN_TOKEN is not set, allows access (dev mode).
    """
    settings = get_settings()

    if not settings.admin_token:
        return True

    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True


class PayoutRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    # Whole balance when omitted
    amount: Optional[int] = Field(None, gt=0)


class WithdrawalStatusRequest(BaseModel):
    status: WithdrawalStatus


@router.post("", response_model=WithdrawalOut, status_code=status.HTTP_201_CREATED)
async def request_payout(request: PayoutRequest) -> WithdrawalOut:
    withdrawal = await get_withdrawal_service().request_payout(request.user_id, request.amount)
    return WithdrawalOut.model_validate(withdrawal)


@router.put("/{withdrawal_id}", response_model=WithdrawalOut)
async def update_withdrawal_status(
    withdrawal_id: int,
    request: WithdrawalStatusRequest,
    _: bool = Depends(require_admin_token),
) -> WithdrawalOut:
    """Mark a payout as sent or rejected (admin only)."""
    withdrawal = await get_withdrawal_service().update_status(withdrawal_id, request.status)
    return WithdrawalOut.model_validate(withdrawal)
