"""Order API endpoints."""

import base64
import binascii
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from escrowbot.api.schemas import OrderDetail, OrderOut
from escrowbot.errors import OrderNotFound
from escrowbot.ledger.database import get_db
from escrowbot.ledger.models import OrderStatus, PaymentMethod
from escrowbot.ledger.repository import LedgerRepository
from escrowbot.services import PaymentReceipt, PurchaseContext, get_order_service

router = APIRouter(prefix="/orders", tags=["Orders"])


class CreateOrderRequest(BaseModel):
    """Open an order. With a receipt the payment is verified first."""

    buyer_id: int = Field(..., gt=0)
    account_id: int = Field(..., gt=0)
    amount: int = Field(..., gt=0)
    receipt_ref: Optional[str] = Field(None, max_length=255)
    image_base64: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


class VerifyPaymentRequest(BaseModel):
    """A typed reference number, or a base64 receipt screenshot for CBE."""

    payment_method: PaymentMethod
    expected_amount: int = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=255)
    image_base64: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    accepted: bool
    payer: Optional[str] = None
    receiver: Optional[str] = None
    settled_amount: Optional[int] = None
    transaction_id: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


class OrderCheckResponse(BaseModel):
    exists: bool
    order: Optional[OrderOut] = None


@router.get("/check", response_model=OrderCheckResponse)
async def check_order(
    account_id: int = Query(..., gt=0),
    buyer_id: Optional[int] = Query(None, gt=0),
) -> OrderCheckResponse:
    """Is there a pending order on this account (optionally by this buyer)?"""
    async with get_db() as session:
        repo = LedgerRepository(session)
        order = await repo.get_active_order(account_id, buyer_id=buyer_id)
        return OrderCheckResponse(
            exists=order is not None,
            order=OrderOut.model_validate(order) if order else None,
        )


def _decode_image(image_base64: Optional[str]) -> Optional[bytes]:
    if not image_base64:
        return None
    try:
        return base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid base64 image")


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def create_order(request: CreateOrderRequest) -> OrderOut:
    service = get_order_service()
    image = _decode_image(request.image_base64)
    if request.receipt_ref or image:
        if request.payment_method is None:
            raise HTTPException(status_code=422, detail="payment_method is required with a receipt")
        context = PurchaseContext(
            buyer_id=request.buyer_id,
            account_id=request.account_id,
            amount=request.amount,
            payment_method=request.payment_method,
        )
        receipt = PaymentReceipt(method=request.payment_method, reference=request.receipt_ref, image=image)
        order = await service.submit_payment(context, receipt)
        return OrderOut.model_validate(order)

    order = await service.create_order(
        buyer_id=request.buyer_id,
        account_id=request.account_id,
        amount=request.amount,
        payment_method=request.payment_method,
    )
    return OrderOut.model_validate(order)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(request: VerifyPaymentRequest) -> VerifyPaymentResponse:
    image = _decode_image(request.image_base64)
    receipt = PaymentReceipt(method=request.payment_method, reference=request.reference, image=image)
    result = await get_order_service().verify_payment(receipt, request.expected_amount)
    return VerifyPaymentResponse(
        accepted=result.accepted,
        payer=result.payer,
        receiver=result.receiver,
        settled_amount=result.settled_amount,
        transaction_id=result.transaction_id,
    )


@router.get("/{order_id}", response_model=OrderDetail)
async def get_order(order_id: int) -> OrderDetail:
    """Order with buyer and seller."""
    order = await get_order_service().get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return OrderDetail.from_order(order)


@router.put("/{order_id}", response_model=OrderDetail)
async def update_order_status(order_id: int, request: UpdateStatusRequest) -> OrderDetail:
    order = await get_order_service().update_status(order_id, request.status)
    return OrderDetail.from_order(order)


@router.post("/{order_id}/cancel", response_model=OrderDetail)
async def cancel_order(order_id: int) -> OrderDetail:
    order = await get_order_service().cancel_order(order_id)
    return OrderDetail.from_order(order)
