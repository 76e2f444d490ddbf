"""Response models shared by the API routers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    telegram_id: int
    username: Optional[str] = None
    balance: int
    account_holder_name: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    last_visit: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    platform: str
    name: str
    url: str
    price: int
    subscriber_count: int
    creation_year: Optional[int] = None
    is_monetized: Optional[bool] = None
    status: str
    reserved_by_id: Optional[int] = None
    reserved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AccountPage(BaseModel):
    accounts: list[AccountOut]
    total: int
    page: int
    pages: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    buyer_id: int
    account_id: int
    amount: int
    paid_amount: Optional[int] = None
    status: str
    receipt_ref: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OrderDetail(OrderOut):
    """Order with buyer, account and seller (relations must be loaded)."""

    buyer: UserOut
    account: AccountOut
    seller: UserOut

    @classmethod
    def from_order(cls, order) -> "OrderDetail":
        return cls.model_validate(
            {
                **OrderOut.model_validate(order).model_dump(),
                "buyer": UserOut.model_validate(order.buyer),
                "account": AccountOut.model_validate(order.account),
                "seller": UserOut.model_validate(order.account.owner),
            }
        )


class WithdrawalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    amount: int
    status: str
    reason: str
    order_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
