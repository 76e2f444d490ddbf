"""SQLAlchemy models for the ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Platform(str, Enum):
    """Platform the listed account lives on."""

    YOUTUBE_CHANNEL = "youtube_channel"
    TELEGRAM_GROUP = "telegram_group"
    TELEGRAM_CHANNEL = "telegram_channel"
    TIKTOK_ACCOUNT = "tiktok_account"


class AccountStatus(str, Enum):
    """Lifecycle of a listed account.

    available -> pending -> {available, sold}
    """

    AVAILABLE = "available"
    PENDING = "pending"
    SOLD = "sold"


class OrderStatus(str, Enum):
    """Status of an order."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    TELEBIRR = "telebirr"
    CBE = "cbe"


class WithdrawalStatus(str, Enum):
    """Status of a withdrawal."""

    PENDING = "pending"          # Waiting for the payout operator
    COMPLETED = "completed"      # Money sent
    REJECTED = "rejected"        # Refused by admin


class WithdrawalReason(str, Enum):
    ORDER_REFUND = "order_refund"
    SELLER_PAYOUT = "seller_payout"


class User(Base):
    """User account linked to Telegram."""

    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Payout bank details
    account_holder_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bank_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    last_visit: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    accounts: Mapped[list["Account"]] = relationship(
        back_populates="owner", foreign_keys="Account.owner_id"
    )
    orders: Mapped[list["Order"]] = relationship(back_populates="buyer")
    withdrawals: Mapped[list["Withdrawal"]] = relationship(back_populates="user")

    @property
    def has_bank_details(self) -> bool:
        return bool(self.account_holder_name and self.bank_name and self.account_number)


class Account(Base):
    """A listed channel, group or profile offered for sale."""

    __tablename__ = "accounts"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_accounts_price_positive"),
        Index("ix_accounts_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    platform: Mapped[Platform] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    subscriber_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    creation_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_monetized: Mapped[Optional[bool]] = mapped_column(nullable=True)
    status: Mapped[AccountStatus] = mapped_column(
        String(20), default=AccountStatus.AVAILABLE, nullable=False, index=True
    )

    # Reservation bookkeeping, set only while status is pending
    reserved_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    reserved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    owner: Mapped["User"] = relationship(back_populates="accounts", foreign_keys=[owner_id])
    orders: Mapped[list["Order"]] = relationship(
        back_populates="account", cascade="all, delete-orphan", passive_deletes=True
    )


class Order(Base):
    """A verified purchase of an account, awaiting or past the transfer."""

    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        # At most one pending order per account
        Index(
            "uq_orders_account_pending",
            "account_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # Settled amount confirmed by the payment verifier; refunds never exceed it
    paid_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        String(20), default=OrderStatus.PENDING, nullable=False
    )
    receipt_ref: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    buyer: Mapped["User"] = relationship(back_populates="orders")
    account: Mapped["Account"] = relationship(back_populates="orders")


class Withdrawal(Base):
    """A payout obligation: a refund to a buyer or a seller's balance payout."""

    __tablename__ = "withdrawals"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[WithdrawalStatus] = mapped_column(
        String(20), default=WithdrawalStatus.PENDING, nullable=False
    )
    reason: Mapped[WithdrawalReason] = mapped_column(
        String(20), default=WithdrawalReason.ORDER_REFUND, nullable=False
    )
    # Orders are deleted on cancellation, so this is a plain reference, not a FK
    order_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="withdrawals")
