"""Escrow services: reservations, orders, withdrawals and deferred tasks.

The bot and the API share one set of services per process so that deferred
tasks live on a single scheduler.
"""

from typing import Optional

from escrowbot.services.orders import OrderService, PaymentReceipt, PurchaseContext
from escrowbot.services.reservations import ReservationService
from escrowbot.services.scheduler import DeferredTaskScheduler
from escrowbot.services.withdrawals import WithdrawalService

_scheduler: Optional[DeferredTaskScheduler] = None
_reservations: Optional[ReservationService] = None
_orders: Optional[OrderService] = None
_withdrawals: Optional[WithdrawalService] = None


def get_scheduler() -> DeferredTaskScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DeferredTaskScheduler()
    return _scheduler


def get_reservation_service() -> ReservationService:
    global _reservations
    if _reservations is None:
        _reservations = ReservationService(scheduler=get_scheduler())
    return _reservations


def get_order_service() -> OrderService:
    global _orders
    if _orders is None:
        _orders = OrderService(scheduler=get_scheduler())
    return _orders


def get_withdrawal_service() -> WithdrawalService:
    global _withdrawals
    if _withdrawals is None:
        _withdrawals = WithdrawalService()
    return _withdrawals


async def shutdown_services() -> None:
    """Stop deferred tasks and forget the service instances."""
    global _scheduler, _reservations, _orders, _withdrawals
    if _scheduler is not None:
        await _scheduler.shutdown()
    _scheduler = None
    _reservations = None
    _orders = None
    _withdrawals = None


__all__ = [
    "DeferredTaskScheduler",
    "OrderService",
    "PaymentReceipt",
    "PurchaseContext",
    "ReservationService",
    "WithdrawalService",
    "get_order_service",
    "get_reservation_service",
    "get_scheduler",
    "get_withdrawal_service",
    "shutdown_services",
]
