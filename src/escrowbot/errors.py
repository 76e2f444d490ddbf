"""Typed errors raised by the escrow core.

Every error carries a stable ``code`` used by the API and the bot to pick a
rejection message, the HTTP status it maps to, and whether retrying the same
request can succeed.
"""

from typing import Optional


class EscrowError(Exception):
    """Base class for all escrow workflow errors."""

    code = "escrow_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


class NotAvailable(EscrowError):
    """The account is reserved, sold, or reserved by someone else."""

    code = "not_available"
    http_status = 409

    def __init__(self, account_id: int, status: Optional[str] = None):
        self.account_id = account_id
        self.status = status
        super().__init__(f"Account {account_id} is not available (status: {status or 'unknown'})")


class DuplicateActiveOrder(EscrowError):
    """An active order already exists for the account."""

    code = "duplicate_active_order"
    http_status = 409

    def __init__(self, account_id: int, order_id: Optional[int] = None):
        self.account_id = account_id
        self.order_id = order_id
        super().__init__(f"Account {account_id} already has an active order")


class PaymentMismatch(EscrowError):
    """Settled payment does not match what the order requires."""

    code = "payment_mismatch"
    http_status = 422

    def __init__(
        self,
        reason: str,
        expected_amount: Optional[int] = None,
        settled_amount: Optional[int] = None,
        receiver: Optional[str] = None,
    ):
        self.reason = reason
        self.expected_amount = expected_amount
        self.settled_amount = settled_amount
        self.receiver = receiver
        super().__init__(reason)


class DuplicateReceipt(EscrowError):
    """The receipt was already used for another order."""

    code = "duplicate_receipt"
    http_status = 409

    def __init__(self, receipt_ref: Optional[str] = None):
        self.receipt_ref = receipt_ref
        super().__init__("This transaction receipt has already been used")


class OrderNotFound(EscrowError):
    code = "order_not_found"
    http_status = 404

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class AccountNotFound(EscrowError):
    code = "account_not_found"
    http_status = 404

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class UserNotFound(EscrowError):
    code = "user_not_found"
    http_status = 404

    def __init__(self, user_ref):
        self.user_ref = user_ref
        super().__init__(f"User {user_ref} not found")


class Forbidden(EscrowError):
    code = "forbidden"
    http_status = 403

    def __init__(self, message: str = "You can only manage your own accounts"):
        super().__init__(message)


class NotDeletable(EscrowError):
    """Only available accounts may be deleted directly."""

    code = "not_deletable"
    http_status = 409

    def __init__(self, account_id: int, status: str):
        self.account_id = account_id
        self.status = status
        super().__init__(f"Account {account_id} cannot be deleted while {status}")


class HasPendingOrders(EscrowError):
    code = "has_pending_orders"
    http_status = 409

    def __init__(self, account_id: int, count: int):
        self.account_id = account_id
        self.count = count
        super().__init__(
            f"Account {account_id} has {count} pending order(s); complete or cancel them first"
        )


class InvalidOrderState(EscrowError):
    """The requested transition is not allowed from the order's current status."""

    code = "invalid_order_state"
    http_status = 409

    def __init__(self, order_id: int, status: str, target: str):
        self.order_id = order_id
        self.status = status
        self.target = target
        super().__init__(f"Order {order_id} cannot move from {status} to {target}")


class InsufficientBalance(EscrowError):
    code = "insufficient_balance"
    http_status = 422

    def __init__(self, balance: int, requested: int, message: Optional[str] = None):
        self.balance = balance
        self.requested = requested
        super().__init__(message or f"Insufficient balance: have {balance}, need {requested}")


class BelowWithdrawalMinimum(InsufficientBalance):
    code = "below_withdrawal_minimum"

    def __init__(self, balance: int, minimum: int):
        self.minimum = minimum
        super().__init__(
            balance,
            minimum,
            f"Minimum withdrawal threshold is {minimum}; current balance is {balance}",
        )


class MissingBankDetails(EscrowError):
    code = "missing_bank_details"
    http_status = 422

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("Bank account details are required before a payout")


class VerifierUnavailable(EscrowError):
    """Transient upstream failure talking to a payment verifier."""

    code = "verifier_unavailable"
    http_status = 503
    retryable = True

    def __init__(self, verifier: str, detail: str = ""):
        self.verifier = verifier
        self.detail = detail
        super().__init__(f"Payment verifier '{verifier}' is unavailable{': ' + detail if detail else ''}")


class ImageStoreUnavailable(EscrowError):
    code = "image_store_unavailable"
    http_status = 503
    retryable = True

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Receipt image upload failed{': ' + detail if detail else ''}")


class WithdrawalNotFound(EscrowError):
    code = "withdrawal_not_found"
    http_status = 404

    def __init__(self, withdrawal_id: int):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal {withdrawal_id} not found")


class InvalidWithdrawalState(EscrowError):
    code = "invalid_withdrawal_state"
    http_status = 409

    def __init__(self, withdrawal_id: int, status: str, target: str):
        self.withdrawal_id = withdrawal_id
        self.status = status
        self.target = target
        super().__init__(f"Withdrawal {withdrawal_id} cannot move from {status} to {target}")
