"""
Custom exceptions for ledger business logic.

Business-rule violations (BusinessRuleError subclasses) are raised inside a
service operation, caught at the service boundary after a rollback and turned
into failure results. Everything else propagates to the caller.
"""
from typing import Any, Dict

from .errors import ErrorCode


class LedgerError(Exception):
    """Base exception for all loyalty ledger errors."""

    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR.value):
        self.message = message
        self.code = code
        super().__init__(message)


class BusinessRuleError(LedgerError):
    """Expected rule violation, reported to callers as a failure result."""

    def to_result(self) -> Dict[str, Any]:
        return {'success': False, 'error': self.message, 'error_code': self.code}


class NotFoundError(BusinessRuleError):
    """Resource not found (or not available)."""

    def __init__(self, resource: str, identifier=None, message: str = None):
        if not message:
            message = f"{resource} not found"
            if identifier is not None:
                message = f"{resource} with ID {identifier} not found"
        super().__init__(message, ErrorCode.NOT_FOUND.value)


class AccessDeniedError(BusinessRuleError):
    """A referenced record belongs to a different tenant."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, ErrorCode.ACCESS_DENIED.value)


class ValidationError(BusinessRuleError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, ErrorCode.VALIDATION_ERROR.value)


class InsufficientBalanceError(BusinessRuleError):
    """Not enough tokens for the operation."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        self.deficit = required - current
        message = (
            f"Insufficient balance: have {current}, need {required} "
            f"(short by {self.deficit})"
        )
        super().__init__(message, ErrorCode.INSUFFICIENT_BALANCE.value)


class StockExhaustedError(BusinessRuleError):
    """Reward has no stock left."""

    def __init__(self, reward_name: str, stock_limit: int):
        self.stock_limit = stock_limit
        message = f"Reward '{reward_name}' is sold out ({stock_limit} of {stock_limit} redeemed)"
        super().__init__(message, ErrorCode.STOCK_EXHAUSTED.value)


class RedemptionLimitReachedError(BusinessRuleError):
    """Per-customer or global redemption cap reached."""

    def __init__(self, scope: str, limit: int):
        self.scope = scope
        self.limit = limit
        if scope == 'customer':
            message = f"Redemption limit reached for this customer (max {limit})"
        else:
            message = f"Redemption limit reached for this reward (max {limit})"
        super().__init__(message, ErrorCode.REDEMPTION_LIMIT_REACHED.value)


class LedgerContentionError(LedgerError):
    """
    Lock wait timed out or deadlocked after all retries.

    Callers may safely retry the whole operation; nothing was committed.
    """
    retryable = True

    def __init__(self, operation: str, original_error: Exception = None):
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"{operation} could not acquire ledger locks, try again",
            ErrorCode.LEDGER_CONTENTION.value,
        )


class LedgerIntegrityError(LedgerError):
    """Attempted mutation of an append-only ledger row."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.INTERNAL_ERROR.value)
