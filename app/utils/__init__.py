"""
Utility modules for the loyalty ledger.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    failure_response,
    bad_request,
    unauthorized,
    not_found,
    service_unavailable,
    internal_error
)
from .exceptions import (
    LedgerError,
    BusinessRuleError,
    NotFoundError,
    AccessDeniedError,
    ValidationError,
    InsufficientBalanceError,
    StockExhaustedError,
    RedemptionLimitReachedError,
    LedgerContentionError,
    LedgerIntegrityError,
)
