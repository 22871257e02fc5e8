"""
Standardized error response utilities for the loyalty API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from app.utils.errors import error_response, ErrorCode

    return error_response("Reward not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses and service results."""

    # Authentication & Authorization (401, 403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    ACCESS_DENIED = "ACCESS_DENIED"

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"

    # Ledger rule violations (409, 422)
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    STOCK_EXHAUSTED = "STOCK_EXHAUSTED"
    REDEMPTION_LIMIT_REACHED = "REDEMPTION_LIMIT_REACHED"

    # Lock contention (503, retryable)
    LEDGER_CONTENTION = "LEDGER_CONTENTION"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP status for each failure result a service can return
RESULT_STATUS_CODES = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ACCESS_DENIED: 403,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INSUFFICIENT_BALANCE: 422,
    ErrorCode.STOCK_EXHAUSTED: 409,
    ErrorCode.REDEMPTION_LIMIT_REACHED: 409,
    ErrorCode.LEDGER_CONTENTION: 503,
}


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code
        log_error: Whether to log the error (default True for 500s)
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    response = {
        "error": {
            "message": message,
            "code": code.value if isinstance(code, ErrorCode) else code
        }
    }

    return jsonify(response), status_code


def failure_response(result: Dict[str, Any]) -> tuple:
    """Translate a service failure result into an HTTP error response."""
    code = ErrorCode(result.get('error_code', ErrorCode.INTERNAL_ERROR.value))
    status_code = RESULT_STATUS_CODES.get(code, 500)
    return error_response(result.get('error', 'Operation failed'), code, status_code, log_error=status_code >= 500)


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    """401 Unauthorized error."""
    return error_response(message, code, 401, log_error=False)


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    """404 Not Found error."""
    return error_response(message, code, 404, log_error=False)


def service_unavailable(message: str, retry_after: int = 1) -> tuple:
    """503 for retryable lock contention."""
    response, status = error_response(message, ErrorCode.LEDGER_CONTENTION, 503)
    response.headers['Retry-After'] = str(retry_after)
    return response, status


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)
