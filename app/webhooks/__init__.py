"""
Webhook handlers for the loyalty ledger.
Receives status changes from the booking subsystem.
"""
import hmac
import hashlib
import base64
from functools import wraps
from flask import request, current_app

from ..utils.errors import unauthorized, ErrorCode

SIGNATURE_HEADER = 'X-Signature'


def verify_webhook_signature(data: bytes, signature_header: str, secret: str) -> bool:
    """
    Verify a base64 HMAC-SHA256 signature of the raw request body.

    Args:
        data: Raw request body bytes
        signature_header: The X-Signature header value
        secret: Shared webhook secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        current_app.logger.warning('No webhook secret configured for verification')
        return False

    if not signature_header:
        current_app.logger.warning('No signature header in webhook request')
        return False

    computed = base64.b64encode(
        hmac.new(secret.encode('utf-8'), data, hashlib.sha256).digest()
    ).decode('utf-8')

    # Timing-safe comparison
    return hmac.compare_digest(computed, signature_header)


def require_webhook_signature(f):
    """
    Reject webhook calls whose body is not signed with APPOINTMENT_WEBHOOK_SECRET.

    Usage:
        @bp.route('/status', methods=['POST'])
        @require_webhook_signature
        def handle_status():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get('APPOINTMENT_WEBHOOK_SECRET', '')
        if not verify_webhook_signature(request.get_data(), request.headers.get(SIGNATURE_HEADER), secret):
            return unauthorized('Invalid webhook signature', ErrorCode.INVALID_SIGNATURE)
        return f(*args, **kwargs)

    return decorated_function
