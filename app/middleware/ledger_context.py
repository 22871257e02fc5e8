"""
Ledger request context.

The upstream authorization layer verifies who is calling and on behalf of
which tenant, then forwards the request with X-Tenant-ID and X-Actor-ID.
This decorator loads that verified pair into flask.g; it does not
authenticate anything itself.
"""
from functools import wraps
from flask import request, g

from ..models import Tenant
from ..utils.errors import unauthorized, error_response, ErrorCode


def require_ledger_context(f):
    """
    Decorator for ledger API endpoints.

    Sets g.tenant_id and g.actor.

    Usage:
        @require_ledger_context
        def my_endpoint():
            tenant_id = g.tenant_id
            actor = g.actor
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_header = request.headers.get('X-Tenant-ID')
        actor = request.headers.get('X-Actor-ID')

        if not tenant_header or not actor:
            return unauthorized('Missing verified tenant/actor context')

        try:
            tenant_id = int(tenant_header)
        except (TypeError, ValueError):
            return unauthorized('Invalid tenant context')

        tenant = Tenant.query.filter_by(id=tenant_id).first()
        if tenant is None or not tenant.is_active:
            return error_response('Tenant not found or inactive', ErrorCode.ACCESS_DENIED, 403, log_error=False)

        g.tenant_id = tenant.id
        g.actor = actor

        return f(*args, **kwargs)

    return decorated_function
