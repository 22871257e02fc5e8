"""
Tenant ownership checks shared by every ledger entry point.

Ledger operations run with backend trust, but the identifiers they receive
come from callers; each one is re-checked against the tenant it claims.
"""
from ..models import Customer
from ..utils.exceptions import AccessDeniedError


def require_customer_in_tenant(customer_id: int, tenant_id: int) -> Customer:
    """
    Load a customer, insisting it belongs to tenant_id.

    A missing customer and a customer of another tenant are reported the
    same way so that callers cannot discover other tenants' identifiers.
    """
    customer = Customer.query.filter_by(id=customer_id, tenant_id=tenant_id).first()
    if customer is None:
        raise AccessDeniedError('Access denied: customer does not belong to this tenant')
    return customer
