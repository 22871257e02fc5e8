"""
Event Trigger Adapter for the booking subsystem.

When an appointment transitions to 'completed' the customer earns tokens
proportional to the service price:

    base_tokens = clamp(floor(price x earn_ratio), 1, 100)

This is best-effort enrichment of the booking flow: every failure is logged
and swallowed so the appointment's own processing never depends on it. Call
on_event_completed after the booking change has been committed.
"""
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import current_app

from ..extensions import db
from ..models import (
    Customer,
    ServiceItem,
    TokenBalance,
    TokenSourceType,
    TokenTransaction,
    TokenTransactionType,
)
from .ledger_service import LedgerService
from .program_registry import ProgramRegistry

COMPLETED = 'completed'
ADAPTER_ACTOR = 'system:appointments'


@dataclass
class AppointmentEvent:
    """Status change of an appointment, as reported by the booking subsystem."""
    id: str
    tenant_id: int
    customer_id: int
    status: str
    previous_status: Optional[str] = None
    service_id: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'AppointmentEvent':
        """Build from a webhook body; raises KeyError/ValueError on bad input."""
        if not isinstance(payload, dict):
            raise ValueError(f'Expected a JSON object, got {type(payload).__name__}')
        service_id = payload.get('service_id')
        return cls(
            id=str(payload['id']),
            tenant_id=int(payload['tenant_id']),
            customer_id=int(payload['customer_id']),
            status=str(payload['status']),
            previous_status=payload.get('previous_status'),
            service_id=int(service_id) if service_id is not None else None,
        )

    @property
    def is_completion(self) -> bool:
        return self.status == COMPLETED and self.previous_status != COMPLETED


def compute_event_tokens(price: Decimal, earn_ratio: Decimal,
                         minimum: int = 1, maximum: int = 100) -> int:
    """floor(price x earn_ratio), clamped to [minimum, maximum]."""
    raw = math.floor(Decimal(str(price)) * Decimal(str(earn_ratio)))
    return max(minimum, min(maximum, raw))


def resolve_reference_price(tenant_id: int, service_id: Optional[int]) -> Decimal:
    """Price of the booked service, or the configured fallback."""
    if service_id is not None:
        service = ServiceItem.query.filter_by(id=service_id, tenant_id=tenant_id).first()
        if service is not None and service.price is not None:
            return Decimal(service.price)
    return Decimal(current_app.config.get('LOYALTY_DEFAULT_REFERENCE_PRICE', 500))


def _already_awarded(program_id: int, customer_id: int, appointment_id: str) -> bool:
    return db.session.query(
        TokenTransaction.query
        .join(TokenBalance, TokenBalance.id == TokenTransaction.balance_id)
        .filter(
            TokenBalance.program_id == program_id,
            TokenBalance.customer_id == customer_id,
            TokenTransaction.transaction_type == TokenTransactionType.EARN.value,
            TokenTransaction.source_type == TokenSourceType.APPOINTMENT.value,
            TokenTransaction.source_id == appointment_id,
        )
        .exists()
    ).scalar()


def on_event_completed(event: AppointmentEvent) -> Optional[Dict[str, Any]]:
    """
    Award tokens for a completed appointment.

    Returns the award result, or None when nothing was awarded. Never raises.
    """
    if not event.is_completion:
        return None

    try:
        return _award_for_event(event)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"Token award for appointment {event.id} failed")
        return None


def _award_for_event(event: AppointmentEvent) -> Optional[Dict[str, Any]]:
    customer = Customer.query.filter_by(id=event.customer_id, tenant_id=event.tenant_id).first()
    if customer is None:
        current_app.logger.warning(
            f"Appointment {event.id}: customer {event.customer_id} does not belong to "
            f"tenant {event.tenant_id}, no tokens awarded"
        )
        return None

    program = ProgramRegistry().get_active_program_for_tenant(event.tenant_id)
    if program is None:
        current_app.logger.debug(f"Appointment {event.id}: tenant {event.tenant_id} has no active token program")
        return None

    if _already_awarded(program['id'], customer.id, event.id):
        current_app.logger.info(f"Appointment {event.id}: tokens already awarded, skipping")
        return None

    price = resolve_reference_price(event.tenant_id, event.service_id)
    base_tokens = compute_event_tokens(
        price,
        ProgramRegistry.earn_ratio(program),
        minimum=current_app.config.get('LOYALTY_MIN_EVENT_TOKENS', 1),
        maximum=current_app.config.get('LOYALTY_MAX_EVENT_TOKENS', 100),
    )

    result = LedgerService(actor=ADAPTER_ACTOR).award_tokens(
        program_id=program['id'],
        customer_id=customer.id,
        tokens=base_tokens,
        award_type=TokenSourceType.APPOINTMENT.value,
        description=f'Tokens for completed appointment {event.id}',
        source_id=event.id,
        source_type=TokenSourceType.APPOINTMENT.value,
        tenant_id=event.tenant_id,
    )
    if not result['success']:
        current_app.logger.warning(f"Appointment {event.id}: award rejected: {result['error']}")
    return result
