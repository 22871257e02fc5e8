"""
Tests for the appointment completion trigger.

Covers:
- Token formula: clamp(floor(price x earn_ratio), 1, 100)
- Awards for completed appointments (default price, service price, multiplier)
- Skipped events (not a completion, foreign customer, disabled program, duplicate)
- The trigger never raising into the booking flow
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.models import TokenBalance, TokenTransaction
from app.services import AppointmentEvent, ProgramRegistry, on_event_completed
from app.services.appointment_trigger import compute_event_tokens


def _completed(tenant_id, customer_id, appointment_id='appt-1001', **fields):
    return AppointmentEvent(
        id=appointment_id,
        tenant_id=tenant_id,
        customer_id=customer_id,
        status='completed',
        previous_status=fields.pop('previous_status', 'confirmed'),
        **fields,
    )


class TestComputeEventTokens:
    """Tests for the event token formula."""

    @pytest.mark.parametrize('price,ratio,expected', [
        (Decimal('500'), Decimal('0.1'), 50),
        (Decimal('249.99'), Decimal('0.1'), 24),
        (Decimal('5'), Decimal('0.1'), 1),
        (Decimal('0'), Decimal('0.1'), 1),
        (Decimal('5000'), Decimal('0.1'), 100),
        (Decimal('120'), Decimal('0.5'), 60),
    ])
    def test_formula(self, price, ratio, expected):
        assert compute_event_tokens(price, ratio) == expected


class TestAppointmentEvent:
    """Tests for AppointmentEvent parsing."""

    def test_from_payload(self):
        event = AppointmentEvent.from_payload({
            'id': 77, 'tenant_id': '3', 'customer_id': 9,
            'status': 'completed', 'previous_status': 'confirmed', 'service_id': '4',
        })

        assert event.id == '77'
        assert event.tenant_id == 3
        assert event.service_id == 4
        assert event.is_completion is True

    def test_from_payload_missing_field(self):
        with pytest.raises(KeyError):
            AppointmentEvent.from_payload({'id': 1, 'tenant_id': 1, 'status': 'completed'})

    @pytest.mark.parametrize('payload', [[1], 'completed', None])
    def test_from_payload_rejects_non_object(self, payload):
        with pytest.raises(ValueError):
            AppointmentEvent.from_payload(payload)

    def test_repeated_completion_is_not_a_transition(self):
        event = AppointmentEvent(id='a', tenant_id=1, customer_id=1,
                                 status='completed', previous_status='completed')
        assert event.is_completion is False


class TestOnEventCompleted:
    """Tests for on_event_completed."""

    def test_awards_default_reference_price(self, app, tenant, program, customer):
        with app.app_context():
            result = on_event_completed(_completed(tenant, customer))

            assert result['success'] is True
            assert result['tokens_awarded'] == 50

            tx = TokenTransaction.query.one()
            assert tx.award_type == 'appointment'
            assert tx.source_type == 'appointment'
            assert tx.source_id == 'appt-1001'
            assert tx.created_by == 'system:appointments'

    def test_awards_from_service_price(self, app, tenant, program, customer, service_item):
        with app.app_context():
            result = on_event_completed(_completed(tenant, customer, service_id=service_item))

            assert result['tokens_awarded'] == 25

    def test_applies_membership_multiplier(self, app, tenant, program, customer, make_membership):
        make_membership(customer, multiplier=Decimal('1.5'))

        with app.app_context():
            result = on_event_completed(_completed(tenant, customer))

            assert result['tokens_awarded'] == 75

    def test_ignores_other_statuses(self, app, tenant, program, customer):
        with app.app_context():
            event = AppointmentEvent(id='appt-1', tenant_id=tenant, customer_id=customer,
                                     status='cancelled', previous_status='confirmed')

            assert on_event_completed(event) is None
            assert TokenTransaction.query.count() == 0

    def test_customer_of_other_tenant(self, app, tenant, program, other_customer):
        with app.app_context():
            assert on_event_completed(_completed(tenant, other_customer)) is None
            assert TokenBalance.query.count() == 0

    def test_tokens_disabled(self, app, tenant, program, customer):
        with app.app_context():
            ProgramRegistry().update_program(program, tenant, tokens_enabled=False)

            assert on_event_completed(_completed(tenant, customer)) is None
            assert TokenTransaction.query.count() == 0

    def test_tenant_without_program(self, app, other_tenant, other_customer):
        with app.app_context():
            assert on_event_completed(_completed(other_tenant, other_customer)) is None

    def test_duplicate_event_awarded_once(self, app, tenant, program, customer):
        with app.app_context():
            on_event_completed(_completed(tenant, customer))

            assert on_event_completed(_completed(tenant, customer)) is None
            assert TokenBalance.query.one().current_balance == 50

    def test_failures_are_swallowed(self, app, tenant, program, customer):
        with app.app_context():
            with patch('app.services.appointment_trigger.LedgerService') as ledger:
                ledger.return_value.award_tokens.side_effect = RuntimeError('database unavailable')

                assert on_event_completed(_completed(tenant, customer)) is None
