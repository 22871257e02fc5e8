"""
Shared fixtures for the loyalty ledger test suite.

Fixtures create their rows in a short app context of their own and return
ids, not ORM objects. Tests open a single `with app.app_context():` block
and look rows up again inside it. Factory fixtures (make_customer,
make_reward, fund, ...) must be called outside that block.
"""
from decimal import Decimal

import pytest

from app import create_app
from app.extensions import db
from app.models import (
    Customer,
    LoyaltyProgram,
    Membership,
    MembershipPlan,
    Reward,
    ServiceItem,
    Tenant,
)
from app.services import LedgerService


def _persist(app, obj):
    with app.app_context():
        db.session.add(obj)
        db.session.commit()
        return obj.id


@pytest.fixture
def app():
    """Application on an in-memory SQLite database."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def tenant(app):
    return _persist(app, Tenant(name='Glow Studio', slug='glow-studio'))


@pytest.fixture
def other_tenant(app):
    return _persist(app, Tenant(name='Other Salon', slug='other-salon'))


@pytest.fixture
def program(app, tenant):
    return _persist(app, LoyaltyProgram(
        tenant_id=tenant,
        name='Glow Tokens',
        earn_ratio=Decimal('0.1'),
        expiry_days=365,
    ))


@pytest.fixture
def other_program(app, other_tenant):
    return _persist(app, LoyaltyProgram(tenant_id=other_tenant, name='Other Tokens', earn_ratio=Decimal('0.1')))


@pytest.fixture
def make_customer(app, tenant):
    def _make(tenant_id=None, name='Alex Rivera'):
        return _persist(app, Customer(tenant_id=tenant_id or tenant, name=name, email='alex@example.com'))
    return _make


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def other_customer(make_customer, other_tenant):
    return make_customer(tenant_id=other_tenant, name='Sam Lee')


@pytest.fixture
def make_reward(app, tenant, program):
    def _make(**fields):
        fields.setdefault('tenant_id', tenant)
        fields.setdefault('program_id', program)
        fields.setdefault('name', 'Free Facial')
        fields.setdefault('tokens_required', 50)
        fields.setdefault('max_per_customer', None)
        return _persist(app, Reward(**fields))
    return _make


@pytest.fixture
def reward(make_reward):
    return make_reward()


@pytest.fixture
def make_membership(app, tenant, program):
    def _make(customer_id, multiplier=Decimal('1.5'), name='Gold', **fields):
        plan_id = _persist(app, MembershipPlan(
            tenant_id=tenant, program_id=program, name=name, tokens_multiplier=multiplier
        ))
        return _persist(app, Membership(
            tenant_id=tenant, program_id=program, customer_id=customer_id, plan_id=plan_id, **fields
        ))
    return _make


@pytest.fixture
def service_item(app, tenant):
    return _persist(app, ServiceItem(tenant_id=tenant, name='Deep Tissue Massage', price=Decimal('250.00')))


@pytest.fixture
def fund(app, program):
    """Award tokens through the ledger so balances start consistent."""
    def _fund(customer_id, tokens, program_id=None):
        with app.app_context():
            result = LedgerService(actor='test').award_tokens(program_id or program, customer_id, tokens)
            assert result['success'] is True, result
            return result
    return _fund


@pytest.fixture
def ledger_headers(tenant):
    return {'X-Tenant-ID': str(tenant), 'X-Actor-ID': 'staff:1'}
