"""
Membership plans and customer memberships.

A plan scales token earning for its members through tokens_multiplier.
The multiplier is applied at award time and never stored on the balance.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


class MembershipStatus(str, Enum):
    """Lifecycle of a customer membership."""
    ACTIVE = 'active'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'


class MembershipPlan(db.Model):
    """Tiered plan within a loyalty program."""
    __tablename__ = 'membership_plans'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)

    name = db.Column(db.String(100), nullable=False)  # 'Silver', 'Gold', 'VIP'
    tokens_multiplier = db.Column(db.Numeric(6, 2), nullable=False, default=Decimal('1.00'))
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('tokens_multiplier > 0', name='positive_multiplier'),
    )

    def __repr__(self):
        return f'<MembershipPlan {self.name} x{self.tokens_multiplier}>'

    def to_dict(self):
        return {
            'id': self.id,
            'program_id': self.program_id,
            'name': self.name,
            'tokens_multiplier': float(self.tokens_multiplier),
            'is_active': self.is_active,
        }


class Membership(db.Model):
    """A customer's subscription to a plan."""
    __tablename__ = 'memberships'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('membership_plans.id'), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=MembershipStatus.ACTIVE.value)
    start_date = db.Column(db.DateTime, default=datetime.utcnow)
    end_date = db.Column(db.DateTime)  # null = open-ended

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = db.relationship('MembershipPlan')

    __table_args__ = (
        db.Index('ix_memberships_customer_program', 'customer_id', 'program_id'),
        db.Index('ix_memberships_status_end', 'status', 'end_date'),
    )

    def __repr__(self):
        return f'<Membership customer={self.customer_id} plan={self.plan_id} {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'program_id': self.program_id,
            'plan_id': self.plan_id,
            'plan_name': self.plan.name if self.plan else None,
            'tokens_multiplier': float(self.plan.tokens_multiplier) if self.plan else 1.0,
            'status': self.status,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
        }
