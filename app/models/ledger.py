"""
Token ledger models.

This module implements a per-tenant token economy where:
- Customers EARN tokens from business events (completed appointments, manual awards)
- Customers REDEEM tokens against a tenant's reward catalog
- Earned tokens EXPIRE after the program's expiry window

Invariants held by the services that write these tables:
- TokenBalance.current_balance == total_earned - total_spent - total_expired,
  which also equals the sum of TokenTransaction.tokens for the balance
- current_balance never drops below zero
- TokenTransaction rows are append-only
- Reward.stock_used never decreases and never exceeds stock_limit
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Any
from sqlalchemy import event

from ..extensions import db
from ..utils.exceptions import LedgerIntegrityError


# ==================== Enums ====================

class TokenTransactionType(str, Enum):
    """Types of ledger entries."""
    EARN = 'earn'       # Tokens credited (positive)
    REDEEM = 'redeem'   # Tokens spent on a reward (negative)
    EXPIRE = 'expire'   # Tokens retired by the expiration sweep (negative)


class TokenSourceType(str, Enum):
    """Well-known source_type values."""
    MANUAL = 'manual'
    APPOINTMENT = 'appointment'
    REDEMPTION = 'redemption'
    EXPIRY = 'expiry'


class RedemptionStatus(str, Enum):
    """Status of a redemption. Only PENDING is set by the ledger itself."""
    PENDING = 'pending'
    FULFILLED = 'fulfilled'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'


# ==================== Models ====================

class LoyaltyProgram(db.Model):
    """
    Per-tenant token program configuration.

    One program per tenant. earn_ratio converts a service price into tokens
    for event-driven awards; expiry_days (0 or null = never) sets expires_at
    on earned tokens.
    """
    __tablename__ = 'loyalty_programs'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, unique=True)

    name = db.Column(db.String(255), nullable=False, default='Loyalty Program')
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    tokens_enabled = db.Column(db.Boolean, nullable=False, default=True)
    token_name = db.Column(db.String(50), default='tokens')

    earn_ratio = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal('0.1'))
    expiry_days = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = db.relationship('Tenant', backref=db.backref('loyalty_program', uselist=False))

    def __repr__(self):
        return f'<LoyaltyProgram {self.id} tenant={self.tenant_id}>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary; also the cached snapshot format."""
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'is_active': self.is_active,
            'tokens_enabled': self.tokens_enabled,
            'token_name': self.token_name,
            'earn_ratio': str(self.earn_ratio) if self.earn_ratio is not None else None,
            'expiry_days': self.expiry_days,
        }


class TokenBalance(db.Model):
    """
    A customer's token balance within one program.

    Created lazily on first award and never deleted. Every mutation happens
    while the row is locked FOR UPDATE.
    """
    __tablename__ = 'token_balances'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)

    current_balance = db.Column(db.Integer, nullable=False, default=0)

    # Lifetime statistics
    total_earned = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Integer, nullable=False, default=0)
    total_expired = db.Column(db.Integer, nullable=False, default=0)

    # Activity tracking
    last_earn_at = db.Column(db.DateTime)
    last_redeem_at = db.Column(db.DateTime)
    last_expire_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    program = db.relationship('LoyaltyProgram')
    customer = db.relationship('Customer')

    __table_args__ = (
        db.UniqueConstraint('program_id', 'customer_id', name='uq_token_balances_program_customer'),
        db.CheckConstraint('current_balance >= 0', name='non_negative_balance'),
        db.Index('ix_token_balances_tenant_customer', 'tenant_id', 'customer_id'),
    )

    def __repr__(self):
        return f'<TokenBalance customer={self.customer_id} tokens={self.current_balance}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'program_id': self.program_id,
            'customer_id': self.customer_id,
            'current_balance': self.current_balance,
            'total_earned': self.total_earned,
            'total_spent': self.total_spent,
            'total_expired': self.total_expired,
            'last_earn_at': self.last_earn_at.isoformat() if self.last_earn_at else None,
            'last_redeem_at': self.last_redeem_at.isoformat() if self.last_redeem_at else None,
            'last_expire_at': self.last_expire_at.isoformat() if self.last_expire_at else None,
        }


class TokenTransaction(db.Model):
    """
    Token ledger - the authoritative, append-only record of balance changes.

    Design notes:
    - Never updated or deleted (ORM attempts raise LedgerIntegrityError)
    - tokens is signed: + for earn, - for redeem/expire
    - balance_after is the balance immediately after this entry, written
      under the same row lock as the balance update
    """
    __tablename__ = 'token_transactions'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    balance_id = db.Column(db.Integer, db.ForeignKey('token_balances.id'), nullable=False)

    transaction_type = db.Column(db.String(20), nullable=False)  # TokenTransactionType
    award_type = db.Column(db.String(50))  # caller's award category for earn rows
    tokens = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    # Source tracking
    source_type = db.Column(db.String(50))
    source_id = db.Column(db.String(100))

    description = db.Column(db.String(500))
    expires_at = db.Column(db.DateTime)  # earn rows only; null = never

    created_by = db.Column(db.String(100))  # actor or 'system'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    balance = db.relationship('TokenBalance', backref=db.backref('transactions', lazy='dynamic'))

    __table_args__ = (
        db.Index('ix_token_transactions_balance_created', 'balance_id', 'created_at'),
        db.Index('ix_token_transactions_tenant_created', 'tenant_id', 'created_at'),
        db.Index('ix_token_transactions_source', 'source_type', 'source_id'),
        db.Index('ix_token_transactions_type_expires', 'transaction_type', 'expires_at'),
    )

    def __repr__(self):
        return f'<TokenTransaction {self.id}: {self.tokens:+d} {self.transaction_type}>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'balance_id': self.balance_id,
            'transaction_type': self.transaction_type,
            'award_type': self.award_type,
            'tokens': self.tokens,
            'balance_after': self.balance_after,
            'source_type': self.source_type,
            'source_id': self.source_id,
            'description': self.description,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(TokenTransaction, 'before_update')
def _reject_transaction_update(mapper, connection, target):
    raise LedgerIntegrityError(f'Token transaction {target.id} is immutable')


@event.listens_for(TokenTransaction, 'before_delete')
def _reject_transaction_delete(mapper, connection, target):
    raise LedgerIntegrityError(f'Token transaction {target.id} cannot be deleted')


class TokenExpiry(db.Model):
    """
    Explicit link from an earn transaction to the sweep that retired it.

    The unique earn_transaction_id makes the expiration sweep idempotent:
    an earn row is considered at most once, even across concurrent sweeps.
    expire_transaction_id is null when nothing was left to expire (the
    tokens had already been spent).
    """
    __tablename__ = 'token_expiries'

    id = db.Column(db.Integer, primary_key=True)
    earn_transaction_id = db.Column(
        db.Integer, db.ForeignKey('token_transactions.id'), nullable=False, unique=True
    )
    expire_transaction_id = db.Column(db.Integer, db.ForeignKey('token_transactions.id'))
    balance_id = db.Column(db.Integer, db.ForeignKey('token_balances.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<TokenExpiry earn={self.earn_transaction_id} expire={self.expire_transaction_id}>'


class Reward(db.Model):
    """
    Catalog item redeemable for tokens.

    stock_limit / max_total / max_per_customer of null mean unlimited.
    The row is locked FOR UPDATE for the whole redemption, before the balance.
    """
    __tablename__ = 'rewards'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    tokens_required = db.Column(db.Integer, nullable=False)

    # Stock and usage limits
    stock_limit = db.Column(db.Integer)
    stock_used = db.Column(db.Integer, nullable=False, default=0)
    max_per_customer = db.Column(db.Integer, default=1)
    max_total = db.Column(db.Integer)

    valid_days = db.Column(db.Integer, default=30)  # lifetime of issued codes

    # Availability
    available_from = db.Column(db.DateTime)
    available_until = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    program = db.relationship('LoyaltyProgram', backref=db.backref('rewards', lazy='dynamic'))

    __table_args__ = (
        db.CheckConstraint('tokens_required > 0', name='positive_cost'),
        db.CheckConstraint('stock_used >= 0', name='non_negative_stock_used'),
        db.CheckConstraint(
            'stock_limit IS NULL OR stock_used <= stock_limit', name='stock_within_limit'
        ),
        db.Index('ix_rewards_program_active', 'program_id', 'is_active'),
    )

    def __repr__(self):
        return f'<Reward {self.name} ({self.tokens_required} tokens)>'

    def is_available(self, now: datetime = None) -> bool:
        """Active and inside its availability window."""
        now = now or datetime.utcnow()
        if not self.is_active:
            return False
        if self.available_from and now < self.available_from:
            return False
        if self.available_until and now > self.available_until:
            return False
        return True

    @property
    def stock_remaining(self):
        if self.stock_limit is None:
            return None
        return max(self.stock_limit - (self.stock_used or 0), 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'program_id': self.program_id,
            'name': self.name,
            'description': self.description,
            'tokens_required': self.tokens_required,
            'stock_limit': self.stock_limit,
            'stock_used': self.stock_used,
            'stock_remaining': self.stock_remaining,
            'max_per_customer': self.max_per_customer,
            'max_total': self.max_total,
            'valid_days': self.valid_days,
            'available_from': self.available_from.isoformat() if self.available_from else None,
            'available_until': self.available_until.isoformat() if self.available_until else None,
            'is_active': self.is_active,
        }


class Redemption(db.Model):
    """
    A customer's claim on a reward.

    Created 'pending' by the ledger; staff tooling moves it to
    fulfilled/expired/cancelled.
    """
    __tablename__ = 'redemptions'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('loyalty_programs.id'), nullable=False)
    balance_id = db.Column(db.Integer, db.ForeignKey('token_balances.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    reward_id = db.Column(db.Integer, db.ForeignKey('rewards.id'), nullable=False)

    tokens_used = db.Column(db.Integer, nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)
    valid_until = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default=RedemptionStatus.PENDING.value)

    # Reward as it was at redemption time
    reward_snapshot = db.Column(db.JSON)

    fulfilled_at = db.Column(db.DateTime)
    created_by = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    reward = db.relationship('Reward')

    __table_args__ = (
        db.Index('ix_redemptions_reward_customer', 'reward_id', 'customer_id'),
        db.Index('ix_redemptions_tenant_created', 'tenant_id', 'created_at'),
    )

    def __repr__(self):
        return f'<Redemption {self.code} {self.status}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'reward_id': self.reward_id,
            'reward_name': (self.reward_snapshot or {}).get('name'),
            'tokens_used': self.tokens_used,
            'code': self.code,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'status': self.status,
            'fulfilled_at': self.fulfilled_at.isoformat() if self.fulfilled_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
