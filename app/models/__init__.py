"""
Database models for the loyalty token ledger.
"""
from .tenant import Tenant
from .customer import Customer, ServiceItem
from .ledger import (
    # Enums
    TokenTransactionType,
    TokenSourceType,
    RedemptionStatus,
    # Models
    LoyaltyProgram,
    TokenBalance,
    TokenTransaction,
    TokenExpiry,
    Reward,
    Redemption,
)
from .membership import MembershipStatus, MembershipPlan, Membership

__all__ = [
    'Tenant',
    'Customer',
    'ServiceItem',
    'TokenTransactionType',
    'TokenSourceType',
    'RedemptionStatus',
    'LoyaltyProgram',
    'TokenBalance',
    'TokenTransaction',
    'TokenExpiry',
    'Reward',
    'Redemption',
    'MembershipStatus',
    'MembershipPlan',
    'Membership',
]
