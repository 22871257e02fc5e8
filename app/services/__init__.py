"""
Business logic services for the loyalty token ledger.
"""
from .program_registry import ProgramRegistry
from .membership_resolver import MembershipResolver
from .ledger_service import LedgerService
from .redemption_service import RedemptionService
from .expiration_service import ExpirationSweeper
from .appointment_trigger import AppointmentEvent, on_event_completed

__all__ = [
    'ProgramRegistry',
    'MembershipResolver',
    'LedgerService',
    'RedemptionService',
    'ExpirationSweeper',
    'AppointmentEvent',
    'on_event_completed',
]
