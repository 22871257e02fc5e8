"""
Middleware package for the loyalty ledger API.
"""
from .ledger_context import require_ledger_context

__all__ = ['require_ledger_context']
