"""
CLI Commands for the loyalty ledger.

Usage:
    flask loyalty expire-tokens [--tenant-id 1] [--dry-run]
    flask loyalty expire-memberships [--dry-run]
    flask loyalty expiring-tokens --days 7
    flask loyalty verify-balances [--tenant-id 1]
"""
from .loyalty import init_app as init_loyalty_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_loyalty_commands(app)
