"""
Background scheduler for ledger maintenance.

Handles:
- Membership expiration (daily at 00:05 UTC)
- Token expiration sweep (daily at 00:15 UTC, after memberships so the
  day's multipliers are settled first)
"""
import os
import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER=true, and only in the
    first process that gets here (gunicorn preloads the app once).
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Disabled in testing mode')
        return None

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return None

    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return None

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Never overlap a sweep with itself
            'misfire_grace_time': 3600  # 1 hour grace period
        }
    )

    _scheduler.add_job(
        run_membership_expiration,
        trigger=CronTrigger(hour=0, minute=5),
        id='membership_expiration',
        name='Expire memberships past their end date',
        replace_existing=True
    )

    _scheduler.add_job(
        run_token_expiration,
        trigger=CronTrigger(hour=0, minute=15),
        id='token_expiration',
        name='Expire tokens past their expiry window',
        replace_existing=True
    )

    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'
    atexit.register(shutdown_scheduler)

    logger.info('[Scheduler] Started: membership expiration 00:05 UTC, token expiration 00:15 UTC')
    return _scheduler


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def run_token_expiration():
    """Run the expiration sweep across all tenants."""
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    logger.info('[Scheduler] Running token expiration sweep...')

    with _flask_app.app_context():
        from ..services.expiration_service import ExpirationSweeper

        try:
            results = ExpirationSweeper().expire_tokens()
        except Exception:
            logger.exception('[Scheduler] Token expiration sweep failed')
            return

        for row in results:
            logger.info(
                f"[Scheduler] Tenant {row['tenant_id']}: {row['transactions_expired']} balances, "
                f"{row['tokens_expired']} tokens expired"
            )
        logger.info(f'[Scheduler] Token expiration complete: {len(results)} tenants affected')


def run_membership_expiration():
    """Flip overdue memberships to expired."""
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    with _flask_app.app_context():
        from ..services.membership_resolver import MembershipResolver

        try:
            result = MembershipResolver().expire_memberships()
        except Exception:
            logger.exception('[Scheduler] Membership expiration failed')
            return

        logger.info(f"[Scheduler] Membership expiration complete: {result['expired']} expired")
