"""
Logging setup for the loyalty ledger service.

Configures the root logger once per process so that module loggers
(logging.getLogger(__name__)), Flask's app.logger, gunicorn and APScheduler
all write through the same handler.

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default INFO)
    LOG_FORMAT: 'text' (default) or 'plain' for bare messages
"""
import os
import sys
import logging

TEXT_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
PLAIN_FORMAT = '%(message)s'

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ('apscheduler.executors.default', 'werkzeug', 'urllib3')

_configured = False


def setup_logging(level: str = None) -> None:
    """Attach a single stdout handler to the root logger."""
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_format = PLAIN_FORMAT if os.getenv('LOG_FORMAT') == 'plain' else TEXT_FORMAT

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(log_format))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
