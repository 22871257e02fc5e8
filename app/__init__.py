"""
Loyalty Token Ledger & Redemption Engine
Flask application factory
"""
import os
import logging
from flask import Flask

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, config_overrides: dict = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)
        config_overrides: Settings applied on top of the config class, before
            any extension reads them

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    if config_overrides:
        app.config.update(config_overrides)
    validate_config(config_name)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Row-lock semantics for SQLite engines (no-op on PostgreSQL)
    from .utils.locking import configure_engine_locking
    with app.app_context():
        configure_engine_locking(db.engine)

    # Program/reward snapshot cache (Redis with in-memory fallback)
    from .utils.cache import init_cache
    init_cache(app)

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Background sweeps (production or ENABLE_SCHEDULER=true only)
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'loyalty-ledger'}

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.loyalty import loyalty_bp
    from .webhooks.appointments import appointments_webhook_bp

    app.register_blueprint(loyalty_bp, url_prefix='/api/loyalty')
    app.register_blueprint(appointments_webhook_bp, url_prefix='/webhooks/appointments')


def register_error_handlers(app: Flask) -> None:
    """Register JSON error handlers."""
    from .utils.errors import error_response, ErrorCode

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
