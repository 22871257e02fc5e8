"""
Configuration management for the loyalty ledger service.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, '') else default


LOCK_TIMEOUT_MS = _int_env('LEDGER_LOCK_TIMEOUT_MS', 5000)
STATEMENT_TIMEOUT_MS = _int_env('LEDGER_STATEMENT_TIMEOUT_MS', 15000)
SQLITE_BUSY_TIMEOUT = 15  # seconds


def normalize_database_url(url: str) -> str:
    """SQLAlchemy requires postgresql:// not postgres://"""
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql://', 1)
    return url


def engine_options_for(database_url: str) -> dict:
    """
    Engine options for the backend named by database_url.

    PostgreSQL sessions get lock_timeout/statement_timeout so a stuck
    FOR UPDATE turns into a retryable error; SQLite gets a busy timeout.
    """
    if database_url.startswith('postgresql'):
        return {
            'pool_size': 5,
            'pool_recycle': 300,
            'pool_pre_ping': True,  # Verify connections before using
            'connect_args': {
                'options': (
                    f"-c lock_timeout={LOCK_TIMEOUT_MS} "
                    f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"
                ),
            },
        }
    if database_url.startswith('sqlite'):
        return {'connect_args': {'timeout': SQLITE_BUSY_TIMEOUT}}
    return {}


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Event-driven awards (appointment completed -> tokens)
    LOYALTY_DEFAULT_REFERENCE_PRICE = _int_env('LOYALTY_DEFAULT_REFERENCE_PRICE', 500)
    LOYALTY_MIN_EVENT_TOKENS = 1
    LOYALTY_MAX_EVENT_TOKENS = 100

    # Redemptions
    LOYALTY_DEFAULT_VALID_DAYS = 30
    LOYALTY_EXPIRING_SOON_DAYS = 30

    # Program/reward snapshots are read-mostly
    LOYALTY_CATALOG_CACHE_TIMEOUT = _int_env('LOYALTY_CATALOG_CACHE_TIMEOUT', 300)

    # Row lock behaviour for award/redeem/expire paths
    LEDGER_LOCK_TIMEOUT_MS = LOCK_TIMEOUT_MS
    LEDGER_STATEMENT_TIMEOUT_MS = STATEMENT_TIMEOUT_MS
    LEDGER_LOCK_RETRY_ATTEMPTS = _int_env('LEDGER_LOCK_RETRY_ATTEMPTS', 3)
    LEDGER_LOCK_RETRY_BACKOFF = 0.1  # seconds, doubled per attempt

    # Shared secret for the booking subsystem's completion webhook
    APPOINTMENT_WEBHOOK_SECRET = os.getenv('APPOINTMENT_WEBHOOK_SECRET', '')


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = normalize_database_url(os.getenv(
        'DATABASE_URL',
        'sqlite:///loyalty_dev.db'  # SQLite fallback for local dev
    ))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI)


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = normalize_database_url(os.getenv('DATABASE_URL', ''))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI)

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing, empty, or too short
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    @classmethod
    def validate_webhook_secret(cls) -> None:
        """The appointment webhook refuses every request without a secret."""
        if not cls.APPOINTMENT_WEBHOOK_SECRET:
            raise RuntimeError(
                "CRITICAL: APPOINTMENT_WEBHOOK_SECRET is not set; "
                "appointment completion webhooks would all be rejected."
            )

    SECRET_KEY = _secret_key  # Will be validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI)
    APPOINTMENT_WEBHOOK_SECRET = 'test-webhook-secret'
    LEDGER_LOCK_RETRY_BACKOFF = 0.01


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Args:
        config_name: The configuration environment name

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
        ProductionConfig.validate_webhook_secret()
