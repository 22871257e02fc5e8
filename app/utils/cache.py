"""
Cache utilities for the loyalty ledger.

Program and reward configuration is read on nearly every request but only
changes when a tenant administrator edits it, so snapshots of those rows are
kept in Flask-Caching and dropped when an edit is committed.

Usage:
    from app.utils.cache import cache, cache_key

    key = cache_key('program', program_id)
    snapshot = cache.get(key)
    cache.set(key, snapshot, timeout=300)
    cache.delete(key)

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
              Falls back to simple cache if not set or unavailable.
"""
import os
import logging
from flask_caching import Cache

logger = logging.getLogger(__name__)

# Global cache instance - initialized in init_cache()
cache = Cache()

KEY_PREFIX = 'loyalty:'


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fallback to simple cache.

    Args:
        app: Flask application instance

    Returns:
        bool: True if Redis connected, False if using fallback
    """
    redis_url = os.getenv('REDIS_URL')
    timeout = app.config.get('LOYALTY_CATALOG_CACHE_TIMEOUT', 300)

    if redis_url and not app.config.get('TESTING'):
        try:
            import redis
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_DEFAULT_TIMEOUT'] = timeout
            app.config['CACHE_KEY_PREFIX'] = KEY_PREFIX

            cache.init_app(app)
            logger.info('Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except (redis.RedisError, ValueError) as e:
            logger.warning('Redis unavailable (%s), using simple cache', str(e))

    app.config['CACHE_TYPE'] = 'SimpleCache'
    app.config['CACHE_DEFAULT_TIMEOUT'] = timeout

    cache.init_app(app)
    logger.info('Using simple in-memory cache (no Redis)')
    return False


def cache_key(*args, **kwargs):
    """
    Generate a cache key from arguments.

        key = cache_key('program', 12)               -> 'program:12'
        key = cache_key('rewards', program_id=12)    -> 'rewards:program_id=12'
    """
    parts = list(args)
    for k, v in sorted(kwargs.items()):
        parts.append(f'{k}={v}')
    return ':'.join(str(p) for p in parts)


def invalidate(*keys):
    """Drop cached entries; a cache outage must not fail the admin edit."""
    try:
        cache.delete_many(*keys)
    except Exception as e:
        logger.warning('Cache invalidation failed for %s: %s', keys, e)
