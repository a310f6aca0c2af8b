"""
Caching helpers for expensive aggregate queries
Backed by Redis (django-redis) in production, local memory otherwise
"""
from django.core.cache import cache
import logging

logger = logging.getLogger(__name__)

# Cache TTLs (in seconds)
DASHBOARD_CACHE_TTL = 300  # 5 minutes

DASHBOARD_CACHE_KEY = 'dashboard_stats'


def get_cached_dashboard():
    """Get cached dashboard statistics, or None on a miss"""
    data = cache.get(DASHBOARD_CACHE_KEY)
    logger.debug(f"Dashboard cache {'HIT' if data is not None else 'MISS'}")
    return data


def cache_dashboard(data, ttl=DASHBOARD_CACHE_TTL):
    cache.set(DASHBOARD_CACHE_KEY, data, ttl)
    logger.debug("Cached dashboard statistics")


def invalidate_dashboard_cache():
    """Invalidate dashboard statistics"""
    cache.delete(DASHBOARD_CACHE_KEY)
    logger.debug("Invalidated dashboard cache")
