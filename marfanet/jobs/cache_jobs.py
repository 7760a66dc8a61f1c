"""
Cache Management Jobs

The in-memory statistics backend only drops expired entries when they are
read; this job sweeps the rest. Redis expires keys on its own.
"""

import logging

logger = logging.getLogger(__name__)


async def cleanup_expired_cache() -> int:
    """Remove expired entries from the statistics cache."""
    from marfanet.services.cache_service import get_cache

    try:
        removed = await get_cache().cleanup_expired()
    except Exception as e:
        logger.error(f"Cache cleanup failed: {e}")
        return 0

    if removed:
        logger.info(f"Removed {removed} expired cache entries")
    return removed
