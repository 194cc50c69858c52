"""
Thread-safe rate-limited logging.

A schedule that keeps failing is retried on every tick; this keeps the
first failure in each window visible without repeating it every hour.
"""
import logging
import threading
from typing import Dict, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# One cache per interval so each key expires after its own window
_caches: Dict[int, TTLCache] = {}
_caches_lock = threading.RLock()

_MAX_KEYS = 1024


def _cache_for(interval: int) -> TTLCache:
    cache = _caches.get(interval)
    if cache is None:
        cache = TTLCache(maxsize=_MAX_KEYS, ttl=interval)
        _caches[interval] = cache
    return cache


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 3600,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message at most once per `interval` seconds for the same key.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Suppression window in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: Deduplication key (defaults to level and message)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = key or f"{level}:{message}"

    with _caches_lock:
        cache = _cache_for(interval)
        if cache_key in cache:
            return False
        cache[cache_key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed key."""
    with _caches_lock:
        _caches.clear()
