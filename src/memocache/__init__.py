"""memocache - in-memory memoization engine with TTL expiry and LRU/FIFO/TTL eviction."""

from .cache import CacheEngine
from .config import DEFAULT_CONFIG, CacheConfig, ConfigurationError, load_config
from .keys import cache_name, compute_cache_key, make_key
from .models import MISSING, NOT_SET, CacheKey, CacheStats, EvictionPolicy

__version__ = "0.1.0"

__all__ = [
    "CacheEngine",
    "CacheConfig",
    "CacheKey",
    "CacheStats",
    "ConfigurationError",
    "DEFAULT_CONFIG",
    "EvictionPolicy",
    "MISSING",
    "NOT_SET",
    "cache_name",
    "compute_cache_key",
    "load_config",
    "make_key",
]
