"""Victim selection for capacity eviction.

All functions are pure: they read the engine's bookkeeping and return the
keys to remove, in removal order. ``entries`` is expected to iterate in
insertion order (a plain dict does), which is what FIFO relies on and what
breaks LRU timestamp ties.
"""

from typing import Dict, List, Mapping

from .models import CacheEntry, CacheKey, EvictionPolicy


def select_lru(access: Mapping[CacheKey, float], entries: Mapping[CacheKey, CacheEntry], count: int) -> List[CacheKey]:
    """Oldest access first; equal timestamps fall back to insertion order."""
    if count <= 0:
        return []
    # sorted() is stable, so ties keep the insertion order of ``entries``
    ranked = sorted(entries, key=lambda k: access[k])
    return ranked[:count]


def select_fifo(entries: Mapping[CacheKey, CacheEntry], count: int) -> List[CacheKey]:
    """Oldest insertion first."""
    if count <= 0:
        return []
    victims = []
    for key in entries:
        if len(victims) >= count:
            break
        victims.append(key)
    return victims


def select_expired(entries: Mapping[CacheKey, CacheEntry], now: float) -> List[CacheKey]:
    return [key for key, entry in entries.items() if entry.is_expired(now)]


def select_victims(
    policy: EvictionPolicy,
    entries: Dict[CacheKey, CacheEntry],
    access: Dict[CacheKey, float],
    max_size: int,
    now: float,
) -> List[CacheKey]:
    """Return the keys to evict so that ``len(entries) <= max_size``.

    Args:
        policy: Active eviction policy
        entries: Entry store in insertion order
        access: Last access timestamp per key
        max_size: Capacity bound
        now: Current clock reading (TTL policy only)

    Returns:
        Keys to remove. Under TTL every expired entry is included even when
        that removes more than the overflow.
    """
    overflow = len(entries) - max_size
    if overflow <= 0:
        return []

    if policy == EvictionPolicy.FIFO:
        return select_fifo(entries, overflow)

    if policy == EvictionPolicy.TTL:
        expired = select_expired(entries, now)
        remaining = overflow - len(expired)
        if remaining <= 0:
            return expired
        gone = set(expired)
        survivors = {k: v for k, v in entries.items() if k not in gone}
        return expired + select_lru(access, survivors, remaining)

    return select_lru(access, entries, overflow)
