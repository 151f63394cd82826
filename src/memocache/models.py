"""Value types shared across the cache engine.

Design:
- CacheKey: hashable identity of one cached computation
- CacheEntry: stored value + optional absolute expiry (engine-internal)
- CacheStats: immutable statistics snapshot handed to callers
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Sentinel:
    """Named marker object, distinct from every cacheable value."""

    __slots__ = ("_name",)

    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __bool__(self) -> bool:
        return False


# Returned by ``peek`` when nothing is cached for a key.
MISSING: Any = _Sentinel("MISSING")

# Default for per-call ``ttl``: fall back to ``default_ttl``.
NOT_SET: Any = _Sentinel("NOT_SET")


class EvictionPolicy(str, Enum):
    """Victim selection rule applied when the store exceeds max_size."""

    LRU = "LRU"
    FIFO = "FIFO"
    TTL = "TTL"


@dataclass(frozen=True)
class CacheKey:
    """Identity of one cached unit of work.

    Attributes:
        function: Stable name of the compute function
        digest: sha256 of the serialized call arguments
    """

    function: str
    digest: str

    def __str__(self) -> str:
        return f"{self.function}:{self.digest[:12]}"


@dataclass
class CacheEntry:
    """Stored value with optional absolute expiration timestamp."""

    value: Any
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now > self.expires_at


class CacheStats(BaseModel):
    """Snapshot of engine counters.

    出力：
        - hits / misses / evictions / expirations：単調増加カウンタ
        - size：期限切れを除いた生存エントリ数
        - hit_ratio：hits / (hits + misses)、アクセス無しなら 0.0
        - memory_estimate：保存値の概算バイト数（sys.getsizeof ベース、期限切れ未削除分も含む）
    """

    model_config = ConfigDict(frozen=True)

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int
    in_flight: int = 0
    eviction_policy: EvictionPolicy
    hit_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    memory_estimate: int = 0
