"""Cache entry, configuration and statistics models."""

from dataclasses import dataclass
from typing import Any

import msgpack
from pydantic import BaseModel, Field

from bastion.core.config import CacheConfig

__all__ = ["CacheConfig", "CacheEntry", "CacheStats", "NamespaceStats"]


class CacheEntry(BaseModel):
    """A cached value and the TTL it was stored with.

    The same envelope is held in L1 and serialized (MessagePack) into Redis,
    so an L2 hit knows how much lifetime the entry has left.

    Attributes:
        key: Full namespaced cache key
        value: Cached payload (must be MessagePack-serializable for L2)
        ttl_seconds: Lifetime in seconds
        created_at: Wall clock time (epoch seconds) when stored
        size: Approximate serialized size in bytes
    """

    key: str
    value: Any = None
    ttl_seconds: int = Field(..., ge=1)
    created_at: float
    size: int = Field(default=0, ge=0)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def remaining_ttl(self, now: float) -> float:
        """Seconds of lifetime left (negative once expired)."""
        return self.expires_at - now

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def pack(self) -> bytes:
        """Serialize to MessagePack.

        Raises:
            TypeError: If the value is not MessagePack-serializable
        """
        data: bytes = msgpack.packb(
            {
                "key": self.key,
                "value": self.value,
                "ttl_seconds": self.ttl_seconds,
                "created_at": self.created_at,
            },
            use_bin_type=True,
        )
        return data

    @classmethod
    def unpack(cls, data: bytes) -> "CacheEntry":
        """Deserialize a MessagePack envelope written by pack()."""
        raw = msgpack.unpackb(data, raw=False)
        return cls(**raw, size=len(data))


def estimate_size(value: Any) -> int:
    """Approximate payload size in bytes.

    Falls back to the repr length for values MessagePack cannot encode.
    """
    try:
        return len(msgpack.packb(value, use_bin_type=True))
    except (TypeError, ValueError, OverflowError):
        return len(repr(value))


class CacheStats(BaseModel):
    """Cache performance statistics.

    Attributes:
        hits: Lookups served from L1 or L2
        l1_hits: Lookups served from L1
        l2_hits: Lookups served from L2 (and backfilled into L1)
        misses: Lookups that found nothing
        sets: Values stored
        deletes: Keys removed by callers
        errors: L2 failures (connection, timeout, serialization)
        evictions: L1 entries dropped for capacity
        expirations: L1 entries found expired
        hit_rate: Hit rate percentage (hits / lookups * 100)
        key_count: Entries currently in L1
        memory_bytes: Approximate L1 footprint
        circuit_state: L2 circuit breaker state
    """

    hits: int = Field(default=0, description="Cache hits")
    l1_hits: int = Field(default=0, description="L1 hits")
    l2_hits: int = Field(default=0, description="L2 hits")
    misses: int = Field(default=0, description="Cache misses")
    sets: int = Field(default=0, description="Cache writes")
    deletes: int = Field(default=0, description="Cache deletes")
    errors: int = Field(default=0, description="Cache errors")
    evictions: int = Field(default=0, description="L1 evictions")
    expirations: int = Field(default=0, description="L1 expirations")
    hit_rate: float = Field(default=0.0, description="Hit rate percentage")
    key_count: int = Field(default=0, description="Entries in L1")
    memory_bytes: int = Field(default=0, description="Approximate L1 size (bytes)")
    circuit_state: str = Field(
        default="closed", description="Circuit breaker state (closed/open/half_open)"
    )

    def update_hit_rate(self) -> None:
        """Recalculate hit rate based on current stats."""
        total = self.hits + self.misses
        self.hit_rate = (self.hits / total * 100) if total > 0 else 0.0


@dataclass
class NamespaceStats:
    """Per-namespace counters read by the optimizer."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    expirations: int = 0
    evictions: int = 0
    last_access: float | None = None

    @property
    def requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hit ratio in [0, 1]."""
        return self.hits / self.requests if self.requests else 0.0
