"""Two-tier cache: in-process LRU (L1) in front of optional Redis (L2)."""

import fnmatch
import inspect
import logging
import time
from collections import Counter, OrderedDict
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ConnectionError, TimeoutError

from bastion.cache.keys import CacheKeyBuilder, CacheNamespace
from bastion.cache.models import (
    CacheConfig,
    CacheEntry,
    CacheStats,
    NamespaceStats,
    estimate_size,
)
from bastion.cache.ttl import TTLPolicy
from bastion.core.classifier import sanitize
from bastion.observability.metrics import record_cache_hit, record_cache_miss

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

OTHER_NAMESPACE = "other"


class CacheCircuitBreaker:
    """Circuit breaker for Redis failures with automatic recovery.

    States:
        closed: Normal operation, Redis requests allowed
        open: Circuit tripped, Redis bypassed entirely
        half_open: Testing recovery, requests allowed until one fails

    Pattern:
        closed -> (failures >= threshold) -> open
        open -> (timeout expired) -> half_open
        half_open -> (success) -> closed
        half_open -> (failure) -> open
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 300,
        clock: Clock = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            timeout: Seconds before attempting recovery from open state
            clock: Monotonic clock (injectable for tests)
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self._clock = clock
        self.failure_count = 0
        self.state = "closed"  # closed, open, half_open
        self.last_failure_time: float | None = None

    def on_success(self) -> None:
        """Record successful operation."""
        if self.state == "half_open":
            logger.info("Cache circuit breaker recovered, closing circuit")
            self.state = "closed"
        self.failure_count = 0

    def on_failure(self) -> None:
        """Record failed operation and potentially open circuit."""
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning(
                    f"Cache circuit breaker opened after {self.failure_count} failures"
                )
            self.state = "open"

    def can_attempt(self) -> bool:
        """Check if a Redis operation should be attempted."""
        if self.state == "closed":
            return True

        if self.state == "open":
            if (
                self.last_failure_time is not None
                and self._clock() - self.last_failure_time > self.timeout
            ):
                logger.info("Cache circuit breaker timeout expired, entering half-open")
                self.state = "half_open"
                return True
            return False

        return True

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.state = "closed"
        self.failure_count = 0
        self.last_failure_time = None


class MemoryTier:
    """Bounded in-process LRU with per-entry expiry.

    Expired entries are dropped lazily on access; least recently used
    entries are evicted when capacity is exceeded.
    """

    def __init__(
        self,
        max_entries: int,
        clock: Clock = time.time,
        on_evict: Callable[[str], None] | None = None,
        on_expire: Callable[[str], None] | None = None,
    ):
        self.max_entries = max_entries
        self._clock = clock
        self._on_evict = on_evict
        self._on_expire = on_expire
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.size_bytes = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> CacheEntry | None:
        """Live entry for key (marked most recently used), else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._remove(key)
            if self._on_expire:
                self._on_expire(key)
            return None
        self._entries.move_to_end(key)
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Live entry for key without touching recency or counters."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    def set(self, entry: CacheEntry) -> None:
        if entry.key in self._entries:
            self._remove(entry.key)
        self._entries[entry.key] = entry
        self.size_bytes += entry.size
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            self._remove(oldest)
            if self._on_evict:
                self._on_evict(oldest)

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._remove(key)
        return True

    def keys(self) -> list[str]:
        """Keys of live entries."""
        now = self._clock()
        return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def entries(self) -> list[CacheEntry]:
        now = self._clock()
        return [entry for entry in self._entries.values() if not entry.is_expired(now)]

    def clear(self) -> None:
        self._entries.clear()
        self.size_bytes = 0

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self.size_bytes -= entry.size


class TwoTierCache:
    """Process-local LRU in front of an optional shared Redis tier.

    Features:
        - L1 lookups never touch the network
        - L2 hits are backfilled into L1 with their remaining TTL
        - MessagePack envelopes carry the TTL across tiers
        - Circuit breaker bypasses a dead Redis until it recovers
        - Per-namespace and per-key counters for the optimizer

    Design Philosophy:
        Cache is an OPTIONAL optimization. Every L2 failure is caught,
        logged and counted; callers only ever see a miss.
    """

    def __init__(
        self,
        config: CacheConfig,
        ttl_policy: TTLPolicy | None = None,
        clock: Clock = time.time,
        redis: "Redis[bytes] | None" = None,
    ):
        """Initialize cache.

        Args:
            config: Cache configuration
            ttl_policy: TTL policy (defaults to one built from config)
            clock: Wall clock in epoch seconds (injectable for tests)
            redis: Pre-built Redis client (defaults to one built from config)
        """
        self.config = config
        self.ttl_policy = ttl_policy or TTLPolicy(
            config.default_ttls_by_namespace, default_ttl=config.default_ttl
        )
        self._clock = clock
        self.stats = CacheStats()
        self.circuit_breaker = CacheCircuitBreaker(
            failure_threshold=config.circuit_breaker_threshold,
            timeout=config.circuit_breaker_timeout,
        )
        self.l1 = MemoryTier(
            config.l1_max_entries,
            clock=clock,
            on_evict=self._on_l1_evict,
            on_expire=self._on_l1_expire,
        )
        self._namespace_stats: dict[str, NamespaceStats] = {}
        self._access_counts: Counter[str] = Counter()

        self.redis: Redis[bytes] | None = redis
        if self.redis is None and config.enabled:
            self.redis = Redis.from_url(
                config.redis_url,
                socket_timeout=config.timeout,
                socket_connect_timeout=config.timeout,
                retry_on_timeout=True,
                max_connections=10,
                decode_responses=False,  # msgpack works on bytes
            )
            logger.info(f"Cache L2 enabled with Redis at {sanitize(config.redis_url)}")
        elif self.redis is None:
            logger.info("Cache L2 disabled by configuration, using L1 only")

    # Lookups

    async def get(self, key: str) -> Any | None:
        """Retrieve a cached value.

        Returns:
            The value, or None on miss, expiry or any L2 failure
        """
        now = self._clock()
        namespace = self._track_access(key, now)

        entry = self.l1.get(key)
        if entry is not None:
            self._record_hit(namespace, "l1")
            return entry.value

        entry = await self._l2_get(key)
        if entry is not None:
            remaining = entry.remaining_ttl(now)
            if remaining > 0:
                self._backfill(entry, remaining, now)
                self._record_hit(namespace, "l2")
                return entry.value

        self._record_miss(namespace)
        return None

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Retrieve several values. Missing keys are absent from the result."""
        now = self._clock()
        found: dict[str, Any] = {}
        pending: list[str] = []

        for key in keys:
            namespace = self._track_access(key, now)
            entry = self.l1.get(key)
            if entry is not None:
                self._record_hit(namespace, "l1")
                found[key] = entry.value
            else:
                pending.append(key)

        redis = self._l2() if pending else None
        if redis is not None:
            try:
                values = await redis.mget(pending)
                self.circuit_breaker.on_success()
            except (ConnectionError, TimeoutError) as e:
                self._on_l2_failure("mget", e)
                values = [None] * len(pending)
            except Exception as e:
                self._on_l2_error("mget", e)
                values = [None] * len(pending)

            for key, data in zip(pending, values):
                entry = self._decode(key, data) if data is not None else None
                if entry is not None and entry.remaining_ttl(now) > 0:
                    self._backfill(entry, entry.remaining_ttl(now), now)
                    self._record_hit(self._namespace(key), "l2")
                    found[key] = entry.value

        for key in pending:
            if key not in found:
                self._record_miss(self._namespace(key))
        return found

    async def exists(self, key: str) -> bool:
        """Whether a live entry exists in either tier (no counters touched)."""
        if self.l1.peek(key) is not None:
            return True
        redis = self._l2()
        if redis is None:
            return False
        try:
            count = await redis.exists(key)
            self.circuit_breaker.on_success()
            return bool(count)
        except (ConnectionError, TimeoutError) as e:
            self._on_l2_failure("exists", e)
        except Exception as e:
            self._on_l2_error("exists", e)
        return False

    # Writes

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a value in L1 and (best-effort) L2.

        Args:
            key: Cache key (see CacheKeyBuilder)
            value: Payload; must be MessagePack-serializable to reach L2
            ttl_seconds: Lifetime; defaults to the namespace TTL
        """
        entry = self._make_entry(key, value, ttl_seconds)
        self.l1.set(entry)
        self._count_set(key)

        redis = self._l2()
        if redis is None:
            return
        try:
            data = entry.pack()
        except (TypeError, ValueError, OverflowError) as e:
            # Serialization failures are not Redis' fault
            self._on_l2_error("serialize", e)
            return

        try:
            await redis.set(key, data, ex=entry.ttl_seconds)
            self.circuit_breaker.on_success()
        except (ConnectionError, TimeoutError) as e:
            self._on_l2_failure("set", e)
        except Exception as e:
            self._on_l2_error("set", e)

    async def set_many(
        self, items: Mapping[str, Any], ttl_seconds: int | None = None
    ) -> None:
        """Store several values; L2 writes go through one pipeline."""
        entries = [self._make_entry(key, value, ttl_seconds) for key, value in items.items()]
        for entry in entries:
            self.l1.set(entry)
            self._count_set(entry.key)

        redis = self._l2() if entries else None
        if redis is None:
            return
        try:
            async with redis.pipeline(transaction=False) as pipe:
                for entry in entries:
                    try:
                        pipe.set(entry.key, entry.pack(), ex=entry.ttl_seconds)
                    except (TypeError, ValueError, OverflowError) as e:
                        self._on_l2_error("serialize", e)
                await pipe.execute()
            self.circuit_breaker.on_success()
        except (ConnectionError, TimeoutError) as e:
            self._on_l2_failure("set_many", e)
        except Exception as e:
            self._on_l2_error("set_many", e)

    async def get_or_set(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any] | Any],
        ttl_seconds: int | None = None,
    ) -> Any:
        """Return the cached value, or load, cache and return it.

        A loader returning None is not cached. Loader errors propagate.
        """
        value = await self.get(key)
        if value is not None:
            return value

        value = loader()
        if inspect.isawaitable(value):
            value = await value
        if value is not None:
            await self.set(key, value, ttl_seconds)
        return value

    async def delete(self, key: str) -> bool:
        """Remove a key from both tiers. Returns True if it existed anywhere."""
        removed = self.l1.delete(key)

        redis = self._l2()
        if redis is not None:
            try:
                removed = bool(await redis.delete(key)) or removed
                self.circuit_breaker.on_success()
            except (ConnectionError, TimeoutError) as e:
                self._on_l2_failure("delete", e)
            except Exception as e:
                self._on_l2_error("delete", e)

        if removed:
            self.stats.deletes += 1
        return removed

    async def scan(self, pattern: str) -> list[str]:
        """Keys matching a glob pattern (``*`` and ``?``) in either tier."""
        keys = {key for key in self.l1.keys() if fnmatch.fnmatchcase(key, pattern)}

        redis = self._l2()
        if redis is not None:
            try:
                async for raw in redis.scan_iter(match=pattern, count=100):
                    keys.add(raw.decode() if isinstance(raw, bytes) else raw)
                self.circuit_breaker.on_success()
            except (ConnectionError, TimeoutError) as e:
                self._on_l2_failure("scan", e)
            except Exception as e:
                self._on_l2_error("scan", e)

        return sorted(keys)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns keys removed."""
        keys = await self.scan(pattern)
        if not keys:
            return 0

        for key in keys:
            self.l1.delete(key)

        redis = self._l2()
        if redis is not None:
            try:
                for start in range(0, len(keys), 100):
                    await redis.delete(*keys[start : start + 100])
                self.circuit_breaker.on_success()
            except (ConnectionError, TimeoutError) as e:
                self._on_l2_failure("delete_pattern", e)
            except Exception as e:
                self._on_l2_error("delete_pattern", e)

        self.stats.deletes += len(keys)
        logger.debug(f"Deleted {len(keys)} keys matching {pattern}")
        return len(keys)

    async def delete_namespace(self, namespace: CacheNamespace | str) -> int:
        """Delete every key in a namespace, including a parameterless key.

        Raises:
            ValueError: If namespace is not a CacheNamespace value
        """
        removed = await self.delete_pattern(CacheKeyBuilder.pattern(namespace))
        if await self.delete(CacheKeyBuilder.build(namespace)):
            removed += 1
        return removed

    async def clear(self) -> None:
        """Clear every namespaced entry (admin operation).

        Note:
            Expensive on L2; normal operation relies on TTL expiry.
        """
        self.l1.clear()
        if self._l2() is not None:
            for namespace in CacheNamespace:
                await self.delete_namespace(namespace)
        logger.info("Cache cleared successfully")

    # Introspection

    def get_stats(self) -> CacheStats:
        """Current statistics (hit rate, L1 size, circuit state)."""
        self.stats.key_count = len(self.l1)
        self.stats.memory_bytes = self.l1.size_bytes
        self.stats.circuit_state = self.circuit_breaker.state
        self.stats.update_hit_rate()
        return self.stats

    def get_info(self) -> dict[str, Any]:
        """Configuration and health summary (no secrets)."""
        return {
            "l1": {
                "entries": len(self.l1),
                "max_entries": self.config.l1_max_entries,
                "memory_bytes": self.l1.size_bytes,
            },
            "l2": {
                "enabled": self.redis is not None,
                "redis_url": sanitize(self.config.redis_url),
                "circuit_state": self.circuit_breaker.state,
            },
            "namespaces": len(self._namespace_stats),
            "tracked_keys": len(self._access_counts),
            "stats": self.get_stats().model_dump(),
        }

    async def health_check(self) -> dict[str, Any]:
        """Probe both tiers. L2 being down is reported, never raised."""
        l2_status = "disabled"
        if self.redis is not None:
            if not self.circuit_breaker.can_attempt():
                l2_status = "circuit_open"
            else:
                try:
                    await self.redis.ping()
                    self.circuit_breaker.on_success()
                    l2_status = "ok"
                except (ConnectionError, TimeoutError) as e:
                    self._on_l2_failure("ping", e)
                    l2_status = "unavailable"
                except Exception as e:
                    self._on_l2_error("ping", e)
                    l2_status = "unavailable"

        return {
            "healthy": l2_status in ("disabled", "ok"),
            "l1": "ok",
            "l2": l2_status,
        }

    def namespace_stats(self) -> dict[str, NamespaceStats]:
        return self._namespace_stats

    def access_counts(self) -> Counter[str]:
        return self._access_counts

    def l1_entries_by_namespace(self) -> dict[str, list[CacheEntry]]:
        grouped: dict[str, list[CacheEntry]] = {}
        for entry in self.l1.entries():
            grouped.setdefault(self._namespace(entry.key), []).append(entry)
        return grouped

    async def close(self) -> None:
        """Close Redis connection gracefully."""
        if self.redis is not None:
            await self.redis.aclose()
            logger.info("Cache L2 connection closed")

    # Internals

    def _namespace(self, key: str) -> str:
        namespace = CacheKeyBuilder.get_namespace(key)
        return namespace.value if namespace is not None else OTHER_NAMESPACE

    def _ns_stats(self, namespace: str) -> NamespaceStats:
        stats = self._namespace_stats.get(namespace)
        if stats is None:
            stats = self._namespace_stats[namespace] = NamespaceStats()
        return stats

    def _track_access(self, key: str, now: float) -> str:
        namespace = self._namespace(key)
        self._ns_stats(namespace).last_access = now
        self._access_counts[key] += 1
        if len(self._access_counts) > self.config.max_tracked_keys:
            # Keep the hotter half
            keep = self._access_counts.most_common(self.config.max_tracked_keys // 2)
            self._access_counts = Counter(dict(keep))
        return namespace

    def _record_hit(self, namespace: str, tier: str) -> None:
        self.stats.hits += 1
        if tier == "l1":
            self.stats.l1_hits += 1
        else:
            self.stats.l2_hits += 1
        self._ns_stats(namespace).hits += 1
        record_cache_hit(tier)

    def _record_miss(self, namespace: str) -> None:
        self.stats.misses += 1
        self._ns_stats(namespace).misses += 1
        record_cache_miss()

    def _count_set(self, key: str) -> None:
        self.stats.sets += 1
        self._ns_stats(self._namespace(key)).sets += 1

    def _on_l1_evict(self, key: str) -> None:
        self.stats.evictions += 1
        self._ns_stats(self._namespace(key)).evictions += 1

    def _on_l1_expire(self, key: str) -> None:
        self.stats.expirations += 1
        self._ns_stats(self._namespace(key)).expirations += 1

    def _make_entry(self, key: str, value: Any, ttl_seconds: int | None) -> CacheEntry:
        ttl = ttl_seconds or self.ttl_policy.ttl_for(CacheKeyBuilder.get_namespace(key))
        return CacheEntry(
            key=key,
            value=value,
            ttl_seconds=ttl,
            created_at=self._clock(),
            size=estimate_size(value),
        )

    def _backfill(self, entry: CacheEntry, remaining: float, now: float) -> None:
        ttl = max(1, min(int(remaining), self.config.l1_backfill_ttl))
        self.l1.set(
            CacheEntry(
                key=entry.key,
                value=entry.value,
                ttl_seconds=ttl,
                created_at=now,
                size=entry.size,
            )
        )

    def _l2(self) -> "Redis[bytes] | None":
        """Redis client if L2 is configured and its circuit allows a call."""
        if self.redis is None:
            return None
        if not self.circuit_breaker.can_attempt():
            logger.debug("Cache circuit breaker open, skipping L2")
            return None
        return self.redis

    async def _l2_get(self, key: str) -> CacheEntry | None:
        redis = self._l2()
        if redis is None:
            return None
        try:
            data = await redis.get(key)
            self.circuit_breaker.on_success()  # a miss is still a healthy round-trip
        except (ConnectionError, TimeoutError) as e:
            self._on_l2_failure("get", e)
            return None
        except Exception as e:
            self._on_l2_error("get", e)
            return None

        if data is None:
            return None
        return self._decode(key, data)

    def _decode(self, key: str, data: bytes) -> CacheEntry | None:
        try:
            return CacheEntry.unpack(data)
        except Exception as e:
            # Corrupt or foreign payload: treat as a miss
            self._on_l2_error("deserialize", e)
            return None

    def _on_l2_failure(self, operation: str, error: Exception) -> None:
        logger.warning(f"Cache {operation} failed (connection): {sanitize(str(error))}")
        self.stats.errors += 1
        self.circuit_breaker.on_failure()

    def _on_l2_error(self, operation: str, error: Exception) -> None:
        logger.error(f"Cache {operation} failed (unexpected): {sanitize(str(error))}")
        self.stats.errors += 1
