"""Two-tier caching for upstream API responses.

L1 is a bounded in-process LRU; L2 is an optional shared Redis tier guarded
by a circuit breaker. Cache failures are never fatal: without Redis the
system works from L1 alone, just with fewer hits.

Usage:
    >>> from bastion.cache import CacheConfig, CacheKeyBuilder, TwoTierCache
    >>>
    >>> cache = TwoTierCache(CacheConfig(enabled=True))
    >>> key = CacheKeyBuilder.jira_sprint("1234")
    >>> sprint = await cache.get(key)
    >>> if sprint is None:
    >>>     sprint = await jira.get_sprint("1234")
    >>>     await cache.set(key, sprint)
"""

from bastion.cache.keys import CacheKeyBuilder, CacheNamespace
from bastion.cache.models import CacheConfig, CacheEntry, CacheStats, NamespaceStats
from bastion.cache.optimizer import (
    CacheOptimizer,
    NamespacePattern,
    OptimizationAction,
    OptimizationActionType,
    OptimizationResult,
    OptimizationRule,
    PrefetchStrategy,
)
from bastion.cache.service import CacheCircuitBreaker, MemoryTier, TwoTierCache
from bastion.cache.ttl import (
    EntityLifecycle,
    LifecycleTTLResolver,
    TTLPolicy,
    lifecycle_from_state,
)

__all__ = [
    "TwoTierCache",
    "MemoryTier",
    "CacheCircuitBreaker",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "NamespaceStats",
    "CacheKeyBuilder",
    "CacheNamespace",
    "EntityLifecycle",
    "TTLPolicy",
    "LifecycleTTLResolver",
    "lifecycle_from_state",
    "CacheOptimizer",
    "NamespacePattern",
    "OptimizationAction",
    "OptimizationActionType",
    "OptimizationResult",
    "OptimizationRule",
    "PrefetchStrategy",
]
