"""Lifecycle-aware TTL policy.

An entity's mutability decides how long it may be cached:

    IMMUTABLE  closed sprints, merged PRs, historical data   30 days
    SCHEDULED  future sprints                                15 minutes
    ACTIVE     in-flight sprints, open issues                 5 minutes
    UNKNOWN    namespace default, else 10 minutes

The optimizer may scale a namespace's TTLs by a bounded multiplier.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from bastion.cache.keys import CacheKeyBuilder, CacheNamespace

if TYPE_CHECKING:
    from bastion.cache.service import TwoTierCache

logger = logging.getLogger(__name__)

IMMUTABLE_TTL = 30 * 24 * 60 * 60
SCHEDULED_TTL = 15 * 60
ACTIVE_TTL = 5 * 60
DEFAULT_TTL = 10 * 60
ENTITY_STATE_TTL = 60 * 60


class EntityLifecycle(str, Enum):
    """Mutability class of a cached entity."""

    IMMUTABLE = "immutable"
    ACTIVE = "active"
    SCHEDULED = "scheduled"
    UNKNOWN = "unknown"


_LIFECYCLE_TTLS = {
    EntityLifecycle.IMMUTABLE: IMMUTABLE_TTL,
    EntityLifecycle.ACTIVE: ACTIVE_TTL,
    EntityLifecycle.SCHEDULED: SCHEDULED_TTL,
}

_STATE_LIFECYCLES = {
    "closed": EntityLifecycle.IMMUTABLE,
    "done": EntityLifecycle.IMMUTABLE,
    "resolved": EntityLifecycle.IMMUTABLE,
    "merged": EntityLifecycle.IMMUTABLE,
    "released": EntityLifecycle.IMMUTABLE,
    "completed": EntityLifecycle.IMMUTABLE,
    "historical": EntityLifecycle.IMMUTABLE,
    "active": EntityLifecycle.ACTIVE,
    "open": EntityLifecycle.ACTIVE,
    "in progress": EntityLifecycle.ACTIVE,
    "in_progress": EntityLifecycle.ACTIVE,
    "started": EntityLifecycle.ACTIVE,
    "future": EntityLifecycle.SCHEDULED,
    "scheduled": EntityLifecycle.SCHEDULED,
    "planned": EntityLifecycle.SCHEDULED,
}


def lifecycle_from_state(state: str | None) -> EntityLifecycle:
    """Map an upstream state string (sprint, issue or PR) to a lifecycle.

    Example:
        >>> lifecycle_from_state("closed")
        <EntityLifecycle.IMMUTABLE: 'immutable'>
    """
    if not state:
        return EntityLifecycle.UNKNOWN
    return _STATE_LIFECYCLES.get(state.strip().lower(), EntityLifecycle.UNKNOWN)


def _namespace_value(namespace: CacheNamespace | str | None) -> str | None:
    if isinstance(namespace, CacheNamespace):
        return namespace.value
    return namespace


class TTLPolicy:
    """Computes TTLs from namespace and lifecycle.

    Example:
        >>> policy = TTLPolicy({"jira:sprint": 600})
        >>> policy.ttl_for("jira:sprint", EntityLifecycle.IMMUTABLE)
        2592000
        >>> policy.ttl_for("jira:sprint")
        600
    """

    def __init__(
        self,
        default_ttls_by_namespace: dict[str, int] | None = None,
        default_ttl: int = DEFAULT_TTL,
        max_multiplier: float = 4.0,
    ):
        """Initialize policy.

        Args:
            default_ttls_by_namespace: TTL (seconds) for UNKNOWN lifecycle per namespace
            default_ttl: TTL when the namespace has no default
            max_multiplier: Bound on optimizer adjustments (and 1/bound below)
        """
        self.default_ttls_by_namespace = dict(default_ttls_by_namespace or {})
        self.default_ttl = default_ttl
        self.max_multiplier = max_multiplier
        self._multipliers: dict[str, float] = {}

    @property
    def multipliers(self) -> dict[str, float]:
        return dict(self._multipliers)

    def base_ttl(
        self,
        namespace: CacheNamespace | str | None,
        lifecycle: EntityLifecycle = EntityLifecycle.UNKNOWN,
    ) -> int:
        """TTL before optimizer adjustment."""
        if lifecycle in _LIFECYCLE_TTLS:
            return _LIFECYCLE_TTLS[lifecycle]
        name = _namespace_value(namespace)
        if name is not None and name in self.default_ttls_by_namespace:
            return self.default_ttls_by_namespace[name]
        return self.default_ttl

    def ttl_for(
        self,
        namespace: CacheNamespace | str | None,
        lifecycle: EntityLifecycle = EntityLifecycle.UNKNOWN,
    ) -> int:
        """TTL in seconds, always within [1, IMMUTABLE_TTL]."""
        ttl = self.base_ttl(namespace, lifecycle)
        name = _namespace_value(namespace)
        if name is not None:
            ttl = int(ttl * self._multipliers.get(name, 1.0))
        return max(1, min(ttl, IMMUTABLE_TTL))

    def adjust(self, namespace: CacheNamespace | str, factor: float) -> float:
        """Scale a namespace's TTLs. Returns the new, bounded multiplier."""
        name = namespace.value if isinstance(namespace, CacheNamespace) else namespace
        current = self._multipliers.get(name, 1.0)
        updated = max(1 / self.max_multiplier, min(current * factor, self.max_multiplier))
        self._multipliers[name] = updated
        logger.info(f"TTL multiplier for {name}: {current:.2f} -> {updated:.2f}")
        return updated

    def reset_adjustments(self) -> None:
        self._multipliers.clear()


StateFetcher = Callable[[str], Awaitable[str | None] | str | None]


class LifecycleTTLResolver:
    """Derives TTLs from an entity's upstream state, caching the state.

    The state lookup is usually an upstream call (e.g. fetch a sprint), so the
    state itself is cached for an hour under the entity-state namespace.
    """

    def __init__(
        self,
        cache: "TwoTierCache",
        policy: TTLPolicy,
        state_ttl: int = ENTITY_STATE_TTL,
    ):
        self.cache = cache
        self.policy = policy
        self.state_ttl = state_ttl

    async def resolve(
        self,
        namespace: CacheNamespace | str,
        entity_id: str,
        fetch_state: StateFetcher,
    ) -> int:
        """Return the TTL for an entity in a namespace.

        Args:
            namespace: Namespace the entity's data is cached under
            entity_id: Upstream identifier (sprint id, PR number, ...)
            fetch_state: Returns the entity's state string (sync or async)

        Returns:
            TTL in seconds; the namespace default if the state is unavailable
        """
        state_key = CacheKeyBuilder.entity_state(namespace, entity_id)
        state = await self.cache.get(state_key)

        if state is None:
            try:
                result: Any = fetch_state(entity_id)
                if inspect.isawaitable(result):
                    result = await result
                state = result
            except Exception as e:
                logger.warning(
                    f"State lookup failed for {namespace}/{entity_id}, "
                    f"using namespace default TTL: {e}"
                )
                return self.policy.ttl_for(namespace)

            if state is not None:
                await self.cache.set(state_key, state, self.state_ttl)

        return self.policy.ttl_for(namespace, lifecycle_from_state(state))
