"""Advisory cache optimizer.

Reads the cache's per-namespace counters, evaluates a table of rules and
optionally executes the resulting actions:

    raise-ttl-low-hit-rate   hit rate below target, misses mostly expiries
                             -> scale the namespace TTL up
    prewarm-hot-keys         frequently requested keys currently absent
                             -> reload them through a PrefetchStrategy
    evict-stale-namespace    namespace untouched for a long time
                             -> delete its keys

The optimizer never raises: a failed run only costs performance.
"""

import asyncio
import contextlib
import inspect
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from bastion.cache.keys import CacheKeyBuilder
from bastion.cache.service import OTHER_NAMESPACE, TwoTierCache
from bastion.core.classifier import sanitize
from bastion.core.config import OptimizerConfig

logger = logging.getLogger(__name__)

LARGE_ENTRY_BYTES = 100 * 1024


class OptimizationActionType(str, Enum):
    RAISE_TTL = "raise_ttl"
    PREWARM = "prewarm"
    EVICT_NAMESPACE = "evict_namespace"


@dataclass(frozen=True)
class NamespacePattern:
    """Observed access pattern for one namespace."""

    namespace: str
    requests: int
    hits: int
    misses: int
    hit_rate: float
    expirations: int
    evictions: int
    key_count: int
    average_size: float
    total_size: int
    last_access: float | None
    hot_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class OptimizationAction:
    """A change proposed by a rule."""

    type: OptimizationActionType
    namespace: str
    rule: str
    reason: str
    factor: float = 1.0
    keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleContext:
    config: OptimizerConfig
    now: float


@dataclass(frozen=True)
class OptimizationRule:
    """One row of the rule table.

    evaluate returns the actions the rule proposes for a namespace (often none).
    """

    name: str
    evaluate: Callable[[NamespacePattern, RuleContext], list[OptimizationAction]]


@dataclass
class PrefetchStrategy:
    """Loader used to prewarm keys in one namespace.

    Attributes:
        namespace: Namespace the loader serves
        loader: Receives missing keys, returns {key: value} (sync or async)
        ttl_seconds: TTL for loaded values (None = namespace default)
    """

    namespace: str
    loader: Callable[[list[str]], Awaitable[dict[str, Any]] | dict[str, Any]]
    ttl_seconds: int | None = None


@dataclass
class OptimizationResult:
    """Outcome of one optimize() run."""

    started_at: float
    actions: list[OptimizationAction] = field(default_factory=list)
    executed: dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in OptimizationActionType}
    )
    recommendations: list[str] = field(default_factory=list)
    space_saved: int = 0
    duration_ms: float = 0.0
    errors: list[str] = field(default_factory=list)


def _raise_ttl_rule(pattern: NamespacePattern, ctx: RuleContext) -> list[OptimizationAction]:
    if pattern.requests < ctx.config.min_requests:
        return []
    if pattern.hit_rate >= ctx.config.target_hit_rate:
        return []
    # Most misses must come from entries expiring, not from cold keys
    if pattern.misses == 0 or pattern.expirations * 2 < pattern.misses:
        return []
    return [
        OptimizationAction(
            type=OptimizationActionType.RAISE_TTL,
            namespace=pattern.namespace,
            rule="raise-ttl-low-hit-rate",
            reason=(
                f"hit rate {pattern.hit_rate:.0%} below target "
                f"{ctx.config.target_hit_rate:.0%} with {pattern.expirations} expirations"
            ),
            factor=ctx.config.ttl_multiplier,
        )
    ]


def _prewarm_rule(pattern: NamespacePattern, ctx: RuleContext) -> list[OptimizationAction]:
    if not pattern.hot_keys:
        return []
    return [
        OptimizationAction(
            type=OptimizationActionType.PREWARM,
            namespace=pattern.namespace,
            rule="prewarm-hot-keys",
            reason=f"{len(pattern.hot_keys)} hot keys are not cached",
            keys=pattern.hot_keys,
        )
    ]


def _evict_stale_rule(
    pattern: NamespacePattern, ctx: RuleContext
) -> list[OptimizationAction]:
    # Foreign keys have no namespace to delete by
    if pattern.namespace == OTHER_NAMESPACE:
        return []
    if pattern.key_count == 0 or pattern.last_access is None:
        return []
    idle = ctx.now - pattern.last_access
    if idle <= ctx.config.stale_after_seconds:
        return []
    return [
        OptimizationAction(
            type=OptimizationActionType.EVICT_NAMESPACE,
            namespace=pattern.namespace,
            rule="evict-stale-namespace",
            reason=f"no access for {idle:.0f}s",
        )
    ]


DEFAULT_RULES: tuple[OptimizationRule, ...] = (
    OptimizationRule("raise-ttl-low-hit-rate", _raise_ttl_rule),
    OptimizationRule("prewarm-hot-keys", _prewarm_rule),
    OptimizationRule("evict-stale-namespace", _evict_stale_rule),
)


class CacheOptimizer:
    """Tunes TTLs, prewarms hot keys and evicts stale namespaces.

    Example:
        >>> optimizer = CacheOptimizer(cache, OptimizerConfig())
        >>> optimizer.register_prefetch(PrefetchStrategy("jira:sprint", load_sprints))
        >>> result = await optimizer.optimize()
        >>> result.recommendations
        []
    """

    def __init__(
        self,
        cache: TwoTierCache,
        config: OptimizerConfig | None = None,
        clock: Callable[[], float] = time.time,
        rules: list[OptimizationRule] | None = None,
    ):
        self.cache = cache
        self.config = config or OptimizerConfig()
        self._clock = clock
        self.rules: list[OptimizationRule] = list(rules or DEFAULT_RULES)
        self._strategies: dict[str, PrefetchStrategy] = {}
        self._history: deque[OptimizationResult] = deque(maxlen=self.config.history_size)
        self._task: asyncio.Task[None] | None = None

    def add_rule(self, rule: OptimizationRule) -> None:
        self.rules.append(rule)

    def register_prefetch(self, strategy: PrefetchStrategy) -> None:
        self._strategies[strategy.namespace] = strategy

    def get_history(self) -> list[OptimizationResult]:
        return list(self._history)

    def analyze(self) -> list[NamespacePattern]:
        """Snapshot per-namespace access patterns from the cache counters."""
        entries_by_ns = self.cache.l1_entries_by_namespace()
        hot_by_ns: dict[str, list[str]] = {}
        for key, count in self.cache.access_counts().most_common():
            if count < self.config.hot_key_threshold:
                break
            if self.cache.l1.peek(key) is None:
                namespace = CacheKeyBuilder.get_namespace(key)
                name = namespace.value if namespace is not None else OTHER_NAMESPACE
                hot_by_ns.setdefault(name, []).append(key)

        patterns = []
        for namespace, stats in self.cache.namespace_stats().items():
            entries = entries_by_ns.get(namespace, [])
            total_size = sum(entry.size for entry in entries)
            patterns.append(
                NamespacePattern(
                    namespace=namespace,
                    requests=stats.requests,
                    hits=stats.hits,
                    misses=stats.misses,
                    hit_rate=stats.hit_rate,
                    expirations=stats.expirations,
                    evictions=stats.evictions,
                    key_count=len(entries),
                    average_size=total_size / len(entries) if entries else 0.0,
                    total_size=total_size,
                    last_access=stats.last_access,
                    hot_keys=tuple(hot_by_ns.get(namespace, ())),
                )
            )
        return patterns

    async def optimize(self, execute: bool = True) -> OptimizationResult:
        """Analyze, evaluate rules and (optionally) execute actions.

        Args:
            execute: False only computes actions and recommendations

        Returns:
            OptimizationResult (also appended to the bounded history)
        """
        now = self._clock()
        result = OptimizationResult(started_at=now)
        try:
            patterns = self.analyze()
            ctx = RuleContext(config=self.config, now=now)
            for pattern in patterns:
                for rule in self.rules:
                    try:
                        result.actions.extend(rule.evaluate(pattern, ctx))
                    except Exception as e:
                        result.errors.append(f"{rule.name}: {sanitize(str(e))}")
                        logger.warning(f"Optimization rule {rule.name} failed: {e}")

            if execute:
                for action in result.actions:
                    await self._execute(action, result, patterns)

            result.recommendations = self.recommendations(patterns, now)
        except Exception as e:
            result.errors.append(sanitize(str(e)))
            logger.error(f"Cache optimization failed: {sanitize(str(e))}")

        result.duration_ms = (self._clock() - now) * 1000
        self._history.append(result)
        logger.info(
            f"Cache optimization completed: {len(result.actions)} actions, "
            f"executed={result.executed}, space_saved={result.space_saved}B"
        )
        return result

    def recommendations(self, patterns: list[NamespacePattern], now: float) -> list[str]:
        """Human-readable tuning advice."""
        advice: list[str] = []
        stats = self.cache.get_stats()

        total = stats.hits + stats.misses
        if total >= self.config.min_requests and stats.hit_rate < 30:
            advice.append(
                f"Overall hit rate is {stats.hit_rate:.1f}%. Review TTLs and key reuse."
            )

        if stats.sets and stats.evictions > stats.sets * 0.1:
            advice.append(
                f"Heavy eviction pressure ({stats.evictions} evictions for "
                f"{stats.sets} writes). Consider raising l1_max_entries."
            )

        large = [p for p in patterns if p.average_size > LARGE_ENTRY_BYTES]
        if large:
            advice.append(
                "Consider compressing large cache entries. "
                f"{len(large)} namespaces average more than 100KB per entry."
            )

        stale = [
            p
            for p in patterns
            if p.last_access is not None
            and now - p.last_access > self.config.stale_after_seconds
        ]
        if stale:
            advice.append(
                f"Clean up stale cache entries. {len(stale)} namespaces have not been "
                f"accessed in over {self.config.stale_after_seconds / 3600:.0f} hour(s)."
            )
        return advice

    async def warm_cache(self, keys_by_namespace: dict[str, list[str]]) -> int:
        """Load missing keys through registered prefetch strategies.

        Returns:
            Number of values stored
        """
        loaded = 0
        for namespace, keys in keys_by_namespace.items():
            strategy = self._strategies.get(namespace)
            if strategy is None:
                logger.debug(f"No prefetch strategy for {namespace}, skipping warmup")
                continue
            missing = [key for key in keys if not await self.cache.exists(key)]
            if not missing:
                continue
            try:
                values = strategy.loader(missing)
                if inspect.isawaitable(values):
                    values = await values
            except Exception as e:
                logger.warning(
                    f"Prefetch for {namespace} failed: {sanitize(str(e))}"
                )
                continue
            values = {k: v for k, v in values.items() if v is not None}
            if values:
                await self.cache.set_many(values, strategy.ttl_seconds)
                loaded += len(values)
        return loaded

    def start(self, interval_seconds: float | None = None) -> None:
        """Run optimize() on a schedule. Requires a running event loop."""
        if self._task is not None and not self._task.done():
            return
        interval = interval_seconds or self.config.interval_seconds
        self._task = asyncio.create_task(self._run(interval))

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.optimize()

    async def _execute(
        self,
        action: OptimizationAction,
        result: OptimizationResult,
        patterns: list[NamespacePattern],
    ) -> None:
        try:
            if action.type is OptimizationActionType.RAISE_TTL:
                self.cache.ttl_policy.adjust(action.namespace, action.factor)
                result.executed[action.type.value] += 1
            elif action.type is OptimizationActionType.PREWARM:
                loaded = await self.warm_cache({action.namespace: list(action.keys)})
                result.executed[action.type.value] += loaded
            elif action.type is OptimizationActionType.EVICT_NAMESPACE:
                size = next(
                    (p.total_size for p in patterns if p.namespace == action.namespace), 0
                )
                removed = await self.cache.delete_namespace(action.namespace)
                if removed:
                    result.executed[action.type.value] += 1
                    result.space_saved += size
        except Exception as e:
            result.errors.append(f"{action.rule}: {sanitize(str(e))}")
            logger.warning(f"Optimization action {action.rule} failed: {sanitize(str(e))}")
