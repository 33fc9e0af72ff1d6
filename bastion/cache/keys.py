"""Deterministic, namespaced cache keys.

Keys have the form ``namespace:param:param``. Parameters are escaped
(``%`` -> ``%25``, ``:`` -> ``%3A``) so a parameter containing a colon can
never shift the boundary between parameters, and no namespace is a
colon-boundary prefix of another. build() only accepts CacheNamespace
members (or their string values), so together these make it injective:
distinct (namespace, params) tuples always produce distinct keys.
"""

from enum import Enum


class CacheNamespace(str, Enum):
    """Key namespaces for every cached data type."""

    # Issue tracker
    JIRA_BOARDS = "jira:boards"
    JIRA_SPRINTS = "jira:sprints"
    JIRA_SPRINT = "jira:sprint"
    JIRA_ISSUES = "jira:issues"
    JIRA_VELOCITY = "jira:velocity"
    JIRA_BURNDOWN = "jira:burndown"
    JIRA_TEAM_PERFORMANCE = "jira:team-performance"
    JIRA_ENHANCED_ISSUES = "jira:enhanced-issues"

    # Code host
    GITHUB_COMMITS = "github:commits"
    GITHUB_PRS = "github:prs"
    GITHUB_ENHANCED_PRS = "github:enhanced-prs"

    # Analytics
    ANALYTICS_COMMIT_TRENDS = "analytics:commit-trends"
    ANALYTICS_GITHUB_METRICS = "analytics:github-metrics"
    ANALYTICS_TEAM_PERFORMANCE = "analytics:team-performance"
    ANALYTICS_ISSUE_TYPES = "analytics:issue-types"

    # API responses
    API_VELOCITY = "api:velocity"
    API_SPRINTS = "api:sprints"
    API_SPRINT_ISSUES = "api:sprint:issues"

    HEALTH_CHECK = "health:check"
    CIRCUIT_BREAKER = "circuit:breaker"

    # Entity lifecycle states used to derive TTLs
    ENTITY_STATE = "meta:entity-state"


def escape_param(param: object) -> str:
    """Escape a key parameter so it cannot contain a separator."""
    return str(param).replace("%", "%25").replace(":", "%3A")


def unescape_param(param: str) -> str:
    return param.replace("%3A", ":").replace("%25", "%")


# Longest first so "api:sprint:issues" wins over shorter candidates
_NAMESPACES_BY_LENGTH = sorted(CacheNamespace, key=lambda ns: len(ns.value), reverse=True)


class CacheKeyBuilder:
    """Builds cache keys. All methods are pure.

    Example:
        >>> CacheKeyBuilder.jira_velocity("42", 6)
        'jira:velocity:42:6'
        >>> CacheKeyBuilder.build(CacheNamespace.JIRA_SPRINT, "a:b")
        'jira:sprint:a%3Ab'
    """

    @staticmethod
    def build(namespace: CacheNamespace | str, *params: object) -> str:
        """Join a namespace and escaped parameters with ':'.

        Raises:
            ValueError: If namespace is not a CacheNamespace value
        """
        prefix = CacheNamespace(namespace).value
        return ":".join([prefix, *(escape_param(p) for p in params)])

    @staticmethod
    def pattern(namespace: CacheNamespace | str) -> str:
        """Glob pattern matching every key in a namespace.

        Raises:
            ValueError: If namespace is not a CacheNamespace value
        """
        return f"{CacheNamespace(namespace).value}:*"

    @staticmethod
    def get_namespace(key: str) -> CacheNamespace | None:
        """Namespace a key was built with, or None for foreign keys."""
        for namespace in _NAMESPACES_BY_LENGTH:
            if key == namespace.value or key.startswith(namespace.value + ":"):
                return namespace
        return None

    @classmethod
    def get_params(cls, key: str) -> list[str]:
        """Unescaped parameters of a key built by build()."""
        namespace = cls.get_namespace(key)
        if namespace is None or key == namespace.value:
            return []
        rest = key[len(namespace.value) + 1 :]
        return [unescape_param(p) for p in rest.split(":")]

    # Issue tracker

    @classmethod
    def jira_boards(cls) -> str:
        return cls.build(CacheNamespace.JIRA_BOARDS)

    @classmethod
    def jira_sprints(cls, board_id: str) -> str:
        return cls.build(CacheNamespace.JIRA_SPRINTS, board_id)

    @classmethod
    def jira_sprint(cls, sprint_id: str) -> str:
        return cls.build(CacheNamespace.JIRA_SPRINT, sprint_id)

    @classmethod
    def jira_issues(cls, sprint_id: str) -> str:
        return cls.build(CacheNamespace.JIRA_ISSUES, sprint_id)

    @classmethod
    def jira_velocity(cls, board_id: str, sprint_count: int) -> str:
        return cls.build(CacheNamespace.JIRA_VELOCITY, board_id, sprint_count)

    @classmethod
    def jira_burndown(cls, sprint_id: str) -> str:
        return cls.build(CacheNamespace.JIRA_BURNDOWN, sprint_id)

    @classmethod
    def jira_team_performance(cls, board_id: str, sprint_count: int) -> str:
        return cls.build(CacheNamespace.JIRA_TEAM_PERFORMANCE, board_id, sprint_count)

    @classmethod
    def jira_enhanced_issues(cls, sprint_id: str) -> str:
        return cls.build(CacheNamespace.JIRA_ENHANCED_ISSUES, sprint_id)

    # Code host

    @classmethod
    def github_commits(cls, owner: str, repo: str, start_date: str, end_date: str) -> str:
        return cls.build(CacheNamespace.GITHUB_COMMITS, owner, repo, start_date, end_date)

    @classmethod
    def github_prs(cls, owner: str, repo: str, start_date: str, end_date: str) -> str:
        return cls.build(CacheNamespace.GITHUB_PRS, owner, repo, start_date, end_date)

    @classmethod
    def github_enhanced_prs(
        cls, owner: str, repo: str, start_date: str, end_date: str
    ) -> str:
        return cls.build(
            CacheNamespace.GITHUB_ENHANCED_PRS, owner, repo, start_date, end_date
        )

    # Analytics

    @classmethod
    def analytics_commit_trends(cls, owner: str, repo: str, period: str) -> str:
        return cls.build(CacheNamespace.ANALYTICS_COMMIT_TRENDS, owner, repo, period)

    @classmethod
    def analytics_github_metrics(cls, owner: str, repo: str, period: str) -> str:
        return cls.build(CacheNamespace.ANALYTICS_GITHUB_METRICS, owner, repo, period)

    @classmethod
    def analytics_team_performance(cls, board_id: str, sprint_count: int) -> str:
        return cls.build(
            CacheNamespace.ANALYTICS_TEAM_PERFORMANCE, board_id, sprint_count
        )

    @classmethod
    def analytics_issue_types(cls, board_id: str, sprint_count: int) -> str:
        return cls.build(CacheNamespace.ANALYTICS_ISSUE_TYPES, board_id, sprint_count)

    # API responses

    @classmethod
    def api_velocity(cls, board_id: str, sprint_count: int) -> str:
        return cls.build(CacheNamespace.API_VELOCITY, board_id, sprint_count)

    @classmethod
    def api_sprints(cls, board_id: str, state: str = "closed") -> str:
        return cls.build(CacheNamespace.API_SPRINTS, state, board_id)

    @classmethod
    def api_sprint_issues(cls, sprint_id: str) -> str:
        return cls.build(CacheNamespace.API_SPRINT_ISSUES, sprint_id)

    # Infrastructure

    @classmethod
    def health_check(cls, timestamp: int) -> str:
        return cls.build(CacheNamespace.HEALTH_CHECK, timestamp)

    @classmethod
    def circuit_breaker_state(cls, tool_name: str, operation_name: str) -> str:
        return cls.build(CacheNamespace.CIRCUIT_BREAKER, tool_name, operation_name)

    @classmethod
    def entity_state(cls, namespace: CacheNamespace | str, entity_id: str) -> str:
        prefix = namespace.value if isinstance(namespace, CacheNamespace) else namespace
        return cls.build(CacheNamespace.ENTITY_STATE, prefix, entity_id)
