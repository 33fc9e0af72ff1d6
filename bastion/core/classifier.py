"""Error classification and sanitization.

Raw failures from upstream clients are mapped onto the closed ErrorKind set
by an ordered table of (predicate, kind) rules. The table is plain data:
new patterns are added by inserting a ClassificationRule, without touching
the dispatch logic in ErrorClassifier.

Rule order matters (first match wins):
    1. network-exception / network-message -> NETWORK
    2. timeout-exception -> TIMEOUT
    3. 401 / unauthorized -> AUTHENTICATION
    4. 403 / forbidden -> AUTHORIZATION
    5. 429 / rate limit -> RATE_LIMIT
    6. 400 / bad request -> VALIDATION
    7. 5xx / server error phrases -> SERVER
    8. timeout substring -> TIMEOUT
    default -> UNKNOWN
"""

import asyncio
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from bastion.core.exceptions import (
    ERROR_TYPES,
    BastionError,
    ErrorKind,
    RateLimitError,
    default_retryable_kinds,
)

REDACTED = "[REDACTED]"

_SENSITIVE_ASSIGNMENT = re.compile(
    r"""(?P<name>["']?\b(?:access[_-]?token|api[_-]?key|token|password|passwd|secret|key|authorization)\b["']?\s*[:=]\s*)(?P<value>"[^"]*"|'[^']*'|[^\s,;&]+)""",
    re.IGNORECASE,
)
_AUTH_SCHEME = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_URL_USERINFO = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/\s:@]+:[^/\s@]+@", re.IGNORECASE)
# Long runs mixing letters and digits (API keys, session ids); plain identifiers survive
_OPAQUE_TOKEN = re.compile(r"\b(?=[A-Za-z0-9_-]*\d)(?=[A-Za-z0-9_-]*[A-Za-z])[A-Za-z0-9_-]{20,}\b")


def sanitize(text: str) -> str:
    """Strip credential-like substrings and long opaque tokens from text.

    Args:
        text: Raw message (possibly from an upstream response)

    Returns:
        Text safe to log or surface

    Example:
        >>> sanitize("auth failed token=abc123 for user")
        'auth failed token=[REDACTED] for user'
    """
    if not text:
        return text
    cleaned = _URL_USERINFO.sub(rf"\g<scheme>{REDACTED}@", text)
    cleaned = _AUTH_SCHEME.sub(rf"\1 {REDACTED}", cleaned)
    cleaned = _SENSITIVE_ASSIGNMENT.sub(rf"\g<name>{REDACTED}", cleaned)
    cleaned = _OPAQUE_TOKEN.sub(REDACTED, cleaned)
    return cleaned


def extract_status(error: BaseException) -> int | None:
    """Best-effort HTTP status extraction from client exceptions.

    Looks at ``status``, ``status_code`` and ``response.status_code``, which
    covers httpx, requests, aiohttp and most hand-written clients.
    """
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None) or getattr(response, "status", None)
        if isinstance(value, int):
            return value
    return None


def extract_retry_after(error: BaseException, default: int = 60) -> int:
    """Extract a retry-after hint (seconds) from an error."""
    value = getattr(error, "retry_after", None)
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) if response is not None else None
    if headers is not None:
        try:
            header = headers.get("Retry-After")
        except AttributeError:
            header = None
        if header is not None and str(header).isdigit():
            return int(header)
    match = re.search(r"retry.*?(\d+)", str(error), re.IGNORECASE)
    if match:
        return int(match.group(1))
    return default


@dataclass(frozen=True)
class FailureInfo:
    """What the classifier knows about a raw failure."""

    error: BaseException
    status: int | None
    message: str


Predicate = Callable[[FailureInfo], bool]


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""

    name: str
    predicate: Predicate
    kind: ErrorKind


def _status_is(*codes: int) -> Predicate:
    return lambda info: info.status in codes


def _message_matches(pattern: str, flags: int = 0) -> Predicate:
    compiled = re.compile(pattern, flags)
    return lambda info: bool(compiled.search(info.message))


def _any(*predicates: Predicate) -> Predicate:
    return lambda info: any(p(info) for p in predicates)


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        "network-exception",
        lambda info: isinstance(info.error, ConnectionError),
        ErrorKind.NETWORK,
    ),
    ClassificationRule(
        "network-message",
        _message_matches(
            r"ECONNREFUSED|ENOTFOUND|EHOSTUNREACH|ECONNRESET|connection refused|"
            r"connection reset|name or service not known|socket hang up",
            re.IGNORECASE,
        ),
        ErrorKind.NETWORK,
    ),
    ClassificationRule(
        "timeout-exception",
        lambda info: isinstance(info.error, (asyncio.TimeoutError, TimeoutError)),
        ErrorKind.TIMEOUT,
    ),
    ClassificationRule(
        "authentication",
        _any(_status_is(401), _message_matches(r"\b401\b|unauthorized", re.IGNORECASE)),
        ErrorKind.AUTHENTICATION,
    ),
    ClassificationRule(
        "authorization",
        _any(_status_is(403), _message_matches(r"\b403\b|forbidden", re.IGNORECASE)),
        ErrorKind.AUTHORIZATION,
    ),
    ClassificationRule(
        "rate-limit",
        _any(
            _status_is(429),
            _message_matches(r"\b429\b|rate.?limit|too many requests", re.IGNORECASE),
        ),
        ErrorKind.RATE_LIMIT,
    ),
    ClassificationRule(
        "validation",
        _any(_status_is(400, 422), _message_matches(r"\b400\b|bad request", re.IGNORECASE)),
        ErrorKind.VALIDATION,
    ),
    ClassificationRule(
        "server",
        _any(
            lambda info: info.status is not None and 500 <= info.status < 600,
            _message_matches(
                r"\b5\d\d\b|internal server error|bad gateway|service unavailable|"
                r"gateway timeout",
                re.IGNORECASE,
            ),
        ),
        ErrorKind.SERVER,
    ),
    ClassificationRule(
        "timeout-message",
        _message_matches(r"timeout|timed out|ETIMEDOUT", re.IGNORECASE),
        ErrorKind.TIMEOUT,
    ),
)


class ErrorClassifier:
    """Maps raw failures to typed BastionErrors.

    Example:
        >>> classifier = ErrorClassifier()
        >>> classifier.classify(Exception("HTTP 429 from upstream"))
        <ErrorKind.RATE_LIMIT: 'rate_limit'>
    """

    def __init__(
        self,
        rules: Iterable[ClassificationRule] | None = None,
        retryable_kinds: Iterable[ErrorKind] | None = None,
    ):
        """Initialize classifier.

        Args:
            rules: Ordered rule table (defaults to DEFAULT_RULES)
            retryable_kinds: Kinds the orchestrator may retry. Defaults to
                the kinds whose error class is retryable.
        """
        self.rules: list[ClassificationRule] = list(rules or DEFAULT_RULES)
        self.retryable_kinds: set[ErrorKind] = (
            set(retryable_kinds) if retryable_kinds is not None else default_retryable_kinds()
        )

    def add_rule(self, rule: ClassificationRule, index: int | None = None) -> None:
        """Insert a rule at index, or append it to the end of the table."""
        if index is None:
            self.rules.append(rule)
        else:
            self.rules.insert(index, rule)

    def classify(self, error: BaseException) -> ErrorKind:
        """Return the ErrorKind for an error. First matching rule wins."""
        if isinstance(error, BastionError):
            return error.kind

        info = FailureInfo(error=error, status=extract_status(error), message=str(error))
        for rule in self.rules:
            if rule.predicate(info):
                return rule.kind
        return ErrorKind.UNKNOWN

    def is_retryable(self, error: BaseException) -> bool:
        """Whether the orchestrator should retry after this error.

        Typed errors that explicitly opt out of retries are never retried,
        regardless of the configured kind set.
        """
        if isinstance(error, BastionError) and not error.retryable:
            return False
        return self.classify(error) in self.retryable_kinds

    def enhance(
        self,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> BastionError:
        """Convert a raw failure into a typed, sanitized BastionError.

        Typed errors pass through unchanged; they are never wrapped twice.

        Args:
            error: Raw failure
            context: Extra structured context (tool, operation, ...)

        Returns:
            Typed error with ``__cause__`` pointing at the raw failure
        """
        if isinstance(error, BastionError):
            return error

        kind = self.classify(error)
        error_cls = ERROR_TYPES[kind]
        raw_message = sanitize(str(error)) or type(error).__name__
        enhanced_context: dict[str, Any] = {
            "original_error": raw_message,
            "original_type": type(error).__name__,
        }
        status = extract_status(error)
        if status is not None:
            enhanced_context["status"] = status
        if context:
            enhanced_context.update(context)

        tool = enhanced_context.get("tool")
        operation = enhanced_context.get("operation")
        where = f" in {tool}.{operation}" if tool and operation else ""
        message = f"{error_cls.__name__}{where}: {raw_message}"

        enhanced: BastionError
        if error_cls is RateLimitError:
            enhanced = RateLimitError(
                message,
                retry_after=extract_retry_after(error),
                context=enhanced_context,
            )
        else:
            enhanced = error_cls(message, context=enhanced_context)
        enhanced.__cause__ = error
        return enhanced
