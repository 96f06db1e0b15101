"""Typed route registry: (method, path pattern) -> (handler, policy)."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from blog_gateway.gateway.dispatcher import GatewayRequest, HandlerResult

Handler = Callable[["GatewayRequest"], Awaitable["HandlerResult"]]
Validator = Callable[[dict[str, Any]], str | None]
"""Returns an error message, or None when the parameters are valid."""

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_REQUEST_SIZE = 1024 * 1024

_PARAM_RE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    max_requests: int
    window_seconds: int = 60


@dataclass(frozen=True, slots=True)
class CachePolicy:
    ttl_seconds: float


@dataclass(frozen=True, slots=True)
class RoutePolicy:
    """Per-route gateway behaviour.

    Attributes:
        requires_auth: Reject with 401 when the caller cannot be authenticated.
        rate_limit: Fixed window limit applied per caller, store and path.
        cache: Response cache ttl; only honoured for GET routes.
        timeout: Seconds before the handler is cancelled and 408 returned.
        validate_input: Validator over merged query and body parameters.
        max_request_size: Max declared Content-Length in bytes.
    """

    requires_auth: bool = True
    rate_limit: RateLimitPolicy | None = None
    cache: CachePolicy | None = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    validate_input: Validator | None = None
    max_request_size: int = DEFAULT_MAX_REQUEST_SIZE


@dataclass(frozen=True, slots=True)
class Route:
    method: str
    pattern: str
    handler: Handler
    policy: RoutePolicy
    name: str
    _regex: re.Pattern[str] = field(repr=False, compare=False)

    def match(self, method: str, path: str) -> dict[str, str] | None:
        if method != self.method:
            return None
        m = self._regex.fullmatch(path)
        return m.groupdict() if m else None


def _compile(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    pos = 0
    for m in _PARAM_RE.finditer(pattern):
        parts.append(re.escape(pattern[pos : m.start()]))
        parts.append(f"(?P<{m.group(1)}>[^/]+)")
        pos = m.end()
    parts.append(re.escape(pattern[pos:]))
    return re.compile("".join(parts) + "/?")


class RouteRegistry:
    """Routes are registered at startup; lookups never mutate the registry.

    Static routes are matched before parameterized ones, so
    ``/queue/metrics`` wins over ``/queue/{item_id}``.
    """

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix.rstrip("/")
        self._routes: list[Route] = []
        self._frozen = False

    def add(
        self,
        method: str,
        pattern: str,
        handler: Handler,
        policy: RoutePolicy | None = None,
        *,
        name: str | None = None,
    ) -> Route:
        if self._frozen:
            raise RuntimeError("Route registry is frozen")
        full_pattern = f"{self._prefix}{pattern}"
        route = Route(
            method=method.upper(),
            pattern=full_pattern,
            handler=handler,
            policy=policy or RoutePolicy(),
            name=name or handler.__name__,
            _regex=_compile(full_pattern),
        )
        self._routes.append(route)
        return route

    def freeze(self) -> RouteRegistry:
        self._routes.sort(key=lambda r: "{" in r.pattern)
        self._frozen = True
        return self

    def resolve(self, method: str, path: str) -> tuple[Route, dict[str, str]] | None:
        method = method.upper()
        for route in self._routes:
            params = route.match(method, path)
            if params is not None:
                return route, params
        return None

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)
