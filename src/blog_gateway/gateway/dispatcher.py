"""Per-request gateway envelope.

For every inbound request the dispatcher enforces, in order: declared
size limit, pre-request interceptors, authentication, rate limiting,
cached reads, input validation, the per-route timeout, cache population,
post-response interceptors and correlation headers. Any exception is
translated into the JSON envelope ``{data?, error?, correlationId,
metadata?}``.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from blog_gateway.auth.context import (
    CORRELATION_HEADER,
    RequestContext,
    RequestContextBuilder,
    generate_correlation_id,
)
from blog_gateway.auth.rate_limiter import FixedWindowRateLimiter
from blog_gateway.errors import (
    GatewayError,
    GatewayTimeoutError,
    InvalidInputError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitedError,
)
from blog_gateway.gateway.cache import ResponseCache, build_cache_key
from blog_gateway.gateway.routing import Route, RouteRegistry
from blog_gateway.logging_config import bind_request_context, clear_request_context

logger = structlog.get_logger()

RESPONSE_TIME_HEADER = "x-response-time"
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True, slots=True)
class InboundRequest:
    """Transport-independent view of an HTTP request.

    Header names are lower-cased; query pairs keep arrival order.
    """

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query: tuple[tuple[str, str], ...] = ()
    body: bytes = b""

    @property
    def query_params(self) -> dict[str, str]:
        """First value per name."""
        params: dict[str, str] = {}
        for key, value in self.query:
            params.setdefault(key, value)
        return params

    @property
    def content_length(self) -> int | None:
        raw = self.headers.get("content-length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None


@dataclass(slots=True)
class GatewayRequest:
    """What a route handler receives."""

    inbound: InboundRequest
    context: RequestContext
    path_params: dict[str, str] = field(default_factory=dict)

    @property
    def method(self) -> str:
        return self.inbound.method

    @property
    def path(self) -> str:
        return self.inbound.path

    @property
    def query_params(self) -> dict[str, str]:
        return self.inbound.query_params

    def json_body(self) -> dict[str, Any]:
        """Parse the body as a JSON object.

        Raises:
            InvalidInputError: if the body is not a JSON object.
        """
        if not self.inbound.body:
            return {}
        try:
            body = json.loads(self.inbound.body)
        except ValueError as exc:
            raise InvalidInputError("Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise InvalidInputError("Request body must be a JSON object")
        return body


@dataclass(slots=True)
class HandlerResult:
    data: Any
    metadata: dict[str, Any] | None = None
    status_code: int = 200


@dataclass(slots=True)
class GatewayResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


RequestInterceptor = Callable[[InboundRequest], Awaitable[InboundRequest]]
ResponseInterceptor = Callable[[GatewayResponse], Awaitable[GatewayResponse]]
ErrorInterceptor = Callable[
    [Exception, InboundRequest], Awaitable[GatewayResponse | None]
]


@dataclass(slots=True)
class Interceptors:
    request: list[RequestInterceptor] = field(default_factory=list)
    response: list[ResponseInterceptor] = field(default_factory=list)
    error: list[ErrorInterceptor] = field(default_factory=list)


def envelope(
    correlation_id: str,
    *,
    data: Any = None,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {}
    if error is not None:
        body["error"] = error
    else:
        body["data"] = data
    body["correlationId"] = correlation_id
    if metadata:
        body["metadata"] = metadata
    return body


class GatewayDispatcher:
    """Runs one request through its route's policy and handler.

    Owns the response cache and rate limit buckets so separate instances
    (for example per test) never share state.
    """

    def __init__(
        self,
        registry: RouteRegistry,
        context_builder: RequestContextBuilder,
        *,
        cache: ResponseCache | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        interceptors: Interceptors | None = None,
    ) -> None:
        self._registry = registry
        self._context_builder = context_builder
        self.cache = cache if cache is not None else ResponseCache()
        self.rate_limiter = (
            rate_limiter if rate_limiter is not None else FixedWindowRateLimiter()
        )
        self.interceptors = interceptors or Interceptors()

    async def dispatch(self, request: InboundRequest) -> GatewayResponse:
        started = time.perf_counter()
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        ctx = RequestContext(correlation_id=correlation_id, started_at=started)
        bind_request_context(correlation_id)
        try:
            response, ctx = await self._process(request, correlation_id)
        except Exception as exc:
            response = await self._handle_error(exc, request, ctx)
        finally:
            clear_request_context()

        response.headers[CORRELATION_HEADER] = ctx.correlation_id
        response.headers[RESPONSE_TIME_HEADER] = f"{(time.perf_counter() - started) * 1000:.2f}ms"
        return response

    async def _process(
        self, request: InboundRequest, correlation_id: str
    ) -> tuple[GatewayResponse, RequestContext]:
        resolved = self._registry.resolve(request.method, request.path)
        if resolved is None:
            raise NotFoundError("Not Found")
        route, path_params = resolved
        policy = route.policy

        # 1. size limit
        declared = request.content_length
        if declared is not None and declared > policy.max_request_size:
            raise PayloadTooLargeError(policy.max_request_size)

        # 2. pre-request interceptors
        for intercept in self.interceptors.request:
            request = await intercept(request)

        # 3. authentication
        ctx = await self._context_builder.build(
            request.headers,
            request.query_params,
            requires_auth=policy.requires_auth,
            correlation_id=correlation_id,
        )
        bind_request_context(ctx.correlation_id, ctx.store_id)

        # 4. rate limit
        if policy.rate_limit is not None:
            key = (
                f"api:{ctx.caller_id or 'anonymous'}:"
                f"{ctx.store_id or 'none'}:{request.path}"
            )
            decision = self.rate_limiter.check(
                key,
                policy.rate_limit.max_requests,
                policy.rate_limit.window_seconds,
            )
            if not decision.allowed:
                logger.warning(
                    "rate_limit_exceeded", rate_limit_key=key, route=route.name
                )
                raise RateLimitedError(decision.retry_after())

        # 5. cached read
        cache_key: str | None = None
        if policy.cache is not None and request.method == "GET":
            cache_key = build_cache_key(request.path, request.query, ctx.store_id)
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("cache_hit", cache_key=cache_key)
                data, metadata = cached
                return (
                    GatewayResponse(
                        status_code=200,
                        body=envelope(
                            ctx.correlation_id,
                            data=data,
                            metadata={**(metadata or {}), "cached": True},
                        ),
                    ),
                    ctx,
                )

        gateway_request = GatewayRequest(
            inbound=request, context=ctx, path_params=path_params
        )

        # 6. validation
        if policy.validate_input is not None:
            params: dict[str, Any] = dict(request.query_params)
            if request.method in WRITE_METHODS:
                try:
                    params.update(gateway_request.json_body())
                except InvalidInputError:
                    pass  # handlers report malformed bodies themselves
            message = policy.validate_input(params)
            if message is not None:
                raise InvalidInputError(message)

        # 7. handler under timeout; wait_for cancels the handler task
        result = await self._run_handler(route, gateway_request)

        # 8. cache populate
        if cache_key is not None and result.status_code == 200:
            self.cache.set(
                cache_key,
                (result.data, result.metadata),
                policy.cache.ttl_seconds,  # type: ignore[union-attr]
            )

        response = GatewayResponse(
            status_code=result.status_code,
            body=envelope(ctx.correlation_id, data=result.data, metadata=result.metadata),
        )

        # 9. post-response interceptors
        for intercept in self.interceptors.response:
            response = await intercept(response)

        logger.debug(
            "gateway_request_completed",
            route=route.name,
            status_code=response.status_code,
            store_id=ctx.store_id,
            duration_ms=round(ctx.elapsed_ms(), 2),
        )
        return response, ctx

    async def _run_handler(
        self, route: Route, request: GatewayRequest
    ) -> HandlerResult:
        try:
            return await asyncio.wait_for(
                route.handler(request), timeout=route.policy.timeout
            )
        except TimeoutError as exc:
            if isinstance(exc, GatewayError):
                raise
            logger.warning(
                "handler_timed_out", route=route.name, timeout=route.policy.timeout
            )
            raise GatewayTimeoutError() from exc

    async def _handle_error(
        self,
        exc: Exception,
        request: InboundRequest,
        ctx: RequestContext,
    ) -> GatewayResponse:
        # 10. error interceptors get first refusal
        for intercept in self.interceptors.error:
            custom = await intercept(exc, request)
            if custom is not None:
                return custom

        if isinstance(exc, GatewayError):
            if exc.status_code >= 500:
                logger.error(
                    "request_failed",
                    path=request.path,
                    error_code=exc.code,
                    error=exc.message,
                )
            else:
                logger.info(
                    "request_rejected",
                    path=request.path,
                    status_code=exc.status_code,
                    error_code=exc.code,
                )
            response = GatewayResponse(
                status_code=exc.status_code,
                body=envelope(
                    ctx.correlation_id,
                    error=exc.message,
                    metadata={"errorCode": exc.code, **exc.metadata},
                ),
            )
            if isinstance(exc, RateLimitedError):
                response.headers["retry-after"] = str(exc.retry_after)
            return response

        logger.error("unhandled_exception", exc_info=exc, path=request.path)
        return GatewayResponse(
            status_code=500,
            body=envelope(
                ctx.correlation_id,
                error="Internal server error",
                metadata={"errorCode": "INTERNAL_ERROR"},
            ),
        )
