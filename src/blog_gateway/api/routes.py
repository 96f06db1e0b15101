"""Gateway route handlers and the registry that binds them to policies.

Every tenant-scoped handler resolves the store through ``TenantResolver``
before touching data, and every store call is scoped by that store id.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import structlog

from blog_gateway.api.schemas import (
    PostUpdateRequest,
    QueueRegenerateTitleRequest,
    QueueReorderRequest,
    RegenerationCheckRequest,
    ScheduleRequest,
    parse_body,
)
from blog_gateway.config import Settings
from blog_gateway.content_queue import QueueManager
from blog_gateway.errors import InvalidInputError, NotFoundError, TenantNotFoundError
from blog_gateway.gateway import (
    CachePolicy,
    GatewayRequest,
    HandlerResult,
    RateLimitPolicy,
    ResponseCache,
    RoutePolicy,
    RouteRegistry,
)
from blog_gateway.models import (
    VALID_POST_STATUSES,
    PostStatus,
    QuotaStatus,
    RegenerationCheck,
    StoreRecord,
    TrialStatus,
)
from blog_gateway.pipeline import ContentPipelineOrchestrator, validate_create_post_params
from blog_gateway.retry import RetryPolicy
from blog_gateway.tenancy import TenantResolver

logger = structlog.get_logger()

API_PREFIX = "/api/v1"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000

_T = TypeVar("_T")


class GatewayStore(Protocol):
    """Store operations used directly by route handlers."""

    async def get_store(self, store_id: str) -> StoreRecord | None: ...

    async def get_store_by_domain(self, shop_domain: str) -> StoreRecord | None: ...

    async def ensure_trial_plan(self, store_id: str, trial_days: int) -> bool: ...

    async def get_quota_status(
        self, store_id: str
    ) -> tuple[QuotaStatus, TrialStatus]: ...

    async def check_regeneration_limits(
        self, store_id: str, post_id: str
    ) -> RegenerationCheck: ...

    async def list_posts(
        self,
        store_id: str,
        *,
        status: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[dict[str, Any]], int]: ...

    async def update_post(
        self, store_id: str, post_id: str, values: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def delete_post(self, store_id: str, post_id: str) -> bool: ...


def _parse_int(value: str | None, name: str, default: int) -> int | str:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return f"{name} must be an integer"


def validate_list_posts_params(params: dict[str, Any]) -> str | None:
    """Return the first error in ``status``/``page``/``limit``, or None."""
    status = params.get("status")
    if status is not None and status not in VALID_POST_STATUSES:
        return f"status must be one of: {', '.join(VALID_POST_STATUSES)}"
    page = _parse_int(params.get("page"), "page", 1)
    if isinstance(page, str):
        return page
    if page < 1:
        return "page must be at least 1"
    limit = _parse_int(params.get("limit"), "limit", DEFAULT_PAGE_SIZE)
    if isinstance(limit, str):
        return limit
    if not 1 <= limit <= MAX_PAGE_SIZE:
        return f"limit must be between 1 and {MAX_PAGE_SIZE}"
    return None


class GatewayRoutes:
    """Handlers for every ``/api/v1`` route."""

    def __init__(
        self,
        *,
        store: GatewayStore,
        resolver: TenantResolver,
        orchestrator: ContentPipelineOrchestrator,
        queue: QueueManager,
        cache: ResponseCache,
        retry_policy: RetryPolicy,
        trial_days: int = 14,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._orchestrator = orchestrator
        self._queue = queue
        self._cache = cache
        self._retry = retry_policy
        self._trial_days = trial_days

    # -- helpers ----------------------------------------------------------

    async def _call(
        self, operation: Callable[[], Awaitable[_T]], *, name: str, message: str
    ) -> _T:
        return await self._retry.guarded(operation, name=name, message=message)

    async def _store_id(
        self, request: GatewayRequest, body: dict[str, Any] | None = None
    ) -> str:
        return await self._resolver.require(
            request.context,
            query_params=request.query_params,
            body=body,
            path=request.path,
        )

    def _invalidate(self, section: str) -> None:
        dropped = self._cache.invalidate_prefix(f"{API_PREFIX}/{section}")
        if dropped:
            logger.debug("response_cache_invalidated", section=section, entries=dropped)

    # -- quota / store ----------------------------------------------------

    async def quota(self, request: GatewayRequest) -> HandlerResult:
        body = request.json_body() if request.method == "POST" else None
        store_id = await self._store_id(request, body)
        store = await self._call(
            lambda: self._store.get_store(store_id),
            name="load_store",
            message="Failed to load store",
        )
        if store is None:
            raise TenantNotFoundError("Store not found")
        if store.plan_id is None:
            await self._call(
                lambda: self._store.ensure_trial_plan(store_id, self._trial_days),
                name="trial_provisioning",
                message="Failed to initialize trial plan",
            )
        quota, trial = await self._call(
            lambda: self._store.get_quota_status(store_id),
            name="quota_status",
            message="Failed to load quota status",
        )
        return HandlerResult(
            data={
                "quotaStatus": quota.model_dump(mode="json"),
                "trialStatus": trial.model_dump(mode="json"),
            }
        )

    async def store_by_domain(self, request: GatewayRequest) -> HandlerResult:
        shop_domain = request.path_params["shop_domain"]
        store = await self._call(
            lambda: self._store.get_store_by_domain(shop_domain),
            name="load_store_by_domain",
            message="Failed to load store",
        )
        if store is None:
            raise TenantNotFoundError("Store not found")
        return HandlerResult(
            data={
                "id": store.id,
                "shop_domain": store.shop_domain,
                "plan_name": store.plan_name,
                "is_active": store.is_active,
                "is_paused": store.is_paused,
            }
        )

    # -- posts ------------------------------------------------------------

    async def list_posts(self, request: GatewayRequest) -> HandlerResult:
        params = request.query_params
        store_id = await self._store_id(request)
        page = int(params.get("page") or 1)
        limit = int(params.get("limit") or DEFAULT_PAGE_SIZE)
        posts, total = await self._call(
            lambda: self._store.list_posts(
                store_id, status=params.get("status"), page=page, limit=limit
            ),
            name="list_posts",
            message="Failed to list posts",
        )
        return HandlerResult(
            data=posts,
            metadata={
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "totalPages": -(-total // limit),
                }
            },
        )

    async def create_post(self, request: GatewayRequest) -> HandlerResult:
        body = request.json_body()
        store_id = await self._store_id(request, body)
        created = await self._orchestrator.create_post(store_id, body)
        self._invalidate("posts")
        self._invalidate("quota")
        return HandlerResult(
            data=created.post,
            metadata={"warnings": created.warnings} if created.warnings else None,
        )

    async def update_post(self, request: GatewayRequest) -> HandlerResult:
        update = parse_body(PostUpdateRequest, request.json_body())
        values = update.column_values()
        if not values:
            raise InvalidInputError("No valid fields to update")
        store_id = await self._store_id(request)
        return HandlerResult(
            data=await self._write_post(store_id, request.path_params["post_id"], values)
        )

    async def schedule_post(self, request: GatewayRequest) -> HandlerResult:
        schedule = parse_body(ScheduleRequest, request.json_body())
        store_id = await self._store_id(request)
        values = {
            "status": str(PostStatus.SCHEDULED),
            "scheduled_publish_at": schedule.scheduled_at,
        }
        return HandlerResult(
            data=await self._write_post(store_id, request.path_params["post_id"], values)
        )

    async def delete_post(self, request: GatewayRequest) -> HandlerResult:
        post_id = request.path_params["post_id"]
        store_id = await self._store_id(request)
        deleted = await self._call(
            lambda: self._store.delete_post(store_id, post_id),
            name="delete_post",
            message="Failed to delete post",
        )
        if not deleted:
            raise NotFoundError("Post not found")
        self._invalidate("posts")
        return HandlerResult(data={"id": post_id, "deleted": True})

    async def _write_post(
        self, store_id: str, post_id: str, values: dict[str, Any]
    ) -> dict[str, Any]:
        post = await self._call(
            lambda: self._store.update_post(store_id, post_id, values),
            name="update_post",
            message="Failed to update post",
        )
        if post is None:
            raise NotFoundError("Post not found")
        self._invalidate("posts")
        return post

    # -- regeneration -----------------------------------------------------

    async def check_regeneration_limits(self, request: GatewayRequest) -> HandlerResult:
        body = request.json_body()
        check = parse_body(RegenerationCheckRequest, body)
        store_id = await self._store_id(request, body)
        result = await self._call(
            lambda: self._store.check_regeneration_limits(store_id, check.post_id),
            name="check_regeneration_limits",
            message="Failed to check regeneration limits",
        )
        return HandlerResult(data=result.model_dump())

    # -- content queue ----------------------------------------------------

    async def list_queue(self, request: GatewayRequest) -> HandlerResult:
        store_id = await self._store_id(request)
        return HandlerResult(data=await self._queue.list(store_id))

    async def queue_metrics(self, request: GatewayRequest) -> HandlerResult:
        store_id = await self._store_id(request)
        metrics = await self._queue.metrics(store_id)
        return HandlerResult(data=metrics.model_dump())

    async def refill_queue(self, request: GatewayRequest) -> HandlerResult:
        body = request.json_body()
        store_id = await self._store_id(request, body)
        created = await self._queue.refill(store_id)
        self._invalidate("queue")
        return HandlerResult(data={"created": created})

    async def reorder_queue(self, request: GatewayRequest) -> HandlerResult:
        body = request.json_body()
        reorder = parse_body(QueueReorderRequest, body)
        store_id = await self._store_id(request, body)
        await self._queue.reorder(store_id, reorder.article_ids)
        self._invalidate("queue")
        return HandlerResult(data={"reordered": len(reorder.article_ids)})

    async def regenerate_queue_title(self, request: GatewayRequest) -> HandlerResult:
        body = request.json_body()
        target = parse_body(QueueRegenerateTitleRequest, body)
        store_id = await self._store_id(request, body)
        title = await self._queue.regenerate_title(store_id, target.article_id)
        self._invalidate("queue")
        return HandlerResult(data={"id": target.article_id, "title": title})


def build_registry(routes: GatewayRoutes, settings: Settings) -> RouteRegistry:
    """Register every route with its policy and freeze the registry."""
    window = settings.rate_limit_window_seconds
    default_size = settings.max_request_size
    posts_size = settings.max_request_size_posts
    timeout = settings.default_timeout

    def policy(
        max_requests: int | None,
        *,
        requires_auth: bool = True,
        cache_ttl: float | None = None,
        route_timeout: float = timeout,
        max_size: int = default_size,
        validate: Callable[[dict[str, Any]], str | None] | None = None,
    ) -> RoutePolicy:
        return RoutePolicy(
            requires_auth=requires_auth,
            rate_limit=(
                RateLimitPolicy(max_requests, window) if max_requests else None
            ),
            cache=CachePolicy(cache_ttl) if cache_ttl else None,
            timeout=route_timeout,
            validate_input=validate,
            max_request_size=max_size,
        )

    registry = RouteRegistry(prefix=API_PREFIX)
    add = registry.add

    add("GET", "/quota", routes.quota, policy(100, cache_ttl=120), name="get_quota")
    add("POST", "/quota", routes.quota, policy(100), name="post_quota")
    add(
        "GET",
        "/store/{shop_domain}",
        routes.store_by_domain,
        policy(100, requires_auth=False, cache_ttl=300),
    )

    add(
        "GET",
        "/posts",
        routes.list_posts,
        policy(200, cache_ttl=120, validate=validate_list_posts_params),
    )
    add(
        "POST",
        "/posts",
        routes.create_post,
        policy(
            10,
            route_timeout=settings.create_post_timeout,
            max_size=posts_size,
            validate=validate_create_post_params,
        ),
    )
    add("PATCH", "/posts/{post_id}", routes.update_post, policy(200, max_size=posts_size))
    add("DELETE", "/posts/{post_id}", routes.delete_post, policy(200))
    add("POST", "/posts/{post_id}/schedule", routes.schedule_post, policy(200))

    add(
        "POST",
        "/regeneration/check-limits",
        routes.check_regeneration_limits,
        policy(200),
    )

    add("GET", "/queue", routes.list_queue, policy(200, cache_ttl=30))
    add("GET", "/queue/metrics", routes.queue_metrics, policy(200))
    add(
        "POST",
        "/queue/refill",
        routes.refill_queue,
        policy(200, route_timeout=settings.create_post_timeout),
    )
    add("POST", "/queue/reorder", routes.reorder_queue, policy(200))
    add("POST", "/queue/regenerate-title", routes.regenerate_queue_title, policy(200))

    return registry.freeze()
