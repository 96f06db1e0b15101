"""FastAPI application with lifespan management.

All ``/api/v1`` traffic goes through one catch-all endpoint that hands the
request to ``GatewayDispatcher``; routing, auth, rate limiting, caching and
error mapping live there rather than in FastAPI routers.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from blog_gateway.api.middleware import RequestLoggingMiddleware
from blog_gateway.api.routes import API_PREFIX, GatewayRoutes, build_registry
from blog_gateway.auth import FixedWindowRateLimiter, RequestContextBuilder
from blog_gateway.config import Settings, settings
from blog_gateway.content_queue import QueueManager
from blog_gateway.enqueue import ArqJobQueue
from blog_gateway.gateway import GatewayDispatcher, InboundRequest, ResponseCache
from blog_gateway.integrations import GenerationServiceClient
from blog_gateway.logging_config import configure_logging
from blog_gateway.pipeline import ContentPipelineOrchestrator, PipelineFlags
from blog_gateway.pipeline.collaborators import JobQueue
from blog_gateway.retry import RetryPolicy
from blog_gateway.storage.database import async_session, engine
from blog_gateway.storage.store import SqlContentStore
from blog_gateway.tenancy import TenantResolver

logger = structlog.get_logger()

CLEANUP_INTERVAL_SECONDS = 300
HEALTH_CHECK_TIMEOUT = 5.0


def build_dispatcher(
    s: Settings,
    *,
    store: SqlContentStore,
    generation: GenerationServiceClient,
    job_queue: JobQueue,
) -> GatewayDispatcher:
    """Wire the gateway from settings and its external adapters."""
    retry_policy = RetryPolicy(
        max_attempts=s.effective_retry_attempts, base_delay=s.retry_base_delay
    )
    cache = ResponseCache(
        s.cache_max_entries, s.cache_evict_buffer, enabled=s.enable_caching
    )
    orchestrator = ContentPipelineOrchestrator(
        store=store,
        composer=generation,
        keyword_miner=generation,
        sanitizer=generation,
        seo=generation,
        product_injector=generation,
        image_generator=generation,
        image_host=generation,
        linker=generation,
        job_queue=job_queue,
        retry_policy=retry_policy,
        flags=PipelineFlags(
            seo_optimization=s.enable_seo_optimization,
            product_mentions=s.enable_product_mentions,
            image_generation=s.enable_image_generation,
            internal_links=s.enable_internal_links,
            llm_snippets=s.enable_llm_snippets,
        ),
        trial_days=s.trial_days,
    )
    routes = GatewayRoutes(
        store=store,
        resolver=TenantResolver(store, retry_policy, cache_ttl=s.domain_cache_ttl),
        orchestrator=orchestrator,
        queue=QueueManager(store, retry_policy),
        cache=cache,
        retry_policy=retry_policy,
        trial_days=s.trial_days,
    )
    return GatewayDispatcher(
        build_registry(routes, s),
        RequestContextBuilder(store, retry_policy),
        cache=cache,
        rate_limiter=FixedWindowRateLimiter(s.rate_limit_window_seconds),
    )


async def _cleanup_loop(limiter: FixedWindowRateLimiter) -> None:
    """Periodic cleanup of expired rate limit windows."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        try:
            cleaned = await asyncio.to_thread(limiter.cleanup)
            if cleaned:
                logger.debug("rate_limiter_cleanup", keys_removed=cleaned)
        except Exception:
            logger.exception("rate_limiter_cleanup_error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Open the ARQ pool and the generation service client.
        - Build the dispatcher and start rate limiter cleanup.
    Shutdown:
        - Cancel cleanup, close clients, dispose the database engine.
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
    )

    arq_redis = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    app.state.arq_redis = arq_redis

    api_key = settings.generation_service_api_key
    async with GenerationServiceClient(
        settings.generation_service_url,
        api_key.get_secret_value() if api_key else None,
        timeout=settings.generation_service_timeout,
    ) as generation:
        dispatcher = build_dispatcher(
            settings,
            store=SqlContentStore(async_session),
            generation=generation,
            job_queue=ArqJobQueue(arq_redis),
        )
        app.state.dispatcher = dispatcher
        cleanup_task = asyncio.create_task(_cleanup_loop(dispatcher.rate_limiter))

        logger.info("app_started", environment=str(settings.environment))
        yield

        cleanup_task.cancel()

    await arq_redis.aclose()
    await engine.dispose()
    logger.info("app_stopped")


app = FastAPI(
    title="Blog Gateway",
    description="Multi-tenant gateway for blog content generation",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.is_dev,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
    expose_headers=["X-Correlation-Id", "X-Response-Time", "Retry-After"],
)


@app.get("/health")
async def health() -> JSONResponse:
    """Deep health check: verifies DB and Redis connectivity."""
    checks: dict[str, str] = {}
    overall = "ok"

    try:
        async with async_session() as session:
            await asyncio.wait_for(
                session.execute(text("SELECT 1")),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
        checks["db"] = "ok"
    except (TimeoutError, OperationalError, SQLAlchemyError) as e:
        logger.warning("health_check_db_error", error=type(e).__name__)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_db_unexpected", error=str(e), exc_info=True)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"

    try:
        arq_redis = app.state.arq_redis
        await asyncio.wait_for(arq_redis.ping(), timeout=HEALTH_CHECK_TIMEOUT)
        checks["redis"] = "ok"
    except (TimeoutError, ConnectionError, OSError) as e:
        logger.warning("health_check_redis_error", error=type(e).__name__)
        checks["redis"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_redis_unexpected", error=str(e), exc_info=True)
        checks["redis"] = f"error: {type(e).__name__}"
        overall = "degraded"

    return JSONResponse(
        status_code=200 if overall == "ok" else 503,
        content={
            "status": overall,
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


@app.api_route(
    API_PREFIX + "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def gateway(request: Request) -> JSONResponse:
    """Hand the request to the gateway dispatcher."""
    dispatcher: GatewayDispatcher = request.app.state.dispatcher
    inbound = InboundRequest(
        method=request.method,
        path=request.url.path,
        headers={k.lower(): v for k, v in request.headers.items()},
        query=tuple(request.query_params.multi_items()),
        body=await request.body(),
    )
    response = await dispatcher.dispatch(inbound)
    return JSONResponse(
        status_code=response.status_code,
        content=jsonable_encoder(response.body),
        headers=response.headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )
