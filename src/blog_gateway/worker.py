"""ARQ worker configuration and lifecycle hooks.

Run with::

    arq blog_gateway.worker.WorkerSettings
"""

from typing import Any, ClassVar

import structlog
from arq.connections import RedisSettings

from blog_gateway.config import get_settings
from blog_gateway.logging_config import configure_logging
from blog_gateway.tasks import arq_generate_snippet

WorkerCtx = dict[str, Any]


async def startup(ctx: WorkerCtx) -> None:
    """Create the engine, content store and generation client for tasks."""
    from blog_gateway.integrations import GenerationServiceClient
    from blog_gateway.storage.database import create_engine, create_session_factory
    from blog_gateway.storage.store import SqlContentStore

    s = get_settings()
    configure_logging(environment=str(s.environment), log_level=s.log_level)

    engine = create_engine(s.database_url)
    api_key = s.generation_service_api_key
    ctx["engine"] = engine
    ctx["content_store"] = SqlContentStore(create_session_factory(engine))
    ctx["generation_client"] = GenerationServiceClient(
        s.generation_service_url,
        api_key.get_secret_value() if api_key else None,
        timeout=s.generation_service_timeout,
    )

    log = structlog.get_logger()
    log.info("worker_started", redis_url=s.redis_url, max_jobs=s.worker_max_jobs)


async def shutdown(ctx: WorkerCtx) -> None:
    """Clean up worker resources on shutdown."""
    client = ctx.get("generation_client")
    if client is not None:
        await client.close()

    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()

    structlog.get_logger().info("worker_stopped")


class WorkerSettings:
    """ARQ worker settings, consumed by the ``arq`` CLI."""

    _settings = get_settings()

    redis_settings: RedisSettings = RedisSettings.from_dsn(_settings.redis_url)
    functions: ClassVar[list[Any]] = [arq_generate_snippet]
    on_startup = startup
    on_shutdown = shutdown

    max_jobs: int = _settings.worker_max_jobs
    job_timeout: int = _settings.worker_job_timeout
    max_tries: int = _settings.worker_max_tries

    keep_result: int = 3600
    poll_delay: float = 0.5
