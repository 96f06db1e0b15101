"""Background tasks executed by the ARQ worker."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from arq import Retry

from blog_gateway.errors import UpstreamError

if TYPE_CHECKING:
    from blog_gateway.integrations import GenerationServiceClient
    from blog_gateway.storage.store import SqlContentStore

RETRY_DEFER_SECONDS = 10


async def arq_generate_snippet(
    ctx: dict[str, Any],
    *,
    post_id: str,
    store_id: str,
    title: str,
    content: str,
    keywords: list[str] | None = None,
    seo_metadata: dict[str, Any] | None = None,
    max_attempts: int = 3,
) -> bool:
    """ARQ task: generate an answer-engine snippet and store it on the post.

    Upstream failures are retried with a linear back-off until
    ``max_attempts`` tries have been made, then re-raised.

    Args:
        ctx: ARQ worker context (generation_client, content_store, job_try).
        post_id: Post UUID as string.
        store_id: Owning store UUID as string.
        title: Post title.
        content: Final post content.
        keywords: Post keywords.
        seo_metadata: SEO metadata computed by the pipeline.
        max_attempts: Tries allowed for this job.

    Returns:
        True if the snippet was stored, False if the post no longer exists.
    """
    client: GenerationServiceClient = ctx["generation_client"]
    store: SqlContentStore = ctx["content_store"]
    job_try: int = ctx.get("job_try", 1)
    log = structlog.get_logger().bind(
        post_id=post_id, store_id=store_id, job_try=job_try
    )

    try:
        snippet = await client.generate_snippet(
            title, content, keywords or [], seo_metadata or {}
        )
    except UpstreamError as exc:
        if job_try < max_attempts:
            log.warning("snippet_generation_retry", error=str(exc))
            raise Retry(defer=job_try * RETRY_DEFER_SECONDS) from exc
        log.error("snippet_generation_failed", error=str(exc))
        raise

    stored = await store.update_snippet(post_id, snippet)
    if not stored:
        log.warning("snippet_post_missing")
        return False
    log.info("snippet_stored")
    return True
