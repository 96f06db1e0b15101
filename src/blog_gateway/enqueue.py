"""Submit background jobs to ARQ."""

from __future__ import annotations

from typing import Any

import structlog
from arq.connections import ArqRedis

logger = structlog.get_logger()

# job type -> ARQ task function name
JOB_FUNCTIONS: dict[str, str] = {
    "llm_snippet": "arq_generate_snippet",
}
# ARQ has a single FIFO per queue; lower priorities are deferred slightly
PRIORITY_DEFER_SECONDS: dict[str, float] = {
    "high": 0.0,
    "normal": 0.0,
    "low": 30.0,
}


class ArqJobQueue:
    """``JobQueue`` over an ARQ Redis pool."""

    def __init__(self, redis: ArqRedis) -> None:
        self._redis = redis

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        priority: str = "normal",
        max_attempts: int = 3,
    ) -> str | None:
        """Enqueue ``job_type`` with ``payload`` as keyword arguments.

        Returns:
            The ARQ job id, or None if an identical job is already queued.

        Raises:
            ValueError: for an unknown job type or priority.
        """
        function = JOB_FUNCTIONS.get(job_type)
        if function is None:
            raise ValueError(f"Unknown job type: {job_type}")
        if priority not in PRIORITY_DEFER_SECONDS:
            raise ValueError(f"Unknown job priority: {priority}")

        defer = PRIORITY_DEFER_SECONDS[priority]
        arq_job = await self._redis.enqueue_job(
            function,
            _defer_by=defer or None,
            max_attempts=max_attempts,
            **payload,
        )
        job_id = arq_job.job_id if arq_job is not None else None
        logger.info(
            "job_enqueued",
            job_type=job_type,
            priority=priority,
            arq_job_id=job_id,
            post_id=payload.get("post_id"),
        )
        return job_id
