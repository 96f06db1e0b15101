"""Bounded exponential-backoff retry for calls to external collaborators."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from blog_gateway.errors import GatewayError, UpstreamError

logger = structlog.get_logger()

_T = TypeVar("_T")

Sleep = Callable[[float], Awaitable[None]]


def _is_retryable(exc: Exception) -> bool:
    """Classify exception as transient (retry) or permanent (raise now).

    Gateway errors describe caller input or plan decisions and are
    permanent, except ``UpstreamError`` which wraps a collaborator failure.
    Everything else (network, database, HTTP 5xx) is retried.
    """
    if isinstance(exc, GatewayError):
        return isinstance(exc, UpstreamError)
    return True


def backoff_delay(base_delay: float, failed_attempt: int) -> float:
    """Delay after the failed attempt with zero-based index ``failed_attempt``."""
    return base_delay * 2**failed_attempt


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry configuration shared by every external call.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Seconds to wait after the first failure; doubles each time.
        sleep: Awaitable sleep, replaced with a recorder in tests.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    sleep: Sleep = field(default=asyncio.sleep, compare=False)

    async def run(
        self,
        operation: Callable[[], Awaitable[_T]],
        *,
        name: str = "operation",
    ) -> _T:
        """Await ``operation`` until it succeeds or attempts are exhausted.

        Raises:
            Exception: the last error observed, unchanged.
        """
        attempts = max(self.max_attempts, 1)
        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as exc:
                if not _is_retryable(exc) or attempt == attempts - 1:
                    raise
                delay = backoff_delay(self.base_delay, attempt)
                logger.debug(
                    "retry_scheduled",
                    operation=name,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    async def guarded(
        self,
        operation: Callable[[], Awaitable[_T]],
        *,
        name: str,
        message: str,
    ) -> _T:
        """Like ``run``, but surface non-gateway failures as ``UpstreamError``.

        Raises:
            GatewayError: raised by ``operation``, unchanged.
            UpstreamError: ``message``, chained to the last underlying error.
        """
        try:
            return await self.run(operation, name=name)
        except GatewayError:
            raise
        except Exception as exc:
            logger.error("upstream_call_failed", operation=name, error=str(exc))
            raise UpstreamError(message, stage=name) from exc


async def retry(
    operation: Callable[[], Awaitable[_T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    name: str = "operation",
) -> _T:
    """One-off retry without building a policy object."""
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay)
    return await policy.run(operation, name=name)
