"""Domain-specific exceptions for blog-gateway.

Every error the gateway translates into an HTTP response derives from
``GatewayError`` and carries its status code, a stable error code and
optional metadata merged into the response envelope.
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for errors with a defined HTTP mapping."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, metadata: dict[str, Any] | None = None) -> None:
        self.message = message
        self.metadata: dict[str, Any] = metadata or {}
        super().__init__(message)


class InvalidInputError(GatewayError):
    """Caller supplied malformed or missing input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class TenantRequiredError(InvalidInputError):
    """No tenant could be resolved from any accepted source."""

    code = "STORE_ID_REQUIRED"

    def __init__(self, hint: str) -> None:
        super().__init__("Store ID is required", metadata={"hint": hint})


class RegenerationLimitError(InvalidInputError):
    """Regeneration of a post is not allowed by plan limits."""

    code = "REGENERATION_LIMIT"


class AuthorizationError(GatewayError):
    status_code = 401
    code = "UNAUTHORIZED"


class TenantInactiveError(GatewayError):
    status_code = 403
    code = "STORE_INACTIVE"


class QuotaExceededError(GatewayError):
    """Plan quota does not allow another article."""

    status_code = 403
    code = "QUOTA_EXCEEDED"

    def __init__(
        self,
        message: str,
        *,
        quota_status: dict[str, Any] | None,
        trial_status: dict[str, Any] | None,
    ) -> None:
        self.quota_status = quota_status
        self.trial_status = trial_status
        super().__init__(
            message,
            metadata={"quotaStatus": quota_status, "trialStatus": trial_status},
        )


class TenantNotFoundError(GatewayError):
    status_code = 404
    code = "STORE_NOT_FOUND"


class NotFoundError(GatewayError):
    status_code = 404
    code = "NOT_FOUND"


class GatewayTimeoutError(GatewayError, TimeoutError):
    status_code = 408
    code = "REQUEST_TIMEOUT"

    def __init__(self, message: str = "Request timeout") -> None:
        super().__init__(message)


class PayloadTooLargeError(GatewayError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"

    def __init__(self, max_size: int) -> None:
        super().__init__(
            "Request body too large",
            metadata={"maxSize": max_size},
        )


class RateLimitedError(GatewayError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded", metadata={"retryAfter": retry_after})


class UpstreamError(GatewayError):
    """A collaborator (store, generator, queue) failed after retries."""

    status_code = 500
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        self.stage = stage
        super().__init__(message, metadata={"stage": stage} if stage else None)
