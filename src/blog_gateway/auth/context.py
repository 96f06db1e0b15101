"""Per-request context and the builder that authenticates callers."""

from __future__ import annotations

import secrets
import string
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from blog_gateway.auth.keys import extract_bearer_token, hash_api_key
from blog_gateway.errors import AuthorizationError
from blog_gateway.retry import RetryPolicy

logger = structlog.get_logger()

CORRELATION_HEADER = "x-correlation-id"
CORRELATION_PREFIX = "api-"
_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_LENGTH = 9


def generate_correlation_id() -> str:
    """``api-<epoch ms>-<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))
    return f"{CORRELATION_PREFIX}{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity returned by a credential verifier."""

    caller_id: str
    key_prefix: str | None = None


class CredentialVerifier(Protocol):
    async def verify(self, key_hash: str) -> Principal | None: ...


@dataclass(slots=True)
class RequestContext:
    """Per-request context, created by ``RequestContextBuilder``.

    Immutable except ``store_id``, which may be attached once after the
    handler resolves the owning store.
    """

    correlation_id: str
    caller_id: str | None = None
    store_id: str | None = None
    started_at: float = field(default_factory=time.perf_counter)

    def attach_store(self, store_id: str) -> None:
        """Back-fill the resolved store id; a different second value is rejected."""
        if self.store_id is not None and self.store_id != store_id:
            raise ValueError(
                f"Request already bound to store {self.store_id}, got {store_id}"
            )
        self.store_id = store_id

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


class RequestContextBuilder:
    """Authenticate the bearer credential and build the request context."""

    def __init__(self, verifier: CredentialVerifier, retry_policy: RetryPolicy) -> None:
        self._verifier = verifier
        self._retry = retry_policy

    async def build(
        self,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
        *,
        requires_auth: bool = True,
        correlation_id: str | None = None,
    ) -> RequestContext:
        """Create the context for one request.

        Raises:
            AuthorizationError: if ``requires_auth`` and the credential is
                missing, malformed or unknown.
        """
        ctx = RequestContext(
            correlation_id=correlation_id
            or headers.get(CORRELATION_HEADER)
            or generate_correlation_id(),
        )

        principal = await self._authenticate(headers.get("authorization"))
        if principal is None:
            if requires_auth:
                raise AuthorizationError(
                    "Missing authorization header"
                    if not headers.get("authorization")
                    else "Invalid authorization"
                )
        else:
            ctx.caller_id = principal.caller_id

        store_id = query_params.get("storeId")
        if store_id:
            ctx.store_id = store_id
        return ctx

    async def _authenticate(self, authorization: str | None) -> Principal | None:
        token = extract_bearer_token(authorization)
        if token is None:
            return None
        key_hash = hash_api_key(token)
        principal = await self._retry.run(
            lambda: self._verifier.verify(key_hash), name="verify_credential"
        )
        if principal is None:
            logger.info("credential_rejected", key_prefix=token[:7])
        return principal
