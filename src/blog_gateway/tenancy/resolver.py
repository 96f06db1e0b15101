"""Resolve which store (tenant) a request acts on."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

import structlog

from blog_gateway.auth.context import RequestContext
from blog_gateway.errors import TenantRequiredError, UpstreamError
from blog_gateway.retry import RetryPolicy

logger = structlog.get_logger()

DOMAIN_CACHE_TTL_SECONDS = 300.0
STORE_ID_HINT = (
    "Provide storeId in query params, request body, "
    "or ensure shopDomain is valid"
)


class ResolutionSource(StrEnum):
    QUERY_PARAMS = "query_params"
    QUERY_PARAMS_DOMAIN = "query_params_shopDomain"
    REQUEST_BODY = "request_body"
    REQUEST_BODY_DOMAIN = "request_body_shopDomain"
    CONTEXT = "context"
    DOMAIN_LOOKUP = "shopDomain_lookup"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class TenantResolution:
    store_id: str | None
    domain: str | None
    source: ResolutionSource


class StoreDirectory(Protocol):
    async def find_store_id_by_domain(self, shop_domain: str) -> str | None: ...


def domain_from_path(path: str) -> str | None:
    """Return the segment following ``store`` in a URL path, if any."""
    parts = [p for p in path.split("/") if p]
    if "store" not in parts:
        return None
    index = parts.index("store")
    if index < len(parts) - 1:
        return parts[index + 1] or None
    return None


class TenantResolver:
    """Resolve a store id from query, body, context or a domain lookup.

    Sources are tried in a fixed order and the first match wins. Domain
    lookups are cached per instance for ``cache_ttl`` seconds.
    """

    def __init__(
        self,
        directory: StoreDirectory,
        retry_policy: RetryPolicy,
        cache_ttl: float = DOMAIN_CACHE_TTL_SECONDS,
    ) -> None:
        self._directory = directory
        self._retry = retry_policy
        self._cache_ttl = cache_ttl
        self._domain_cache: dict[str, tuple[str, float]] = {}

    async def resolve(
        self,
        ctx: RequestContext,
        *,
        query_params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
        external_domain: str | None = None,
        path: str | None = None,
    ) -> TenantResolution:
        if query_params:
            store_id = query_params.get("storeId")
            if store_id:
                return TenantResolution(
                    store_id, external_domain, ResolutionSource.QUERY_PARAMS
                )
            domain = query_params.get("shopDomain")
            if domain:
                resolved = await self.resolve_by_domain(domain)
                if resolved:
                    return TenantResolution(
                        resolved, domain, ResolutionSource.QUERY_PARAMS_DOMAIN
                    )

        if body:
            store_id = body.get("storeId")
            if store_id:
                return TenantResolution(
                    str(store_id), body.get("shopDomain"), ResolutionSource.REQUEST_BODY
                )
            domain = body.get("shopDomain")
            if domain:
                resolved = await self.resolve_by_domain(str(domain))
                if resolved:
                    return TenantResolution(
                        resolved, str(domain), ResolutionSource.REQUEST_BODY_DOMAIN
                    )

        if ctx.store_id:
            return TenantResolution(
                ctx.store_id, external_domain, ResolutionSource.CONTEXT
            )

        domain = external_domain or (domain_from_path(path) if path else None)
        if domain:
            resolved = await self.resolve_by_domain(domain)
            if resolved:
                return TenantResolution(resolved, domain, ResolutionSource.DOMAIN_LOOKUP)

        return TenantResolution(None, None, ResolutionSource.NOT_FOUND)

    async def require(
        self,
        ctx: RequestContext,
        *,
        query_params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
        external_domain: str | None = None,
        path: str | None = None,
    ) -> str:
        """Resolve and attach the store id to ``ctx``.

        Raises:
            TenantRequiredError: when no source yields a store id.
            UpstreamError: when a domain lookup fails after retries.
        """
        result = await self.resolve(
            ctx,
            query_params=query_params,
            body=body,
            external_domain=external_domain,
            path=path,
        )
        if result.store_id is None:
            logger.warning(
                "store_resolution_failed",
                has_query_params=bool(query_params),
                has_body=bool(body),
            )
            raise TenantRequiredError(STORE_ID_HINT)

        ctx.attach_store(result.store_id)
        logger.debug(
            "tenant_resolved",
            store_id=result.store_id,
            shop_domain=result.domain,
            source=str(result.source),
        )
        return result.store_id

    async def resolve_by_domain(self, shop_domain: str) -> str | None:
        """Map a shop domain to a store id, consulting the cache first."""
        if not shop_domain:
            return None

        cached = self._domain_cache.get(shop_domain)
        now = time.monotonic()
        if cached is not None:
            store_id, stored_at = cached
            if now - stored_at < self._cache_ttl:
                return store_id
            del self._domain_cache[shop_domain]

        try:
            store_id = await self._retry.run(
                lambda: self._directory.find_store_id_by_domain(shop_domain),
                name="find_store_by_domain",
            )
        except Exception as exc:
            logger.error(
                "store_domain_lookup_failed", shop_domain=shop_domain, error=str(exc)
            )
            raise UpstreamError("Failed to resolve store from shop domain") from exc

        if store_id is None:
            logger.debug("store_domain_not_found", shop_domain=shop_domain)
            return None

        self._domain_cache[shop_domain] = (store_id, time.monotonic())
        return store_id
