"""Request envelope: routing, caching and dispatch."""

from blog_gateway.gateway.cache import ResponseCache, build_cache_key
from blog_gateway.gateway.dispatcher import (
    GatewayDispatcher,
    GatewayRequest,
    GatewayResponse,
    HandlerResult,
    InboundRequest,
    Interceptors,
)
from blog_gateway.gateway.routing import (
    CachePolicy,
    RateLimitPolicy,
    RoutePolicy,
    RouteRegistry,
)

__all__ = [
    "CachePolicy",
    "GatewayDispatcher",
    "GatewayRequest",
    "GatewayResponse",
    "HandlerResult",
    "InboundRequest",
    "Interceptors",
    "RateLimitPolicy",
    "ResponseCache",
    "RoutePolicy",
    "RouteRegistry",
    "build_cache_key",
]
