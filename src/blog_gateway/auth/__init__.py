"""Caller authentication, request context and rate limiting."""

from blog_gateway.auth.context import (
    Principal,
    RequestContext,
    RequestContextBuilder,
    generate_correlation_id,
)
from blog_gateway.auth.keys import extract_bearer_token, generate_api_key, hash_api_key
from blog_gateway.auth.rate_limiter import FixedWindowRateLimiter, RateLimitDecision

__all__ = [
    "FixedWindowRateLimiter",
    "Principal",
    "RateLimitDecision",
    "RequestContext",
    "RequestContextBuilder",
    "extract_bearer_token",
    "generate_api_key",
    "generate_correlation_id",
    "hash_api_key",
]
