"""Store (tenant) resolution."""

from blog_gateway.tenancy.resolver import (
    ResolutionSource,
    StoreDirectory,
    TenantResolution,
    TenantResolver,
    domain_from_path,
)

__all__ = [
    "ResolutionSource",
    "StoreDirectory",
    "TenantResolution",
    "TenantResolver",
    "domain_from_path",
]
