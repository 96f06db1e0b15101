"""Adapters for external services."""

from blog_gateway.integrations.generation_client import GenerationServiceClient

__all__ = ["GenerationServiceClient"]
