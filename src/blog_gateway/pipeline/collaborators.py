"""Interfaces of the services the content pipeline coordinates.

Concrete implementations: ``SqlContentStore`` (storage), the httpx
``GenerationServiceClient`` (integrations) and ``ArqJobQueue`` (enqueue).
"""

from __future__ import annotations

from typing import Any, Protocol

from blog_gateway.models import (
    ComposeOptions,
    DraftContent,
    ImageUploadOptions,
    KeywordCluster,
    PostDraft,
    ProductMentionResult,
    QuotaEnforcement,
    RegenerationCheck,
    StoreRecord,
)


class ContentComposer(Protocol):
    async def compose(
        self,
        topic: str,
        keywords: list[str],
        options: ComposeOptions,
        *,
        tone_profile: dict[str, float],
        brand_profile: dict[str, Any],
    ) -> DraftContent: ...


class KeywordMiner(Protocol):
    async def mine_keywords(self, topic: str) -> KeywordCluster: ...


class ContentSanitizer(Protocol):
    async def sanitize(self, text: str, store_id: str, purpose: str) -> str: ...


class SeoOptimizer(Protocol):
    async def score_seo(
        self, draft: DraftContent, keywords: list[str]
    ) -> dict[str, Any]: ...

    async def analyze_keywords(
        self, content: str, keywords: list[str]
    ) -> dict[str, Any]: ...

    async def structured_data(
        self, draft: DraftContent, keywords: list[str]
    ) -> dict[str, Any]: ...


class ProductMentionInjector(Protocol):
    async def inject_product_mentions(
        self,
        content: str,
        product_ids: list[str],
        *,
        store: StoreRecord,
        max_mentions: int = 5,
    ) -> ProductMentionResult: ...


class ImageGenerator(Protocol):
    async def generate_image(
        self, prompt: str, title: str, keywords: list[str]
    ) -> str: ...


class ImageHost(Protocol):
    async def upload_image(
        self, store: StoreRecord, image_url: str, options: ImageUploadOptions
    ) -> str: ...


class InternalLinker(Protocol):
    async def rebuild_internal_links(
        self, store_id: str, post_id: str
    ) -> list[dict[str, Any]]: ...


class JobQueue(Protocol):
    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        priority: str = "normal",
        max_attempts: int = 3,
    ) -> str | None: ...


class ContentStore(Protocol):
    """Persistent store operations the pipeline depends on."""

    async def get_store(self, store_id: str) -> StoreRecord | None: ...

    async def ensure_trial_plan(self, store_id: str, trial_days: int) -> bool: ...

    async def enforce_article_quota(self, store_id: str) -> QuotaEnforcement: ...

    async def check_regeneration_limits(
        self, store_id: str, post_id: str
    ) -> RegenerationCheck: ...

    async def create_post(self, draft: PostDraft) -> dict[str, Any]: ...

    async def record_regeneration(
        self, store_id: str, post_id: str, regenerated_from: str
    ) -> None: ...

    async def record_usage(
        self, store_id: str, post_id: str, usage_id: str | None
    ) -> None: ...

    async def update_internal_links(
        self, post_id: str, links: list[dict[str, Any]]
    ) -> None: ...
