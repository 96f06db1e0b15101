"""HTTP client for the content generation service.

One client implements every generation collaborator the pipeline and the
snippet worker use (composer, keyword miner, sanitizer, SEO, product
mentions, images, internal links, snippets).
"""

from __future__ import annotations

from types import TracebackType
from typing import Any

import httpx
import structlog

from blog_gateway.errors import UpstreamError
from blog_gateway.models import (
    ComposeOptions,
    DraftContent,
    ImageUploadOptions,
    KeywordCluster,
    ProductMentionResult,
    StoreRecord,
)

logger = structlog.get_logger()


class GenerationServiceClient:
    """Async httpx client for the generation service.

    Usage::

        async with GenerationServiceClient(url, api_key) as client:
            draft = await client.compose(topic, keywords, options, ...)

    Transport failures and non-2xx responses raise ``UpstreamError``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GenerationServiceClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("generation_request_failed", path=path, error=str(exc))
            raise UpstreamError("Generation service unavailable") from exc

        if response.status_code >= 400:
            logger.warning(
                "generation_request_rejected",
                path=path,
                status_code=response.status_code,
            )
            raise UpstreamError(
                f"Generation service error: {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("Generation service returned invalid JSON") from exc

    # -- composer / keywords / sanitizer --------------------------------

    async def compose(
        self,
        topic: str,
        keywords: list[str],
        options: ComposeOptions,
        *,
        tone_profile: dict[str, float],
        brand_profile: dict[str, Any],
    ) -> DraftContent:
        data = await self._post(
            "/v1/compose",
            {
                "topic": topic,
                "keywords": keywords,
                "options": options.model_dump(),
                "tone_profile": tone_profile,
                "brand_profile": brand_profile,
            },
        )
        return DraftContent.model_validate(data)

    async def mine_keywords(self, topic: str) -> KeywordCluster:
        data = await self._post("/v1/keywords", {"topic": topic})
        return KeywordCluster.model_validate(data)

    async def sanitize(self, text: str, store_id: str, purpose: str) -> str:
        data = await self._post(
            "/v1/sanitize", {"text": text, "store_id": store_id, "purpose": purpose}
        )
        return str(data["text"])

    # -- SEO --------------------------------------------------------------

    async def score_seo(
        self, draft: DraftContent, keywords: list[str]
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/seo/score", {"draft": draft.model_dump(), "keywords": keywords}
        )

    async def analyze_keywords(
        self, content: str, keywords: list[str]
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/seo/keywords", {"content": content, "keywords": keywords}
        )

    async def structured_data(
        self, draft: DraftContent, keywords: list[str]
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/seo/structured-data",
            {"draft": draft.model_dump(), "keywords": keywords},
        )

    # -- products / images / links ---------------------------------------

    async def inject_product_mentions(
        self,
        content: str,
        product_ids: list[str],
        *,
        store: StoreRecord,
        max_mentions: int = 5,
    ) -> ProductMentionResult:
        data = await self._post(
            "/v1/products/mentions",
            {
                "content": content,
                "product_ids": product_ids,
                "store_id": store.id,
                "shop_domain": store.shop_domain,
                "max_mentions": max_mentions,
            },
        )
        return ProductMentionResult.model_validate(data)

    async def generate_image(
        self, prompt: str, title: str, keywords: list[str]
    ) -> str:
        data = await self._post(
            "/v1/images/generate",
            {"prompt": prompt, "title": title, "keywords": keywords},
        )
        return str(data["url"])

    async def upload_image(
        self, store: StoreRecord, image_url: str, options: ImageUploadOptions
    ) -> str:
        data = await self._post(
            "/v1/images/upload",
            {
                "store_id": store.id,
                "shop_domain": store.shop_domain,
                "image_url": image_url,
                "options": options.model_dump(),
            },
        )
        return str(data["url"])

    async def rebuild_internal_links(
        self, store_id: str, post_id: str
    ) -> list[dict[str, Any]]:
        data = await self._post(
            "/v1/links/rebuild", {"store_id": store_id, "post_id": post_id}
        )
        return list(data.get("links") or [])

    async def generate_snippet(
        self,
        title: str,
        content: str,
        keywords: list[str],
        seo_metadata: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/snippets",
            {
                "title": title,
                "content": content,
                "keywords": keywords,
                "seo_metadata": seo_metadata,
            },
        )
