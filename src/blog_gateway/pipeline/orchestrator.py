"""Content creation pipeline.

Runs one "create post" request through sixteen stages. Fatal stages raise
a ``GatewayError``; optional stages never raise and instead return the
previous artifact plus a warning. Persisting the post (stage 12) is the
durability boundary: a fatal failure before it leaves no row behind.

Every collaborator call goes through the shared ``RetryPolicy``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from blog_gateway.errors import (
    InvalidInputError,
    QuotaExceededError,
    RegenerationLimitError,
    TenantInactiveError,
    TenantNotFoundError,
    UpstreamError,
)
from blog_gateway.models import (
    ComposeOptions,
    DraftContent,
    ImageUploadOptions,
    PostDraft,
    PostStatus,
    ReviewStatus,
    StoreRecord,
)
from blog_gateway.pipeline.collaborators import (
    ContentComposer,
    ContentSanitizer,
    ContentStore,
    ImageGenerator,
    ImageHost,
    InternalLinker,
    JobQueue,
    KeywordMiner,
    ProductMentionInjector,
    SeoOptimizer,
)
from blog_gateway.retry import RetryPolicy

logger = structlog.get_logger()

MAX_TOPIC_LENGTH = 500
MAX_KEYWORDS = 50
MAX_PRODUCTS = 50
MAX_PRODUCT_MENTIONS = 5
SNIPPET_JOB_TYPE = "llm_snippet"
SNIPPET_JOB_MAX_ATTEMPTS = 3

_STRUCTURES = {"default", "how-to", "listicle", "comparison", "tutorial", "case-study"}
_EXPERIENCE_LEVELS = {"beginner", "intermediate", "advanced"}


def validate_create_post_params(params: dict[str, Any]) -> str | None:
    """Return the first validation error for create-post input, or None."""
    topic = params.get("topic")
    if not isinstance(topic, str) or not topic.strip():
        return "topic is required and must be a non-empty string"
    if len(topic) > MAX_TOPIC_LENGTH:
        return f"topic must be less than {MAX_TOPIC_LENGTH} characters"
    keywords = params.get("keywords")
    if keywords is not None and not isinstance(keywords, list):
        return "keywords must be an array"
    products = params.get("products")
    if products is not None and not isinstance(products, list):
        return "products must be an array"
    if isinstance(products, list) and len(products) > MAX_PRODUCTS:
        return f"products must contain at most {MAX_PRODUCTS} items"
    structure = params.get("structure")
    if structure is not None and structure not in _STRUCTURES:
        return f"structure must be one of: {', '.join(sorted(_STRUCTURES))}"
    level = params.get("experienceLevel")
    if level is not None and level not in _EXPERIENCE_LEVELS:
        return f"experienceLevel must be one of: {', '.join(sorted(_EXPERIENCE_LEVELS))}"
    return None


@dataclass(frozen=True, slots=True)
class CreatePostRequest:
    """Validated create-post input."""

    topic: str
    keywords: tuple[str, ...] = ()
    products: tuple[str, ...] = ()
    structure: str | None = None
    experience_level: str | None = None
    audience_persona: str | None = None
    include_citations: bool = True
    validate_quality: bool = True
    regenerate_from: str | None = None

    @classmethod
    def parse(cls, params: dict[str, Any]) -> tuple[CreatePostRequest, list[str]]:
        """Validate raw parameters.

        Returns:
            The request and warnings produced while normalising it.

        Raises:
            InvalidInputError: on the first invalid field.
        """
        error = validate_create_post_params(params)
        if error is not None:
            raise InvalidInputError(error)

        warnings: list[str] = []
        keywords = [str(k) for k in params.get("keywords") or []]
        if len(keywords) > MAX_KEYWORDS:
            warnings.append(
                f"Too many keywords provided, only first {MAX_KEYWORDS} will be used"
            )
        regenerate_from = params.get("regenerateFrom")
        request = cls(
            topic=params["topic"].strip(),
            keywords=tuple(keywords[:MAX_KEYWORDS]),
            products=tuple(str(p) for p in params.get("products") or []),
            structure=params.get("structure"),
            experience_level=params.get("experienceLevel"),
            audience_persona=params.get("audiencePersona"),
            include_citations=params.get("includeCitations") is not False,
            validate_quality=params.get("validateQuality") is not False,
            regenerate_from=str(regenerate_from) if regenerate_from else None,
        )
        return request, warnings


@dataclass(frozen=True, slots=True)
class PipelineFlags:
    seo_optimization: bool = True
    product_mentions: bool = True
    image_generation: bool = True
    internal_links: bool = True
    llm_snippets: bool = True


@dataclass(frozen=True, slots=True)
class PipelineArtifact:
    """The in-flight post, replaced (never mutated) by each stage."""

    store: StoreRecord
    request: CreatePostRequest
    usage_id: str | None = None
    keywords: tuple[str, ...] = ()
    topic: str = ""
    draft: DraftContent | None = None
    content: str = ""
    seo_metadata: dict[str, Any] | None = None
    product_mentions: list[dict[str, Any]] | None = None
    featured_image_url: str | None = None
    post: dict[str, Any] | None = None

    def composed(self) -> DraftContent:
        if self.draft is None:
            raise RuntimeError("Content has not been composed yet")
        return self.draft

    def persisted(self) -> dict[str, Any]:
        if self.post is None:
            raise RuntimeError("Post has not been persisted yet")
        return self.post


@dataclass(frozen=True, slots=True)
class StageResult:
    artifact: PipelineArtifact
    warnings: tuple[str, ...] = ()

    def then(self, artifact: PipelineArtifact) -> StageResult:
        return StageResult(artifact=artifact, warnings=self.warnings)

    def warn(self, message: str) -> StageResult:
        return StageResult(artifact=self.artifact, warnings=(*self.warnings, message))


@dataclass(frozen=True, slots=True)
class CreatedPost:
    post: dict[str, Any]
    warnings: list[str] = field(default_factory=list)


OptionalStage = Callable[[PipelineArtifact, list[str]], Awaitable[PipelineArtifact]]
"""Optional stage body; may append soft warnings to the list it is given."""


class ContentPipelineOrchestrator:
    """Coordinates collaborators for one post creation at a time per call."""

    def __init__(
        self,
        *,
        store: ContentStore,
        composer: ContentComposer,
        keyword_miner: KeywordMiner,
        sanitizer: ContentSanitizer,
        seo: SeoOptimizer,
        product_injector: ProductMentionInjector,
        image_generator: ImageGenerator,
        image_host: ImageHost,
        linker: InternalLinker,
        job_queue: JobQueue,
        retry_policy: RetryPolicy,
        flags: PipelineFlags | None = None,
        trial_days: int = 14,
    ) -> None:
        self._store = store
        self._composer = composer
        self._keyword_miner = keyword_miner
        self._sanitizer = sanitizer
        self._seo = seo
        self._product_injector = product_injector
        self._image_generator = image_generator
        self._image_host = image_host
        self._linker = linker
        self._job_queue = job_queue
        self._retry = retry_policy
        self._flags = flags or PipelineFlags()
        self._trial_days = trial_days

    async def create_post(
        self, store_id: str, params: dict[str, Any]
    ) -> CreatedPost:
        """Run the full pipeline for ``store_id``.

        Raises:
            InvalidInputError: bad input (stage 1).
            RegenerationLimitError: regeneration not allowed (stage 2).
            TenantNotFoundError, TenantInactiveError: stage 3.
            QuotaExceededError: plan quota exhausted (stage 4).
            UpstreamError: a fatal collaborator call failed after retries.
        """
        log = logger.bind(store_id=store_id)

        # 1. validate input
        request, input_warnings = CreatePostRequest.parse(params)

        # 2. regeneration limit
        if request.regenerate_from:
            await self._check_regeneration(store_id, request.regenerate_from)

        # 3. load tenant
        store = await self._load_store(store_id)

        # 4. atomic quota enforcement
        usage_id = await self._enforce_quota(store_id)
        log.info("quota_enforced", usage_id=usage_id)

        state = StageResult(
            artifact=PipelineArtifact(
                store=store, request=request, usage_id=usage_id
            ),
            warnings=tuple(input_warnings),
        )

        # 5. keywords
        state = await self._optional(
            state,
            "resolve_keywords",
            "Keyword mining failed, proceeding without keywords",
            self._resolve_keywords,
        )
        # 6. sanitize topic and keywords
        state = state.then(await self._sanitize_inputs(state.artifact))
        # 7. compose
        state = state.then(await self._compose(state.artifact))
        # 8. SEO
        if self._flags.seo_optimization:
            state = await self._optional(
                state, "seo_optimization", "SEO optimization failed", self._optimize_seo
            )
        # 9. product mentions
        if request.products and self._flags.product_mentions:
            state = await self._optional(
                state,
                "product_mentions",
                "Product mention injection failed",
                self._inject_products,
            )
        # 10. sanitize final content
        state = state.then(await self._sanitize_content(state.artifact))
        # 11. featured image
        draft = state.artifact.draft
        if self._flags.image_generation and draft is not None and draft.image_prompt:
            state = await self._optional(
                state, "featured_image", "Image generation failed", self._featured_image
            )
        # 12. persist
        state = state.then(await self._persist(state.artifact))
        post = state.artifact.persisted()
        post_id = str(post["id"])

        # 13. regeneration linkage
        if request.regenerate_from:
            await self._record_regeneration(store_id, post_id, request.regenerate_from)
        # 14. usage attribution
        state = await self._optional(
            state,
            "record_usage",
            "Quota usage attribution failed",
            self._record_usage,
        )
        # 15. internal links
        if self._flags.internal_links:
            state = await self._optional(
                state,
                "internal_links",
                "Internal link generation failed",
                self._rebuild_links,
            )
        # 16. snippet job
        if self._flags.llm_snippets:
            state = await self._optional(
                state,
                "snippet_job",
                "LLM snippet generation job enqueue failed",
                self._enqueue_snippet,
            )

        warnings = list(state.warnings)
        log.info("post_created", post_id=post_id, warnings=len(warnings))
        return CreatedPost(post=state.artifact.post or post, warnings=warnings)

    # -- stage runners ----------------------------------------------------

    async def _optional(
        self,
        state: StageResult,
        stage: str,
        warning: str,
        body: OptionalStage,
    ) -> StageResult:
        soft: list[str] = []
        try:
            artifact = await body(state.artifact, soft)
        except Exception as exc:
            logger.warning("pipeline_stage_failed", stage=stage, error=str(exc))
            return state.warn(warning)
        result = state.then(artifact)
        for message in soft:
            result = result.warn(message)
        return result

    async def _fatal(
        self,
        stage: str,
        message: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            return await self._retry.guarded(operation, name=stage, message=message)
        except UpstreamError:
            logger.error("pipeline_stage_failed", stage=stage, fatal=True)
            raise

    # -- fatal stages -----------------------------------------------------

    async def _check_regeneration(self, store_id: str, post_id: str) -> None:
        check = await self._fatal(
            "regeneration_limit",
            "Failed to check regeneration limits",
            lambda: self._store.check_regeneration_limits(store_id, post_id),
        )
        if not check.allowed:
            raise RegenerationLimitError(
                check.reason or "Regeneration limit reached",
                metadata={"limitType": check.limit_type},
            )

    async def _load_store(self, store_id: str) -> StoreRecord:
        store: StoreRecord | None = await self._fatal(
            "load_store",
            "Failed to load store",
            lambda: self._store.get_store(store_id),
        )
        if store is None:
            raise TenantNotFoundError("Store not found")
        if not store.is_active:
            raise TenantInactiveError("Store is not active")
        if store.is_paused:
            raise TenantInactiveError("Store is paused")
        if store.plan_id is None:
            await self._fatal(
                "trial_provisioning",
                "Failed to initialize trial plan",
                lambda: self._store.ensure_trial_plan(store_id, self._trial_days),
            )
        return store

    async def _enforce_quota(self, store_id: str) -> str | None:
        enforcement = await self._fatal(
            "enforce_quota",
            "Failed to enforce article quota",
            lambda: self._store.enforce_article_quota(store_id),
        )
        if not enforcement.allowed:
            logger.info(
                "quota_exceeded", store_id=store_id, reason=enforcement.reason
            )
            raise QuotaExceededError(
                enforcement.reason or "Article quota exceeded",
                quota_status=(
                    enforcement.quota_status.model_dump(mode="json")
                    if enforcement.quota_status
                    else None
                ),
                trial_status=(
                    enforcement.trial_status.model_dump(mode="json")
                    if enforcement.trial_status
                    else None
                ),
            )
        return enforcement.usage_id

    async def _sanitize_inputs(self, artifact: PipelineArtifact) -> PipelineArtifact:
        store_id = artifact.store.id
        topic = await self._fatal(
            "sanitize_topic",
            "Failed to sanitize topic",
            lambda: self._sanitizer.sanitize(
                artifact.request.topic, store_id, "content_generation"
            ),
        )
        # first failure cancels the remaining keyword calls
        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [
                    tg.create_task(
                        self._fatal(
                            "sanitize_keywords",
                            "Failed to sanitize keywords",
                            lambda kw=kw: self._sanitizer.sanitize(
                                kw, store_id, "keyword_research"
                            ),
                        )
                    )
                    for kw in artifact.keywords
                ]
        except ExceptionGroup as group:
            raise group.exceptions[0] from None
        keywords = tuple(task.result() for task in tasks)
        return replace(artifact, topic=topic, keywords=keywords)

    async def _compose(self, artifact: PipelineArtifact) -> PipelineArtifact:
        request = artifact.request
        store = artifact.store
        options = ComposeOptions(
            structure=request.structure,  # type: ignore[arg-type]
            experience_level=request.experience_level,  # type: ignore[arg-type]
            audience_persona=request.audience_persona,
            include_citations=request.include_citations,
            validate_quality=request.validate_quality,
            content_preferences={
                key: store.content_preferences.get(key)
                for key in ("topic_preferences", "keyword_focus", "content_angles")
                if store.content_preferences.get(key) is not None
            },
        )
        draft: DraftContent = await self._fatal(
            "compose",
            "Failed to compose content",
            lambda: self._composer.compose(
                artifact.topic,
                list(artifact.keywords),
                options,
                tone_profile=store.tone_profile,
                brand_profile=store.brand_profile,
            ),
        )
        return replace(artifact, draft=draft, content=draft.content)

    async def _sanitize_content(self, artifact: PipelineArtifact) -> PipelineArtifact:
        content = await self._fatal(
            "sanitize_content",
            "Failed to sanitize content",
            lambda: self._sanitizer.sanitize(
                artifact.content, artifact.store.id, "content_generation"
            ),
        )
        return replace(artifact, content=content)

    async def _persist(self, artifact: PipelineArtifact) -> PipelineArtifact:
        draft = artifact.composed()
        store = artifact.store
        review_status = (
            ReviewStatus.PENDING if store.require_approval else ReviewStatus.AUTO_APPROVED
        )
        auto_publish_at = (
            datetime.now(UTC) + timedelta(hours=store.review_window_hours)
            if store.require_approval
            else None
        )
        structured: dict[str, Any] = {}
        if draft.image_prompt:
            structured["image_prompt"] = draft.image_prompt
        if draft.citations:
            structured["citations"] = draft.citations
        if draft.quality_score is not None:
            structured["quality_score"] = draft.quality_score
        if draft.quality_issues:
            structured["quality_issues"] = draft.quality_issues
        if artifact.seo_metadata:
            structured.update(artifact.seo_metadata)

        row = PostDraft(
            store_id=store.id,
            title=draft.title,
            content=artifact.content,
            excerpt=draft.excerpt,
            seo_title=draft.seo_title,
            seo_description=draft.seo_description,
            keywords=list(artifact.keywords),
            primary_keyword=draft.primary_keyword,
            status=PostStatus.DRAFT,
            review_status=review_status,
            auto_publish_at=auto_publish_at,
            product_mentions=(
                {"product_ids": list(artifact.request.products)}
                if artifact.request.products
                else None
            ),
            featured_image_url=artifact.featured_image_url,
            structured_data=structured,
            regenerated_from=artifact.request.regenerate_from,
        )
        post = await self._fatal(
            "persist_post",
            "Failed to create post",
            lambda: self._store.create_post(row),
        )
        return replace(artifact, post=post)

    async def _record_regeneration(
        self, store_id: str, post_id: str, regenerated_from: str
    ) -> None:
        try:
            await self._retry.run(
                lambda: self._store.record_regeneration(
                    store_id, post_id, regenerated_from
                ),
                name="record_regeneration",
            )
        except Exception as exc:
            logger.warning(
                "regeneration_linkage_failed",
                post_id=post_id,
                regenerated_from=regenerated_from,
                error=str(exc),
            )

    # -- optional stages --------------------------------------------------

    async def _resolve_keywords(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        # dict preserves first-seen order
        merged = dict.fromkeys([*artifact.request.keywords, *artifact.store.keyword_focus])
        keywords = tuple(k for k in merged if k)
        if keywords:
            return replace(artifact, keywords=keywords)
        cluster = await self._retry.run(
            lambda: self._keyword_miner.mine_keywords(artifact.request.topic),
            name="mine_keywords",
        )
        return replace(artifact, keywords=tuple(cluster.flatten()))

    async def _optimize_seo(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        draft = artifact.composed()
        keywords = list(artifact.keywords)
        score, analysis, structured = await asyncio.gather(
            self._retry.run(
                lambda: self._seo.score_seo(draft, keywords), name="score_seo"
            ),
            self._retry.run(
                lambda: self._seo.analyze_keywords(artifact.content, keywords),
                name="analyze_keywords",
            ),
            self._retry.run(
                lambda: self._seo.structured_data(draft, keywords),
                name="structured_data",
            ),
        )
        return replace(
            artifact,
            seo_metadata={
                "seoHealthScore": score,
                "keywordAnalysis": analysis,
                "structuredData": structured,
            },
        )

    async def _inject_products(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        result = await self._retry.run(
            lambda: self._product_injector.inject_product_mentions(
                artifact.content,
                list(artifact.request.products),
                store=artifact.store,
                max_mentions=MAX_PRODUCT_MENTIONS,
            ),
            name="inject_product_mentions",
        )
        return replace(artifact, content=result.content, product_mentions=result.mentions)

    async def _featured_image(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        draft = artifact.composed()
        prompt = draft.image_prompt or ""
        image_url = await self._retry.run(
            lambda: self._image_generator.generate_image(
                prompt, draft.title, list(artifact.keywords)
            ),
            name="generate_image",
        )
        options = ImageUploadOptions(alt_text=draft.title)
        try:
            hosted = await self._retry.run(
                lambda: self._image_host.upload_image(artifact.store, image_url, options),
                name="upload_image",
            )
        except Exception as exc:
            logger.warning("image_upload_failed", error=str(exc))
            warnings.append("Image CDN upload failed")
            hosted = image_url
        return replace(artifact, featured_image_url=hosted)

    async def _record_usage(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        post_id = str(artifact.persisted()["id"])
        await self._retry.run(
            lambda: self._store.record_usage(artifact.store.id, post_id, artifact.usage_id),
            name="record_usage",
        )
        return artifact

    async def _rebuild_links(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        post_id = str(artifact.persisted()["id"])

        async def rebuild() -> list[dict[str, Any]]:
            links = await self._linker.rebuild_internal_links(artifact.store.id, post_id)
            await self._store.update_internal_links(post_id, links)
            return links

        links = await self._retry.run(rebuild, name="rebuild_internal_links")
        post = {**artifact.persisted(), "internal_links": links}
        return replace(artifact, post=post)

    async def _enqueue_snippet(
        self, artifact: PipelineArtifact, warnings: list[str]
    ) -> PipelineArtifact:
        payload = {
            "post_id": str(artifact.persisted()["id"]),
            "store_id": artifact.store.id,
            "title": artifact.composed().title,
            "content": artifact.content,
            "keywords": list(artifact.keywords),
            "seo_metadata": artifact.seo_metadata or {},
        }
        await self._retry.run(
            lambda: self._job_queue.enqueue(
                SNIPPET_JOB_TYPE,
                payload,
                priority="normal",
                max_attempts=SNIPPET_JOB_MAX_ATTEMPTS,
            ),
            name="enqueue_snippet",
        )
        return artifact
