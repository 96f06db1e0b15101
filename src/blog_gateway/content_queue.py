"""Per-store backlog of queued post ideas.

Queued items are ``blog_posts`` rows with status ``queued`` and an empty
body; ``queue_position`` orders them. Callers pass an already resolved
store id, and every store query filters on it.
"""

from __future__ import annotations

import random
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

import structlog

from blog_gateway.errors import InvalidInputError, NotFoundError, TenantNotFoundError
from blog_gateway.models import QueueMetrics, StoreRecord
from blog_gateway.retry import RetryPolicy

logger = structlog.get_logger()

_T = TypeVar("_T")

MAX_REORDER_ITEMS = 200
DEFAULT_QUEUE_SIZE = 3
QUEUE_SIZE_BY_PLAN: dict[str, int] = {"publisher": 7}

FALLBACK_TITLES: tuple[str, ...] = (
    "Complete Guide to Success",
    "Expert Tips and Insights",
    "Ultimate Resource Guide",
    "Best Practices Explained",
    "Professional Insights",
    "Industry Trends",
    "Expert Advice",
    "Comprehensive Guide",
)
TITLE_VARIATIONS: tuple[str, ...] = (
    "Complete Guide to {topic}",
    "Ultimate {topic} Guide",
    "{topic}: Expert Insights",
    "Mastering {topic}",
    "Everything About {topic}",
)


class QueueStore(Protocol):
    async def get_store(self, store_id: str) -> StoreRecord | None: ...

    async def count_queued(self, store_id: str) -> int: ...

    async def list_queued(self, store_id: str) -> list[dict[str, Any]]: ...

    async def insert_queued(
        self, store_id: str, title: str, position: int
    ) -> dict[str, Any]: ...

    async def set_queue_positions(
        self, store_id: str, positions: list[tuple[str, int]]
    ) -> int: ...

    async def update_queued_title(
        self, store_id: str, item_id: str, title: str
    ) -> bool: ...


def queue_size_for_plan(plan_name: str | None) -> int:
    return QUEUE_SIZE_BY_PLAN.get(plan_name or "", DEFAULT_QUEUE_SIZE)


def _parse_uuid(value: str, field: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError as exc:
        raise InvalidInputError(f"Invalid {field}") from exc


class TitleGenerator:
    """Pick a queue title from store preferences, avoiding existing titles."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def generate(self, store: StoreRecord | None, existing: list[str]) -> str:
        if store is None:
            return self._fallback(existing)

        topic = self._topic_from_context(store, existing)
        taken = set(existing)
        if topic not in taken:
            return topic
        for template in TITLE_VARIATIONS:
            candidate = template.format(topic=topic)
            if candidate not in taken:
                return candidate
        counter = 2
        while f"{topic} {counter}" in taken:
            counter += 1
        return f"{topic} {counter}"

    def _topic_from_context(self, store: StoreRecord, existing: list[str]) -> str:
        existing_lower = [t.lower() for t in existing]

        def unused(items: list[Any]) -> list[str]:
            return [
                str(item)
                for item in items
                if not any(str(item).lower() in t for t in existing_lower)
            ]

        prefs = store.content_preferences
        for key in ("topic_preferences", "keyword_focus"):
            candidates = unused(list(prefs.get(key) or []))
            if candidates:
                return self._rng.choice(candidates)

        brand_name = store.brand_profile.get("brandName")
        if brand_name:
            return f"Complete Guide to {brand_name}"
        return "Latest Trends and Insights"

    def _fallback(self, existing: list[str]) -> str:
        existing_lower = [t.lower() for t in existing]
        available = [
            title
            for title in FALLBACK_TITLES
            if not any(title.lower() in t for t in existing_lower)
        ]
        if available:
            return self._rng.choice(available)
        return f"Article {len(existing) + 1}"


class QueueManager:
    """List, measure, refill, reorder and retitle a store's content queue."""

    def __init__(
        self,
        store: QueueStore,
        retry_policy: RetryPolicy,
        titles: TitleGenerator | None = None,
    ) -> None:
        self._store = store
        self._retry = retry_policy
        self._titles = titles or TitleGenerator()

    async def list(self, store_id: str) -> list[dict[str, Any]]:
        return await self._call(
            lambda: self._store.list_queued(store_id), name="list_queue"
        )

    async def metrics(self, store_id: str) -> QueueMetrics:
        """Current backlog size against the plan's target.

        Raises:
            TenantNotFoundError: if the store does not exist.
        """
        store = await self._load_store(store_id)
        if not store.is_active or store.is_paused:
            return QueueMetrics(
                current_count=0, target_count=0, needs_refill=False, plan_name="inactive"
            )
        if store.trial_ends_at is not None and store.trial_ends_at < datetime.now(UTC):
            return QueueMetrics(
                current_count=0,
                target_count=0,
                needs_refill=False,
                plan_name="trial_expired",
            )

        target = queue_size_for_plan(store.plan_name)
        current = await self._call(
            lambda: self._store.count_queued(store_id), name="count_queue"
        )
        return QueueMetrics(
            current_count=current,
            target_count=target,
            needs_refill=current < target,
            plan_name=store.plan_name or "unknown",
        )

    async def refill(self, store_id: str) -> int:
        """Create queued drafts until the plan target is reached.

        Returns:
            Number of queued items created.
        """
        metrics = await self.metrics(store_id)
        needed = metrics.target_count - metrics.current_count
        if metrics.target_count == 0 or not metrics.needs_refill or needed <= 0:
            return 0

        store = await self._load_store(store_id)
        rows = await self.list(store_id)
        titles = [str(r["title"]) for r in rows]
        position = max((r.get("queue_position") or 0 for r in rows), default=-1) + 1

        created = 0
        for _ in range(needed):
            title = self._titles.generate(store, titles)
            await self._call(
                lambda title=title, position=position: self._store.insert_queued(
                    store_id, title, position
                ),
                name="insert_queued",
            )
            titles.append(title)
            position += 1
            created += 1

        logger.info("queue_refilled", store_id=store_id, created=created)
        return created

    async def reorder(self, store_id: str, item_ids: list[str]) -> None:
        """Assign ``queue_position`` by list index.

        Raises:
            InvalidInputError: empty, oversized, duplicated or malformed ids.
        """
        if not isinstance(item_ids, list) or not item_ids:
            raise InvalidInputError("articleIds array is required")
        if len(item_ids) > MAX_REORDER_ITEMS:
            raise InvalidInputError(
                f"articleIds must contain at most {MAX_REORDER_ITEMS} items"
            )
        ids = [_parse_uuid(i, "articleId") for i in item_ids]
        if len(set(ids)) != len(ids):
            raise InvalidInputError("articleIds must not contain duplicates")

        positions = [(item_id, index) for index, item_id in enumerate(ids)]
        updated = await self._call(
            lambda: self._store.set_queue_positions(store_id, positions),
            name="reorder_queue",
        )
        logger.info("queue_reordered", store_id=store_id, updated=updated)

    async def regenerate_title(self, store_id: str, item_id: str) -> str:
        """Give one queued item a new title distinct from its siblings.

        Raises:
            NotFoundError: if the item is not queued for this store.
        """
        item_id = _parse_uuid(item_id, "articleId")
        store = await self._load_store(store_id)
        rows = await self.list(store_id)
        if not any(str(r["id"]) == item_id for r in rows):
            raise NotFoundError("Queued article not found")

        others = [str(r["title"]) for r in rows if str(r["id"]) != item_id]
        title = self._titles.generate(store, others)
        updated = await self._call(
            lambda: self._store.update_queued_title(store_id, item_id, title),
            name="update_queued_title",
        )
        if not updated:
            raise NotFoundError("Queued article not found")
        return title

    async def _call(
        self, operation: Callable[[], Awaitable[_T]], *, name: str
    ) -> _T:
        return await self._retry.guarded(
            operation, name=name, message="Content queue storage unavailable"
        )

    async def _load_store(self, store_id: str) -> StoreRecord:
        store = await self._call(
            lambda: self._store.get_store(store_id), name="load_store"
        )
        if store is None:
            raise TenantNotFoundError("Store not found")
        return store
