"""Tests for QueueManager and the queue title generator."""

import random
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from blog_gateway.content_queue import (
    FALLBACK_TITLES,
    QueueManager,
    TitleGenerator,
    queue_size_for_plan,
)
from blog_gateway.errors import (
    InvalidInputError,
    NotFoundError,
    TenantNotFoundError,
    UpstreamError,
)
from blog_gateway.models import StoreRecord
from blog_gateway.retry import RetryPolicy

STORE_ID = "0190a000-0000-7000-8000-000000000003"


async def _no_sleep(_delay: float) -> None:
    return None


def _store(**overrides: Any) -> StoreRecord:
    values: dict[str, Any] = {
        "id": STORE_ID,
        "shop_domain": "shop.test",
        "plan_id": "plan",
        "plan_name": "starter",
    }
    values.update(overrides)
    return StoreRecord(**values)


def _row(title: str, position: int) -> dict[str, Any]:
    return {"id": str(uuid.uuid4()), "title": title, "queue_position": position}


def _manager(
    store: StoreRecord | None = None,
    rows: list[dict[str, Any]] | None = None,
    count: int | None = None,
) -> tuple[QueueManager, AsyncMock]:
    backend = AsyncMock()
    backend.get_store.return_value = store
    backend.list_queued.return_value = rows or []
    backend.count_queued.return_value = len(rows or []) if count is None else count
    backend.insert_queued.side_effect = lambda store_id, title, position: {
        "id": str(uuid.uuid4()),
        "title": title,
        "queue_position": position,
    }
    backend.set_queue_positions.side_effect = lambda store_id, positions: len(positions)
    backend.update_queued_title.return_value = True
    manager = QueueManager(
        backend,
        RetryPolicy(max_attempts=2, base_delay=0, sleep=_no_sleep),
        TitleGenerator(random.Random(7)),
    )
    return manager, backend


class TestQueueSize:
    @pytest.mark.parametrize(
        ("plan", "size"),
        [("publisher", 7), ("starter", 3), ("authority", 3), (None, 3)],
    )
    def test_target_by_plan(self, plan: str | None, size: int) -> None:
        assert queue_size_for_plan(plan) == size


class TestMetrics:
    async def test_active_store(self) -> None:
        manager, _ = _manager(_store(plan_name="publisher"), count=2)
        metrics = await manager.metrics(STORE_ID)
        assert metrics.current_count == 2
        assert metrics.target_count == 7
        assert metrics.needs_refill is True
        assert metrics.plan_name == "publisher"

    async def test_full_queue(self) -> None:
        manager, _ = _manager(_store(), count=3)
        metrics = await manager.metrics(STORE_ID)
        assert metrics.needs_refill is False

    @pytest.mark.parametrize("flags", [{"is_active": False}, {"is_paused": True}])
    async def test_inactive_or_paused(self, flags: dict[str, bool]) -> None:
        manager, backend = _manager(_store(**flags))
        metrics = await manager.metrics(STORE_ID)
        assert metrics.plan_name == "inactive"
        assert metrics.target_count == 0
        backend.count_queued.assert_not_awaited()

    async def test_expired_trial(self) -> None:
        expired = datetime.now(UTC) - timedelta(days=1)
        manager, _ = _manager(_store(plan_name="free_trial", trial_ends_at=expired))
        metrics = await manager.metrics(STORE_ID)
        assert metrics.plan_name == "trial_expired"
        assert metrics.needs_refill is False

    async def test_missing_plan_name(self) -> None:
        manager, _ = _manager(_store(plan_name=None), count=0)
        metrics = await manager.metrics(STORE_ID)
        assert metrics.plan_name == "unknown"
        assert metrics.target_count == 3

    async def test_unknown_store(self) -> None:
        manager, _ = _manager(None)
        with pytest.raises(TenantNotFoundError):
            await manager.metrics(STORE_ID)

    async def test_storage_failure_is_upstream_error(self) -> None:
        manager, backend = _manager(_store())
        backend.count_queued.side_effect = ConnectionError("db")
        with pytest.raises(UpstreamError, match="Content queue storage unavailable"):
            await manager.metrics(STORE_ID)
        assert backend.count_queued.await_count == 2


class TestRefill:
    async def test_fills_up_to_target(self) -> None:
        rows = [_row("Existing", 4)]
        manager, backend = _manager(
            _store(content_preferences={"topic_preferences": ["Boots", "Socks"]}),
            rows=rows,
        )

        created = await manager.refill(STORE_ID)

        assert created == 2
        positions = [c.args[2] for c in backend.insert_queued.await_args_list]
        titles = [c.args[1] for c in backend.insert_queued.await_args_list]
        assert positions == [5, 6]
        assert len(set(titles)) == 2

    async def test_full_queue_creates_nothing(self) -> None:
        rows = [_row(f"T{i}", i) for i in range(3)]
        manager, backend = _manager(_store(), rows=rows)
        assert await manager.refill(STORE_ID) == 0
        backend.insert_queued.assert_not_awaited()

    async def test_inactive_store_creates_nothing(self) -> None:
        manager, backend = _manager(_store(is_paused=True))
        assert await manager.refill(STORE_ID) == 0
        backend.insert_queued.assert_not_awaited()

    async def test_empty_queue_starts_at_zero(self) -> None:
        manager, backend = _manager(_store())
        await manager.refill(STORE_ID)
        positions = [c.args[2] for c in backend.insert_queued.await_args_list]
        assert positions == [0, 1, 2]


class TestReorder:
    async def test_positions_follow_list_order(self) -> None:
        ids = [str(uuid.uuid4()) for _ in range(3)]
        manager, backend = _manager(_store())

        await manager.reorder(STORE_ID, ids)

        backend.set_queue_positions.assert_awaited_once_with(
            STORE_ID, [(ids[0], 0), (ids[1], 1), (ids[2], 2)]
        )

    @pytest.mark.parametrize(
        ("item_ids", "message"),
        [
            ([], "articleIds array is required"),
            ("not-a-list", "articleIds array is required"),
            (["nope"], "Invalid articleId"),
            (
                [str(uuid.uuid4()) for _ in range(201)],
                "articleIds must contain at most 200 items",
            ),
        ],
    )
    async def test_rejects_bad_input(self, item_ids: Any, message: str) -> None:
        manager, backend = _manager(_store())
        with pytest.raises(InvalidInputError, match=message):
            await manager.reorder(STORE_ID, item_ids)
        backend.set_queue_positions.assert_not_awaited()

    async def test_rejects_duplicates(self) -> None:
        item = str(uuid.uuid4())
        manager, _ = _manager(_store())
        with pytest.raises(InvalidInputError, match="duplicates"):
            await manager.reorder(STORE_ID, [item, item.upper()])


class TestRegenerateTitle:
    async def test_new_title_differs_from_siblings(self) -> None:
        rows = [_row("Boots", 0), _row("Socks", 1)]
        manager, backend = _manager(
            _store(content_preferences={"topic_preferences": ["Boots", "Socks"]}),
            rows=rows,
        )

        title = await manager.regenerate_title(STORE_ID, rows[0]["id"])

        assert title != "Socks"
        backend.update_queued_title.assert_awaited_once_with(
            STORE_ID, rows[0]["id"], title
        )

    async def test_unknown_item(self) -> None:
        manager, backend = _manager(_store(), rows=[_row("Boots", 0)])
        with pytest.raises(NotFoundError, match="Queued article not found"):
            await manager.regenerate_title(STORE_ID, str(uuid.uuid4()))
        backend.update_queued_title.assert_not_awaited()

    async def test_update_race_is_not_found(self) -> None:
        rows = [_row("Boots", 0)]
        manager, backend = _manager(_store(), rows=rows)
        backend.update_queued_title.return_value = False
        with pytest.raises(NotFoundError):
            await manager.regenerate_title(STORE_ID, rows[0]["id"])


class TestTitleGenerator:
    def test_prefers_unused_topic_preference(self) -> None:
        store = _store(content_preferences={"topic_preferences": ["Boots", "Socks"]})
        title = TitleGenerator(random.Random(1)).generate(store, ["All about boots"])
        assert title == "Socks"

    def test_falls_back_to_keyword_focus(self) -> None:
        store = _store(content_preferences={"keyword_focus": ["leather"]})
        assert TitleGenerator().generate(store, []) == "leather"

    def test_brand_name(self) -> None:
        store = _store(brand_profile={"brandName": "Acme"})
        assert TitleGenerator().generate(store, []) == "Complete Guide to Acme"

    def test_generic_topic(self) -> None:
        assert TitleGenerator().generate(_store(), []) == "Latest Trends and Insights"

    def test_collision_uses_variation(self) -> None:
        store = _store(brand_profile={"brandName": "Acme"})
        title = TitleGenerator().generate(store, ["Complete Guide to Acme"])
        assert title == "Complete Guide to Complete Guide to Acme"

    def test_collision_with_all_variations_numbers(self) -> None:
        topic = "Latest Trends and Insights"
        existing = [
            topic,
            f"Complete Guide to {topic}",
            f"Ultimate {topic} Guide",
            f"{topic}: Expert Insights",
            f"Mastering {topic}",
            f"Everything About {topic}",
            f"{topic} 2",
        ]
        assert TitleGenerator().generate(_store(), existing) == f"{topic} 3"

    def test_without_store_uses_fallback_list(self) -> None:
        title = TitleGenerator(random.Random(3)).generate(None, [])
        assert title in FALLBACK_TITLES

    def test_without_store_exhausted_fallbacks(self) -> None:
        existing = list(FALLBACK_TITLES)
        assert TitleGenerator().generate(None, existing) == "Article 9"
