"""PostgreSQL-backed store used by the gateway, pipeline, queue and worker.

Every query that touches tenant data filters on ``store_id``. Each method
opens its own session; write methods commit before returning.
"""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blog_gateway.auth.context import Principal
from blog_gateway.models import (
    PostDraft,
    PostStatus,
    QuotaEnforcement,
    QuotaStatus,
    RegenerationCheck,
    StoreRecord,
    TrialStatus,
)
from blog_gateway.storage.orm import (
    APIKey,
    ArticleUsage,
    BlogPost,
    PlanLimit,
    RegenerationUsage,
    Store,
)

logger = structlog.get_logger()

TRIAL_PLAN_NAME = "free_trial"


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def post_to_dict(post: BlogPost) -> dict[str, Any]:
    """Column values of ``post`` with ids and timestamps as strings."""
    return {
        column.key: _jsonable(getattr(post, column.key))
        for column in BlogPost.__table__.columns
    }


def build_trial_status(
    plan_name: str | None, trial_ends_at: datetime | None, now: datetime
) -> TrialStatus:
    if trial_ends_at is None:
        return TrialStatus(is_trial=plan_name == TRIAL_PLAN_NAME)
    remaining = (trial_ends_at - now).total_seconds()
    return TrialStatus(
        is_trial=True,
        trial_ends_at=trial_ends_at,
        days_remaining=max(0, math.ceil(remaining / 86400)),
        is_expired=remaining <= 0,
    )


def build_quota_status(
    *,
    plan_name: str | None,
    daily_limit: int | None,
    monthly_limit: int | None,
    used_today: int,
    used_month: int,
    trial_ends_at: datetime | None,
    now: datetime,
) -> QuotaStatus:
    """Usage counters against plan limits; ``None`` daily limit means unlimited."""
    monthly = monthly_limit or 0
    return QuotaStatus(
        plan_name=plan_name or "none",
        articles_generated_today=used_today,
        articles_generated_this_month=used_month,
        daily_limit=daily_limit,
        monthly_limit=monthly,
        remaining_daily=(
            None if daily_limit is None else max(0, daily_limit - used_today)
        ),
        remaining_monthly=max(0, monthly - used_month),
        trial_ends_at=trial_ends_at,
        is_trial_active=trial_ends_at is not None and trial_ends_at > now,
    )


def _to_record(store: Store) -> StoreRecord:
    return StoreRecord(
        id=str(store.id),
        shop_domain=store.shop_domain,
        plan_id=str(store.plan_id) if store.plan_id else None,
        plan_name=store.plan.plan_name if store.plan else None,
        trial_started_at=store.trial_started_at,
        trial_ends_at=store.trial_ends_at,
        is_active=store.is_active,
        is_paused=store.is_paused,
        tone_profile=store.tone_profile or {},
        brand_profile=store.brand_profile or {},
        content_preferences=store.content_preferences or {},
        require_approval=store.require_approval,
        review_window_hours=store.review_window_hours,
    )


class SqlContentStore:
    """SQLAlchemy implementation of the store, directory and verifier protocols."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- credentials / directory -----------------------------------------

    async def verify(self, key_hash: str) -> Principal | None:
        stmt = select(APIKey).where(
            APIKey.key_hash == key_hash, APIKey.is_active.is_(True)
        )
        async with self._session_factory() as session:
            key = (await session.execute(stmt)).scalar_one_or_none()
        if key is None:
            return None
        if key.expires_at is not None and key.expires_at < datetime.now(UTC):
            return None
        return Principal(caller_id=str(key.id), key_prefix=key.key_prefix)

    async def find_store_id_by_domain(self, shop_domain: str) -> str | None:
        stmt = select(Store.id).where(Store.shop_domain == shop_domain)
        async with self._session_factory() as session:
            store_id = (await session.execute(stmt)).scalar_one_or_none()
        return str(store_id) if store_id else None

    async def get_store_by_domain(self, shop_domain: str) -> StoreRecord | None:
        stmt = select(Store).where(Store.shop_domain == shop_domain)
        async with self._session_factory() as session:
            store = (await session.execute(stmt)).scalar_one_or_none()
        return _to_record(store) if store else None

    # -- stores and quota -------------------------------------------------

    async def get_store(self, store_id: str) -> StoreRecord | None:
        sid = _as_uuid(store_id)
        if sid is None:
            return None
        async with self._session_factory() as session:
            store = await session.get(Store, sid)
        return _to_record(store) if store else None

    async def ensure_trial_plan(self, store_id: str, trial_days: int) -> bool:
        """Attach the trial plan to a store without one.

        Returns:
            True if the plan was attached by this call.

        Raises:
            LookupError: if the trial plan row is missing.
        """
        sid = _as_uuid(store_id)
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            plan_id = (
                await session.execute(
                    select(PlanLimit.id).where(PlanLimit.plan_name == TRIAL_PLAN_NAME)
                )
            ).scalar_one_or_none()
            if plan_id is None:
                raise LookupError(f"Plan {TRIAL_PLAN_NAME!r} is not configured")
            result = await session.execute(
                update(Store)
                .where(Store.id == sid, Store.plan_id.is_(None))
                .values(
                    plan_id=plan_id,
                    trial_started_at=now,
                    trial_ends_at=now + timedelta(days=trial_days),
                )
            )
            await session.commit()
        attached = bool(result.rowcount)
        if attached:
            logger.info("trial_plan_attached", store_id=store_id, trial_days=trial_days)
        return attached

    async def get_quota_status(self, store_id: str) -> tuple[QuotaStatus, TrialStatus]:
        sid = _as_uuid(store_id)
        now = datetime.now(UTC)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = day_start.replace(day=1)
        async with self._session_factory() as session:
            store = await session.get(Store, sid) if sid else None
            if store is None:
                raise LookupError(f"Store {store_id} not found")
            counts = (
                await session.execute(
                    select(
                        func.count().filter(ArticleUsage.created_at >= day_start),
                        func.count(),
                    ).where(
                        ArticleUsage.store_id == sid,
                        ArticleUsage.created_at >= month_start,
                    )
                )
            ).one()
        plan = store.plan
        plan_name = plan.plan_name if plan else None
        quota = build_quota_status(
            plan_name=plan_name,
            daily_limit=plan.daily_limit if plan else 0,
            monthly_limit=plan.monthly_limit if plan else 0,
            used_today=counts[0],
            used_month=counts[1],
            trial_ends_at=store.trial_ends_at,
            now=now,
        )
        return quota, build_trial_status(plan_name, store.trial_ends_at, now)

    async def enforce_article_quota(self, store_id: str) -> QuotaEnforcement:
        """Atomic check-and-reserve in one round trip.

        The SQL function locks the store row, so concurrent callers are
        serialized and at most the remaining quota is ever reserved.
        """
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    text("SELECT * FROM enforce_article_quota(:store_uuid)"),
                    {"store_uuid": _as_uuid(store_id)},
                )
            ).mappings().one()
            await session.commit()

        quota = build_quota_status(
            plan_name=row["plan_name"],
            daily_limit=row["daily_limit"],
            monthly_limit=row["monthly_limit"],
            used_today=row["used_today"],
            used_month=row["used_month"],
            trial_ends_at=row["trial_ends_at"],
            now=now,
        )
        return QuotaEnforcement(
            allowed=row["allowed"],
            reason=row["reason"],
            quota_status=quota,
            trial_status=build_trial_status(
                row["plan_name"], row["trial_ends_at"], now
            ),
            usage_id=str(row["usage_id"]) if row["usage_id"] else None,
        )

    async def record_usage(
        self, store_id: str, post_id: str, usage_id: str | None
    ) -> None:
        if usage_id is None:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(ArticleUsage)
                .where(
                    ArticleUsage.id == _as_uuid(usage_id),
                    ArticleUsage.store_id == _as_uuid(store_id),
                )
                .values(post_id=_as_uuid(post_id))
            )
            await session.commit()

    # -- regeneration -----------------------------------------------------

    async def check_regeneration_limits(
        self, store_id: str, post_id: str
    ) -> RegenerationCheck:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    text(
                        "SELECT * FROM check_regeneration_limits("
                        ":store_uuid, :post_uuid)"
                    ),
                    {
                        "store_uuid": _as_uuid(store_id),
                        "post_uuid": _as_uuid(post_id),
                    },
                )
            ).mappings().one()
        return RegenerationCheck(
            allowed=row["allowed"], reason=row["reason"], limit_type=row["limit_type"]
        )

    async def record_regeneration(
        self, store_id: str, post_id: str, regenerated_from: str
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                RegenerationUsage(
                    store_id=_as_uuid(store_id),
                    post_id=_as_uuid(post_id),
                    regenerated_from=_as_uuid(regenerated_from),
                )
            )
            await session.commit()

    # -- posts ------------------------------------------------------------

    async def create_post(self, draft: PostDraft) -> dict[str, Any]:
        values = draft.model_dump()
        values["store_id"] = _as_uuid(draft.store_id)
        values["regenerated_from"] = _as_uuid(draft.regenerated_from)
        values["status"] = str(draft.status)
        values["review_status"] = str(draft.review_status)
        async with self._session_factory() as session:
            post = BlogPost(**values)
            session.add(post)
            await session.commit()
            await session.refresh(post)
            return post_to_dict(post)

    async def list_posts(
        self,
        store_id: str,
        *,
        status: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[dict[str, Any]], int]:
        """Newest first, one page at a time.

        Returns:
            The page of posts and the total matching count.
        """
        conditions = [BlogPost.store_id == _as_uuid(store_id)]
        if status is not None:
            conditions.append(BlogPost.status == status)
        stmt = (
            select(BlogPost)
            .where(*conditions)
            .order_by(BlogPost.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        async with self._session_factory() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(BlogPost).where(*conditions)
                )
            ).scalar_one()
            posts = (await session.execute(stmt)).scalars().all()
        return [post_to_dict(p) for p in posts], total

    async def update_post(
        self, store_id: str, post_id: str, values: dict[str, Any]
    ) -> dict[str, Any] | None:
        pid = _as_uuid(post_id)
        if pid is None:
            return None
        stmt = (
            update(BlogPost)
            .where(BlogPost.id == pid, BlogPost.store_id == _as_uuid(store_id))
            .values(**values)
            .returning(BlogPost)
        )
        async with self._session_factory() as session:
            post = (await session.execute(stmt)).scalar_one_or_none()
            result = post_to_dict(post) if post else None
            await session.commit()
        return result

    async def delete_post(self, store_id: str, post_id: str) -> bool:
        pid = _as_uuid(post_id)
        if pid is None:
            return False
        async with self._session_factory() as session:
            result = await session.execute(
                delete(BlogPost).where(
                    BlogPost.id == pid, BlogPost.store_id == _as_uuid(store_id)
                )
            )
            await session.commit()
        return bool(result.rowcount)

    async def update_internal_links(
        self, post_id: str, links: list[dict[str, Any]]
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(BlogPost)
                .where(BlogPost.id == _as_uuid(post_id))
                .values(internal_links=links)
            )
            await session.commit()

    async def update_snippet(self, post_id: str, snippet: dict[str, Any]) -> bool:
        """Store the snippet under ``structured_data.llm_snippet``."""
        pid = _as_uuid(post_id)
        if pid is None:
            return False
        async with self._session_factory() as session:
            post = await session.get(BlogPost, pid)
            if post is None:
                return False
            post.structured_data = {**(post.structured_data or {}), "llm_snippet": snippet}
            await session.commit()
        return True

    # -- content queue ----------------------------------------------------

    async def count_queued(self, store_id: str) -> int:
        stmt = select(func.count()).where(
            BlogPost.store_id == _as_uuid(store_id),
            BlogPost.status == PostStatus.QUEUED,
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    async def list_queued(self, store_id: str) -> list[dict[str, Any]]:
        stmt = (
            select(BlogPost)
            .where(
                BlogPost.store_id == _as_uuid(store_id),
                BlogPost.status == PostStatus.QUEUED,
            )
            .order_by(BlogPost.queue_position.asc(), BlogPost.created_at.asc())
        )
        async with self._session_factory() as session:
            posts = (await session.execute(stmt)).scalars().all()
        return [post_to_dict(p) for p in posts]

    async def insert_queued(
        self, store_id: str, title: str, position: int
    ) -> dict[str, Any]:
        async with self._session_factory() as session:
            post = BlogPost(
                store_id=_as_uuid(store_id),
                title=title,
                content="",
                status=PostStatus.QUEUED,
                queue_position=position,
            )
            session.add(post)
            await session.commit()
            await session.refresh(post)
            return post_to_dict(post)

    async def set_queue_positions(
        self, store_id: str, positions: list[tuple[str, int]]
    ) -> int:
        sid = _as_uuid(store_id)
        updated = 0
        async with self._session_factory() as session:
            for post_id, position in positions:
                result = await session.execute(
                    update(BlogPost)
                    .where(
                        BlogPost.id == _as_uuid(post_id),
                        BlogPost.store_id == sid,
                        BlogPost.status == PostStatus.QUEUED,
                    )
                    .values(queue_position=position)
                )
                updated += result.rowcount
            await session.commit()
        return updated

    async def update_queued_title(
        self, store_id: str, item_id: str, title: str
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(BlogPost)
                .where(
                    BlogPost.id == _as_uuid(item_id),
                    BlogPost.store_id == _as_uuid(store_id),
                    BlogPost.status == PostStatus.QUEUED,
                )
                .values(title=title)
            )
            await session.commit()
        return bool(result.rowcount)
