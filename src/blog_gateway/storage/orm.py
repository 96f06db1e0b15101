"""SQLAlchemy ORM models for stores, plans, posts and usage."""

import uuid
from datetime import datetime
from typing import Any

import uuid_utils as uuid7_lib
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-ordered) for use as default PK value."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ──────────────────────────────────────────────
# Plans & stores
# ──────────────────────────────────────────────


class PlanLimit(Base):
    __tablename__ = "plan_limits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    plan_name: Mapped[str] = mapped_column(String(50), unique=True)
    daily_limit: Mapped[int | None] = mapped_column(Integer)
    monthly_limit: Mapped[int] = mapped_column(Integer)
    regenerations_per_article: Mapped[int] = mapped_column(Integer, default=2)
    regenerations_per_month: Mapped[int] = mapped_column(Integer, default=20)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    shop_domain: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("plan_limits.id", ondelete="SET NULL")
    )
    trial_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(default=True)
    is_paused: Mapped[bool] = mapped_column(default=False)
    tone_profile: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    brand_profile: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    content_preferences: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    require_approval: Mapped[bool] = mapped_column(default=False)
    review_window_hours: Mapped[int] = mapped_column(Integer, default=24)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    plan: Mapped[PlanLimit | None] = relationship(lazy="joined")


class APIKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    store_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE")
    )
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(16))
    label: Mapped[str] = mapped_column(String(100), default="default")
    is_active: Mapped[bool] = mapped_column(default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ──────────────────────────────────────────────
# Posts & usage
# ──────────────────────────────────────────────


class BlogPost(Base):
    __tablename__ = "blog_posts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('published', 'draft', 'scheduled', 'archived', 'queued')",
            name="chk_blog_post_status",
        ),
        CheckConstraint(
            "review_status IN ('pending', 'approved', 'auto_approved', 'rejected')",
            name="chk_blog_post_review_status",
        ),
        Index("ix_blog_posts_store_status", "store_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE")
    )
    title: Mapped[str] = mapped_column(String(500))
    content: Mapped[str] = mapped_column(Text, default="")
    excerpt: Mapped[str | None] = mapped_column(Text)
    seo_title: Mapped[str | None] = mapped_column(String(500))
    seo_description: Mapped[str | None] = mapped_column(Text)
    keywords: Mapped[list[Any]] = mapped_column(JSONB, default=list)
    primary_keyword: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="draft")
    review_status: Mapped[str] = mapped_column(String(20), default="auto_approved")
    auto_publish_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    scheduled_publish_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    product_mentions: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    featured_image_url: Mapped[str | None] = mapped_column(Text)
    structured_data: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    internal_links: Mapped[list[Any]] = mapped_column(JSONB, default=list)
    regenerated_from: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("blog_posts.id", ondelete="SET NULL")
    )
    queue_position: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ArticleUsage(Base):
    """One reserved unit of article quota; ``post_id`` is set once persisted."""

    __tablename__ = "article_usage"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), index=True
    )
    post_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("blog_posts.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class RegenerationUsage(Base):
    __tablename__ = "regeneration_usage"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), index=True
    )
    post_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("blog_posts.id", ondelete="CASCADE")
    )
    regenerated_from: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("blog_posts.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
