"""initial_blog_gateway_schema

Revision ID: c3a9f1d2e4b7
Revises:
Create Date: 2026-10-17 10:12:44.208113

"""

import uuid
from typing import Sequence, Union

import sqlalchemy as sa
import uuid_utils as uuid7_lib
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "c3a9f1d2e4b7"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# plan_name, daily_limit, monthly_limit, regenerations per article / month
SEED_PLANS = [
    ("free_trial", 1, 14, 1, 5),
    ("starter", 2, 30, 2, 15),
    ("publisher", 5, 100, 3, 50),
    ("authority", None, 300, 5, 150),
]

ENFORCE_ARTICLE_QUOTA = """
CREATE OR REPLACE FUNCTION enforce_article_quota(store_uuid uuid)
RETURNS TABLE (
    allowed boolean,
    reason text,
    plan_name text,
    daily_limit integer,
    monthly_limit integer,
    used_today integer,
    used_month integer,
    trial_ends_at timestamptz,
    usage_id uuid
)
LANGUAGE plpgsql AS $$
#variable_conflict use_column
DECLARE
    v_store stores%ROWTYPE;
    v_plan plan_limits%ROWTYPE;
    v_today integer;
    v_month integer;
    v_reason text;
    v_usage uuid;
    v_day_start timestamptz := date_trunc('day', now() AT TIME ZONE 'UTC') AT TIME ZONE 'UTC';
    v_month_start timestamptz := date_trunc('month', now() AT TIME ZONE 'UTC') AT TIME ZONE 'UTC';
BEGIN
    -- row lock serializes concurrent reservations for one store
    SELECT s.* INTO v_store FROM stores s WHERE s.id = store_uuid FOR UPDATE;
    IF NOT FOUND THEN
        RETURN QUERY SELECT false, 'Store not found'::text, NULL::text,
            NULL::integer, 0, 0, 0, NULL::timestamptz, NULL::uuid;
        RETURN;
    END IF;

    SELECT p.* INTO v_plan FROM plan_limits p WHERE p.id = v_store.plan_id;

    SELECT count(*) FILTER (WHERE u.created_at >= v_day_start)::integer,
           count(*)::integer
      INTO v_today, v_month
      FROM article_usage u
     WHERE u.store_id = store_uuid
       AND u.created_at >= v_month_start;

    IF v_plan.id IS NULL THEN
        v_reason := 'No active plan';
    ELSIF NOT v_store.is_active THEN
        v_reason := 'Store is not active';
    ELSIF v_store.is_paused THEN
        v_reason := 'Store is paused';
    ELSIF v_plan.plan_name = 'free_trial'
          AND v_store.trial_ends_at IS NOT NULL
          AND v_store.trial_ends_at < now() THEN
        v_reason := 'Trial period has expired';
    ELSIF v_plan.daily_limit IS NOT NULL AND v_today >= v_plan.daily_limit THEN
        v_reason := 'Daily article limit reached';
    ELSIF v_month >= v_plan.monthly_limit THEN
        v_reason := 'Monthly article limit reached';
    END IF;

    IF v_reason IS NULL THEN
        v_usage := gen_random_uuid();
        INSERT INTO article_usage (id, store_id, created_at)
        VALUES (v_usage, store_uuid, now());
    END IF;

    RETURN QUERY SELECT v_reason IS NULL, v_reason, v_plan.plan_name::text,
        v_plan.daily_limit, COALESCE(v_plan.monthly_limit, 0),
        v_today, v_month, v_store.trial_ends_at, v_usage;
END;
$$;
"""

CHECK_REGENERATION_LIMITS = """
CREATE OR REPLACE FUNCTION check_regeneration_limits(store_uuid uuid, post_uuid uuid)
RETURNS TABLE (allowed boolean, reason text, limit_type text)
LANGUAGE plpgsql AS $$
#variable_conflict use_column
DECLARE
    v_plan plan_limits%ROWTYPE;
    v_per_article integer;
    v_this_month integer;
BEGIN
    IF NOT EXISTS (
        SELECT 1 FROM blog_posts b WHERE b.id = post_uuid AND b.store_id = store_uuid
    ) THEN
        RETURN QUERY SELECT false, 'Post not found'::text, 'not_found'::text;
        RETURN;
    END IF;

    SELECT p.* INTO v_plan
      FROM plan_limits p JOIN stores s ON s.plan_id = p.id
     WHERE s.id = store_uuid;
    IF v_plan.id IS NULL THEN
        RETURN QUERY SELECT false, 'No active plan'::text, 'plan'::text;
        RETURN;
    END IF;

    SELECT count(*)::integer INTO v_per_article
      FROM regeneration_usage r
     WHERE r.store_id = store_uuid AND r.regenerated_from = post_uuid;
    IF v_per_article >= v_plan.regenerations_per_article THEN
        RETURN QUERY SELECT false,
            'Regeneration limit reached for this article'::text, 'per_article'::text;
        RETURN;
    END IF;

    SELECT count(*)::integer INTO v_this_month
      FROM regeneration_usage r
     WHERE r.store_id = store_uuid
       AND r.created_at >= date_trunc('month', now() AT TIME ZONE 'UTC') AT TIME ZONE 'UTC';
    IF v_this_month >= v_plan.regenerations_per_month THEN
        RETURN QUERY SELECT false,
            'Monthly regeneration limit reached'::text, 'monthly'::text;
        RETURN;
    END IF;

    RETURN QUERY SELECT true, NULL::text, NULL::text;
END;
$$;
"""


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 for seed rows."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


def upgrade() -> None:
    """Create tenant, post and usage tables plus the quota SQL functions."""
    # ── 1. DDL: tables ──
    plan_limits = op.create_table(
        "plan_limits",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("plan_name", sa.String(length=50), nullable=False),
        sa.Column("daily_limit", sa.Integer(), nullable=True),
        sa.Column("monthly_limit", sa.Integer(), nullable=False),
        sa.Column("regenerations_per_article", sa.Integer(), nullable=False),
        sa.Column("regenerations_per_month", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_name"),
    )

    op.create_table(
        "stores",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("plan_id", sa.Uuid(), nullable=True),
        sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_paused", sa.Boolean(), nullable=False),
        sa.Column("tone_profile", postgresql.JSONB(), nullable=False),
        sa.Column("brand_profile", postgresql.JSONB(), nullable=False),
        sa.Column("content_preferences", postgresql.JSONB(), nullable=False),
        sa.Column("require_approval", sa.Boolean(), nullable=False),
        sa.Column("review_window_hours", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["plan_id"], ["plan_limits.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stores_shop_domain", "stores", ["shop_domain"], unique=True)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("store_id", sa.Uuid(), nullable=True),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("key_prefix", sa.String(length=16), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    op.create_table(
        "blog_posts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("store_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("seo_title", sa.String(length=500), nullable=True),
        sa.Column("seo_description", sa.Text(), nullable=True),
        sa.Column("keywords", postgresql.JSONB(), nullable=False),
        sa.Column("primary_keyword", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("review_status", sa.String(length=20), nullable=False),
        sa.Column("auto_publish_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_publish_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("product_mentions", postgresql.JSONB(), nullable=True),
        sa.Column("featured_image_url", sa.Text(), nullable=True),
        sa.Column("structured_data", postgresql.JSONB(), nullable=False),
        sa.Column("internal_links", postgresql.JSONB(), nullable=False),
        sa.Column("regenerated_from", sa.Uuid(), nullable=True),
        sa.Column("queue_position", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('published', 'draft', 'scheduled', 'archived', 'queued')",
            name="chk_blog_post_status",
        ),
        sa.CheckConstraint(
            "review_status IN ('pending', 'approved', 'auto_approved', 'rejected')",
            name="chk_blog_post_review_status",
        ),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["regenerated_from"], ["blog_posts.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_blog_posts_store_status", "blog_posts", ["store_id", "status"]
    )

    op.create_table(
        "article_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("store_id", sa.Uuid(), nullable=False),
        sa.Column("post_id", sa.Uuid(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["post_id"], ["blog_posts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_article_usage_store_id", "article_usage", ["store_id"])

    op.create_table(
        "regeneration_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("store_id", sa.Uuid(), nullable=False),
        sa.Column("post_id", sa.Uuid(), nullable=False),
        sa.Column("regenerated_from", sa.Uuid(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["post_id"], ["blog_posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["regenerated_from"], ["blog_posts.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_regeneration_usage_store_id", "regeneration_usage", ["store_id"]
    )
    op.create_index(
        "ix_regeneration_usage_regenerated_from",
        "regeneration_usage",
        ["regenerated_from"],
    )

    # ── 2. Seed plans ──
    op.bulk_insert(
        plan_limits,
        [
            {
                "id": _uuid7(),
                "plan_name": name,
                "daily_limit": daily,
                "monthly_limit": monthly,
                "regenerations_per_article": per_article,
                "regenerations_per_month": per_month,
            }
            for name, daily, monthly, per_article, per_month in SEED_PLANS
        ],
    )

    # ── 3. SQL functions ──
    op.execute(ENFORCE_ARTICLE_QUOTA)
    op.execute(CHECK_REGENERATION_LIMITS)


def downgrade() -> None:
    """Drop SQL functions and all tables."""
    op.execute("DROP FUNCTION IF EXISTS check_regeneration_limits(uuid, uuid)")
    op.execute("DROP FUNCTION IF EXISTS enforce_article_quota(uuid)")
    op.drop_index(
        "ix_regeneration_usage_regenerated_from", table_name="regeneration_usage"
    )
    op.drop_index("ix_regeneration_usage_store_id", table_name="regeneration_usage")
    op.drop_table("regeneration_usage")
    op.drop_index("ix_article_usage_store_id", table_name="article_usage")
    op.drop_table("article_usage")
    op.drop_index("ix_blog_posts_store_status", table_name="blog_posts")
    op.drop_table("blog_posts")
    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_stores_shop_domain", table_name="stores")
    op.drop_table("stores")
    op.drop_table("plan_limits")
