"""Store (tenant), quota and post schemas shared by store and pipeline."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class PostStatus(StrEnum):
    PUBLISHED = "published"
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ARCHIVED = "archived"
    QUEUED = "queued"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"


VALID_POST_STATUSES: tuple[str, ...] = tuple(s.value for s in PostStatus)


class StoreRecord(BaseModel):
    """A tenant as the gateway sees it."""

    id: str
    shop_domain: str
    plan_id: str | None = None
    plan_name: str | None = None
    trial_started_at: datetime | None = None
    trial_ends_at: datetime | None = None
    is_active: bool = True
    is_paused: bool = False
    tone_profile: dict[str, float] = Field(default_factory=dict)
    brand_profile: dict[str, Any] = Field(default_factory=dict)
    content_preferences: dict[str, Any] = Field(default_factory=dict)
    require_approval: bool = False
    review_window_hours: int = 24

    @property
    def keyword_focus(self) -> list[str]:
        focus = self.content_preferences.get("keyword_focus") or []
        return [str(k) for k in focus]


class QuotaStatus(BaseModel):
    plan_name: str
    articles_generated_today: int
    articles_generated_this_month: int
    daily_limit: int | None
    monthly_limit: int
    remaining_daily: int | None
    remaining_monthly: int
    trial_ends_at: datetime | None = None
    is_trial_active: bool = False


class TrialStatus(BaseModel):
    is_trial: bool
    trial_ends_at: datetime | None = None
    days_remaining: int | None = None
    is_expired: bool = False


class QuotaEnforcement(BaseModel):
    """Result of the atomic check-and-reserve round trip."""

    allowed: bool
    reason: str | None = None
    quota_status: QuotaStatus | None = None
    trial_status: TrialStatus | None = None
    usage_id: str | None = None


class RegenerationCheck(BaseModel):
    allowed: bool
    reason: str | None = None
    limit_type: str | None = None


class PostDraft(BaseModel):
    """Row values for a newly generated post."""

    store_id: str
    title: str
    content: str
    excerpt: str = ""
    seo_title: str = ""
    seo_description: str = ""
    keywords: list[str] = Field(default_factory=list)
    primary_keyword: str | None = None
    status: PostStatus = PostStatus.DRAFT
    review_status: ReviewStatus = ReviewStatus.AUTO_APPROVED
    auto_publish_at: datetime | None = None
    product_mentions: dict[str, Any] | None = None
    featured_image_url: str | None = None
    structured_data: dict[str, Any] = Field(default_factory=dict)
    regenerated_from: str | None = None


class QueueMetrics(BaseModel):
    current_count: int
    target_count: int
    needs_refill: bool
    plan_name: str
