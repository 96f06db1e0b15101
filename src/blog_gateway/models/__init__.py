"""Pydantic schemas for blog-gateway domain models."""

from blog_gateway.models.content import (
    ComposeOptions,
    DraftContent,
    ImageUploadOptions,
    KeywordCluster,
    ProductMentionResult,
)
from blog_gateway.models.store import (
    VALID_POST_STATUSES,
    PostDraft,
    PostStatus,
    QueueMetrics,
    QuotaEnforcement,
    QuotaStatus,
    RegenerationCheck,
    ReviewStatus,
    StoreRecord,
    TrialStatus,
)

__all__ = [
    "VALID_POST_STATUSES",
    "ComposeOptions",
    "DraftContent",
    "ImageUploadOptions",
    "KeywordCluster",
    "PostDraft",
    "PostStatus",
    "ProductMentionResult",
    "QueueMetrics",
    "QuotaEnforcement",
    "QuotaStatus",
    "RegenerationCheck",
    "ReviewStatus",
    "StoreRecord",
    "TrialStatus",
]
