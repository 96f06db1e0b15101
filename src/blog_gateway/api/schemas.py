"""Request body schemas for gateway routes.

Field names follow the camelCase wire format through aliases.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from blog_gateway.errors import InvalidInputError
from blog_gateway.models import PostStatus, ReviewStatus

_M = TypeVar("_M", bound=BaseModel)


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def parse_body(model: type[_M], body: dict[str, Any]) -> _M:
    """Validate ``body`` against ``model``.

    Raises:
        InvalidInputError: with the first validation message.
    """
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or "body"
        raise InvalidInputError(f"{field}: {first['msg']}") from exc


# --- Posts ---


class PostUpdateRequest(_Body):
    """Body for ``PATCH /posts/{post_id}``; only supplied fields change."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    content: str | None = None
    excerpt: str | None = None
    seo_title: str | None = Field(default=None, alias="seoTitle")
    seo_description: str | None = Field(default=None, alias="seoDescription")
    keywords: list[str] | None = None
    status: PostStatus | None = None
    scheduled_publish_at: datetime | None = Field(
        default=None, alias="scheduledPublishAt"
    )
    review_status: ReviewStatus | None = Field(default=None, alias="reviewStatus")

    @field_validator("title", "content", "keywords", "status", "review_status")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        # explicit null is only valid for nullable columns
        if value is None:
            raise ValueError("must not be null")
        return value

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must be a non-empty string")
        return value

    def column_values(self) -> dict[str, Any]:
        values = self.model_dump(exclude_unset=True)
        for key in ("status", "review_status"):
            if values.get(key) is not None:
                values[key] = str(values[key])
        return values


class ScheduleRequest(_Body):
    scheduled_at: datetime = Field(alias="scheduledAt")

    @field_validator("scheduled_at")
    @classmethod
    def _in_future(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        if value <= datetime.now(UTC):
            raise ValueError("scheduledAt must be in the future")
        return value


# --- Regeneration ---


class RegenerationCheckRequest(_Body):
    post_id: str = Field(alias="postId", min_length=1)


# --- Queue ---


class QueueReorderRequest(_Body):
    article_ids: list[str] = Field(alias="articleIds")


class QueueRegenerateTitleRequest(_Body):
    article_id: str = Field(alias="articleId", min_length=1)
