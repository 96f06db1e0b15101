"""Content schemas exchanged with the generation collaborators."""

from typing import Any, Literal

from pydantic import BaseModel, Field

PostStructure = Literal[
    "default", "how-to", "listicle", "comparison", "tutorial", "case-study"
]
ExperienceLevel = Literal["beginner", "intermediate", "advanced"]


class ComposeOptions(BaseModel):
    """Options forwarded to the content composer."""

    structure: PostStructure | None = None
    language: str = "en"
    experience_level: ExperienceLevel | None = None
    audience_persona: str | None = None
    include_citations: bool = True
    validate_quality: bool = True
    content_preferences: dict[str, Any] = Field(default_factory=dict)


class DraftContent(BaseModel):
    """Composed post before SEO, product and sanitization passes."""

    title: str
    content: str
    excerpt: str = ""
    seo_title: str = ""
    seo_description: str = ""
    primary_keyword: str | None = None
    image_prompt: str | None = None
    citations: list[dict[str, Any]] = Field(default_factory=list)
    quality_score: float | None = None
    quality_issues: list[str] = Field(default_factory=list)


class KeywordCluster(BaseModel):
    primary_keyword: str
    long_tail_keywords: list[str] = Field(default_factory=list)

    def flatten(self) -> list[str]:
        return [self.primary_keyword, *self.long_tail_keywords]


class ProductMentionResult(BaseModel):
    content: str
    mentions: list[dict[str, Any]] = Field(default_factory=list)


class ImageUploadOptions(BaseModel):
    """Hosting parameters for the featured image."""

    width: int = 1280
    height: int = 720
    format: str = "webp"
    quality: int = 85
    alt_text: str = ""
