"""Content creation pipeline and the collaborator interfaces it drives."""

from blog_gateway.pipeline.orchestrator import (
    ContentPipelineOrchestrator,
    CreatedPost,
    CreatePostRequest,
    PipelineArtifact,
    PipelineFlags,
    StageResult,
    validate_create_post_params,
)

__all__ = [
    "ContentPipelineOrchestrator",
    "CreatePostRequest",
    "CreatedPost",
    "PipelineArtifact",
    "PipelineFlags",
    "StageResult",
    "validate_create_post_params",
]
