"""
Error taxonomy for the summarization pipeline.

Every failure that reaches a caller is a PipelineError subclass carrying the
stage it originated in, a reason enum and a short description of the
underlying cause.
"""

from enum import Enum
from typing import Optional

from pdfdigest.models import PipelineStage


class ExtractionReason(str, Enum):
    UNSUPPORTED_TYPE = "unsupported_type"
    CORRUPT_CONTENT = "corrupt_content"
    EMPTY_CONTENT = "empty_content"


class GenerationReason(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    AUTH_FAILURE = "auth_failure"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"
    UNAVAILABLE = "unavailable"
    MERGE_LIMIT = "merge_limit"

    @property
    def transient(self) -> bool:
        """Whether a failure with this reason is worth retrying."""
        return self in _TRANSIENT_REASONS


_TRANSIENT_REASONS = frozenset(
    {
        GenerationReason.TIMEOUT,
        GenerationReason.RATE_LIMITED,
        GenerationReason.SERVER_ERROR,
        GenerationReason.UNAVAILABLE,
    }
)


class RenderReason(str, Enum):
    ENCODING_ERROR = "encoding_error"
    UNSUPPORTED_FORMAT = "unsupported_format"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    WRITER_ERROR = "writer_error"


class CancelReason(str, Enum):
    CANCELLED = "cancelled"


class PipelineError(Exception):
    """
    Base class for terminal pipeline failures.

    Args:
        reason: Sub-reason enum member of the concrete error kind.
        cause: Human readable description of the underlying problem.
        stage: Stage the failure originated in. Defaults to the stage the
            error kind belongs to.
    """

    kind = "pipeline_error"
    default_stage = PipelineStage.FAILED

    def __init__(self, reason: Enum, cause: str = "", stage: Optional[PipelineStage] = None):
        self.reason = reason
        self.cause = cause
        self.stage = stage or self.default_stage
        message = f"{self.kind} ({reason.value})"
        if cause:
            message += f": {cause}"
        super().__init__(message)


class ExtractionFailed(PipelineError):
    kind = "extraction_failed"
    default_stage = PipelineStage.EXTRACTING


class GenerationFailed(PipelineError):
    kind = "generation_failed"
    default_stage = PipelineStage.SUMMARIZING

    @property
    def transient(self) -> bool:
        return self.reason.transient


class RenderFailed(PipelineError):
    kind = "render_failed"
    default_stage = PipelineStage.RENDERING


class PipelineCancelled(PipelineError):
    kind = "cancelled"

    def __init__(self, stage: Optional[PipelineStage] = None, cause: str = "cancelled by caller"):
        super().__init__(CancelReason.CANCELLED, cause=cause, stage=stage)
