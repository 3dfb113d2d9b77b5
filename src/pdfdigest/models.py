"""
Value types passed between the pipeline stages.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from pdfdigest.errors import PipelineError


class PipelineStage(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    SUMMARIZING = "summarizing"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceDocument:
    """Raw upload as handed over by the caller."""

    content: bytes
    media_type: str
    file_name: str

    def __repr__(self) -> str:
        return f"SourceDocument(file_name={self.file_name!r}, media_type={self.media_type!r}, size={len(self.content)})"


@dataclass(frozen=True)
class Chunk:
    """
    Contiguous span of extracted text sized for one backend call.

    ``boundary`` records how the chunk ended: "paragraph", "sentence",
    "hard" (no natural break inside the lookback window) or "end".
    """

    index: int
    text: str
    start: int
    end: int
    boundary: str = "end"

    def __len__(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PartialSummary:
    index: int
    text: str
    retries: int = 0


@dataclass(frozen=True)
class FinalSummary:
    text: str
    source_file_name: str
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    chunk_count: int = 1
    merge_rounds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "source_file_name": self.source_file_name,
            "generated_at": self.generated_at.isoformat(),
            "chunk_count": self.chunk_count,
            "merge_rounds": self.merge_rounds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinalSummary":
        if not isinstance(data, dict):
            raise ValueError(f"Summary data must be a JSON object, not {type(data).__name__}.")
        if not data.get("text") or not data.get("source_file_name"):
            raise ValueError("Summary data requires 'text' and 'source_file_name'.")
        generated_at = data.get("generated_at")
        return cls(
            text=data["text"],
            source_file_name=data["source_file_name"],
            generated_at=datetime.fromisoformat(generated_at) if generated_at else datetime.now(timezone.utc),
            chunk_count=int(data.get("chunk_count", 1)),
            merge_rounds=int(data.get("merge_rounds", 0)),
        )


@dataclass(frozen=True)
class PipelineProgress:
    stage: PipelineStage
    percent: int


@dataclass(frozen=True)
class RenderedArtifact:
    content: bytes
    file_name: str
    media_type: str


@dataclass(frozen=True)
class PipelineResult:
    """Either a summary or the error that ended the run, never both."""

    summary: Optional[FinalSummary] = None
    error: Optional["PipelineError"] = None

    def __post_init__(self):
        if (self.summary is None) == (self.error is None):
            raise ValueError("PipelineResult needs exactly one of summary or error.")

    @property
    def ok(self) -> bool:
        return self.summary is not None

    @classmethod
    def success(cls, summary: FinalSummary) -> "PipelineResult":
        return cls(summary=summary)

    @classmethod
    def failure(cls, error: "PipelineError") -> "PipelineResult":
        return cls(error=error)
