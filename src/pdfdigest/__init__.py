from pdfdigest.chunk import BoundaryStrategy, HardCutBoundary, ParagraphSentenceBoundary, plan
from pdfdigest.config import PipelineConfig, RetryPolicy
from pdfdigest.errors import (
    ExtractionFailed,
    GenerationFailed,
    PipelineCancelled,
    PipelineError,
    RenderFailed,
)
from pdfdigest.exporter import render, write_artifact
from pdfdigest.ingest import extract, load_document
from pdfdigest.llm_adapter import CloudAdapter, ExtractiveAdapter, LLMAdapter, LocalTransformersAdapter
from pdfdigest.models import (
    Chunk,
    FinalSummary,
    PartialSummary,
    PipelineProgress,
    PipelineResult,
    PipelineStage,
    RenderedArtifact,
    SourceDocument,
)
from pdfdigest.orchestrator import PipelineRun, ProgressChannel, SummaryPipeline
from pdfdigest.summarize import SummaryGenerator

__all__ = [
    "BoundaryStrategy",
    "HardCutBoundary",
    "ParagraphSentenceBoundary",
    "plan",
    "PipelineConfig",
    "RetryPolicy",
    "ExtractionFailed",
    "GenerationFailed",
    "PipelineCancelled",
    "PipelineError",
    "RenderFailed",
    "render",
    "write_artifact",
    "extract",
    "load_document",
    "CloudAdapter",
    "ExtractiveAdapter",
    "LLMAdapter",
    "LocalTransformersAdapter",
    "Chunk",
    "FinalSummary",
    "PartialSummary",
    "PipelineProgress",
    "PipelineResult",
    "PipelineStage",
    "RenderedArtifact",
    "SourceDocument",
    "PipelineRun",
    "ProgressChannel",
    "SummaryPipeline",
    "SummaryGenerator",
]
