"""
Pipeline orchestration: extract -> chunk -> summarize/merge, with progress
reporting and cancellation.

A SummaryPipeline holds configuration only. Each document gets its own
single-use PipelineRun, so concurrent runs share no mutable state.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from pdfdigest.chunk import BoundaryStrategy, ParagraphSentenceBoundary, plan
from pdfdigest.config import PipelineConfig
from pdfdigest.errors import (
    ExtractionFailed,
    ExtractionReason,
    GenerationFailed,
    GenerationReason,
    PipelineCancelled,
    PipelineError,
)
from pdfdigest.exporter import render as render_summary
from pdfdigest.ingest import extract
from pdfdigest.llm_adapter import CloudAdapter, LLMAdapter
from pdfdigest.models import (
    FinalSummary,
    PartialSummary,
    PipelineProgress,
    PipelineResult,
    PipelineStage,
    RenderedArtifact,
    SourceDocument,
)
from pdfdigest.summarize import SummaryGenerator

logger = logging.getLogger("pdfdigest.orchestrator")

ProgressCallback = Callable[[PipelineProgress], None]
Extractor = Callable[[SourceDocument], str]
T = TypeVar("T")

EXTRACTED_PERCENT = 25
CHUNKED_PERCENT = 50
SUMMARIZED_PERCENT = 75


class ProgressChannel:
    """Publishes progress to explicitly registered subscribers."""

    def __init__(self):
        self._subscribers: List[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Registers ``callback`` and returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, progress: PipelineProgress) -> None:
        for callback in list(self._subscribers):
            try:
                callback(progress)
            except Exception:
                logger.warning("Progress subscriber %r raised; ignoring", callback, exc_info=True)


class PipelineRun:
    """
    One execution of the pipeline for one document.

    Runs are single-use: after DONE or FAILED a new run has to be created to
    try again. Cancellation is cooperative; ``cancel`` stops the run at the
    next stage boundary and aborts the stage currently being awaited.
    """

    def __init__(
        self,
        document: SourceDocument,
        config: PipelineConfig,
        llm: LLMAdapter,
        extractor: Extractor = extract,
        strategy: Optional[BoundaryStrategy] = None,
    ):
        self.document = document
        self.config = config
        self.channel = ProgressChannel()
        self.progress = PipelineProgress(PipelineStage.IDLE, 0)
        self.summary: Optional[FinalSummary] = None
        self.error: Optional[PipelineError] = None
        self._extractor = extractor
        self._strategy = strategy or ParagraphSentenceBoundary(lookback=config.lookback)
        self._generator = SummaryGenerator(llm, config, self._strategy)
        self._started = False
        self._cancel_requested = False
        self._inflight: Optional[asyncio.Future] = None

    @property
    def retry_count(self) -> int:
        return self._generator.retry_count

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        return self.channel.subscribe(callback)

    def cancel(self) -> None:
        """Requests cancellation. Has no effect once the run has finished."""
        if self.progress.stage in (PipelineStage.DONE, PipelineStage.FAILED):
            return
        self._cancel_requested = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    def _publish(self, stage: PipelineStage, percent: int) -> None:
        percent = max(self.progress.percent, min(100, percent))
        self.progress = PipelineProgress(stage, percent)
        self.channel.publish(self.progress)

    def _checkpoint(self) -> None:
        if self._cancel_requested:
            raise PipelineCancelled(self.progress.stage)

    async def _await_stage(self, awaitable: Awaitable[T]) -> T:
        if self._cancel_requested:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise PipelineCancelled(self.progress.stage)
        self._inflight = asyncio.ensure_future(awaitable)
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise PipelineCancelled(self.progress.stage) from None
            raise
        finally:
            self._inflight = None

    def _on_chunk_done(self, total: int) -> Callable[[PartialSummary], None]:
        done = []

        def callback(partial: PartialSummary) -> None:
            done.append(partial.index)
            span = SUMMARIZED_PERCENT - CHUNKED_PERCENT
            self._publish(PipelineStage.SUMMARIZING, CHUNKED_PERCENT + span * len(done) // total)

        return callback

    def _fail(self, error: PipelineError) -> None:
        self.error = error
        self.summary = None
        self._publish(PipelineStage.FAILED, self.progress.percent)

    def _wrap_unexpected(self, exc: Exception) -> PipelineError:
        stage = self.progress.stage
        if stage is PipelineStage.EXTRACTING:
            return ExtractionFailed(ExtractionReason.CORRUPT_CONTENT, f"extractor failed: {exc}")
        return GenerationFailed(GenerationReason.INVALID_RESPONSE, f"unexpected error: {exc}", stage=stage)

    async def execute(self) -> FinalSummary:
        """
        Runs extraction, chunking and summarization for the document.

        Returns:
            FinalSummary: The merged summary.

        Raises:
            PipelineError: The error of the stage that failed, or
                PipelineCancelled after ``cancel``.
            RuntimeError: If the run was already executed.
        """
        if self._started:
            raise RuntimeError("PipelineRun is single-use; create a new run to retry.")
        self._started = True
        name = self.document.file_name

        try:
            self._publish(PipelineStage.EXTRACTING, 0)
            text = await self._await_stage(asyncio.to_thread(self._extractor, self.document))

            self._checkpoint()
            self._publish(PipelineStage.CHUNKING, EXTRACTED_PERCENT)
            chunks = plan(text, self.config.max_chunk_size, self._strategy)
            logger.info("Planned %d chunks for %s (%d chars)", len(chunks), name, len(text))

            self._checkpoint()
            self._publish(PipelineStage.SUMMARIZING, CHUNKED_PERCENT)
            partials = await self._await_stage(
                self._generator.summarize_all(chunks, on_chunk_done=self._on_chunk_done(len(chunks)))
            )
            summary = await self._await_stage(self._generator.merge(partials, name))
            self._checkpoint()
        except PipelineError as exc:
            logger.warning("Pipeline failed for %s during %s: %s", name, exc.stage.value, exc)
            self._fail(exc)
            raise
        except asyncio.CancelledError:
            logger.info("Pipeline for %s cancelled by the event loop", name)
            self._fail(PipelineCancelled(self.progress.stage, "task cancelled"))
            raise
        except Exception as exc:
            error = self._wrap_unexpected(exc)
            logger.warning("Pipeline failed for %s during %s: %s", name, error.stage.value, error, exc_info=True)
            self._fail(error)
            raise error from exc

        self.summary = summary
        self._publish(PipelineStage.DONE, 100)
        logger.info("Summarized %s: %d chunks, %d merge rounds", name, summary.chunk_count, summary.merge_rounds)
        return summary

    def render(self, format: str = "pdf") -> RenderedArtifact:
        """
        Renders the run's summary. A RenderFailed leaves the summary intact so
        rendering can be retried.
        """
        if self.summary is None:
            raise RuntimeError("Nothing to render: the run has not completed successfully.")

        self._publish(PipelineStage.RENDERING, 100)
        try:
            return render_summary(self.summary, format=format)
        finally:
            self._publish(PipelineStage.DONE, 100)


class SummaryPipeline:
    """
    Factory for pipeline runs sharing one configuration.

    Args:
        config: Explicit pipeline configuration.
        llm: Backend adapter. Built from ``config`` as a CloudAdapter when omitted.
        extractor: Text extractor, ``ingest.extract`` by default.
        strategy: Chunk boundary strategy.
    """

    def __init__(
        self,
        config: PipelineConfig,
        llm: Optional[LLMAdapter] = None,
        extractor: Optional[Extractor] = None,
        strategy: Optional[BoundaryStrategy] = None,
    ):
        if llm is None:
            if not config.api_key:
                raise ValueError("PipelineConfig.api_key is required when no LLM adapter is given.")
            llm = CloudAdapter(
                api_key=config.api_key,
                api_url=config.api_url,
                model_name=config.model_name,
                timeout_seconds=config.timeout_seconds,
            )
        self.config = config
        self.llm = llm
        self.extractor = extractor or extract
        self.strategy = strategy

    def create_run(self, document: SourceDocument) -> PipelineRun:
        return PipelineRun(document, self.config, self.llm, extractor=self.extractor, strategy=self.strategy)

    async def run(self, document: SourceDocument, on_progress: Optional[ProgressCallback] = None) -> FinalSummary:
        pipeline_run = self.create_run(document)
        if on_progress is not None:
            pipeline_run.subscribe(on_progress)
        return await pipeline_run.execute()

    async def run_result(
        self, document: SourceDocument, on_progress: Optional[ProgressCallback] = None
    ) -> PipelineResult:
        """Like ``run`` but returns the outcome as a PipelineResult instead of raising."""
        try:
            return PipelineResult.success(await self.run(document, on_progress=on_progress))
        except PipelineError as exc:
            return PipelineResult.failure(exc)
