"""
Chunk-level summarization and ordered merging.

Key Design Decisions:
- Partial summaries are always reassembled by chunk index, never by arrival time
- Transient backend failures are retried here, everything else fails fast
- Merging recurses through plan/summarize/merge until one result remains,
  bounded by max_merge_rounds and by a strictly shrinking total size
"""

import asyncio
import inspect
import logging
from typing import Callable, List, Optional, Sequence

from pdfdigest.chunk import BoundaryStrategy, ParagraphSentenceBoundary, plan
from pdfdigest.config import PipelineConfig
from pdfdigest.errors import GenerationFailed, GenerationReason, PipelineError
from pdfdigest.llm_adapter import LLMAdapter
from pdfdigest.models import Chunk, FinalSummary, PartialSummary

logger = logging.getLogger("pdfdigest.summarize")

SUMMARY_PROMPT = (
    "You are an expert at summarizing documents. Produce a concise, sectioned summary "
    "of the following text with key points, keeping the most important and relevant facts."
)

MERGE_PROMPT = (
    "You are an expert at summarizing documents. The following are consecutive partial "
    "summaries of one document, in order. Merge them into a single concise, sectioned "
    "summary with key points, removing repetition and keeping the original order of topics."
)

ChunkCallback = Callable[[PartialSummary], None]


class SummaryGenerator:
    """
    Drives the backend for one pipeline run.

    Args:
        llm: Backend adapter.
        config: Pipeline configuration (timeouts, retry policy, limits).
        strategy: Boundary strategy used when merge input has to be re-planned.
    """

    def __init__(self, llm: LLMAdapter, config: PipelineConfig, strategy: Optional[BoundaryStrategy] = None):
        self.llm = llm
        self.config = config
        self.strategy = strategy or ParagraphSentenceBoundary(lookback=config.lookback)
        self.retry_count = 0

    async def _call_backend(self, prompt: str, source_text: str) -> str:
        generate = self.llm.generate
        kwargs = {"max_tokens": self.config.max_tokens, "temperature": self.config.temperature}
        if inspect.iscoroutinefunction(generate):
            call = generate(prompt, source_text, **kwargs)
        else:
            call = asyncio.to_thread(generate, prompt, source_text, **kwargs)

        try:
            result = await asyncio.wait_for(call, timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise GenerationFailed(
                GenerationReason.TIMEOUT, f"no response within {self.config.timeout_seconds}s"
            ) from exc
        except PipelineError:
            raise
        except Exception as exc:
            raise GenerationFailed(GenerationReason.INVALID_RESPONSE, f"backend error: {exc}") from exc

        if not isinstance(result, str) or not result.strip():
            raise GenerationFailed(GenerationReason.INVALID_RESPONSE, "backend returned an empty response")
        return result.strip()

    async def _generate_with_retry(self, prompt: str, source_text: str, label: str):
        """Returns (text, retries used)."""
        policy = self.config.retry
        attempt = 0
        while True:
            try:
                return await self._call_backend(prompt, source_text), attempt
            except GenerationFailed as exc:
                if not exc.transient or attempt >= policy.max_retries:
                    logger.warning("Generation failed for %s after %d retries: %s", label, attempt, exc)
                    raise
                delay = policy.delay(attempt)
                attempt += 1
                self.retry_count += 1
                logger.info(
                    "Transient failure for %s (%s), retry %d/%d in %.1fs",
                    label,
                    exc.reason.value,
                    attempt,
                    policy.max_retries,
                    delay,
                )
                await asyncio.sleep(delay)

    async def summarize(self, chunk: Chunk) -> PartialSummary:
        """
        Summarizes one chunk.

        Raises:
            GenerationFailed: When the backend errors, times out or returns
                an empty response, after retries for transient reasons.
        """
        text, retries = await self._generate_with_retry(SUMMARY_PROMPT, chunk.text, f"chunk {chunk.index}")
        return PartialSummary(index=chunk.index, text=text, retries=retries)

    async def summarize_all(
        self, chunks: Sequence[Chunk], on_chunk_done: Optional[ChunkCallback] = None
    ) -> List[PartialSummary]:
        """
        Summarizes every chunk with at most ``max_concurrency`` calls in flight.

        The first failure cancels the remaining calls and is raised; no
        partial result is returned.
        """
        if not chunks:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _one(chunk: Chunk) -> PartialSummary:
            async with semaphore:
                return await self.summarize(chunk)

        tasks = [asyncio.ensure_future(_one(chunk)) for chunk in chunks]
        results = {}
        try:
            for next_done in asyncio.as_completed(tasks):
                partial = await next_done
                results[partial.index] = partial
                if on_chunk_done is not None:
                    on_chunk_done(partial)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Collects every outcome so sibling failures are not reported as unretrieved.
            await asyncio.gather(*tasks, return_exceptions=True)

        return [results[chunk.index] for chunk in chunks]

    async def merge(self, partials: Sequence[PartialSummary], source_file_name: str) -> FinalSummary:
        """
        Combines partial summaries, in index order, into one FinalSummary.

        A single partial is used as is. Several partials are merged by the
        backend in one call when their concatenation fits max_chunk_size,
        otherwise the concatenation is planned, summarized and merged again.

        Raises:
            GenerationFailed: MERGE_LIMIT when max_merge_rounds is exceeded or
                a round fails to shrink the text.
        """
        if not partials:
            raise GenerationFailed(GenerationReason.INVALID_RESPONSE, "nothing to merge")

        ordered = sorted(partials, key=lambda p: p.index)
        chunk_count = len(ordered)
        rounds = 0
        previous_size = None

        while len(ordered) > 1:
            combined = "\n\n".join(p.text for p in ordered)
            if previous_size is not None and len(combined) >= previous_size:
                raise GenerationFailed(
                    GenerationReason.MERGE_LIMIT,
                    f"merge round {rounds} did not shrink the summaries ({len(combined)} >= {previous_size} chars)",
                )
            if rounds >= self.config.max_merge_rounds:
                raise GenerationFailed(
                    GenerationReason.MERGE_LIMIT,
                    f"summaries still too large after {rounds} merge rounds ({len(combined)} chars)",
                )
            rounds += 1
            previous_size = len(combined)

            if len(combined) <= self.config.max_chunk_size:
                text, _ = await self._generate_with_retry(MERGE_PROMPT, combined, f"merge round {rounds}")
                ordered = [PartialSummary(index=0, text=text)]
            else:
                chunks = plan(combined, self.config.max_chunk_size, self.strategy)
                logger.debug("Merge round %d re-planned %d chars into %d chunks", rounds, len(combined), len(chunks))
                ordered = await self.summarize_all(chunks)

        return FinalSummary(
            text=ordered[0].text,
            source_file_name=source_file_name,
            chunk_count=chunk_count,
            merge_rounds=rounds,
        )
