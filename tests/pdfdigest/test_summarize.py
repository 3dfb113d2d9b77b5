import asyncio
import gc

import pytest

from pdfdigest.chunk import plan
from pdfdigest.config import PipelineConfig, RetryPolicy
from pdfdigest.errors import GenerationFailed, GenerationReason
from pdfdigest.llm_adapter import LLMAdapter
from pdfdigest.models import Chunk, PartialSummary
from pdfdigest.summarize import MERGE_PROMPT, SUMMARY_PROMPT, SummaryGenerator

FAST_RETRY = RetryPolicy(max_retries=2, backoff_seconds=0.0)


def _config(**kwargs):
    kwargs.setdefault("retry", FAST_RETRY)
    return PipelineConfig(**kwargs)


class EchoLLM(LLMAdapter):
    """Deterministic mock backend: summaries are tagged copies of the input."""

    def __init__(self):
        self.calls = []

    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        self.calls.append((prompt, source_text))
        if prompt == MERGE_PROMPT:
            return source_text
        return f"S[{source_text[:10]}]"


class FlakyLLM(LLMAdapter):
    """Fails with the given errors, then succeeds."""

    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "Recovered summary"


class ShrinkingLLM(LLMAdapter):
    """Returns half as many characters as it is given."""

    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        return "x" * max(1, len(source_text) // 2)


class StaggeredLLM(LLMAdapter):
    """Async backend where later chunks finish first."""

    def __init__(self):
        self.finished = []

    async def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        if prompt == MERGE_PROMPT:
            return source_text
        index = int(source_text.strip()[-1])
        await asyncio.sleep(0.01 * (5 - index))
        self.finished.append(index)
        return f"part{index}"


def _chunk(index, text="Some chunk text."):
    return Chunk(index=index, text=text, start=0, end=len(text))


@pytest.mark.asyncio
async def test_summarize_single_chunk():
    llm = EchoLLM()
    generator = SummaryGenerator(llm, _config())

    partial = await generator.summarize(_chunk(3, "Lead chunk text here."))

    assert partial == PartialSummary(index=3, text="S[Lead chunk]", retries=0)
    assert llm.calls[0][0] == SUMMARY_PROMPT


@pytest.mark.asyncio
async def test_summarize_retries_transient_failures():
    llm = FlakyLLM(
        [
            GenerationFailed(GenerationReason.TIMEOUT, "slow"),
            GenerationFailed(GenerationReason.RATE_LIMITED, "429"),
        ]
    )
    generator = SummaryGenerator(llm, _config())

    partial = await generator.summarize(_chunk(0))

    assert partial.text == "Recovered summary"
    assert partial.retries == 2
    assert generator.retry_count == 2
    assert llm.calls == 3


@pytest.mark.asyncio
async def test_summarize_gives_up_after_retry_budget():
    llm = FlakyLLM([GenerationFailed(GenerationReason.SERVER_ERROR, "500")] * 3)
    generator = SummaryGenerator(llm, _config())

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.summarize(_chunk(0))
    assert excinfo.value.reason is GenerationReason.SERVER_ERROR
    assert llm.calls == 3


@pytest.mark.asyncio
async def test_summarize_auth_failure_not_retried():
    llm = FlakyLLM([GenerationFailed(GenerationReason.AUTH_FAILURE, "401")])
    generator = SummaryGenerator(llm, _config())

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.summarize(_chunk(0))
    assert excinfo.value.reason is GenerationReason.AUTH_FAILURE
    assert llm.calls == 1


@pytest.mark.asyncio
async def test_summarize_empty_response_is_invalid_without_retry():
    class EmptyLLM(LLMAdapter):
        calls = 0

        def generate(self, prompt, source_text, max_tokens=1024, temperature=0.0):
            EmptyLLM.calls += 1
            return "   "

    generator = SummaryGenerator(EmptyLLM(), _config())

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.summarize(_chunk(0))
    assert excinfo.value.reason is GenerationReason.INVALID_RESPONSE
    assert EmptyLLM.calls == 1
    assert generator.retry_count == 0


@pytest.mark.asyncio
async def test_summarize_unexpected_backend_error_is_wrapped():
    llm = FlakyLLM([KeyError("choices")])
    generator = SummaryGenerator(llm, _config())

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.summarize(_chunk(0))
    assert excinfo.value.reason is GenerationReason.INVALID_RESPONSE
    assert isinstance(excinfo.value.__cause__, KeyError)


@pytest.mark.asyncio
async def test_summarize_timeout():
    class SlowLLM(LLMAdapter):
        async def generate(self, prompt, source_text, max_tokens=1024, temperature=0.0):
            await asyncio.sleep(1)
            return "too late"

    generator = SummaryGenerator(SlowLLM(), _config(timeout_seconds=0.01, retry=RetryPolicy(max_retries=0)))

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.summarize(_chunk(0))
    assert excinfo.value.reason is GenerationReason.TIMEOUT


@pytest.mark.asyncio
async def test_summarize_all_orders_by_index_not_completion():
    llm = StaggeredLLM()
    generator = SummaryGenerator(llm, _config(max_concurrency=5))
    chunks = [_chunk(i, f"chunk {i}") for i in range(5)]
    done = []

    partials = await generator.summarize_all(chunks, on_chunk_done=lambda p: done.append(p.index))

    assert llm.finished == [4, 3, 2, 1, 0]
    assert done == [4, 3, 2, 1, 0]
    assert [p.index for p in partials] == [0, 1, 2, 3, 4]

    summary = await generator.merge(partials, "doc.pdf")
    assert summary.text == "part0\n\npart1\n\npart2\n\npart3\n\npart4"
    assert summary.chunk_count == 5


@pytest.mark.asyncio
async def test_summarize_all_fails_fast_and_cancels_others():
    cancelled = []

    class OneBadChunk(LLMAdapter):
        async def generate(self, prompt, source_text, max_tokens=1024, temperature=0.0):
            if source_text == "bad":
                raise GenerationFailed(GenerationReason.AUTH_FAILURE, "denied")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(source_text)
                raise
            return "never"

    generator = SummaryGenerator(OneBadChunk(), _config(max_concurrency=3))
    chunks = [_chunk(0, "slow a"), _chunk(1, "bad"), _chunk(2, "slow b")]

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.summarize_all(chunks)
    assert excinfo.value.reason is GenerationReason.AUTH_FAILURE
    assert sorted(cancelled) == ["slow a", "slow b"]


@pytest.mark.asyncio
async def test_summarize_all_retrieves_every_sibling_failure():
    class AllBad(LLMAdapter):
        async def generate(self, prompt, source_text, max_tokens=1024, temperature=0.0):
            raise GenerationFailed(GenerationReason.AUTH_FAILURE, f"denied {source_text}")

    loop = asyncio.get_running_loop()
    reported = []
    loop.set_exception_handler(lambda _loop, context: reported.append(context.get("message", "")))
    generator = SummaryGenerator(AllBad(), _config(max_concurrency=3))
    failed = False
    try:
        try:
            await generator.summarize_all([_chunk(0, "a"), _chunk(1, "b"), _chunk(2, "c")])
        except GenerationFailed:
            failed = True
        await asyncio.sleep(0)
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert failed
    assert not [message for message in reported if "never retrieved" in message]


@pytest.mark.asyncio
async def test_merge_single_partial_is_used_as_is():
    llm = EchoLLM()
    generator = SummaryGenerator(llm, _config())

    summary = await generator.merge([PartialSummary(index=0, text="Only part")], "report.pdf")

    assert summary.text == "Only part"
    assert summary.source_file_name == "report.pdf"
    assert summary.merge_rounds == 0
    assert llm.calls == []


@pytest.mark.asyncio
async def test_merge_depends_on_index_order():
    generator = SummaryGenerator(EchoLLM(), _config())
    a = PartialSummary(index=0, text="alpha")
    b = PartialSummary(index=1, text="beta")

    forward = await generator.merge([b, a], "x.pdf")
    swapped = await generator.merge([PartialSummary(index=0, text="beta"), PartialSummary(index=1, text="alpha")], "x.pdf")

    assert forward.text == "alpha\n\nbeta"
    assert swapped.text == "beta\n\nalpha"


@pytest.mark.asyncio
async def test_merge_recurses_when_combined_too_large():
    generator = SummaryGenerator(ShrinkingLLM(), _config(max_chunk_size=40))
    partials = [PartialSummary(index=i, text=f"Partial number {i} has some text.") for i in range(4)]

    summary = await generator.merge(partials, "big.pdf")

    assert summary.merge_rounds >= 2
    assert summary.chunk_count == 4
    assert 0 < len(summary.text) <= 40


@pytest.mark.asyncio
async def test_merge_stops_when_summaries_do_not_shrink():
    generator = SummaryGenerator(EchoLLM(), _config(max_chunk_size=10))
    partials = [PartialSummary(index=i, text="x" * 10) for i in range(3)]

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.merge(partials, "stuck.pdf")
    assert excinfo.value.reason is GenerationReason.MERGE_LIMIT


@pytest.mark.asyncio
async def test_merge_round_limit():
    generator = SummaryGenerator(ShrinkingLLM(), _config(max_chunk_size=20, max_merge_rounds=1))
    partials = [PartialSummary(index=i, text="y" * 30) for i in range(4)]

    with pytest.raises(GenerationFailed) as excinfo:
        await generator.merge(partials, "deep.pdf")
    assert excinfo.value.reason is GenerationReason.MERGE_LIMIT
    assert "after 1 merge rounds" in excinfo.value.cause


@pytest.mark.asyncio
async def test_summarize_and_merge_whole_text():
    text = "Intro paragraph. " * 5 + "\n\n" + "Body paragraph. " * 5
    generator = SummaryGenerator(EchoLLM(), _config(max_chunk_size=60))
    chunks = plan(text, 60)

    partials = await generator.summarize_all(chunks)
    summary = await generator.merge(partials, "t.pdf")

    assert len(partials) == len(chunks)
    assert summary.text.startswith("S[Intro para]")
