import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-3.5-turbo"


def _to_int(value: Optional[str], *, default: int, minimum: int) -> int:
    if value is None or not value.strip():
        return default
    return max(minimum, int(value))


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for transient backend failures (timeouts, rate limiting)."""

    max_retries: int = 2
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 8.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_seconds < 0 or self.max_backoff_seconds < 0:
            raise ValueError("backoff values must be >= 0")

    def delay(self, attempt: int) -> float:
        return min(self.backoff_seconds * (2**attempt), self.max_backoff_seconds)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Explicit configuration for one SummaryPipeline.

    Nothing here is read from the environment unless built via from_env().
    """

    api_url: str = DEFAULT_API_URL
    api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL
    timeout_seconds: float = 60.0
    max_chunk_size: int = 12000
    lookback: int = 500
    max_concurrency: int = 1
    max_merge_rounds: int = 3
    max_tokens: int = 1024
    temperature: float = 0.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        if self.max_chunk_size < 1:
            raise ValueError("max_chunk_size must be >= 1")
        if self.lookback < 0:
            raise ValueError("lookback must be >= 0")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.max_merge_rounds < 1:
            raise ValueError("max_merge_rounds must be >= 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            api_url=os.environ.get("PDFDIGEST_API_URL", DEFAULT_API_URL),
            api_key=os.environ.get("CLOUD_LLM_API_KEY") or None,
            model_name=os.environ.get("PDFDIGEST_MODEL", DEFAULT_MODEL),
            timeout_seconds=_to_float(os.environ.get("PDFDIGEST_TIMEOUT_SECONDS"), default=60.0),
            max_chunk_size=_to_int(os.environ.get("PDFDIGEST_MAX_CHUNK_SIZE"), default=12000, minimum=1),
            max_concurrency=_to_int(os.environ.get("PDFDIGEST_MAX_CONCURRENCY"), default=1, minimum=1),
            retry=RetryPolicy(
                max_retries=_to_int(os.environ.get("PDFDIGEST_MAX_RETRIES"), default=2, minimum=0),
            ),
        )
