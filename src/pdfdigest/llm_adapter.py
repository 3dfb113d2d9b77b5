import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import requests

from pdfdigest.config import DEFAULT_API_URL, DEFAULT_MODEL
from pdfdigest.errors import GenerationFailed, GenerationReason

logger = logging.getLogger("pdfdigest.llm_adapter")


class LLMAdapter(ABC):
    """
    Abstract interface for the summarization backend.

    ``generate`` may be a plain method or a coroutine; the SummaryGenerator
    runs plain methods in a worker thread and awaits coroutines directly.
    Implementations raise GenerationFailed with a classified reason; anything
    else is treated as an invalid response.

    Warning: Do not send sensitive data to external cloud models unless permitted.
    """

    @abstractmethod
    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        """
        Generates text for ``source_text`` following the ``prompt`` instruction.

        Args:
            prompt (str): Fixed instruction (what to do with the text).
            source_text (str): Document text to work on.
            max_tokens (int): Maximum tokens to generate.
            temperature (float): Sampling temperature (0.0 = deterministic).

        Returns:
            str: Generated text.
        """
        pass


class CloudAdapter(LLMAdapter):
    """
    Adapter for cloud LLMs (OpenAI-compatible REST API).

    Performs a single request per call and classifies failures; retries are
    the caller's decision.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        model_name: str = DEFAULT_MODEL,
        timeout_seconds: float = 60.0,
    ):
        self.api_url = api_url
        self.model_name = model_name
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}

        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": source_text},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            response = requests.post(self.api_url, json=payload, headers=headers, timeout=self.timeout_seconds)
        except requests.exceptions.Timeout as e:
            raise GenerationFailed(GenerationReason.TIMEOUT, f"request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise GenerationFailed(GenerationReason.UNAVAILABLE, f"request failed: {e}") from e

        status = response.status_code
        if status == 429:
            raise GenerationFailed(GenerationReason.RATE_LIMITED, "backend rate limit reached (HTTP 429)")
        if status in (401, 403):
            raise GenerationFailed(GenerationReason.AUTH_FAILURE, f"backend rejected credentials (HTTP {status})")
        if 500 <= status < 600:
            raise GenerationFailed(GenerationReason.SERVER_ERROR, f"backend server error (HTTP {status})")
        if status != 200:
            raise GenerationFailed(GenerationReason.INVALID_REQUEST, f"backend refused request (HTTP {status})")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GenerationFailed(GenerationReason.INVALID_RESPONSE, f"malformed completion payload: {e}") from e

        if not isinstance(content, str) or not content.strip():
            raise GenerationFailed(GenerationReason.INVALID_RESPONSE, "backend returned an empty completion")

        return content.strip()


class LocalTransformersAdapter(LLMAdapter):
    """
    Adapter for local models using the HuggingFace transformers library.
    """

    def __init__(self, model_name: str = "facebook/bart-large-cnn", device: str = "cpu"):
        # Lazy import to avoid heavy dependency if not used
        from transformers import pipeline

        self.pipeline = pipeline("summarization", model=model_name, device=device)

    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        # Seq2seq summarizers take no instruction; the prompt is dropped.
        try:
            results = self.pipeline(
                source_text,
                max_new_tokens=max_tokens,
                do_sample=(temperature > 0),
                truncation=True,
            )
        except Exception as e:
            raise GenerationFailed(GenerationReason.INVALID_REQUEST, f"local model failed: {e}") from e

        if not results:
            raise GenerationFailed(GenerationReason.INVALID_RESPONSE, "local model returned no output")
        return results[0].get("summary_text", "").strip()


class ExtractiveAdapter(LLMAdapter):
    """
    Extractive fallback backend (no LLM required).

    Picks the highest scoring sentences and returns them in document order.
    """

    def __init__(self, target_chars: int = 2000):
        self.target_chars = target_chars

    def generate(self, prompt: str, source_text: str, max_tokens: int = 1024, temperature: float = 0.0) -> str:
        sentences = [s for s in re.split(r"(?<=[.!?])\s+", source_text.strip()) if s]
        if not sentences:
            return ""

        budget = min(self.target_chars, max_tokens * 4)  # chars approximation

        # Prefer longer sentences and earlier ones
        scored = []
        for i, sent in enumerate(sentences):
            score = len(sent.split()) * (1 - i / (len(sentences) + 1) * 0.3)
            scored.append((score, i))
        scored.sort(key=lambda item: (-item[0], item[1]))

        chosen = []
        used = 0
        for _, i in scored:
            if chosen and used + len(sentences[i]) > budget:
                break
            chosen.append(i)
            used += len(sentences[i])

        summary = " ".join(sentences[i] for i in sorted(chosen))
        if len(summary) > budget:
            # Unpunctuated text (lists, tables) arrives as one long sentence.
            cut = max(summary.rfind(" ", 0, budget + 1), summary.rfind("\n", 0, budget + 1))
            summary = summary[: cut if cut > 0 else budget].rstrip()
        return summary


def build_adapter(kind: str, config, model: Optional[str] = None) -> LLMAdapter:
    """
    Builds the backend adapter named on the command line.

    Args:
        kind: "cloud", "local" or "extractive".
        config: PipelineConfig supplying endpoint, credentials and timeout.
        model: Optional model override.

    Returns:
        LLMAdapter: The adapter. "cloud" without an API key falls back to the
        extractive adapter with a warning.
    """
    if kind == "cloud":
        if not config.api_key:
            logger.info("CLOUD_LLM_API_KEY not set; falling back to the extractive backend")
            return ExtractiveAdapter()
        return CloudAdapter(
            api_key=config.api_key,
            api_url=config.api_url,
            model_name=model or config.model_name,
            timeout_seconds=config.timeout_seconds,
        )
    if kind == "local":
        return LocalTransformersAdapter(model_name=model or "facebook/bart-large-cnn")
    if kind == "extractive":
        return ExtractiveAdapter()
    raise ValueError(f"Unknown backend: {kind}")
