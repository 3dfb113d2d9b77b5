import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from pdfdigest.models import Chunk

_SENTENCE_END = re.compile(r"[.!?][\"')\]]*\s+")


class BoundaryStrategy(ABC):
    """
    Decides where a chunk should end.

    Implementations must be deterministic and side-effect free.
    """

    @abstractmethod
    def find_break(self, text: str, start: int, limit: int) -> Optional[Tuple[int, str]]:
        """
        Finds the preferred end offset for a chunk starting at ``start``.

        Args:
            text: The full text being planned.
            start: Offset where the current chunk begins.
            limit: Largest allowed end offset (exclusive).

        Returns:
            (end, kind) with start < end <= limit, or None to request a hard cut.
        """
        pass


class ParagraphSentenceBoundary(BoundaryStrategy):
    """
    Prefers the last paragraph break, then the last sentence end, inside a
    lookback window that ends at the limit.
    """

    def __init__(self, lookback: int = 500):
        if lookback < 0:
            raise ValueError("lookback must be >= 0")
        self.lookback = lookback

    def find_break(self, text: str, start: int, limit: int) -> Optional[Tuple[int, str]]:
        window_start = max(start + 1, limit - self.lookback)
        if window_start >= limit:
            return None

        para = text.rfind("\n\n", window_start, limit)
        if para != -1:
            # Swallow the whole run of newlines when it fits.
            end = para + 2
            while end < limit and text[end] == "\n":
                end += 1
            return end, "paragraph"

        last = None
        for match in _SENTENCE_END.finditer(text, window_start, limit):
            last = match
        if last is not None:
            return last.end(), "sentence"

        return None


class HardCutBoundary(BoundaryStrategy):
    """Always cuts exactly at the limit."""

    def find_break(self, text: str, start: int, limit: int) -> Optional[Tuple[int, str]]:
        return None


def split_into_paragraphs(text: str) -> List[str]:
    """
    Split text into paragraphs while preserving structure.

    Args:
        text: The input text to split.

    Returns:
        List of paragraph strings.
    """
    if not text:
        return []

    return [para.strip() for para in re.split(r"\n{2,}", text) if para.strip()]


def plan(text: str, max_chunk_size: int, strategy: Optional[BoundaryStrategy] = None) -> List[Chunk]:
    """
    Splits text into contiguous chunks of at most ``max_chunk_size`` characters.

    Greedily fills each chunk up to the limit and asks the strategy for a
    natural break close to it, cutting hard at the limit when none is found.
    Concatenating the chunk texts in index order gives back ``text`` exactly.

    Args:
        text: Extracted document text.
        max_chunk_size: Backend input ceiling in characters, >= 1.
        strategy: Boundary strategy. Defaults to ParagraphSentenceBoundary().

    Returns:
        Ordered list of non-empty chunks. Empty text yields an empty list.
    """
    if max_chunk_size < 1:
        raise ValueError(f"max_chunk_size must be >= 1, got {max_chunk_size}")

    if strategy is None:
        strategy = ParagraphSentenceBoundary()

    chunks = []
    pos = 0
    total = len(text)

    while pos < total:
        limit = pos + max_chunk_size
        if limit >= total:
            end, kind = total, "end"
        else:
            found = strategy.find_break(text, pos, limit)
            if found is not None and pos < found[0] <= limit:
                end, kind = found
            else:
                end, kind = limit, "hard"

        chunks.append(Chunk(index=len(chunks), text=text[pos:end], start=pos, end=end, boundary=kind))
        pos = end

    return chunks
