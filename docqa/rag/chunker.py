"""Fixed-size character windows over document text.

Windows are measured in characters, not tokens, so chunk boundaries do not
depend on which embedding model is configured.
"""
from dataclasses import dataclass, replace
from typing import List, Optional

import structlog

from docqa import config
from docqa.errors import InvalidConfiguration

logger = structlog.get_logger()


@dataclass
class TextChunk:
    """One window of a document, with its offsets in the source text."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


def _validate(size: int, overlap: int) -> None:
    if size <= 0:
        raise InvalidConfiguration(f"Chunk size must be positive, got {size}")
    if overlap < 0:
        raise InvalidConfiguration(f"Overlap must not be negative, got {overlap}")
    if overlap >= size:
        raise InvalidConfiguration(
            f"Overlap ({overlap}) must be less than chunk size ({size})"
        )


def _windows(text: str, size: int, overlap: int) -> List[TextChunk]:
    chunks = []
    text_length = len(text)
    start = 0

    while start < text_length:
        end = min(start + size, text_length)
        chunks.append(
            TextChunk(
                content=text[start:end],
                char_start=start,
                char_end=end,
                chunk_index=len(chunks),
            )
        )
        if end == text_length:
            break
        start = end - overlap

    return chunks


def chunk(text: str, size: int, overlap: int) -> List[str]:
    """Split text into overlapping windows of at most `size` characters.

    The last `overlap` characters of each chunk are repeated at the start of
    the next one. The final chunk always ends at len(text).

    Raises:
        InvalidConfiguration: If size <= 0, overlap < 0 or overlap >= size
    """
    _validate(size, overlap)
    return [c.content for c in _windows(text, size, overlap)]


class TextChunker:
    """Chunker bound to a configured size and overlap."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ):
        """
        Args:
            chunk_size: Window length in characters, CHUNK_SIZE when omitted
            chunk_overlap: Characters shared by neighbouring windows, CHUNK_OVERLAP when omitted

        Raises:
            InvalidConfiguration: If the window would not advance
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        _validate(self.chunk_size, self.chunk_overlap)

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Chunks of `text` numbered from 0 in source order; [] for empty text."""
        if not text:
            return []

        chunks = _windows(text, self.chunk_size, self.chunk_overlap)

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
            last_chunk_length=len(chunks[-1].content),
        )

        return chunks


def drop_short_chunks(chunks: List[TextChunk], min_length: int) -> List[TextChunk]:
    """Drop chunks whose stripped text is shorter than min_length.

    Survivors are renumbered so chunk indices stay contiguous and in source
    order. Chunk content itself is left untouched.
    """
    if min_length <= 0:
        return list(chunks)

    kept = [c for c in chunks if len(c.content.strip()) >= min_length]

    if len(kept) != len(chunks):
        logger.debug(
            "short_chunks_dropped",
            dropped=len(chunks) - len(kept),
            min_length=min_length,
        )

    return [replace(c, chunk_index=i) for i, c in enumerate(kept)]
