"""Character-window chunking with heuristic token sizing."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

HEURISTIC_CHARS_PER_TOKEN = 4
DEFAULT_CHUNK_TOKENS = 400
DEFAULT_CHUNK_OVERLAP_TOKENS = 80
MIN_CHUNK_CHARS = 32


@dataclass(frozen=True, slots=True)
class Chunk:
    index: int
    start_line: int
    end_line: int
    text: str
    start_offset: int = 0


def normalize_line_endings(content: str) -> str:
    """Convert CRLF and lone CR line endings to LF."""
    return content.replace("\r\n", "\n").replace("\r", "\n")


def chunk_text(
    content: str,
    chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
    overlap_tokens: int = DEFAULT_CHUNK_OVERLAP_TOKENS,
) -> list[Chunk]:
    """Split *content* into overlapping character windows.

    Sizes are given in heuristic tokens (4 characters each). Windows whose
    text is blank are dropped without leaving an index gap; every emitted
    chunk records the 1-based line range it covers in the normalized text.
    """

    normalized = normalize_line_endings(content)
    if not normalized:
        return []

    size = max(MIN_CHUNK_CHARS, int(chunk_tokens) * HEURISTIC_CHARS_PER_TOKEN)
    overlap_chars = max(0, int(overlap_tokens) * HEURISTIC_CHARS_PER_TOKEN)
    overlap = max(0, min(overlap_chars, size - 1))
    line_starts = _line_start_offsets(normalized)
    length = len(normalized)

    chunks: list[Chunk] = []
    start = 0
    while start < length:
        end = min(length, start + size)
        window = normalized[start:end]
        if window.strip():
            chunks.append(
                Chunk(
                    index=len(chunks),
                    start_line=_line_for_offset(line_starts, start),
                    end_line=_line_for_offset(line_starts, max(start, end - 1)),
                    text=window,
                    start_offset=start,
                )
            )
        if end == length:
            break
        start = max(end - overlap, start + 1)
    return chunks


def _line_start_offsets(content: str) -> list[int]:
    starts = [0]
    for offset, char in enumerate(content):
        if char == "\n":
            starts.append(offset + 1)
    return starts


def _line_for_offset(line_starts: list[int], offset: int) -> int:
    # greatest line start <= offset, as a 1-based line number
    return max(1, bisect_right(line_starts, offset))
