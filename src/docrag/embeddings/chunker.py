"""
Text chunking for embedding.

Extracted text is split into segments of at most `max_chars` characters,
preferring paragraph, line, sentence and word boundaries before falling
back to a hard cut. No overlap and no whitespace stripping, so the chunks
concatenate back to the original text.
"""

from __future__ import annotations

from typing import List, NamedTuple, Tuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

MAX_CHUNK_CHARS = 33_000

SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


class TextChunk(NamedTuple):
    index: int
    text: str


def _splitter(max_chars: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=max_chars,
        chunk_overlap=0,
        length_function=len,
        separators=SEPARATORS,
        keep_separator="end",
        strip_whitespace=False,
    )


def chunk_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> Tuple[TextChunk, ...]:
    """
    Split `text` into indexed chunks.

    Parameters
    ----------
    text : str
        Extracted document text.

    max_chars : int
        Maximum characters per chunk.

    Returns
    -------
    Tuple[TextChunk, ...]
        Chunks with contiguous zero-based indices. Empty for blank text.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be >= 1")
    if not text.strip():
        return ()

    if len(text) <= max_chars:
        pieces: List[str] = [text]
    else:
        pieces = _splitter(max_chars).split_text(text)

    return tuple(TextChunk(i, piece) for i, piece in enumerate(pieces))
