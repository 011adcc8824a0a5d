"""Paragraph-aligned text chunking."""

import re
from typing import List

PARAGRAPH_SEPARATOR = "\n\n"

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines, dropping empty and whitespace-only paragraphs."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return [p.strip() for p in _PARAGRAPH_BREAK.split(normalized) if p.strip()]


def chunk_text(text: str, max_chars: int) -> List[str]:
    """Greedily pack paragraphs into chunks of at most ``max_chars`` characters.

    A paragraph longer than ``max_chars`` on its own becomes a single oversized
    chunk; paragraphs are never split.

    Args:
        text: Raw document text
        max_chars: Upper bound on chunk length

    Returns:
        Ordered list of chunk strings
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    chunks: List[str] = []
    buffer = ""

    for paragraph in split_paragraphs(text):
        if not buffer:
            buffer = paragraph
        elif len(buffer) + len(PARAGRAPH_SEPARATOR) + len(paragraph) > max_chars:
            chunks.append(buffer)
            buffer = paragraph
        else:
            buffer = buffer + PARAGRAPH_SEPARATOR + paragraph

    if buffer:
        chunks.append(buffer)

    return chunks
