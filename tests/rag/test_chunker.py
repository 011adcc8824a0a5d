"""Tests for paragraph-aligned chunking."""

import pytest

from tenant_rag.rag.chunker import PARAGRAPH_SEPARATOR, chunk_text, split_paragraphs


def test_short_document_is_one_chunk():
    """Two short paragraphs fit in a single chunk."""
    text = "Refund window is 30 days.\n\nShipping is free."
    assert len(text) < 50

    chunks = chunk_text(text, 1000)

    assert chunks == ["Refund window is 30 days." + PARAGRAPH_SEPARATOR + "Shipping is free."]


def test_chunks_respect_max_chars():
    paragraphs = [f"Paragraph {i} " + "x" * 40 for i in range(20)]
    text = "\n\n".join(paragraphs)

    chunks = chunk_text(text, 120)

    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk) <= 120


def test_oversized_paragraph_is_kept_whole():
    long_paragraph = "y" * 300
    text = f"short one\n\n{long_paragraph}\n\nshort two"

    chunks = chunk_text(text, 100)

    assert chunks == ["short one", long_paragraph, "short two"]


def test_chunking_is_deterministic():
    text = "\n\n".join(f"Section {i}: " + "words " * 15 for i in range(10))

    assert chunk_text(text, 200) == chunk_text(text, 200)


def test_paragraph_order_is_preserved():
    text = "alpha\n\nbeta\n\ngamma\n\ndelta"

    chunks = chunk_text(text, 12)

    joined = PARAGRAPH_SEPARATOR.join(chunks)
    assert joined.index("alpha") < joined.index("beta") < joined.index("gamma") < joined.index("delta")


def test_blank_paragraphs_are_dropped():
    assert split_paragraphs("one\n\n   \n\n\ntwo\r\n\r\nthree") == ["one", "two", "three"]


def test_empty_text_has_no_chunks():
    assert chunk_text("", 100) == []
    assert chunk_text("\n\n  \n", 100) == []


def test_invalid_max_chars():
    with pytest.raises(ValueError):
        chunk_text("text", 0)
