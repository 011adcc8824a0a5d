"""Tests for text extraction and chunk metadata."""

import json
from datetime import datetime, timezone

import pytest

from tenant_rag.rag.document_processor import build_chunk_metadata, extract_text, file_extension, strip_html
from tenant_rag.rag.models import DocumentMetadata


@pytest.mark.parametrize(
    "name, extension",
    [("policy.TXT", "txt"), ("notes.md", "md"), ("archive.tar.gz", "gz"), ("README", "")],
)
def test_file_extension(name, extension):
    assert file_extension(name) == extension


@pytest.mark.parametrize("name", ["a.txt", "a.md", "a.markdown", "a.csv"])
def test_plain_text_passes_through(name):
    content = "line one\n\nline two,with,commas"

    assert extract_text(content.encode("utf-8"), name) == content


def test_json_is_pretty_printed():
    raw = json.dumps({"policy": "returns", "days": 30}).encode("utf-8")

    text = extract_text(raw, "policy.json")

    assert text == json.dumps({"policy": "returns", "days": 30}, indent=2)


def test_invalid_json_falls_back_to_raw_text():
    assert extract_text(b"{not json", "broken.json") == "{not json"


def test_html_tags_are_stripped():
    markup = "<html><body><h1>Returns</h1>\n<p>Within   30 days.</p></body></html>"

    assert extract_text(markup.encode("utf-8"), "page.html") == "Returns Within 30 days."
    assert strip_html("<br/>") == ""


def test_unknown_extension_decodes_with_replacement():
    text = extract_text(b"caf\xc3\xa9 \xff", "blob.bin")

    assert text.startswith("café")
    assert "�" in text


def test_build_chunk_metadata_merges_caller_fields():
    base = DocumentMetadata(category="policies", role_access=["admin"], version="2")
    ingested_at = datetime(2024, 5, 1, tzinfo=timezone.utc)

    metadata = build_chunk_metadata(base, "returns.md", "acme/returns.md", 1, 3, ingested_at)

    assert metadata == {
        "category": "policies",
        "roleAccess": ["admin"],
        "version": "2",
        "fileName": "returns.md",
        "filePath": "acme/returns.md",
        "chunkIndex": 1,
        "totalChunks": 3,
        "ingestedAt": "2024-05-01T00:00:00+00:00",
    }


def test_build_chunk_metadata_without_base():
    metadata = build_chunk_metadata(None, "a.txt", "acme/a.txt", 0, 1)

    assert metadata["fileName"] == "a.txt"
    assert "ingestedAt" in metadata
