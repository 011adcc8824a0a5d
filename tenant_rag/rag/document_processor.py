"""Document Processor for the ingestion pipeline

Turns downloaded file bytes into plain text ready for chunking and builds
the per-chunk metadata recorded alongside each stored row.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from tenant_rag.rag.models import DocumentMetadata

logger = structlog.get_logger(__name__)

PASSTHROUGH_EXTENSIONS = {"txt", "md", "markdown", "csv"}
HTML_EXTENSIONS = {"html", "htm"}

_HTML_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")


def file_extension(file_name: str) -> str:
    """Lower-cased extension without the dot, or an empty string."""
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def strip_html(markup: str) -> str:
    """Replace tags with spaces and collapse whitespace."""
    return _WHITESPACE.sub(" ", _HTML_TAG.sub(" ", markup)).strip()


def extract_text(content: bytes, file_name: str) -> str:
    """Extract text from a downloaded file.

    Plain text, markdown and CSV pass through; JSON is pretty-printed with a
    two-space indent; HTML has its tags stripped. Anything else is decoded as
    UTF-8 with replacement characters.

    Args:
        content: Raw file bytes
        file_name: Object name, used for its extension

    Returns:
        Extracted text (possibly empty)
    """
    text = content.decode("utf-8", errors="replace")
    extension = file_extension(file_name)

    if extension in PASSTHROUGH_EXTENSIONS:
        return text

    if extension == "json":
        try:
            return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
        except ValueError:
            logger.debug("Invalid JSON, using raw text", file_name=file_name)
            return text

    if extension in HTML_EXTENSIONS:
        return strip_html(text)

    return text


def build_chunk_metadata(
    base: Optional[DocumentMetadata],
    file_name: str,
    file_path: str,
    chunk_index: int,
    total_chunks: int,
    ingested_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Merge caller metadata with the file's provenance fields."""
    payload = base.to_payload() if base else {}
    payload.update(
        {
            "fileName": file_name,
            "filePath": file_path,
            "chunkIndex": chunk_index,
            "totalChunks": total_chunks,
            "ingestedAt": (ingested_at or datetime.now(timezone.utc)).isoformat(),
        }
    )
    return payload
