"""Answer Synthesizer

Multiplexes the retrieved source list and the streamed completion onto one
outbound frame sequence::

    {"sources": [...]}                      once, first
    {"answer": "<full so far>", "done": false}   per delta
    {"answer": "<full answer>", "done": true}    once, last

A provider failure ends the sequence with ``{"error": ..., "done": true}``
instead of the final answer frame.
"""

import asyncio
import json
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Sequence

import structlog

from tenant_rag.core.exceptions import RAGServiceException
from tenant_rag.core.metrics import COMPLETION_STREAMS
from tenant_rag.rag.models import Source
from tenant_rag.services.llm_service import CompletionProvider

logger = structlog.get_logger(__name__)

GENERIC_STREAM_ERROR = "The answer could not be completed"


class StreamState(str, Enum):
    """Per-query stream states."""
    SOURCES_SENT = "sources_sent"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


def format_sse(payload: Dict[str, Any]) -> str:
    """Encode one frame as a server-sent event."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


def sources_frame(sources: Sequence[Source]) -> Dict[str, Any]:
    return {"sources": [source.model_dump() for source in sources]}


def error_frame(message: str) -> Dict[str, Any]:
    return {"error": message, "done": True}


class AnswerSynthesizer:
    """Streams a completion as cumulative answer frames."""

    def __init__(self, provider: CompletionProvider):
        self.provider = provider

    async def frames(self, sources: List[Source], prompt: str) -> AsyncIterator[Dict[str, Any]]:
        """Yield the frame sequence for one query.

        Cancelling the consumer closes the provider stream.
        """
        state = StreamState.SOURCES_SENT
        yield sources_frame(sources)

        answer = ""
        deltas = self.provider.stream(prompt)
        try:
            async for delta in deltas:
                if not delta:
                    continue
                state = StreamState.STREAMING
                answer += delta
                yield {"answer": answer, "done": False}

        except (asyncio.CancelledError, GeneratorExit):
            COMPLETION_STREAMS.labels(status="cancelled").inc()
            logger.info("Answer stream cancelled by client", state=state.value, answer_chars=len(answer))
            raise

        except RAGServiceException as e:
            COMPLETION_STREAMS.labels(status="error").inc()
            logger.error("Completion stream failed", state=state.value, error=str(e))
            yield error_frame(e.user_message)
            return

        except Exception as e:
            COMPLETION_STREAMS.labels(status="error").inc()
            logger.error("Completion stream failed", state=state.value, error=str(e), exc_info=True)
            yield error_frame(GENERIC_STREAM_ERROR)
            return

        finally:
            await deltas.aclose()

        state = StreamState.DONE
        COMPLETION_STREAMS.labels(status="done").inc()
        logger.debug("Answer stream complete", state=state.value, answer_chars=len(answer))
        yield {"answer": answer, "done": True}
