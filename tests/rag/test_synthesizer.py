"""Tests for the answer synthesizer frame sequence."""

import asyncio
import json

import pytest

from tenant_rag.core.metrics import COMPLETION_STREAMS
from tenant_rag.rag.models import Source
from tenant_rag.rag.synthesizer import GENERIC_STREAM_ERROR, AnswerSynthesizer, format_sse

SOURCES = [Source(id=1, source="returns.md", chunk_index=0, content="Refunds within 30 days.")]


async def collect(synthesizer, sources=SOURCES, prompt="prompt"):
    return [frame async for frame in synthesizer.frames(sources, prompt)]


def counter_value(status):
    return COMPLETION_STREAMS.labels(status=status)._value.get()


@pytest.mark.asyncio
async def test_frame_sequence_is_well_formed(completion_provider):
    frames = await collect(AnswerSynthesizer(completion_provider))

    # Sources first, exactly once
    assert frames[0] == {"sources": [s.model_dump() for s in SOURCES]}
    assert sum(1 for frame in frames if "sources" in frame) == 1

    # Exactly one terminal frame, last
    assert frames[-1] == {"answer": "Hello, world", "done": True}
    assert sum(1 for frame in frames if frame.get("done")) == 1
    assert completion_provider.prompts == ["prompt"]


@pytest.mark.asyncio
async def test_answers_grow_by_prefix(completion_provider):
    frames = await collect(AnswerSynthesizer(completion_provider))

    answers = [frame["answer"] for frame in frames if "answer" in frame]
    assert answers == ["Hello", "Hello, ", "Hello, world", "Hello, world"]
    for previous, current in zip(answers, answers[1:]):
        assert current.startswith(previous)


@pytest.mark.asyncio
async def test_empty_deltas_are_skipped(completion_provider_factory):
    provider = completion_provider_factory(deltas=["", "Yes", "", "."])

    frames = await collect(AnswerSynthesizer(provider))

    assert [frame["answer"] for frame in frames[1:]] == ["Yes", "Yes.", "Yes."]


@pytest.mark.asyncio
async def test_provider_error_ends_with_error_frame(completion_provider_factory):
    provider = completion_provider_factory(deltas=["Partial", " answer", " never"], fail_after=2)
    errors_before = counter_value("error")

    frames = await collect(AnswerSynthesizer(provider))

    assert frames[-1]["done"] is True
    assert "upstream disconnected" in frames[-1]["error"]
    assert not any(frame.get("done") and "answer" in frame for frame in frames)
    assert provider.closed is True
    assert counter_value("error") == errors_before + 1


@pytest.mark.asyncio
async def test_unexpected_error_is_generic(completion_provider):
    async def broken(prompt):
        yield "Hi"
        raise RuntimeError("socket closed")

    completion_provider.stream = broken

    frames = await collect(AnswerSynthesizer(completion_provider))

    assert frames[-1] == {"error": GENERIC_STREAM_ERROR, "done": True}


@pytest.mark.asyncio
async def test_no_sources_still_streams(completion_provider):
    frames = await collect(AnswerSynthesizer(completion_provider), sources=[])

    assert frames[0] == {"sources": []}
    assert frames[-1]["done"] is True


@pytest.mark.asyncio
async def test_closing_consumer_closes_provider_stream(completion_provider_factory):
    provider = completion_provider_factory(deltas=["one", "two", "three"])
    cancelled_before = counter_value("cancelled")
    frames = AnswerSynthesizer(provider).frames(SOURCES, "prompt")

    assert "sources" in await frames.__anext__()
    assert (await frames.__anext__())["answer"] == "one"
    await frames.aclose()

    assert provider.closed is True
    assert counter_value("cancelled") == cancelled_before + 1


@pytest.mark.asyncio
async def test_cancelled_task_closes_provider_stream(completion_provider_factory):
    provider = completion_provider_factory(deltas=["thinking"], hang=True)
    synthesizer = AnswerSynthesizer(provider)
    received = []

    async def consume():
        async for frame in synthesizer.frames(SOURCES, "prompt"):
            received.append(frame)

    task = asyncio.create_task(consume())
    while len(received) < 2:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert provider.closed is True
    assert received[-1] == {"answer": "thinking", "done": False}


def test_format_sse():
    assert format_sse({"answer": "hi", "done": False}) == 'data: {"answer": "hi", "done": false}\n\n'
    assert json.loads(format_sse({"sources": []})[len("data: "):]) == {"sources": []}
