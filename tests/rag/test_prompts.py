"""Tests for prompt assembly."""

from tenant_rag.rag.models import ConversationMessage, MessageRole, Source
from tenant_rag.rag.prompts import NO_CONTEXT, SOURCE_DIVIDER, PromptAssembler, render_history, render_sources


def make_sources():
    return [
        Source(id=1, source="returns.md", chunk_index=0, content="Refunds within 30 days."),
        Source(id=2, source="shipping.md", chunk_index=2, content="Free shipping over $50."),
    ]


def make_history(turns):
    return [
        ConversationMessage(role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT, content=f"turn {i}")
        for i in range(turns)
    ]


def test_sources_are_labelled_in_rank_order():
    rendered = render_sources(make_sources())

    first, second = rendered.split(SOURCE_DIVIDER)
    assert first == "SOURCE 1 (returns.md#0):\nRefunds within 30 days."
    assert second == "SOURCE 2 (shipping.md#2):\nFree shipping over $50."


def test_no_sources_placeholder():
    assert render_sources([]) == NO_CONTEXT


def test_history_keeps_trailing_window():
    rendered = render_history(make_history(10), window=4)

    assert rendered.splitlines() == ["User: turn 6", "Assistant: turn 7", "User: turn 8", "Assistant: turn 9"]
    assert render_history(make_history(3), window=0) == ""


def test_assemble_includes_context_history_and_question():
    prompt = PromptAssembler(history_window=2).assemble(make_sources(), make_history(3), "What is the refund window?")

    assert "SOURCE 1 (returns.md#0)" in prompt
    assert "CONVERSATION SO FAR:" in prompt
    assert "turn 0" not in prompt
    assert "Assistant: turn 1" in prompt
    assert prompt.index("CONTEXT:") < prompt.index("CONVERSATION SO FAR:") < prompt.index("QUESTION:")
    assert prompt.rstrip().endswith("ANSWER:")
    assert "QUESTION: What is the refund window?" in prompt


def test_assemble_without_history_or_sources():
    prompt = PromptAssembler().assemble([], [], "Hello?")

    assert "CONVERSATION SO FAR:" not in prompt
    assert NO_CONTEXT in prompt
    assert "(SOURCE 1)" in prompt
    assert "general inference" in prompt
