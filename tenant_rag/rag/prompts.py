"""Prompt assembly for answer synthesis."""

from typing import List, Sequence

from tenant_rag.rag.models import ConversationMessage, MessageRole, Source

SOURCE_DIVIDER = "\n\n---\n\n"
NO_CONTEXT = "(no matching documents)"

PROMPT_TEMPLATE = """You are a business assistant answering questions for a company using its own documents.

Answer primarily from the context below. When you use a source, cite it by its label, for example (SOURCE 1).
If the context does not contain the answer, say so. You may then add general guidance, clearly labelled as general inference rather than company information.

CONTEXT:
{context}
{conversation}
QUESTION: {question}

ANSWER:"""

CONVERSATION_BLOCK = """
CONVERSATION SO FAR:
{history}
"""


def render_sources(sources: Sequence[Source]) -> str:
    """Render retrieved chunks as labelled context blocks."""
    if not sources:
        return NO_CONTEXT
    return SOURCE_DIVIDER.join(
        f"SOURCE {n} ({source.source}#{source.chunk_index}):\n{source.content}"
        for n, source in enumerate(sources, start=1)
    )


def render_history(history: Sequence[ConversationMessage], window: int) -> str:
    """Render the trailing ``window`` turns as User/Assistant lines."""
    if window <= 0:
        return ""
    lines: List[str] = []
    for message in list(history)[-window:]:
        speaker = "User" if message.role == MessageRole.USER else "Assistant"
        lines.append(f"{speaker}: {message.content}")
    return "\n".join(lines)


class PromptAssembler:
    """Fills the answer template with context, history and the question."""

    def __init__(self, history_window: int = 6):
        self.history_window = history_window

    def assemble(
        self,
        sources: Sequence[Source],
        history: Sequence[ConversationMessage],
        question: str,
    ) -> str:
        history_text = render_history(history, self.history_window)
        conversation = CONVERSATION_BLOCK.format(history=history_text) if history_text else ""
        return PROMPT_TEMPLATE.format(
            context=render_sources(sources),
            conversation=conversation,
            question=question,
        )
