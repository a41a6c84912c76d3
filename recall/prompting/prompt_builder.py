"""Prompt assembly from assembled memory context.

This module only builds prompt strings. Context budgeting and long-term recall
happen in `MemoryService.get_current_context`; model invocation happens in
`recall.llm.service`.

Design constraints:
    - Deterministic construction for identical inputs.
    - Fixed ordering of prompt components.
    - No I/O and no global state mutation.

Prompt safety model:
    Remembered interactions are interpolated as raw strings. Safety is
    instruction-led, not parser-enforced.
"""

from typing import Iterable

from recall.memory.types import ConversationContext, MemoryResult


# =========================================================
# SYSTEM IDENTITY (GLOBAL)
# =========================================================
# Always the first component of every prompt.

SYSTEM_IDENTITY = (
    "You are a conversational assistant with access to remembered conversation.\n"
    "Respond clearly, precisely, and without repetition.\n\n"
)

NO_CONTEXT_LINE = "No earlier conversation available."


# =========================================================
# CONVERSATION PROMPT
# =========================================================
# Prompt component order:
#   1) `SYSTEM_IDENTITY`
#   2) Remembered earlier conversation (long-term memories, oldest first)
#   3) Recent conversation (short-term window, oldest first)
#   4) User question
#   5) Assistant cue ("Assistant:")

def _render(interactions) -> str:
    return ConversationContext(interactions=tuple(interactions)).format_for_prompt()


def build_conversation_prompt(question: str, context: ConversationContext) -> str:
    """Build a chat prompt from the assembled context and the new question.

    Args:
        question: New user message.
        context: Output of `MemoryService.get_current_context`.

    Returns:
        Fully assembled prompt string.

    Edge cases:
        - Empty context inserts `NO_CONTEXT_LINE`.
        - Sections with no interactions are omitted.
        - `question` is stripped before insertion.
    """
    remembered = [i for i in context.interactions if i.from_long_term_memory]
    recent = [i for i in context.interactions if not i.from_long_term_memory]

    sections = []
    if remembered:
        sections.append("Remembered from earlier conversations:\n" + _render(remembered))
    if recent:
        sections.append("Recent conversation:\n" + _render(recent))
    if not sections:
        sections.append(NO_CONTEXT_LINE)

    return (
        SYSTEM_IDENTITY
        + "\n\n".join(sections)
        + "\n\nUser: "
        + question.strip()
        + "\nAssistant:"
    )


def build_search_listing(results: Iterable[MemoryResult]) -> str:
    """Numbered, human-readable listing of search results for terminal output."""
    lines = []
    for index, result in enumerate(results, start=1):
        entry = result.entry
        lines.append(
            f"[{index}] ({result.relevance_score:.2f}, {entry.metadata.category.value}) "
            f"Q: {entry.query.strip()}\n    A: {entry.response.strip()}"
        )

    if not lines:
        return "No matching memories."
    return "\n".join(lines)
