"""Prompt construction for completion calls."""

from __future__ import annotations

from typing import Sequence

from localassist.schemas import MemoryHit

ASSISTANT_NAME = "LocalAssist"

# Character cap for each context block in a prompt
MAX_BLOCK_CHARS = 1500
TRUNCATION_MARKER = "...[truncated]"

# Memory snippet formatting
SNIPPET_COUNT = 3
SNIPPET_CHARS = 220


def _cap(text: str, max_chars: int = MAX_BLOCK_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def format_snippets(hits: Sequence[MemoryHit], count: int = SNIPPET_COUNT) -> list[str]:
    """Format the top memory hits as numbered snippet lines.

    Example: ``Memory 1 (42%): I have a dentist appointment...``
    """
    snippets = []
    for i, hit in enumerate(hits[:count]):
        text = hit.text or ""
        ellipsis = "..." if len(text) > SNIPPET_CHARS else ""
        percent = round((hit.similarity or 0.0) * 100)
        snippets.append(f"Memory {i + 1} ({percent}%): {text[:SNIPPET_CHARS]}{ellipsis}")
    return snippets


def build_staged_prompt(
    question: str,
    conversation: str | None = None,
    snippets: Sequence[str] | None = None,
) -> str:
    """Build a short completion prompt from conversation and/or memory snippets.

    Args:
        question: The user's utterance
        conversation: Recent conversation text
        snippets: Formatted memory snippets

    Returns:
        Prompt text
    """
    convo = _cap(conversation) if conversation else ""
    memory = _cap("\n\n".join(snippets or []))

    if convo and not memory:
        return (
            f"You are {ASSISTANT_NAME}. Answer based on our recent conversation.\n\n"
            f"RECENT CONVERSATION:\n{convo}\n\n"
            f"QUESTION: {question}\n\n"
            "Be concise (2-4 sentences)."
        )

    if convo and memory:
        return (
            f"You are {ASSISTANT_NAME}. Use recent conversation and relevant history.\n\n"
            f"RECENT CONVERSATION:\n{convo}\n\n"
            f"RELEVANT HISTORY:\n{memory}\n\n"
            f"QUESTION: {question}\n\n"
            "Answer concisely, prioritizing directly relevant details."
        )

    return (
        f"You are {ASSISTANT_NAME}. Use relevant history to answer.\n\n"
        f"RELEVANT HISTORY:\n{memory}\n\n"
        f"QUESTION: {question}\n\n"
        "Answer in 2-4 sentences, focused and specific."
    )


def build_answer_prompt(question: str, context: str | None = None) -> str:
    """Prompt for a general answer, optionally grounded in retrieved context."""
    prompt = f"You are {ASSISTANT_NAME}, a helpful assistant running locally on the user's device.\n\n"
    if context:
        prompt += f"CONTEXT:\n{_cap(context)}\n\n"
    prompt += f"USER: {question}\n\nRespond clearly and concisely."
    return prompt


def build_greeting_prompt(greeting: str) -> str:
    """Prompt for replying to a greeting."""
    return (
        f"You are {ASSISTANT_NAME}, a friendly local assistant. "
        f"Reply briefly and warmly to: {greeting}"
    )
