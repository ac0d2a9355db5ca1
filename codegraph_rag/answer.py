"""Answer synthesis: prompt formatting, conversation session, LLM call."""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence, Tuple

from .models import ContextEntry, ContextResult, Turn

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You are an expert software engineer.
Only answer questions related to coding or software engineering.
Answer using ONLY the provided code snippets and graph relationships.
Be precise and answer step-by-step.
Keep the answers sufficiently detailed.
Only provide explanations and not the code or relationships itself.

In the graph, a Module is a source file; Functions and Classes are DEFINED_IN
their module or class, and CALLS links a caller to a callee.

STRICT FORMATTING RULE:
DO NOT use Markdown (no **, no ##, no *).
Use plain numbers for lists (1. 2. 3.) and plain text for emphasis."""


class TextGenerator(Protocol):
    def generate(self, system: str, history: Sequence[Turn], prompt: str) -> str:
        ...


def build_prompt(query: str, entries: Sequence[ContextEntry]) -> str:
    """Format retrieved context into the user prompt for one question."""
    if not entries:
        return f'The user asked: "{query}", but no relevant code was found in the database.'

    lines: List[str] = [
        "You are provided with the following code snippets and their architectural "
        f'relationships to answer the user\'s question: "{query}"',
        "",
    ]
    for index, entry in enumerate(entries, start=1):
        meta = entry.metadata
        lines.append(f"--- CODE SNIPPET {index} ---")
        lines.append(f"LOCATION: {meta.get('file', '')} (Symbol: {meta.get('symbol', '')})")
        lines.append("CONTENT:")
        lines.append(entry.code)
        if entry.graph_context:
            lines.append("GRAPH RELATIONSHIPS:")
            kind = meta.get("kind") or "symbol"
            for neighbor in entry.graph_context:
                lines.append(f"- This {kind} is connected to {neighbor.name} ({neighbor.type})")
        lines.append("")
    return "\n".join(lines)


class ConversationSession:
    """Ordered, append-only question/answer history for one ``ask`` session.

    Not safe for concurrent mutation; each session belongs to one caller.
    """

    def __init__(self) -> None:
        self._turns: List[Turn] = []

    @property
    def history(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def record_exchange(self, user_text: str, assistant_text: str) -> None:
        self._turns.append(Turn(role="user", text=user_text))
        self._turns.append(Turn(role="assistant", text=assistant_text))

    def __len__(self) -> int:
        return len(self._turns)


class AnswerSynthesizer:
    """Turns a :class:`ContextResult` into an answer, one session turn at a time."""

    def __init__(self, llm: TextGenerator, system_instruction: str = SYSTEM_INSTRUCTION) -> None:
        self.llm = llm
        self.system_instruction = system_instruction

    def answer(self, context: ContextResult, session: ConversationSession) -> str:
        """Generate an answer and record the exchange in *session*.

        Raises:
            GenerationError: the model call failed; *session* is unchanged.
        """
        prompt = build_prompt(context.query, context.entries)
        logger.debug("Prompt for %r is %d chars", context.query, len(prompt))
        reply = self.llm.generate(self.system_instruction, session.history, prompt)
        session.record_exchange(prompt, reply)
        return reply
