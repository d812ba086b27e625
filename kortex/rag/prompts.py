"""Prompt assembly for grounded answers.

The system prompt holds the durable behavioral rules; the user prompt holds
the per-query payload (retrieved context plus the question).
"""
from dataclasses import dataclass
from typing import Dict, List, Sequence

from kortex.rag.models import RetrievedChunk

SYSTEM_PROMPT = """You are KORTEX, a helpful study assistant. Your role is to answer questions based STRICTLY on the provided document context.

RULES:
1. Only use information from the context supplied with each question. Never add facts from outside it.
2. For generative requests (for example "create practice questions", "make flashcards" or "summarize"), synthesize new material FROM the context. Do not search the context for a literal match of the request.
3. If the context doesn't contain enough information, say so clearly and explain what is missing.
4. Be concise but comprehensive.
5. Use structured formatting where it helps: bullet points, numbered lists and **bold** key terms.
6. If asked about something not in the context, politely state that you can only answer from the uploaded documents."""

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in your uploaded documents to "
    "answer this question. Please make sure you've uploaded documents related "
    "to this topic."
)

LOW_CONFIDENCE_ANSWER = (
    "I found some passages in your documents that may be related, but none of "
    "them match your question closely enough for me to give a reliable answer. "
    "Please review the retrieved sources below, or try rephrasing your question "
    "with terms used in your documents."
)


@dataclass
class AssembledPrompt:
    system_prompt: str
    user_prompt: str

    def to_messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Number each chunk as a source, in the given order, separated by blank lines."""
    return "\n\n".join(
        f"[Source {n}] {chunk.content}" for n, chunk in enumerate(chunks, 1)
    )


def assemble_prompt(question: str, chunks: Sequence[RetrievedChunk]) -> AssembledPrompt:
    """Build the system and user prompts for a grounded answer."""
    user_prompt = f"""Context from uploaded documents:

{build_context(chunks)}

Question: {question}

Please provide a clear, accurate answer based only on the context above."""

    return AssembledPrompt(system_prompt=SYSTEM_PROMPT, user_prompt=user_prompt)
