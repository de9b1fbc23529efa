"""Grounded prompt assembly."""
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from docqa.rag.models import RetrievalResult

logger = structlog.get_logger()

NO_CONTEXT_SENTINEL = (
    "No relevant material was found in the uploaded documents for this question."
)

NOT_FOUND_REPLY = (
    "I couldn't find specific information about this in your uploaded documents"
)

SYSTEM_PROMPT_TEMPLATE = """You are a helpful documentation assistant. Answer questions based on the provided context from the user's uploaded documents. If the context doesn't contain relevant information, say so clearly.

Context from documents:
{context}

Instructions:
- Only answer based on the provided context
- Be specific and cite the source document names when possible
- If the context doesn't contain relevant information, say "{not_found}"
- Keep responses concise but informative"""

# An entry is only cut short if at least this much room is left for it
_MIN_PARTIAL_ENTRY = 200


def format_entry(result: RetrievalResult) -> str:
    return f"Source: {result.document_name}\nContent: {result.content.strip()}"


def _fit_entries(
    results: Sequence[RetrievalResult],
    max_chars: Optional[int],
) -> List[Tuple[RetrievalResult, str]]:
    """Pair each result that fits in max_chars with its (possibly cut) entry."""
    fitted = []
    total_chars = 0

    for result in results:
        entry = format_entry(result)
        separator = 2 if fitted else 0

        if max_chars is not None and total_chars + separator + len(entry) > max_chars:
            remaining = max_chars - total_chars - separator
            if remaining > _MIN_PARTIAL_ENTRY:
                fitted.append((result, entry[:remaining] + "..."))
            break

        fitted.append((result, entry))
        total_chars += separator + len(entry)

    return fitted


def select_sources(
    results: Sequence[RetrievalResult],
    max_chars: Optional[int] = None,
) -> List[RetrievalResult]:
    """The results that build_context() with the same budget includes."""
    return [result for result, _ in _fit_entries(results, max_chars)]


def build_context(
    results: Sequence[RetrievalResult],
    max_chars: Optional[int] = None,
) -> str:
    """Format retrieved chunks as a labelled context block.

    Entries keep the order they were retrieved in (best match first) and are
    separated by a blank line. Without results, or when none fits in
    max_chars, the block is the sentinel.

    Args:
        results: Retrieval results, best first
        max_chars: Optional budget for the whole block

    Returns:
        Context string ready for the system prompt
    """
    parts = [entry for _, entry in _fit_entries(results, max_chars)]
    if not parts:
        return NO_CONTEXT_SENTINEL

    context = "\n\n".join(parts)

    logger.debug("context_formatted", num_chunks=len(parts), total_chars=len(context))

    return context


def build_system_prompt(
    results: Sequence[RetrievalResult],
    max_chars: Optional[int] = None,
) -> str:
    """System instruction grounding the model in the retrieved context."""
    return SYSTEM_PROMPT_TEMPLATE.format(
        context=build_context(results, max_chars=max_chars),
        not_found=NOT_FOUND_REPLY,
    )


def build_messages(
    system_prompt: str,
    history: Sequence[Dict[str, str]],
    question: str,
) -> List[Dict[str, str]]:
    """System prompt, then prior turns, then the question."""
    return (
        [{"role": "system", "content": system_prompt}]
        + [{"role": m["role"], "content": m["content"]} for m in history]
        + [{"role": "user", "content": question}]
    )
