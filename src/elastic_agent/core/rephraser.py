"""Best-effort LLM summarisation of raw search results."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from elastic_agent.core.schema import Message

if TYPE_CHECKING:
    from elastic_agent.agent.providers import BaseProvider

logger = logging.getLogger(__name__)

REPHRASE_SYSTEM_PROMPT = (
    "You are a helpful assistant that specializes in analyzing and summarizing code search "
    "results. Provide clear, concise, and actionable summaries."
)

REPHRASE_PROMPT = """\
You are an AI assistant helping to summarize and rephrase search results from an Elasticsearch \
database.

Original Query: "{query}"

Search Results:
{results}

Please provide a clear, concise, and well-structured response that:
1. Directly addresses the original query
2. Summarizes the most relevant findings from the search results
3. Highlights key information and patterns
4. Maintains important technical details
5. Is easy to understand and actionable

Focus on what would be most useful for someone trying to understand or work with this codebase \
data."""


class ResultRephraser:
    """Turns structured search output into a query-relevant summary.

    Rephrasing never fails the surrounding tool call: on any provider error,
    or an empty reply, the input text is returned unchanged.
    """

    def __init__(
        self, provider: "BaseProvider", max_tokens: int = 2000, temperature: float = 0.1
    ) -> None:
        self._provider = provider
        self._max_tokens = max_tokens
        self._temperature = temperature

    def rephrase(self, original_query: str, results: str) -> str:
        """Return a summary of *results* written for *original_query*."""
        prompt = REPHRASE_PROMPT.format(query=original_query, results=results)
        messages = [
            Message(role="system", content=REPHRASE_SYSTEM_PROMPT),
            Message(role="user", content=prompt),
        ]
        try:
            summary = self._provider.complete(
                messages, max_tokens=self._max_tokens, temperature=self._temperature
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Rephrasing failed, returning raw results: %s", exc)
            return results

        if not summary:
            logger.warning("Rephrasing returned nothing, returning raw results")
            return results

        logger.info(
            "Rephrased results for %r: %d chars -> %d chars",
            original_query,
            len(results),
            len(summary),
        )
        return summary
