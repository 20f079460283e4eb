"""
Search tools exposed to the agent.

Result-producing tools run the same pipeline: query the backend, format the hits as JSON, condense
the JSON to the token budget, then rephrase it for the question being asked.  Every failure is
returned to the model as a string so it can adjust its next call.
"""

import json
import logging
from typing import (
    Any,
    Dict,
    Mapping,
)

from elastic_agent.common import preview
from elastic_agent.core.condense import (
    condense_content,
    estimate_tokens,
)
from elastic_agent.search.backend import SearchResponse
from elastic_agent.tools import (
    REPLY_TOOL,
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)

DEFAULT_SIZE = 10
MAX_SIZE = 100
DEFAULT_QUERY_LABEL = "elasticsearch query"
SIMPLE_SEARCH_FIELDS = ["name^2", "content", "file_path"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _clamp_size(size: Any) -> int:
    try:
        value = int(size) if size else DEFAULT_SIZE
    except (TypeError, ValueError):
        value = DEFAULT_SIZE
    return max(1, min(value, MAX_SIZE))


def format_hits(response: SearchResponse) -> str:
    """Render a search response as ``{total, results: [{id, score, source}]}`` JSON."""
    return json.dumps(
        {
            "total": response.total,
            "results": [
                {"id": hit.id, "score": hit.score, "source": hit.source} for hit in response.hits
            ],
        },
        indent=2,
        default=str,
    )


def extract_query_text(query: Any) -> str:
    """
    Best-effort extraction of the search intent from a query object.

    Looks at a top-level ``match`` clause, then at the first ``bool.must`` clause.  Falls back to
    a generic label when neither holds a plain string.
    """
    try:
        match = query.get("match")
        if match is None:
            match = query["bool"]["must"][0].get("match")
        if match:
            value = next(iter(match.values()))
            if isinstance(value, dict):  # {"match": {"field": {"query": "..."}}}
                value = value.get("query")
            if isinstance(value, str) and value:
                return value
    except (AttributeError, KeyError, IndexError, TypeError, StopIteration):
        logger.debug("Could not extract query text from %r", query)
    return DEFAULT_QUERY_LABEL


def _shape_results(ctx: ToolContext, response: SearchResponse, context_text: str) -> str:
    formatted = format_hits(response)
    logger.info(
        "[%d] %d of %d hits, %d chars (~%d tokens)",
        ctx.execution_id,
        len(response.hits),
        response.total,
        len(formatted),
        estimate_tokens(formatted),
    )

    condensed = condense_content(formatted, ctx.max_result_tokens)
    if condensed != formatted:
        logger.info(
            "[%d] Content condensed: %d chars (~%d tokens)",
            ctx.execution_id,
            len(condensed),
            estimate_tokens(condensed),
        )

    return ctx.rephraser.rephrase(context_text, condensed)


def build_simple_query(
    search_text: str, filter_field: str | None = None, filter_value: Any = None
) -> Dict[str, Any]:
    """Fuzzy multi-field match, optionally AND-ed with an exact term filter."""
    multi_match = {
        "multi_match": {
            "query": search_text,
            "fields": list(SIMPLE_SEARCH_FIELDS),
            "type": "best_fields",
            "fuzziness": "AUTO",
        }
    }
    if filter_field and filter_value:
        return {"bool": {"must": [multi_match, {"term": {filter_field: filter_value}}]}}
    return multi_match


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
@register_tool(
    "search_elastic",
    "Search the Elasticsearch database with a specific query. IMPORTANT: Both index and query "
    "parameters are required. Use this to find documents from the database with structured "
    "Elasticsearch queries.",
    {
        "index": {
            "type": "string",
            "description": 'The Elasticsearch index to search in (e.g., "codebase-store")',
        },
        "query": {
            "type": "object",
            "description": 'REQUIRED: The Elasticsearch query object. Examples: {"match_all": {}}, '
            '{"match": {"content": "search_term"}}, {"term": {"extension": "ts"}}, '
            '{"bool": {"must": [{"match": {"content": "function"}}, '
            '{"term": {"extension": "js"}}]}}',
        },
        "size": {
            "type": "number",
            "description": "Number of results to return (default: 10, max: 100)",
        },
    },
    required=["index", "query"],
)
def search_elastic(
    ctx: ToolContext,
    index: str | None = None,
    query: Mapping[str, Any] | None = None,
    size: int | None = None,
) -> str:
    """Run a structured query and return a rephrased summary of the hits."""
    if not index:
        logger.warning("[%d] Validation error: missing index", ctx.execution_id)
        return "Error: Missing required parameter: index"
    if query is None:
        logger.warning("[%d] Validation error: missing query", ctx.execution_id)
        return (
            "Error: Missing required parameter: query. "
            "The search_elastic tool requires both 'index' and 'query' parameters."
        )

    try:
        logger.info("[%d] Searching %s: %s", ctx.execution_id, index, preview(json.dumps(query)))
        response = ctx.backend.search(index, query, _clamp_size(size))
        return _shape_results(ctx, response, extract_query_text(query))
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("[%d] Elasticsearch error: %s", ctx.execution_id, exc)
        return f"Error searching Elasticsearch: {exc}"


@register_tool(
    "simple_search",
    "Perform a simple text search across codebase documents. This is easier to use than "
    "search_elastic for basic queries.",
    {
        "index": {
            "type": "string",
            "description": 'The index to search in (typically "codebase-store")',
        },
        "search_text": {
            "type": "string",
            "description": "The text to search for (will search across name, content, and "
            "file_path fields)",
        },
        "filter_field": {
            "type": "string",
            "description": 'Optional field to filter by (e.g., "extension", "element_type", '
            '"repository")',
        },
        "filter_value": {
            "type": "string",
            "description": 'Value for the filter field (e.g., "ts", "class", "my-project")',
        },
        "size": {
            "type": "number",
            "description": "Number of results to return (default: 10)",
        },
    },
    required=["index", "search_text"],
)
def simple_search(
    ctx: ToolContext,
    index: str | None = None,
    search_text: str | None = None,
    filter_field: str | None = None,
    filter_value: Any = None,
    size: int | None = None,
) -> str:
    """Fuzzy text search with an optional exact filter."""
    if not index:
        return "Error: Missing required parameter: index"
    if not search_text:
        return "Error: Missing required parameter: search_text"

    try:
        es_query = build_simple_query(search_text, filter_field, filter_value)
        logger.info("[%d] Simple search %s: %s", ctx.execution_id, index, json.dumps(es_query))
        response = ctx.backend.search(index, es_query, _clamp_size(size))
        return _shape_results(ctx, response, search_text)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("[%d] Simple search error: %s", ctx.execution_id, exc)
        return f"Error in simple search: {exc}"


@register_tool(
    "list_indices",
    "List all available Elasticsearch indices to understand what data is available.",
)
def list_indices(ctx: ToolContext) -> str:
    """List index names."""
    try:
        indices = ctx.backend.list_indices()
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("[%d] List indices error: %s", ctx.execution_id, exc)
        return f"Error listing indices: {exc}"
    logger.info("[%d] Found %d indices", ctx.execution_id, len(indices))
    return f"Available indices: {', '.join(indices)}"


@register_tool(
    "get_mapping",
    "Get the field mapping for a specific Elasticsearch index to understand the data structure.",
    {"index": {"type": "string", "description": "The index name to get mapping for"}},
    required=["index"],
)
def get_mapping(ctx: ToolContext, index: str | None = None) -> str:
    """Return an index mapping as indented JSON."""
    if not index:
        return "Error: Missing required parameter: index"
    try:
        mapping = ctx.backend.get_mapping(index)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("[%d] Get mapping error: %s", ctx.execution_id, exc)
        return f"Error getting mapping: {exc}"
    return f'Mapping for index "{index}":\n{json.dumps(mapping, indent=2)}'


@register_tool(
    REPLY_TOOL,
    "Provide the final response to the user and end the search loop. Use this when you have "
    "gathered sufficient information to answer the user's question.",
    {
        "message": {
            "type": "string",
            "description": "The final response message to send to the user",
        }
    },
    required=["message"],
)
def reply(ctx: ToolContext, message: Any = "") -> str:
    """Carry the final answer; the agent loop ends on this call."""
    text = "" if message is None else str(message)
    logger.info("[%d] Final reply (%d chars)", ctx.execution_id, len(text))
    return f"REPLY: {text}"
