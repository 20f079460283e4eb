"""
Tool registry for the search agent.

This module provides a decorator to register tools and a registry to look them up by name.  Each
tool is a function called as ``fn(context, **arguments)`` that returns a string for the model; its
JSON-schema declaration is stored alongside it and sent to the completion service on every turn.
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Sequence,
)

from elastic_agent.core.condense import DEFAULT_MAX_TOKENS
from elastic_agent.core.rephraser import ResultRephraser
from elastic_agent.core.schema import ToolDefinition
from elastic_agent.search.backend import SearchBackend

logger = logging.getLogger(__name__)

REPLY_TOOL = "reply"
"""Name of the terminating tool; the agent loop ends when it sees this call."""


@dataclass
class ToolContext:
    """Collaborators handed to every tool invocation."""

    backend: SearchBackend
    rephraser: ResultRephraser
    max_result_tokens: int = DEFAULT_MAX_TOKENS
    execution_id: int = 0


@dataclass
class RegisteredTool:
    """A tool function together with its declaration."""

    definition: ToolDefinition
    fn: Callable[..., str]


TOOL_REGISTRY: Dict[str, RegisteredTool] = {}
"""Global registry of tools, in declaration order."""


def register_tool(
    name: str,
    description: str,
    properties: Mapping[str, Mapping[str, Any]] | None = None,
    required: Sequence[str] = (),
) -> Callable:
    """
    Register a tool function with the given name and parameter schema.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("my_tool", "Does something", {"arg": {"type": "string"}}, ["arg"])
        def my_tool(ctx, arg=None):
            return "result"

    Parameters
    ----------
    name: str
        The name of the tool.  This must be unique and is what the model calls.
    description: str
        Human-readable description sent to the model.
    properties:
        JSON-schema property declarations, keyed by argument name.
    required:
        Names of the arguments the model must supply.

    Returns
    -------
    Callable
        A decorator that registers the function with the given name.

    Raises
    ------
    ValueError
        If a function with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    definition = ToolDefinition(
        name=name,
        description=description,
        parameters={
            "type": "object",
            "properties": {key: dict(value) for key, value in (properties or {}).items()},
            "required": list(required),
        },
    )

    def wrapper(fn: Callable[..., str]) -> Callable[..., str]:
        TOOL_REGISTRY[name] = RegisteredTool(definition=definition, fn=fn)
        return fn

    return wrapper


def get_tool_definitions() -> List[ToolDefinition]:
    """Return the declarations of every registered tool."""
    return [tool.definition for tool in TOOL_REGISTRY.values()]


# Importing the implementations populates the registry.
# pylint: disable=wrong-import-position,unused-import
from elastic_agent.tools import search_tools  # noqa: E402,F401
