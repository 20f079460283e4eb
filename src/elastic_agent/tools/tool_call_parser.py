"""
Parser for the raw argument payload of a tool call.

Completion services deliver arguments as a string that should hold a JSON object, e.g.
    {"index": "codebase-store", "query": {"match_all": {}}}
Some models wrap it in a markdown fence or leave stray text around it; those are tolerated.
"""

import json
import re
from typing import (
    Any,
    Dict,
)


class ToolCallParseError(RuntimeError):
    """Raised when a tool-call payload cannot be parsed into a dict of arguments."""


_FENCE_RE = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text


def _outer_object(text: str) -> str:
    """Return the first balanced ``{...}`` span of *text*, honouring quoted strings."""
    start = text.find("{")
    if start < 0:
        return text
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    raise ToolCallParseError("unbalanced braces")


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def parse_tool_arguments(raw: str | None) -> Dict[str, Any]:
    """
    Parse a tool-call argument payload.

    An empty payload means "no arguments" and yields ``{}``.

    Raises
    ------
    ToolCallParseError
        If the payload is not a JSON object.
    """
    text = (raw or "").strip()
    if not text:
        return {}

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(_outer_object(_strip_fence(text)))
        except json.JSONDecodeError as exc:
            raise ToolCallParseError(f"invalid JSON arguments: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ToolCallParseError(f"arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed
