"""Dispatches tool calls registered in ``elastic_agent.tools`` and wraps errors."""

import itertools
import json
import logging
import time
from dataclasses import replace
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    Iterator,
    List,
)

from elastic_agent.common import preview
from elastic_agent.core.schema import ToolDefinition
from elastic_agent.tools import (
    TOOL_REGISTRY,
    ToolContext,
    get_tool_definitions,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class ToolExecutor:
    """
    Runs registered tools against a shared :class:`ToolContext`.

    Each execution gets an id from *counter* for log correlation only.  Pass the same counter to
    several executors to keep ids unique across them.
    """

    def __init__(self, context: ToolContext, counter: Iterator[int] | None = None) -> None:
        self._context = context
        self._counter = counter if counter is not None else itertools.count(1)

    @property
    def definitions(self) -> List[ToolDefinition]:
        """Declarations of every tool this executor can run."""
        return get_tool_definitions()

    def execute(self, name: str, args: Dict[str, Any] | None = None) -> str:
        """
        Look up *name* in the registry and invoke it with *args*.

        Parameters
        ----------
        name:
            The registered tool name.
        args:
            Keyword arguments to pass verbatim to the tool function.  If *None*,
            an empty dict is assumed.

        Returns
        -------
        str
            Whatever the tool function returns.

        Raises
        ------
        ToolExecutionError
            If the tool is missing or its invocation raises an exception.
        """
        if args is None:
            args = {}

        execution_id = next(self._counter)
        started = time.perf_counter()
        logger.info(
            "[%d] Tool '%s' started at %s with args=%s",
            execution_id,
            name,
            datetime.now(timezone.utc).isoformat(),
            preview(json.dumps(args, default=str)) if args else "(no arguments)",
        )

        tool = TOOL_REGISTRY.get(name)
        if tool is None:
            logger.error("[%d] Tool '%s' is not registered", execution_id, name)
            raise ToolExecutionError(f"Tool '{name}' is not registered.")

        try:
            result = tool.fn(replace(self._context, execution_id=execution_id), **args)
        except TypeError as exc:
            # Argument mismatch: give the caller a clean exception.
            logger.exception("[%d] Argument error while executing tool '%s'", execution_id, name)
            raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("[%d] Unhandled error in tool '%s'", execution_id, name)
            raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc
        finally:
            logger.info(
                "[%d] Tool '%s' finished at %s after %.1f ms",
                execution_id,
                name,
                datetime.now(timezone.utc).isoformat(),
                (time.perf_counter() - started) * 1000,
            )

        logger.debug("[%d] Tool '%s' returned: %s", execution_id, name, preview(result))
        return result
