"""Main orchestration loop for the search agent."""

from __future__ import annotations

import json
import logging
from typing import (
    Any,
    Optional,
    Tuple,
)

from elastic_agent.agent.providers import (
    BaseProvider,
    ContentObserver,
    load_provider,
)
from elastic_agent.agent.tool_executor import (
    ToolExecutionError,
    ToolExecutor,
)
from elastic_agent.common import (
    AnsiColors,
    colored_print,
    write_stream,
)
from elastic_agent.config import settings
from elastic_agent.core.rephraser import ResultRephraser
from elastic_agent.core.schema import (
    AgentState,
    Message,
    ToolCallRequest,
)
from elastic_agent.search.backend import (
    ElasticsearchBackend,
    SearchBackend,
)
from elastic_agent.tools import (
    REPLY_TOOL,
    ToolContext,
)
from elastic_agent.tools.tool_call_parser import (
    ToolCallParseError,
    parse_tool_arguments,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are an AI assistant that helps users query and analyze data from an Elasticsearch database.

Your goal is to:
1. Understand the user's question
2. Explore the available data in Elasticsearch
3. Refine your searches to find the most relevant information
4. Provide a comprehensive answer based on the data found

Available tools:
- search_elastic: Search the database with specific queries
- simple_search: Search names, content and file paths with plain text
- list_indices: See what data collections are available
- get_mapping: Understand the structure of data in an index
- reply: Provide your final answer to the user

Always start by exploring what data is available, then progressively refine your searches. When \
you have enough information to answer the user's question comprehensively, use the reply tool to \
provide your final response.\
"""

FALLBACK_RESPONSE = (
    "I apologize, but I'm having trouble finding a complete answer. "
    "Please try rephrasing your question or being more specific."
)
NO_RESPONSE = "No response generated."


def _reply_text(message: Any) -> str | None:
    """The final answer carried by a ``reply`` call, always as text."""
    if message is None or isinstance(message, str):
        return message
    return json.dumps(message, default=str)


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Drives one user query at a time to a final answer.

    Each call to :meth:`process_query` starts a fresh conversation, asks the provider for the next
    step, runs the requested tools and feeds their results back until the model calls ``reply``,
    answers in plain text, or the conversation grows past *max_messages*.  Instances are not safe
    for concurrent use; give each session its own loop.
    """

    def __init__(
        self,
        provider: BaseProvider,
        executor: ToolExecutor,
        system_prompt: str = SYSTEM_PROMPT,
        max_messages: int | None = None,
        on_content: Optional[ContentObserver] = None,
    ) -> None:
        self.provider = provider
        self.executor = executor
        self.system_prompt = system_prompt
        self.max_messages = max_messages if max_messages is not None else settings.MAX_MESSAGES
        self.on_content = on_content
        self.state = AgentState()

    def process_query(self, user_query: str) -> str:
        """Run *user_query* through the tool loop and return the final answer."""
        self._initialize_state(user_query)
        logger.info("Processing query: %r", user_query)
        tools = self.executor.definitions if self.provider.supports_tools else []

        while not self.state.is_complete:
            try:
                response = self.provider.stream_completion(
                    self.state.messages, tools, self.on_content
                )
                self.state.messages.append(
                    Message(
                        role="assistant",
                        content=response.content or None,
                        tool_calls=response.tool_calls,
                    )
                )

                if response.tool_calls:
                    self._handle_tool_calls(response.tool_calls)
                elif response.content:
                    # No tool calls: plain content is the final answer
                    self._finish(response.content)

                if not self.state.is_complete and self._over_ceiling():
                    logger.warning(
                        "Conversation reached %d messages without a reply, stopping",
                        len(self.state.messages),
                    )
                    self._finish(FALLBACK_RESPONSE)

            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Error in processing loop")
                self._finish(f"An error occurred while processing your request: {exc}")

        return self.state.final_response or NO_RESPONSE

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _initialize_state(self, user_query: str) -> None:
        self.state = AgentState(
            query=user_query,
            messages=[
                Message(role="system", content=self.system_prompt),
                Message(role="user", content=user_query),
            ],
        )

    def _finish(self, response: str | None) -> None:
        self.state.final_response = response
        self.state.is_complete = True

    def _over_ceiling(self) -> bool:
        return len(self.state.messages) > self.max_messages

    def _handle_tool_calls(self, tool_calls: list[ToolCallRequest]) -> None:
        logger.info(
            "Provider returned %d tool calls: %s", len(tool_calls), [c.name for c in tool_calls]
        )

        for call in tool_calls:
            if call.name != REPLY_TOOL and self._over_ceiling():
                logger.warning("Message ceiling reached, skipping tool call %s", call.name)
                continue

            try:
                args = parse_tool_arguments(call.arguments)
            except ToolCallParseError as exc:
                logger.warning("Skipping tool call %s (%s): %s", call.id, call.name, exc)
                continue

            try:
                result = self.executor.execute(call.name, args)
            except ToolExecutionError as exc:
                logger.warning("Tool failure: %s", exc)
                result = f"Error executing {call.name}: {exc}"

            if call.name == REPLY_TOOL:
                # Anything after the reply in this batch is dropped
                self._finish(_reply_text(args.get("message")))
                return

            self.state.messages.append(
                Message(role="tool", tool_call_id=call.id, name=call.name, content=result)
            )
            logger.debug("Conversation length: %d messages", len(self.state.messages))


def build_executor(backend: SearchBackend) -> ToolExecutor:
    """Tool executor over *backend*, rephrasing with the configured summarisation model."""
    rephraser = ResultRephraser(
        load_provider(settings.REPHRASE_PROVIDER, model=settings.REPHRASE_MODEL)
    )
    context = ToolContext(
        backend=backend,
        rephraser=rephraser,
        max_result_tokens=settings.MAX_RESULT_TOKENS,
    )
    return ToolExecutor(context)


# ---------------------------------------------------------------------------
# Interactive shell
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def run_cli() -> None:
    """Ask questions about the Elasticsearch data from the terminal."""
    streamed: list[str] = []

    def observe(chunk: str) -> None:
        streamed.append(chunk)
        write_stream(chunk)

    backend = ElasticsearchBackend()
    agent = AgentLoop(
        provider=load_provider(settings.PROVIDER),
        executor=build_executor(backend),
        on_content=observe,
    )
    colored_print(
        f"🤖 Elastic AI Agent - provider: {settings.PROVIDER} - type 'exit' to quit.",
        AnsiColors.YELLOW,
    )

    try:
        while True:
            colored_print("\n🔍 Your question: ", AnsiColors.BLUE, end="")
            user_msg, ok = get_user_message()
            if not ok:
                break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
            if user_msg.lower() in {"exit", "quit"}:
                break
            if not user_msg:
                colored_print("Please enter a valid question.", AnsiColors.RED)
                continue

            streamed.clear()
            answer = agent.process_query(user_msg)

            # Streamed answers are already on screen; tool-based replies are not
            if answer not in "".join(streamed):
                colored_print("\n📋 Final Response:", AnsiColors.GREEN)
                colored_print(answer, AnsiColors.YELLOW)
    finally:
        backend.close()

    colored_print("👋 Goodbye!", AnsiColors.GREEN)


if __name__ == "__main__":
    run_cli()
