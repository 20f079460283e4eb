"""
Completion provider interface for the search agent.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
rephrasing) stays model-agnostic and talks to a :class:`BaseProvider`.

We support three back-ends out of the box:

1. **OpenAI** chat completions with native tool calling (requires ``OPENAI_API_KEY``).
2. **Anthropic** messages API with native tool use (requires ``ANTHROPIC_API_KEY``).
3. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.  TGI has no tool
   calling, so it never returns tool calls and everything it generates is the final answer.

Additional providers can be added by subclassing :class:`BaseProvider` and registering via
:func:`register_provider`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
)

import httpx

from elastic_agent.config import settings
from elastic_agent.core.schema import (
    CompletionResult,
    Message,
    ToolCallRequest,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

ContentObserver = Callable[[str], None]

STREAM_MARKER = "\n💭 AI Agent: "


class ProviderError(RuntimeError):
    """Raised when a completion backend returns an unusable response."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["BaseProvider"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a provider class under *name*."""

    def wrapper(cls: Type["BaseProvider"]) -> Type["BaseProvider"]:
        _PROVIDER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_provider(name: str | None = None, **kwargs: Any) -> "BaseProvider":
    """
    Factory that returns an instantiated provider.

    Fallback order:
    1. *name* arg
    2. ``settings.PROVIDER`` env option
    3. default: ``"openai"``

    Extra keyword arguments (``api_key``, ``model``, ``client`` ...) go to the constructor.
    """
    target = name or getattr(settings, "PROVIDER", "openai")
    cls = _PROVIDER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Provider '{target}' is not registered.")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Stream assembly
# ---------------------------------------------------------------------------
class ContentRelay:
    """
    Accumulates streamed text and forwards it to an optional observer.

    The accumulated text is the source of truth for the assistant message; the observer only
    sees a copy.  The first delta of a turn is preceded by :data:`STREAM_MARKER` and the block is
    closed with a newline, both only when some content was actually streamed.
    """

    def __init__(self, on_content: Optional[ContentObserver] = None) -> None:
        self._on_content = on_content
        self._parts: List[str] = []
        self._started = False

    def push(self, delta: str | None) -> None:
        """Record *delta* and forward it to the observer."""
        if not delta:
            return
        self._parts.append(delta)
        if self._on_content is None:
            return
        if not self._started:
            self._started = True
            self._on_content(STREAM_MARKER)
        self._on_content(delta)

    def close(self) -> None:
        """Terminate the visual block opened by the first delta."""
        if self._started and self._on_content is not None:
            self._on_content("\n")

    @property
    def content(self) -> str:
        """All text streamed so far."""
        return "".join(self._parts)


class ToolCallAccumulator:
    """
    Rebuilds complete tool calls from indexed stream fragments.

    Fragments are kept in a sparse map keyed by their index; name and argument pieces sharing an
    index are concatenated in arrival order.  Indices may arrive in any order and with gaps;
    :meth:`finalize` sorts them once the stream is over.
    """

    def __init__(self) -> None:
        self._ids: Dict[int, str] = {}
        self._names: Dict[int, List[str]] = {}
        self._arguments: Dict[int, List[str]] = {}

    def add(
        self,
        index: int,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        """Merge one fragment for the call at *index*."""
        self._names.setdefault(index, [])
        self._arguments.setdefault(index, [])
        if call_id and not self._ids.get(index):
            self._ids[index] = call_id
        if name:
            self._names[index].append(name)
        if arguments:
            self._arguments[index].append(arguments)

    def __bool__(self) -> bool:
        return bool(self._names)

    def finalize(self) -> List[ToolCallRequest]:
        """Return the assembled calls ordered by index."""
        return [
            ToolCallRequest(
                id=self._ids.get(index, ""),
                name="".join(self._names[index]),
                arguments="".join(self._arguments[index]),
            )
            for index in sorted(self._names)
        ]


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseProvider(ABC):
    """Abstract provider that turns a conversation into content and/or tool calls."""

    supports_tools: bool = True

    @abstractmethod
    def stream_completion(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        on_content: Optional[ContentObserver] = None,
    ) -> CompletionResult:
        """Stream one assistant turn, relaying content deltas to *on_content*."""

    def complete(
        self, messages: Sequence[Message], max_tokens: int = 2000, temperature: float = 0.1
    ) -> str:
        """Single non-streaming completion without tools; returns the generated text."""
        return self.stream_completion(messages, []).content


# ---------------------------------------------------------------------------
# Concrete providers
# ---------------------------------------------------------------------------
def _to_openai_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            converted.append(
                {
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": msg.content or "",
                }
            )
            continue
        entry: Dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
        if msg.tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in msg.tool_calls
            ]
        converted.append(entry)
    return converted


@register_provider("openai")
class OpenAIProvider(BaseProvider):
    """OpenAI chat-completions provider with streamed tool calls."""

    def __init__(
        self, api_key: str | None = None, model: str | None = None, client: Any = None
    ) -> None:
        self.model = model or settings.OPENAI_MODEL
        self._api_key = api_key or settings.OPENAI_API_KEY
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.OpenAI(api_key=self._api_key)
        return self._client

    def stream_completion(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        on_content: Optional[ContentObserver] = None,
    ) -> CompletionResult:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": _to_openai_messages(messages),
            "stream": True,
        }
        if tools:
            request["tools"] = [{"type": "function", "function": t.model_dump()} for t in tools]
            request["tool_choice"] = "auto"

        stream = self._get_client().chat.completions.create(**request)

        relay = ContentRelay(on_content)
        calls = ToolCallAccumulator()
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None:
                    continue
                relay.push(getattr(delta, "content", None))
                for fragment in getattr(delta, "tool_calls", None) or []:
                    fn = getattr(fragment, "function", None)
                    calls.add(
                        fragment.index,
                        call_id=getattr(fragment, "id", None),
                        name=getattr(fn, "name", None),
                        arguments=getattr(fn, "arguments", None),
                    )
        finally:
            relay.close()

        result = CompletionResult(content=relay.content, tool_calls=calls.finalize())
        logger.debug(
            "OpenAI turn: %d chars, tool_calls=%s",
            len(result.content),
            [c.name for c in result.tool_calls],
        )
        return result

    def complete(
        self, messages: Sequence[Message], max_tokens: int = 2000, temperature: float = 0.1
    ) -> str:
        resp = self._get_client().chat.completions.create(
            model=self.model,
            messages=_to_openai_messages(messages),
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""


def _to_anthropic_messages(messages: Sequence[Message]) -> tuple[str, List[Dict[str, Any]]]:
    """Split out the system prompt and convert the rest to Anthropic content blocks."""
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content or "")
        elif msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content or "",
            }
            previous = converted[-1] if converted else None
            # Results for one assistant turn must travel in a single user message
            if (
                previous
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and previous["content"][-1].get("type") == "tool_result"
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
        elif msg.role == "assistant":
            blocks: List[Dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                try:
                    tool_input = json.loads(call.arguments) if call.arguments else {}
                except json.JSONDecodeError:
                    tool_input = {}
                blocks.append(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": tool_input}
                )
            if blocks:
                converted.append({"role": "assistant", "content": blocks})
        else:
            converted.append({"role": "user", "content": msg.content or ""})
    return "\n\n".join(system_parts), converted


@register_provider("anthropic")
class AnthropicProvider(BaseProvider):
    """Anthropic Claude provider; tool-use blocks stream as indexed JSON fragments."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: Any = None,
        max_tokens: int = 8192,
    ) -> None:
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens
        self._api_key = api_key or settings.ANTHROPIC_API_KEY
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.Anthropic(api_key=self._api_key)
        return self._client

    def stream_completion(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        on_content: Optional[ContentObserver] = None,
    ) -> CompletionResult:
        system, converted = _to_anthropic_messages(messages)
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": converted,
            "stream": True,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        stream = self._get_client().messages.create(**request)

        relay = ContentRelay(on_content)
        calls = ToolCallAccumulator()
        try:
            for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        calls.add(event.index, call_id=block.id, name=block.name)
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        relay.push(delta.text)
                    elif delta.type == "input_json_delta":
                        calls.add(event.index, arguments=delta.partial_json)
        finally:
            relay.close()

        return CompletionResult(content=relay.content, tool_calls=calls.finalize())

    def complete(
        self, messages: Sequence[Message], max_tokens: int = 2000, temperature: float = 0.1
    ) -> str:
        system, converted = _to_anthropic_messages(messages)
        response = self._get_client().messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=converted,
            temperature=temperature,
        )
        return "".join(block.text for block in response.content if block.type == "text")


def _render_prompt(messages: Sequence[Message]) -> str:
    """Flatten a conversation into a plain-text prompt for raw text-generation models."""
    lines: List[str] = []
    for msg in messages:
        content = msg.content or ""
        if msg.role == "system":
            lines.append(content)
        elif msg.role == "user":
            lines.append(f"User: {content}")
        elif msg.role == "assistant":
            if content:
                lines.append(f"Assistant: {content}")
        else:
            lines.append(f"Tool ({msg.name or 'unknown'}): {content}")
    lines.append("Assistant:")
    return "\n\n".join(lines)


@register_provider("tgi")
class TGIProvider(BaseProvider):
    """TGI-based provider over httpx.  Text only: tool definitions are ignored."""

    supports_tools = False

    def __init__(
        self,
        url: str | None = None,
        max_new_tokens: int = 1024,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
        **_: Any,
    ) -> None:
        self.url = (url or settings.TGI_URL).rstrip("/")
        self.max_new_tokens = max_new_tokens
        self._timeout = timeout
        self._transport = transport

    def _payload(
        self, messages: Sequence[Message], max_new_tokens: int, temperature: float
    ) -> Dict[str, Any]:
        return {
            "inputs": _render_prompt(messages),
            "parameters": {
                "max_new_tokens": max_new_tokens,
                "temperature": temperature,
                "stop": ["User:", "</s>"],
            },
        }

    def stream_completion(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        on_content: Optional[ContentObserver] = None,
    ) -> CompletionResult:
        if tools:
            logger.debug("TGI provider: tool calling not supported, %d tools ignored", len(tools))

        relay = ContentRelay(on_content)
        payload = self._payload(messages, self.max_new_tokens, 0.2)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                with client.stream("POST", f"{self.url}/generate_stream", json=payload) as resp:
                    resp.raise_for_status()
                    for line in resp.iter_lines():
                        if not line.startswith("data:"):
                            continue
                        event = json.loads(line[len("data:") :])
                        if "error" in event:
                            raise ProviderError(f"TGI stream error: {event['error']}")
                        token = event.get("token") or {}
                        if not token.get("special"):
                            relay.push(token.get("text"))
        finally:
            relay.close()

        return CompletionResult(content=relay.content.strip())

    def complete(
        self, messages: Sequence[Message], max_tokens: int = 2000, temperature: float = 0.1
    ) -> str:
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            resp = client.post(
                f"{self.url}/generate", json=self._payload(messages, max_tokens, temperature)
            )
            resp.raise_for_status()
            return (resp.json().get("generated_text") or "").strip()
