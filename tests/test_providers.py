"""
Tests for the completion providers.

The SDK clients are replaced by small fakes that yield the same chunk shapes the real
streams do, and TGI runs against an ``httpx.MockTransport``.
"""

import json
from types import SimpleNamespace as NS

import httpx
import pytest

from elastic_agent.agent.providers import (
    STREAM_MARKER,
    AnthropicProvider,
    ContentRelay,
    OpenAIProvider,
    ProviderError,
    TGIProvider,
    ToolCallAccumulator,
    _to_anthropic_messages,
    load_provider,
)
from elastic_agent.core.schema import (
    Message,
    ToolCallRequest,
    ToolDefinition,
)

MESSAGES = [
    Message(role="system", content="sys"),
    Message(role="user", content="What indices exist?"),
]
TOOLS = [
    ToolDefinition(
        name="list_indices",
        description="List indices",
        parameters={"type": "object", "properties": {}, "required": []},
    )
]


class FakeCompletions:
    """Stands in for ``client.chat.completions`` / ``client.messages``."""

    def __init__(self, stream=None, response=None) -> None:
        self.stream = stream or []
        self.response = response
        self.requests: list = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if kwargs.get("stream"):
            return iter(self.stream)
        return self.response


# ---------------------------------------------------------------------------
# Stream assembly
# ---------------------------------------------------------------------------
def test_relay_emits_marker_once_and_closes_block() -> None:
    """Observer sees marker, deltas in order, then a newline; content has no marker."""
    seen = []
    relay = ContentRelay(seen.append)
    for delta in ["Hel", "", None, "lo"]:
        relay.push(delta)
    relay.close()

    assert seen == [STREAM_MARKER, "Hel", "lo", "\n"]
    assert relay.content == "Hello"


def test_relay_without_content_emits_nothing() -> None:
    """Tool-call-only turns print no marker."""
    seen = []
    relay = ContentRelay(seen.append)
    relay.close()
    assert seen == []
    assert relay.content == ""


def test_accumulator_orders_by_index_and_concatenates() -> None:
    """Fragments merge per index and come out sorted, even when interleaved."""
    calls = ToolCallAccumulator()
    calls.add(1, call_id="b", name="get_", arguments='{"ind')
    calls.add(0, call_id="a", name="list_indices")
    calls.add(1, name="mapping", arguments='ex": "logs"}')
    calls.add(1, call_id="ignored")

    assert calls
    assert calls.finalize() == [
        ToolCallRequest(id="a", name="list_indices", arguments=""),
        ToolCallRequest(id="b", name="get_mapping", arguments='{"index": "logs"}'),
    ]


def test_empty_accumulator_is_falsy() -> None:
    """No fragments means no tool calls."""
    calls = ToolCallAccumulator()
    assert not calls
    assert calls.finalize() == []


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------
def _openai_chunk(content=None, tool_calls=None):
    return NS(choices=[NS(delta=NS(content=content, tool_calls=tool_calls))])


def _openai_fragment(index, call_id=None, name=None, arguments=None):
    return NS(index=index, id=call_id, function=NS(name=name, arguments=arguments))


def test_openai_streams_content_and_tool_calls() -> None:
    """Deltas are relayed and tool-call fragments assembled."""
    completions = FakeCompletions(
        stream=[
            _openai_chunk(content="Checking"),
            NS(choices=[]),
            _openai_chunk(tool_calls=[_openai_fragment(0, "call_1", "get_mapping", '{"in')]),
            _openai_chunk(tool_calls=[_openai_fragment(0, arguments='dex": "logs"}')]),
        ]
    )
    client = NS(chat=NS(completions=completions))
    seen = []

    result = OpenAIProvider(api_key="k", model="m", client=client).stream_completion(
        MESSAGES, TOOLS, seen.append
    )

    assert result.content == "Checking"
    assert result.tool_calls == [
        ToolCallRequest(id="call_1", name="get_mapping", arguments='{"index": "logs"}')
    ]
    assert seen == [STREAM_MARKER, "Checking", "\n"]

    request = completions.requests[0]
    assert request["model"] == "m"
    assert request["tool_choice"] == "auto"
    assert request["tools"][0]["function"]["name"] == "list_indices"
    assert request["messages"][1] == {"role": "user", "content": "What indices exist?"}


def test_openai_stream_failure_still_closes_block() -> None:
    """A stream that breaks mid-way closes the observer's block before the error propagates."""

    def broken_stream():
        yield _openai_chunk(content="Partial")
        raise ConnectionError("stream reset")

    completions = FakeCompletions()
    completions.create = lambda **kwargs: broken_stream()
    provider = OpenAIProvider(api_key="k", model="m", client=NS(chat=NS(completions=completions)))
    seen = []

    with pytest.raises(ConnectionError):
        provider.stream_completion(MESSAGES, TOOLS, seen.append)
    assert seen == [STREAM_MARKER, "Partial", "\n"]


def test_openai_omits_tools_when_none_given() -> None:
    """Tool-free requests send no tool fields."""
    completions = FakeCompletions(stream=[_openai_chunk(content="hi")])
    provider = OpenAIProvider(api_key="k", model="m", client=NS(chat=NS(completions=completions)))
    provider.stream_completion(MESSAGES, [])
    assert "tools" not in completions.requests[0]
    assert "tool_choice" not in completions.requests[0]


def test_openai_tool_history_is_serialized() -> None:
    """Assistant tool calls and tool results keep their ids."""
    completions = FakeCompletions(stream=[_openai_chunk(content="done")])
    provider = OpenAIProvider(api_key="k", model="m", client=NS(chat=NS(completions=completions)))
    history = MESSAGES + [
        Message(
            role="assistant",
            tool_calls=[ToolCallRequest(id="c1", name="list_indices", arguments="{}")],
        ),
        Message(role="tool", tool_call_id="c1", name="list_indices", content="Available: a"),
    ]
    provider.stream_completion(history, TOOLS)

    sent = completions.requests[0]["messages"]
    assert sent[2]["tool_calls"][0]["id"] == "c1"
    assert sent[3] == {"role": "tool", "tool_call_id": "c1", "content": "Available: a"}


def test_openai_complete_returns_message_text() -> None:
    """The non-streaming call returns the first choice's content."""
    response = NS(choices=[NS(message=NS(content="summary"))])
    completions = FakeCompletions(response=response)
    provider = OpenAIProvider(api_key="k", model="m", client=NS(chat=NS(completions=completions)))

    assert provider.complete(MESSAGES, max_tokens=50, temperature=0.0) == "summary"
    assert completions.requests[0]["max_tokens"] == 50


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
def test_anthropic_streams_text_and_tool_use() -> None:
    """Text deltas are relayed; tool_use blocks assemble from partial JSON."""
    events = [
        NS(type="message_start"),
        NS(type="content_block_start", index=0, content_block=NS(type="text")),
        NS(type="content_block_delta", index=0, delta=NS(type="text_delta", text="Let me look")),
        NS(
            type="content_block_start",
            index=1,
            content_block=NS(type="tool_use", id="toolu_1", name="get_mapping"),
        ),
        NS(
            type="content_block_delta",
            index=1,
            delta=NS(type="input_json_delta", partial_json='{"index":'),
        ),
        NS(
            type="content_block_delta",
            index=1,
            delta=NS(type="input_json_delta", partial_json=' "logs"}'),
        ),
        NS(type="message_stop"),
    ]
    messages = FakeCompletions(stream=events)
    provider = AnthropicProvider(api_key="k", model="m", client=NS(messages=messages))
    seen = []

    result = provider.stream_completion(MESSAGES, TOOLS, seen.append)

    assert result.content == "Let me look"
    assert result.tool_calls == [
        ToolCallRequest(id="toolu_1", name="get_mapping", arguments='{"index": "logs"}')
    ]
    assert seen == [STREAM_MARKER, "Let me look", "\n"]
    request = messages.requests[0]
    assert request["system"] == "sys"
    assert request["tools"][0]["input_schema"]["type"] == "object"


def test_anthropic_stream_failure_still_closes_block() -> None:
    """Broken event streams leave no open block on the observer."""

    def broken_events():
        yield NS(type="content_block_delta", index=0, delta=NS(type="text_delta", text="Hm"))
        raise TimeoutError("read timeout")

    messages = FakeCompletions()
    messages.create = lambda **kwargs: broken_events()
    provider = AnthropicProvider(api_key="k", model="m", client=NS(messages=messages))
    seen = []

    with pytest.raises(TimeoutError):
        provider.stream_completion(MESSAGES, TOOLS, seen.append)
    assert seen == [STREAM_MARKER, "Hm", "\n"]


def test_anthropic_groups_tool_results() -> None:
    """Consecutive tool results share one user message; arguments become input dicts."""
    history = MESSAGES + [
        Message(
            role="assistant",
            tool_calls=[
                ToolCallRequest(id="a", name="list_indices", arguments=""),
                ToolCallRequest(id="b", name="get_mapping", arguments='{"index": "logs"}'),
            ],
        ),
        Message(role="tool", tool_call_id="a", content="Available indices: logs"),
        Message(role="tool", tool_call_id="b", content="Mapping"),
    ]
    system, converted = _to_anthropic_messages(history)

    assert system == "sys"
    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    assert converted[1]["content"][1]["input"] == {"index": "logs"}
    assert [b["tool_use_id"] for b in converted[2]["content"]] == ["a", "b"]


def test_anthropic_complete_joins_text_blocks() -> None:
    """Only text blocks contribute to the completion."""
    response = NS(content=[NS(type="text", text="one "), NS(type="text", text="two")])
    provider = AnthropicProvider(
        api_key="k", model="m", client=NS(messages=FakeCompletions(response=response))
    )
    assert provider.complete(MESSAGES) == "one two"


# ---------------------------------------------------------------------------
# TGI
# ---------------------------------------------------------------------------
def _sse(*events) -> bytes:
    return "".join(f"data:{json.dumps(e)}\n\n" for e in events).encode()


def test_tgi_streams_text_and_never_calls_tools() -> None:
    """Tokens stream to the observer; special tokens are dropped; no tool calls."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        body = _sse(
            {"token": {"text": " You have", "special": False}},
            {"token": {"text": " logs.", "special": False}},
            {"token": {"text": "</s>", "special": True}},
        )
        return httpx.Response(200, content=body)

    seen = []
    provider = TGIProvider(url="http://tgi:8080/", transport=httpx.MockTransport(handler))
    result = provider.stream_completion(MESSAGES, TOOLS, seen.append)

    assert result.content == "You have logs."
    assert result.tool_calls == []
    assert seen == [STREAM_MARKER, " You have", " logs.", "\n"]
    assert requests[0].url.path == "/generate_stream"
    payload = json.loads(requests[0].content)
    assert payload["inputs"].endswith("Assistant:")
    assert "User: What indices exist?" in payload["inputs"]


def test_tgi_stream_error_raises() -> None:
    """An error event aborts the turn after closing any streamed block."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = _sse({"token": {"text": "Par", "special": False}}, {"error": "overloaded"})
        return httpx.Response(200, content=body)

    provider = TGIProvider(url="http://tgi", transport=httpx.MockTransport(handler))
    seen = []
    with pytest.raises(ProviderError):
        provider.stream_completion(MESSAGES, [], seen.append)
    assert seen == [STREAM_MARKER, "Par", "\n"]


def test_tgi_complete_reads_generated_text() -> None:
    """The non-streaming endpoint is used for rephrasing."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/generate"
        assert json.loads(request.content)["parameters"]["max_new_tokens"] == 300
        return httpx.Response(200, json={"generated_text": " short summary "})

    provider = TGIProvider(url="http://tgi", transport=httpx.MockTransport(handler))
    assert provider.complete(MESSAGES, max_tokens=300) == "short summary"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
def test_load_provider_by_name() -> None:
    """Registered names resolve case-insensitively and pass constructor arguments."""
    provider = load_provider("OpenAI", api_key="k", model="gpt-test")
    assert isinstance(provider, OpenAIProvider)
    assert provider.model == "gpt-test"
    assert load_provider("tgi").supports_tools is False


def test_load_provider_unknown() -> None:
    """Unknown names are a configuration error."""
    with pytest.raises(ValueError):
        load_provider("does-not-exist")
