"""Shared stubs for the agent tests: a scripted provider and an in-memory search backend."""

from typing import (
    Any,
    Dict,
    List,
    Mapping,
)

import pytest

from elastic_agent.agent.providers import (
    BaseProvider,
    ContentRelay,
)
from elastic_agent.agent.tool_executor import ToolExecutor
from elastic_agent.core.rephraser import ResultRephraser
from elastic_agent.core.schema import (
    CompletionResult,
    ToolCallRequest,
)
from elastic_agent.search.backend import (
    SearchBackend,
    SearchBackendError,
    SearchHit,
    SearchResponse,
)
from elastic_agent.tools import ToolContext


class ScriptedProvider(BaseProvider):
    """Replays a fixed list of turns; the last turn repeats forever."""

    def __init__(self, turns: List[Any], summary: Any = "summary") -> None:
        self.turns = list(turns)
        self.summary = summary
        self.stream_calls: List[list] = []
        self.offered_tools: List[List[str]] = []
        self.complete_calls: List[list] = []

    def stream_completion(self, messages, tools, on_content=None) -> CompletionResult:
        self.stream_calls.append(list(messages))
        self.offered_tools.append([t.name for t in tools])
        turn = self.turns.pop(0) if len(self.turns) > 1 else self.turns[0]
        if isinstance(turn, Exception):
            raise turn
        relay = ContentRelay(on_content)
        relay.push(turn.content)
        relay.close()
        return turn

    def complete(self, messages, max_tokens=2000, temperature=0.1) -> str:
        self.complete_calls.append(list(messages))
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary


class FakeBackend(SearchBackend):
    """Records every call; returns canned data or raises when *fail* is set."""

    def __init__(self, hits: List[SearchHit] | None = None, fail: bool = False) -> None:
        self.hits = hits or []
        self.fail = fail
        self.calls: List[tuple] = []
        self.closed = False
        self.indices = ["logs", "users"]
        self.mapping: Dict[str, Any] = {
            "logs": {"mappings": {"properties": {"msg": {"type": "text"}}}}
        }

    def _check(self) -> None:
        if self.fail:
            raise SearchBackendError("connection refused")

    def search(self, index: str, query: Mapping[str, Any], size: int = 10) -> SearchResponse:
        self.calls.append(("search", index, query, size))
        self._check()
        return SearchResponse(total=len(self.hits), hits=self.hits[:size])

    def list_indices(self) -> List[str]:
        self.calls.append(("list_indices",))
        self._check()
        return list(self.indices)

    def get_mapping(self, index: str) -> Dict[str, Any]:
        self.calls.append(("get_mapping", index))
        self._check()
        return self.mapping

    def close(self) -> None:
        self.closed = True


def tool_call(name: str, arguments: str = "{}", call_id: str | None = None) -> ToolCallRequest:
    """Build a tool-call request the way a provider would."""
    return ToolCallRequest(id=call_id or f"call_{name}", name=name, arguments=arguments)


@pytest.fixture
def backend() -> FakeBackend:
    """Backend with two hits."""
    return FakeBackend(
        hits=[
            SearchHit(id="1", score=2.5, source={"name": "parse", "file_path": "src/parse.ts"}),
            SearchHit(id="2", score=1.0, source={"name": "render", "file_path": "src/render.ts"}),
        ]
    )


@pytest.fixture
def summarizer() -> ScriptedProvider:
    """Provider used only for rephrasing."""
    return ScriptedProvider([CompletionResult()], summary="rephrased summary")


@pytest.fixture
def context(backend: FakeBackend, summarizer: ScriptedProvider) -> ToolContext:
    """Tool context wired to the fakes."""
    return ToolContext(backend=backend, rephraser=ResultRephraser(summarizer))


@pytest.fixture
def executor(context: ToolContext) -> ToolExecutor:
    """Executor over the fake context."""
    return ToolExecutor(context)
