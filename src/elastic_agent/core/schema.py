"""
Schema definitions for provider <-> agent <-> tool messages.

These data models serve as the contract between the completion providers, the orchestration loop,
and individual tools.  We keep them separate from runtime logic so they can be imported anywhere
without side-effects.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

Role = Literal["system", "user", "assistant", "tool"]


class ToolCallRequest(BaseModel):
    """A call that the completion service wants the agent to execute."""

    id: str = Field("", description="Identifier linking the tool result back to this request")
    name: str = Field(..., description="Registered tool name")
    arguments: str = Field("", description="Raw argument payload, expected to be a JSON object")


class Message(BaseModel):
    """One entry of the conversation sent to the completion service."""

    role: Role
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)  # assistant only
    tool_call_id: Optional[str] = None  # tool only
    name: Optional[str] = None  # tool only


class ToolDefinition(BaseModel):
    """Static description of a callable tool, sent verbatim on every turn."""

    name: str
    description: str
    parameters: Dict[str, Any]


class CompletionResult(BaseModel):
    """Assembled output of one streamed completion."""

    content: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)


class AgentState(BaseModel):
    """Conversation state for a single user query."""

    query: str = ""
    messages: List[Message] = Field(default_factory=list)
    is_complete: bool = False
    final_response: Optional[str] = None
