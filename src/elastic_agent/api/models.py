"""
Pydantic models for the agent API requests and responses.
This module defines the request and response schemas used by the agent API.
"""

from typing import Optional

from pydantic import (
    BaseModel,
    Field,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user question."""

    message: str = Field(..., min_length=1, description="Question about the Elasticsearch data")
    session_id: Optional[str] = Field(None, description="Session ID; a new session if omitted")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    messages: int = Field(0, description="Conversation length when the query finished")
