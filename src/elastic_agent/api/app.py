"""
HTTP API for the search agent.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **POST /agent**   - ask a question: {"message": "...", "session_id": "..."}

Every session owns its own :class:`AgentLoop`; requests for the same session are serialized.
The completion provider, search backend and tool executor are shared by all sessions and closed
when the application shuts down.
"""

import logging
import threading
import uuid
from contextlib import asynccontextmanager
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
)

from fastapi import FastAPI

from elastic_agent.agent.agent_loop import (
    AgentLoop,
    build_executor,
)
from elastic_agent.agent.providers import (
    BaseProvider,
    load_provider,
)
from elastic_agent.agent.tool_executor import ToolExecutor
from elastic_agent.api.models import (
    MessageRequest,
    MessageResponse,
    SessionResponse,
)
from elastic_agent.common import (
    AnsiColors,
    colored_print,
)
from elastic_agent.config import settings
from elastic_agent.search.backend import (
    ElasticsearchBackend,
    SearchBackend,
)

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One user's agent plus the lock that keeps its queries sequential."""

    agent: AgentLoop
    lock: threading.Lock = field(default_factory=threading.Lock)


class SharedResources:
    """
    Process-wide collaborators handed to every session's :class:`AgentLoop`.

    They are created on first use and released by :meth:`close`.  Only the loop itself holds
    per-session state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.backend: Optional[SearchBackend] = None
        self.provider: Optional[BaseProvider] = None
        self.executor: Optional[ToolExecutor] = None

    def new_agent(self) -> AgentLoop:
        """Return a fresh loop over the shared provider and executor."""
        with self._lock:
            if self.executor is None:
                self.backend = ElasticsearchBackend()
                self.provider = load_provider(settings.PROVIDER)
                self.executor = build_executor(self.backend)
                logger.info("Initialized shared agent resources (provider=%s)", settings.PROVIDER)
            return AgentLoop(provider=self.provider, executor=self.executor)

    def close(self) -> None:
        """Close the search backend and forget the shared objects."""
        with self._lock:
            if self.backend is not None:
                self.backend.close()
                logger.info("Closed search backend")
            self.backend = None
            self.provider = None
            self.executor = None


# Session storage (in-memory)
sessions: Dict[str, Session] = {}
_sessions_lock = threading.Lock()
resources = SharedResources()

# Replaced in tests to avoid real providers / Elasticsearch
agent_factory: Callable[[], AgentLoop] = resources.new_agent


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Release shared clients when the server stops."""
    yield
    resources.close()


app = FastAPI(title="Elastic AI Agent API", version="0.1.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_or_create_session(session_id: Optional[str] = None) -> str:
    """Get existing session or create a new one."""
    with _sessions_lock:
        if session_id and session_id in sessions:
            return session_id

        new_session_id = str(uuid.uuid4())
        sessions[new_session_id] = Session(agent=agent_factory())
        logger.info("Created session %s", new_session_id)
        return new_session_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
def create_session() -> SessionResponse:
    """Create a new agent session."""
    return SessionResponse(session_id=get_or_create_session())


@app.get("/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions() -> List[str]:
    """List all active session IDs."""
    return list(sessions.keys())


@app.post("/agent", response_model=MessageResponse, summary="Ask the agent a question")
def agent_endpoint(req: MessageRequest) -> MessageResponse:
    """Run one question through the session's agent loop.

    Declared sync so FastAPI runs the blocking loop in its threadpool.
    """
    session_id = get_or_create_session(req.session_id)
    session = sessions[session_id]

    with session.lock:
        reply = session.agent.process_query(req.message)
        length = len(session.agent.state.messages)

    logger.debug("Session %s answered after %d messages", session_id, length)
    return MessageResponse(reply=reply, session_id=session_id, messages=length)


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import keeps uvicorn out of package import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting agent API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"🤖 Elastic AI Agent API running at http://{host}:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://{host}:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "elastic_agent.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m elastic_agent.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
