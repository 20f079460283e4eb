"""
Search backend interface and the Elasticsearch implementation.

The agent only needs three operations from its search service: run a structured query against an
index, list indices, and fetch an index mapping.  :class:`ElasticsearchBackend` speaks the
Elasticsearch REST API directly over ``httpx``.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
    List,
    Mapping,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from elastic_agent.config import settings

logger = logging.getLogger(__name__)


class SearchBackendError(RuntimeError):
    """Raised when the search service is unreachable or returns an unusable response."""


class SearchHit(BaseModel):
    """A single ranked hit."""

    id: str
    score: float | None = None
    source: Dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    """Hits returned for one query, with the total match count."""

    total: int = 0
    hits: List[SearchHit] = Field(default_factory=list)


class SearchBackend(ABC):
    """Abstract search service consumed by the search tools."""

    @abstractmethod
    def search(self, index: str, query: Mapping[str, Any], size: int = 10) -> SearchResponse:
        """Execute *query* (backend-native query object) against *index*."""

    @abstractmethod
    def list_indices(self) -> List[str]:
        """Return the names of all available indices."""

    @abstractmethod
    def get_mapping(self, index: str) -> Dict[str, Any]:
        """Return the raw field mapping of *index*."""

    def close(self) -> None:
        """Release any connections held by the backend."""


class ElasticsearchBackend(SearchBackend):
    """Elasticsearch REST client built on httpx."""

    def __init__(
        self,
        url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        username = username if username is not None else settings.ELASTICSEARCH_USERNAME
        password = password if password is not None else settings.ELASTICSEARCH_PASSWORD
        self._client = httpx.Client(
            base_url=(url or settings.ELASTICSEARCH_URL).rstrip("/"),
            auth=httpx.BasicAuth(username, password) if username and password else None,
            timeout=timeout or settings.ELASTICSEARCH_TIMEOUT,
            transport=transport,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def search(self, index: str, query: Mapping[str, Any], size: int = 10) -> SearchResponse:
        body = {"query": query, "size": size, "from": 0}
        data = self._request("POST", f"/{index}/_search", json=body)

        hits = data.get("hits") or {}
        total = hits.get("total", 0)
        if isinstance(total, dict):  # ES 7+: {"value": n, "relation": "eq"}
            total = total.get("value", 0)

        return SearchResponse(
            total=int(total or 0),
            hits=[
                SearchHit(
                    id=str(hit.get("_id", "")),
                    score=hit.get("_score"),
                    source=hit.get("_source") or {},
                )
                for hit in hits.get("hits") or []
            ],
        )

    def list_indices(self) -> List[str]:
        data = self._request("GET", "/_cat/indices", params={"format": "json"})
        return [entry["index"] for entry in data if "index" in entry]

    def get_mapping(self, index: str) -> Dict[str, Any]:
        return self._request("GET", f"/{index}/_mapping")

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self._client.close()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Elasticsearch %s %s failed: %s", method, path, exc.response.text[:200])
            raise SearchBackendError(
                f"Elasticsearch returned {exc.response.status_code} for {method} {path}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Elasticsearch request error: %s", exc)
            raise SearchBackendError(f"Could not reach Elasticsearch: {exc}") from exc
        except ValueError as exc:
            raise SearchBackendError(f"Malformed response from Elasticsearch: {exc}") from exc
