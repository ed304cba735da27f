"""Collaborator protocols and the shared error hierarchy.

The enrichment core talks to four external collaborators: the tagger, the
gazetteer, the document store and the message broker. Each is described by
a Protocol so any implementation satisfying the contract can be swapped in.

Error Handling Contract:
- AdapterTimeoutError: network timeouts (unexpected)
- AdapterRateLimitError: provider throttling, HTTP 429 (transient)
- AdapterParseError: malformed responses or unexpected HTTP errors
- AdapterAuthError: authentication failures
- None / empty result: nothing found (expected)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from conflictradar.adapters.geonames import GeoNameRecord
    from conflictradar.models import EnrichedArticle, IndexingStats, RawEntity


@runtime_checkable
class Tagger(Protocol):
    """Named-entity recognizer producing token-level tags."""

    def is_ready(self) -> bool:
        """True once the underlying model is loaded."""
        ...

    def tag(self, text: str) -> list[RawEntity]:
        """Tag text, returning one RawEntity per entity token in document order."""
        ...


@runtime_checkable
class Gazetteer(Protocol):
    """Place-name lookup service."""

    @property
    def source_name(self) -> str: ...

    async def search(self, name: str) -> GeoNameRecord | None:
        """Return the best populated-place match, or None if nothing matched.

        Raises:
            AdapterTimeoutError: If the request times out.
            AdapterRateLimitError: If the provider throttles the request.
            AdapterParseError: If the response cannot be parsed.
        """
        ...

    async def close(self) -> None: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Upsert-by-id store for enriched articles."""

    async def upsert(self, document: EnrichedArticle) -> None: ...

    async def bulk_upsert(self, documents: Sequence[EnrichedArticle]) -> int: ...

    async def exists(self, article_id: str) -> bool: ...

    async def get(self, article_id: str) -> EnrichedArticle | None: ...

    async def find_high_priority(self, limit: int = ...) -> list[EnrichedArticle]: ...

    async def find_by_risk_range(
        self, min_risk: float, max_risk: float, limit: int = ...
    ) -> list[EnrichedArticle]: ...

    async def search_text(self, query: str, limit: int = ...) -> list[EnrichedArticle]: ...

    async def stats(self) -> IndexingStats: ...

    async def close(self) -> None: ...


@runtime_checkable
class EventBroker(Protocol):
    """Keyed, topic-based message broker (producer side)."""

    async def send(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        """Send one keyed message. Raises on delivery failure."""
        ...


class AdapterError(Exception):
    """Base exception for all collaborator errors.

    Attributes:
        source_name: The collaborator that raised this error.
        message: Human-readable error description.
    """

    def __init__(self, source_name: str, message: str) -> None:
        self.source_name = source_name
        self.message = message
        super().__init__(f"[{source_name}] {message}")


class AdapterTimeoutError(AdapterError):
    """Raised when a collaborator call exceeds its time bound."""

    def __init__(self, source_name: str, timeout_seconds: float | None = None) -> None:
        msg = "Request timed out"
        if timeout_seconds is not None:
            msg = f"Request timed out after {timeout_seconds}s"
        super().__init__(source_name, msg)
        self.timeout_seconds = timeout_seconds


class AdapterRateLimitError(AdapterError):
    """Raised when the provider answers HTTP 429."""

    def __init__(self, source_name: str) -> None:
        super().__init__(source_name, "Rate limit exceeded")


class AdapterParseError(AdapterError):
    """Raised when a response cannot be parsed or has an unexpected status."""

    def __init__(self, source_name: str, details: str | None = None) -> None:
        msg = "Failed to parse response"
        if details:
            msg = f"Failed to parse response: {details}"
        super().__init__(source_name, msg)
        self.details = details


class AdapterAuthError(AdapterError):
    """Raised when authentication fails. Retrying will not help."""

    def __init__(self, source_name: str, details: str | None = None) -> None:
        msg = "Authentication failed"
        if details:
            msg = f"Authentication failed: {details}"
        super().__init__(source_name, msg)
        self.details = details


StatusType = Literal["success", "no_data", "rate_limited", "error"]


def handle_http_status(
    source_name: str,
    status_code: int,
) -> tuple[StatusType, AdapterError | None]:
    """Classify an HTTP status code.

    Args:
        source_name: Collaborator name used in raised errors.
        status_code: HTTP status code of the response.

    Returns:
        Tuple of (status_type, exception). The exception is set for
        rate limiting, auth failures and unexpected statuses.
    """
    if 200 <= status_code < 300:
        return "success", None
    if status_code == 404:
        return "no_data", None
    if status_code == 429:
        return "rate_limited", AdapterRateLimitError(source_name)
    if status_code in (401, 403):
        return "error", AdapterAuthError(source_name, f"HTTP {status_code}")
    return "error", AdapterParseError(source_name, f"Unexpected HTTP status {status_code}")


__all__ = [
    "Tagger",
    "Gazetteer",
    "DocumentStore",
    "EventBroker",
    "AdapterError",
    "AdapterTimeoutError",
    "AdapterRateLimitError",
    "AdapterParseError",
    "AdapterAuthError",
    "handle_http_status",
]
