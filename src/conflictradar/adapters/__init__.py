"""External collaborators: gazetteer, document store and message broker."""

from conflictradar.adapters.base import (
    AdapterAuthError,
    AdapterError,
    AdapterParseError,
    AdapterRateLimitError,
    AdapterTimeoutError,
    DocumentStore,
    EventBroker,
    Gazetteer,
    Tagger,
    handle_http_status,
)
from conflictradar.adapters.broker import BrokerMessage, InMemoryBroker, partition_for
from conflictradar.adapters.document_store import SQLiteDocumentStore
from conflictradar.adapters.geonames import GeoNameRecord, GeoNamesAdapter

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
    "BrokerMessage",
    "GeoNameRecord",
    "GeoNamesAdapter",
    "InMemoryBroker",
    "SQLiteDocumentStore",
    "handle_http_status",
    "partition_for",
]
