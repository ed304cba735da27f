"""Shared pytest fixtures for conflictradar tests."""

from pathlib import Path

import pytest

from conflictradar.adapters.base import AdapterRateLimitError
from conflictradar.adapters.document_store import SQLiteDocumentStore
from conflictradar.cache import CacheManager
from conflictradar.config import Settings

from fixtures.doubles import FakeGazetteer, StaticTagger
from fixtures.pipeline_scenarios import (
    ESCALATION_TITLE,
    ESCALATION_TOKENS,
    QUIET_TITLE,
    QUIET_TOKENS,
    SUMMIT_TITLE,
    SUMMIT_TOKENS,
    token_tags,
)


@pytest.fixture
def settings() -> Settings:
    """Settings that never touch the user's cache or config."""
    return Settings(
        geonames_username="test_user",
        cache_persistent=False,
        indexing_batch_size=1,
        publish_timeout=2.0,
        indexing_timeout=2.0,
        consumer_workers=2,
        consumer_partitions=4,
    )


@pytest.fixture
def scenario_tagger() -> StaticTagger:
    """Tagger that knows the scenario headlines."""
    return StaticTagger(
        {
            SUMMIT_TITLE: token_tags(SUMMIT_TITLE, SUMMIT_TOKENS),
            ESCALATION_TITLE: token_tags(ESCALATION_TITLE, ESCALATION_TOKENS),
            QUIET_TITLE: token_tags(QUIET_TITLE, QUIET_TOKENS),
        }
    )


@pytest.fixture
def gazetteer() -> FakeGazetteer:
    return FakeGazetteer()


@pytest.fixture
def throttled_gazetteer() -> FakeGazetteer:
    """Gazetteer answering HTTP 429 to everything."""
    return FakeGazetteer(error=AdapterRateLimitError("geonames"))


@pytest.fixture
async def cache_manager():
    """Provide a memory-only CacheManager that is properly closed after tests."""
    manager = CacheManager()
    yield manager
    await manager.close()


@pytest.fixture
async def document_store(tmp_path: Path):
    """SQLite document store in a temporary directory."""
    store = SQLiteDocumentStore(tmp_path / "articles.db")
    yield store
    await store.close()
