"""Configuration and logging setup for conflictradar."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config file location
CONFIG_FILE_PATH = Path.home() / ".config" / "conflictradar" / "config.toml"

# Fields that may also be supplied through the TOML config file
_CONFIG_FILE_KEYS: tuple[str, ...] = (
    "geonames_username",
    "geonames_base_url",
    "geonames_timeout",
    "ttl_geo",
    "ttl_extraction",
    "extraction_cache_enabled",
    "cache_db_path",
    "cache_persistent",
    "store_db_path",
    "indexing_batch_size",
    "topic_news_ingested",
    "topic_article_processed",
    "topic_entity_extracted",
    "topic_location_detected",
    "topic_sentiment_analyzed",
    "consumer_workers",
    "consumer_partitions",
    "publish_timeout",
    "indexing_timeout",
    "max_locations",
    "tagger_model",
    "log_level",
)


def _load_config_file(config_path: Path | None = None) -> dict[str, Any]:
    """Load configuration from TOML file if it exists.

    Args:
        config_path: Path to config file. Defaults to ~/.config/conflictradar/config.toml

    Returns:
        Dictionary of configuration values, empty dict if file doesn't exist
    """
    path = config_path or CONFIG_FILE_PATH
    if not path.exists():
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        # Config file is optional
        logging.getLogger(__name__).warning(
            "Failed to load config file %s: %s", path, type(e).__name__
        )
        return {}


class Settings(BaseSettings):
    """conflictradar settings loaded from environment variables.

    Settings are loaded in priority order:
    1. Environment variables (highest priority)
    2. .env file
    3. ~/.config/conflictradar/config.toml (lowest priority)

    The GeoNames username is stored as SecretStr so it never shows up in
    logs, repr, or error messages.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONFLICTRADAR_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Gazetteer
    geonames_username: SecretStr | None = None
    geonames_base_url: str = "http://api.geonames.org"
    geonames_timeout: float = 10.0

    # Cache TTLs (seconds)
    ttl_geo: int = 604800  # 7 days, places rarely move
    ttl_extraction: int = 86400  # 24 hours
    extraction_cache_enabled: bool = True
    cache_db_path: str = "~/.cache/conflictradar/cache.db"
    cache_persistent: bool = True

    # Document store
    store_db_path: str = "~/.local/share/conflictradar/articles.db"
    indexing_batch_size: int = 1
    indexing_timeout: float = 30.0

    # Broker topics
    topic_news_ingested: str = "news-ingested"
    topic_article_processed: str = "article-processed"
    topic_entity_extracted: str = "entity-extracted"
    topic_location_detected: str = "location-detected"
    topic_sentiment_analyzed: str = "sentiment-analyzed"
    publish_timeout: float = 10.0

    # Consumer
    consumer_workers: int = 2
    consumer_partitions: int = 4

    # Geographic resolution
    max_locations: int = 5

    # Tagger (spaCy pipeline name)
    tagger_model: str = "en_core_web_sm"

    # Logging
    log_level: str = "INFO"

    @model_validator(mode="before")
    @classmethod
    def load_from_config_file(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Load values from config file for any fields not set via env vars."""
        config_data = _load_config_file()

        if not config_data:
            return values

        for key in _CONFIG_FILE_KEYS:
            # env var takes precedence
            if key not in values or values[key] is None:
                if key in config_data:
                    values[key] = config_data[key]

        return values

    def has_geonames_credentials(self) -> bool:
        """Check if a GeoNames username is configured."""
        return bool(self.geonames_username)

    @property
    def output_topics(self) -> tuple[str, str, str, str]:
        """The four derived-event topics in publication order."""
        return (
            self.topic_article_processed,
            self.topic_entity_extracted,
            self.topic_location_detected,
            self.topic_sentiment_analyzed,
        )

    def __repr__(self) -> str:
        """Safe repr that masks credential values."""
        fields = []
        for name in type(self).model_fields:
            value = getattr(self, name)
            if name == "geonames_username":
                fields.append(f"{name}=SecretStr('**********')" if value else f"{name}=None")
            else:
                fields.append(f"{name}={value!r}")
        return f"Settings({', '.join(fields)})"

    def __str__(self) -> str:
        return self.__repr__()


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the singleton Settings instance.

    Primarily used for testing to ensure fresh settings are loaded.
    """
    global _settings
    _settings = None


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging for conflictradar."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "configure_logging",
    "CONFIG_FILE_PATH",
]
