"""GeoNames gazetteer adapter.

Looks up populated places by name through the GeoNames search web service.

API Reference: https://www.geonames.org/export/geonames-search.html
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from conflictradar.adapters.base import (
    AdapterAuthError,
    AdapterParseError,
    AdapterRateLimitError,
    AdapterTimeoutError,
    handle_http_status,
)
from conflictradar.config import Settings, get_settings

logger = logging.getLogger(__name__)

# GeoNames reports quota problems in the body of a 200 response
_QUOTA_STATUS_CODES = {18, 19, 20}  # daily, hourly, weekly limit exceeded
_AUTH_STATUS_CODES = {10}  # invalid user / user account not enabled


class GeoNameRecord(BaseModel):
    """One place returned by the gazetteer."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: str
    country_name: str = Field(default="", alias="countryName")
    lat: float
    lng: float
    population: int = 0


class GeoNamesAdapter:
    """GeoNames adapter for place-name resolution.

    Requires a (free) GeoNames username. Only populated places
    (featureClass=P) are searched and only the best match is requested.

    Attributes:
        source_name: "geonames"
    """

    DEFAULT_TIMEOUT = 10.0  # seconds
    SEARCH_PATH = "/searchJSON"

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    @property
    def source_name(self) -> str:
        return "geonames"

    @property
    def timeout(self) -> float:
        return self._settings.geonames_timeout or self.DEFAULT_TIMEOUT

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.geonames_base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": "conflictradar/1.0"},
            )
        return self._client

    def _query_params(self, name: str) -> dict[str, str]:
        username = self._settings.geonames_username
        return {
            "q": name,
            "maxRows": "1",
            "featureClass": "P",
            "username": username.get_secret_value() if username else "demo",
        }

    def _check_body_status(self, data: dict[str, Any]) -> None:
        """Raise for error statuses GeoNames embeds in a 200 body."""
        status = data.get("status")
        if not status:
            return
        value = status.get("value")
        message = status.get("message", "")
        if value in _QUOTA_STATUS_CODES:
            raise AdapterRateLimitError(self.source_name)
        if value in _AUTH_STATUS_CODES:
            raise AdapterAuthError(self.source_name, message)
        raise AdapterParseError(self.source_name, f"GeoNames error {value}: {message}")

    async def search(self, name: str) -> GeoNameRecord | None:
        """Find the best populated-place match for a place name.

        Args:
            name: Place name as it appeared in the text.

        Returns:
            The first matching record, or None when nothing matched.

        Raises:
            AdapterTimeoutError: If the request times out or cannot connect.
            AdapterRateLimitError: If GeoNames throttles the request.
            AdapterAuthError: If the username is rejected.
            AdapterParseError: If the response cannot be parsed.
        """
        term = name.strip()
        if not term:
            return None

        client = await self._get_client()
        logger.debug(f"Querying GeoNames: {term}")

        try:
            response = await client.get(self.SEARCH_PATH, params=self._query_params(term))
        except httpx.TimeoutException as e:
            logger.warning(f"GeoNames timeout for: {term}")
            raise AdapterTimeoutError(self.source_name, self.timeout) from e
        except httpx.RequestError as e:
            logger.error(f"GeoNames request error: {e}")
            raise AdapterTimeoutError(self.source_name, self.timeout) from e

        status_type, exc = handle_http_status(self.source_name, response.status_code)
        if status_type == "rate_limited":
            logger.warning(f"GeoNames API rate limit exceeded for: {term}")
        if status_type == "no_data":
            return None
        if exc:
            raise exc

        try:
            data = response.json()
        except ValueError as e:
            raise AdapterParseError(self.source_name, "Invalid JSON response") from e

        self._check_body_status(data)

        places = data.get("geonames") or []
        if not places:
            logger.debug(f"No GeoNames results for: {term}")
            return None

        try:
            return GeoNameRecord.model_validate(places[0])
        except ValueError as e:
            raise AdapterParseError(self.source_name, f"Unexpected record: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("GeoNames adapter client closed")


__all__ = ["GeoNameRecord", "GeoNamesAdapter"]
