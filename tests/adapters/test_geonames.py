"""Tests for GeoNames adapter."""

import json
import re
from pathlib import Path

import httpx
import pytest

from conflictradar.adapters.base import (
    AdapterAuthError,
    AdapterParseError,
    AdapterRateLimitError,
    AdapterTimeoutError,
)
from conflictradar.adapters.geonames import GeoNamesAdapter
from conflictradar.config import Settings

GEONAMES_URL = re.compile(r".*api\.geonames\.org/searchJSON.*")


def load_fixture(name: str) -> dict:
    """Load JSON fixture file."""
    fixture_path = Path(__file__).parent.parent / "fixtures" / name
    return json.loads(fixture_path.read_text())


class TestGeoNamesAdapter:
    """Tests for the GeoNamesAdapter class."""

    def test_source_name(self, settings: Settings) -> None:
        assert GeoNamesAdapter(settings).source_name == "geonames"

    @pytest.mark.asyncio
    async def test_search_success(self, httpx_mock, settings: Settings) -> None:
        """Test string coordinates are coerced and the first place returned."""
        httpx_mock.add_response(url=GEONAMES_URL, json=load_fixture("geonames_search.json"))

        adapter = GeoNamesAdapter(settings)
        record = await adapter.search("Kharkiv")

        assert record is not None
        assert record.name == "Kharkiv"
        assert record.country_name == "Ukraine"
        assert record.lat == pytest.approx(49.98081)
        assert record.lng == pytest.approx(36.25272)
        assert record.population == 1430885

        request = httpx_mock.get_request()
        assert request.url.params["q"] == "Kharkiv"
        assert request.url.params["maxRows"] == "1"
        assert request.url.params["featureClass"] == "P"
        assert request.url.params["username"] == "test_user"

        await adapter.close()

    @pytest.mark.asyncio
    async def test_search_no_results(self, httpx_mock, settings: Settings) -> None:
        httpx_mock.add_response(url=GEONAMES_URL, json=load_fixture("geonames_empty.json"))

        adapter = GeoNamesAdapter(settings)

        assert await adapter.search("Atlantis") is None
        await adapter.close()

    @pytest.mark.asyncio
    async def test_blank_name_makes_no_request(self, httpx_mock, settings: Settings) -> None:
        adapter = GeoNamesAdapter(settings)

        assert await adapter.search("   ") is None
        assert httpx_mock.get_requests() == []
        await adapter.close()

    @pytest.mark.asyncio
    async def test_http_429_raises_rate_limit(self, httpx_mock, settings: Settings) -> None:
        httpx_mock.add_response(url=GEONAMES_URL, status_code=429)

        adapter = GeoNamesAdapter(settings)

        with pytest.raises(AdapterRateLimitError) as exc_info:
            await adapter.search("Kharkiv")

        assert exc_info.value.source_name == "geonames"
        await adapter.close()

    @pytest.mark.asyncio
    async def test_quota_status_in_body_raises_rate_limit(
        self, httpx_mock, settings: Settings
    ) -> None:
        httpx_mock.add_response(
            url=GEONAMES_URL,
            json={"status": {"message": "the daily limit of 20000 credits has been exceeded", "value": 18}},
        )

        adapter = GeoNamesAdapter(settings)

        with pytest.raises(AdapterRateLimitError):
            await adapter.search("Kharkiv")
        await adapter.close()

    @pytest.mark.asyncio
    async def test_invalid_user_raises_auth_error(self, httpx_mock, settings: Settings) -> None:
        httpx_mock.add_response(
            url=GEONAMES_URL,
            json={"status": {"message": "user account not enabled to use the free webservice", "value": 10}},
        )

        adapter = GeoNamesAdapter(settings)

        with pytest.raises(AdapterAuthError):
            await adapter.search("Kharkiv")
        await adapter.close()

    @pytest.mark.asyncio
    async def test_malformed_json_raises_parse_error(self, httpx_mock, settings: Settings) -> None:
        httpx_mock.add_response(url=GEONAMES_URL, text="<html>maintenance</html>")

        adapter = GeoNamesAdapter(settings)

        with pytest.raises(AdapterParseError):
            await adapter.search("Kharkiv")
        await adapter.close()

    @pytest.mark.asyncio
    async def test_timeout_raises_error(self, httpx_mock, settings: Settings) -> None:
        """Test timeout raises AdapterTimeoutError with source name."""
        httpx_mock.add_exception(
            httpx.TimeoutException("Connection timed out"),
            url=GEONAMES_URL,
        )

        adapter = GeoNamesAdapter(settings)

        with pytest.raises(AdapterTimeoutError) as exc_info:
            await adapter.search("Kharkiv")

        assert exc_info.value.source_name == "geonames"
        assert exc_info.value.__cause__ is not None
        await adapter.close()
