"""Tests for the apibay.org search provider.

This module tests the PirateBay API provider including response parsing,
the empty-result sentinel, retries on gateway errors, and error handling.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.library.models import MediaItem
from src.search.base import ProviderParseError, ProviderUnavailableError
from src.search.piratebay import (
    API_MAX_RETRIES,
    PIRATEBAY_API_URL,
    APIBayProvider,
    parse_api_results,
)

# =============================================================================
# Sample API Fixtures
# =============================================================================

SAMPLE_API_RESPONSE = [
    {
        "id": "123456",
        "name": "Dune.2021.1080p.BluRay.x264",
        "info_hash": "ABCD1234567890ABCD1234567890ABCD12345678",
        "leechers": "200",
        "seeders": "1500",
        "size": "4692000000",
    },
    {
        "id": "345678",
        "name": "Dune.2021.2160p.UHD.BluRay.REMUX",
        "info_hash": "ijkl9012345678ijkl9012345678ijkl90123456",
        "leechers": "100",
        "seeders": "300",
        "size": "60000000000",
    },
]

EMPTY_SENTINEL = [
    {
        "id": "0",
        "name": "No results returned",
        "info_hash": "0000000000000000000000000000000000000000",
        "leechers": "0",
        "seeders": "0",
        "size": "0",
    }
]

MOVIE = MediaItem(id=1, title="Dune", year=2021)


def api_response(status: int, json_data: object = None, text: str | None = None) -> httpx.Response:
    request = httpx.Request("GET", f"{PIRATEBAY_API_URL}/q.php")
    if text is not None:
        return httpx.Response(status, text=text, request=request)
    return httpx.Response(status, json=json_data, request=request)


# =============================================================================
# Parsing Tests
# =============================================================================


class TestParseApiResults:
    """Tests for parse_api_results."""

    def test_parse_results(self):
        results = parse_api_results(SAMPLE_API_RESPONSE)

        assert len(results) == 2
        first = results[0]
        assert first.title == "Dune.2021.1080p.BluRay.x264"
        assert first.info_hash == "abcd1234567890abcd1234567890abcd12345678"
        assert first.seeders == 1500
        assert first.leechers == 200
        assert first.size == 4692000000
        assert first.source == "apibay"
        assert first.provider_id == "123456"

    def test_empty_sentinel(self):
        """A single entry with id "0" means no results."""
        assert parse_api_results(EMPTY_SENTINEL) == []

    def test_empty_list(self):
        assert parse_api_results([]) == []

    def test_skips_entries_without_hash(self):
        data = [
            {"id": "1", "name": "No.Hash.1080p", "info_hash": ""},
            {"id": "2", "name": "Zero.Hash.1080p", "info_hash": "0"},
            {"id": "3", "name": "", "info_hash": "abc"},
            "garbage",
        ]
        assert parse_api_results(data) == []

    def test_bad_numbers_become_zero(self):
        data = [{"id": "1", "name": "Movie", "info_hash": "abc", "seeders": "n/a", "size": None}]

        result = parse_api_results(data)[0]

        assert result.seeders == 0
        assert result.size == 0

    def test_non_list_payload(self):
        with pytest.raises(ProviderParseError):
            parse_api_results({"error": "bad"})


# =============================================================================
# Provider Tests
# =============================================================================


class TestAPIBayProvider:
    """Tests for APIBayProvider class."""

    def test_init_default(self):
        provider = APIBayProvider()
        assert provider.base_url == PIRATEBAY_API_URL
        assert provider._client is None

    def test_init_custom_url(self):
        provider = APIBayProvider(base_url="https://custom-mirror.example/")
        assert provider.base_url == "https://custom-mirror.example"  # Trailing slash removed

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with APIBayProvider() as provider:
            assert provider._client is not None
        assert provider._client is None

    def test_client_property_not_initialized(self):
        provider = APIBayProvider()
        with pytest.raises(RuntimeError):
            _ = provider.client

    @pytest.mark.asyncio
    async def test_search_sends_query_and_category(self):
        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = api_response(200, SAMPLE_API_RESPONSE)

            async with APIBayProvider() as provider:
                results = await provider.search("Dune 2021", MOVIE)

        assert len(results) == 2
        args, kwargs = mock_get.call_args
        assert args[0] == f"{PIRATEBAY_API_URL}/q.php"
        assert kwargs["params"] == {"q": "Dune 2021", "cat": "200"}

    @pytest.mark.asyncio
    async def test_retries_on_gateway_error(self):
        """502 responses are retried before succeeding."""
        with (
            patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get,
            patch("src.search.piratebay.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            mock_get.side_effect = [api_response(502, {}), api_response(200, SAMPLE_API_RESPONSE)]

            async with APIBayProvider() as provider:
                results = await provider.search("Dune 2021", MOVIE)

        assert len(results) == 2
        assert mock_get.call_count == 2
        mock_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        with (
            patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get,
            patch("src.search.piratebay.asyncio.sleep", new_callable=AsyncMock),
        ):
            mock_get.return_value = api_response(503, {})

            async with APIBayProvider() as provider:
                with pytest.raises(ProviderUnavailableError, match="503"):
                    await provider.search("Dune 2021", MOVIE)

        assert mock_get.call_count == API_MAX_RETRIES

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = api_response(404, {})

            async with APIBayProvider() as provider:
                with pytest.raises(ProviderUnavailableError):
                    await provider.search("Dune 2021", MOVIE)

        assert mock_get.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ReadTimeout("timed out")

            async with APIBayProvider() as provider:
                with pytest.raises(ProviderUnavailableError, match="timed out"):
                    await provider.search("Dune 2021", MOVIE)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = api_response(200, text="<html>maintenance</html>")

            async with APIBayProvider() as provider:
                with pytest.raises(ProviderParseError):
                    await provider.search("Dune 2021", MOVIE)
