"""Tests for the Sonarr API client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from seadexerr.media.sonarr import (
    LOOKUP_ENDPOINT,
    SeriesDescriptor,
    SonarrAuthError,
    SonarrClient,
    SonarrError,
    SonarrUnavailableError,
)

# =============================================================================
# Sample API Responses
# =============================================================================

SAMPLE_LOOKUP_RESPONSE = [
    {
        "title": "Frieren: Beyond Journey's End",
        "tvdbId": 424536,
        "year": 2023,
        "seasonCount": 1,
    },
    {
        "title": "Frieren: Beyond Journey's End (Specials)",
        "tvdbId": 0,
        "year": 0,
    },
    {"tvdbId": 12345},
    "garbage",
]


@pytest.fixture
def mock_response():
    """Create a mock HTTP response."""

    def _create_response(data, status_code: int = 200):
        response = MagicMock(spec=httpx.Response)
        response.status_code = status_code
        response.json.return_value = data
        response.text = str(data)
        response.headers = {}
        return response

    return _create_response


def _client() -> SonarrClient:
    return SonarrClient(base_url="http://sonarr:8989", api_key="test_key", timeout=5.0)


class TestSeriesDescriptor:
    """Tests for SeriesDescriptor."""

    def test_defaults(self):
        series = SeriesDescriptor(title="Mushishi")
        assert series.tvdb_id is None
        assert series.year is None


class TestSonarrClient:
    """Tests for SonarrClient."""

    def test_missing_api_key(self):
        """Test client refuses to start without an API key."""
        with patch("seadexerr.media.sonarr.settings") as mock_settings:
            mock_settings.sonarr_api_key = None

            with pytest.raises(SonarrAuthError, match="not configured"):
                SonarrClient()

    def test_api_key_from_settings(self):
        with patch("seadexerr.media.sonarr.settings") as mock_settings:
            mock_settings.sonarr_api_key.get_secret_value.return_value = "from_settings"
            mock_settings.sonarr_base_url = "http://sonarr:8989/"
            mock_settings.sonarr_timeout = 5.0

            client = SonarrClient()

        assert client._api_key == "from_settings"
        assert client._base_url == "http://sonarr:8989/"

    @pytest.mark.asyncio
    async def test_client_context_manager(self):
        """Test client as context manager sends the API key header."""
        async with _client() as client:
            assert client._client is not None
            assert client._client.headers["X-Api-Key"] == "test_key"
        assert client._client is None

    @pytest.mark.asyncio
    async def test_client_not_in_context(self):
        client = _client()
        with pytest.raises(RuntimeError, match="must be used as async context"):
            _ = client.client

    @pytest.mark.asyncio
    async def test_resolve_series(self, mock_response):
        """Test lookup parses candidates and drops unusable items."""
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(return_value=mock_response(SAMPLE_LOOKUP_RESPONSE))

            results = await client.resolve_series("frieren")

            assert len(results) == 2
            assert results[0].title == "Frieren: Beyond Journey's End"
            assert results[0].tvdb_id == 424536
            assert results[0].year == 2023
            # tvdbId 0 means "not on TVDB"
            assert results[1].tvdb_id is None
            assert results[1].year is None

            call_args = client._client.get.call_args
            assert call_args.args[0] == f"http://sonarr:8989/{LOOKUP_ENDPOINT}"
            assert call_args.kwargs["params"] == {"term": "frieren"}

    @pytest.mark.asyncio
    async def test_resolve_series_empty(self, mock_response):
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(return_value=mock_response([]))

            assert await client.resolve_series("nothing") == []

    @pytest.mark.asyncio
    async def test_non_list_payload(self, mock_response):
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(return_value=mock_response({"message": "nope"}))

            with pytest.raises(SonarrError, match="not a list"):
                await client.resolve_series("frieren")

    @pytest.mark.asyncio
    async def test_auth_error(self, mock_response):
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(return_value=mock_response({}, status_code=401))

            with pytest.raises(SonarrAuthError):
                await client.resolve_series("frieren")

    @pytest.mark.asyncio
    async def test_server_error(self, mock_response):
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(return_value=mock_response({}, status_code=500))

            with pytest.raises(SonarrError, match="500"):
                await client.resolve_series("frieren")

    @pytest.mark.asyncio
    async def test_timeout(self):
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

            with pytest.raises(SonarrUnavailableError, match="timeout"):
                await client.resolve_series("frieren")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        async with _client() as client:
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))

            with pytest.raises(SonarrUnavailableError):
                await client.resolve_series("frieren")

    @pytest.mark.asyncio
    async def test_invalid_json(self, mock_response):
        async with _client() as client:
            response = mock_response(None)
            response.json.side_effect = ValueError("Expecting value")
            client._client = MagicMock(spec=httpx.AsyncClient)
            client._client.get = AsyncMock(return_value=response)

            with pytest.raises(SonarrError, match="Invalid JSON"):
                await client.resolve_series("frieren")
