"""Sonarr API client for series metadata lookups.

Used to turn a free-text search term into candidate series with TVDB IDs.
Sonarr's lookup endpoint accepts either a title or a ``tvdb:<id>`` term.

API Documentation: https://sonarr.tv/docs/api/
"""

from typing import Any

import httpx
import structlog
from pydantic import BaseModel

from seadexerr import __version__
from seadexerr.config import settings

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

LOOKUP_ENDPOINT = "api/v3/series/lookup"

USER_AGENT = f"seadexerr/{__version__}"


# =============================================================================
# Exceptions
# =============================================================================


class SonarrError(Exception):
    """Base exception for Sonarr API errors."""

    pass


class SonarrAuthError(SonarrError):
    """Raised when the Sonarr API key is rejected."""

    pass


class SonarrUnavailableError(SonarrError):
    """Raised when Sonarr cannot be reached or times out."""

    pass


# =============================================================================
# Data Models
# =============================================================================


class SeriesDescriptor(BaseModel):
    """Series resolved from Sonarr, valid for the duration of one query."""

    title: str
    tvdb_id: int | None = None
    year: int | None = None


# =============================================================================
# Sonarr Client
# =============================================================================


class SonarrClient:
    """Async client for the Sonarr v3 API.

    Example:
        async with SonarrClient() as client:
            series = await client.resolve_series("Frieren")
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize Sonarr client.

        Args:
            base_url: Sonarr base URL. Uses settings.sonarr_base_url if None.
            api_key: Sonarr API key. Uses settings.sonarr_api_key if None.
            timeout: Request timeout in seconds. Uses settings.sonarr_timeout if None.
        """
        if api_key is None:
            if settings.sonarr_api_key is None:
                raise SonarrAuthError("Sonarr API key is not configured")
            api_key = settings.sonarr_api_key.get_secret_value()

        self._base_url = base_url or settings.sonarr_base_url
        if not self._base_url.endswith("/"):
            self._base_url += "/"
        self._api_key = api_key
        self._timeout = timeout if timeout is not None else settings.sonarr_timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "SonarrClient":
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
                "X-Api-Key": self._api_key,
            },
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, ensuring it's initialized.

        Raises:
            RuntimeError: If client not initialized (not in context manager)
        """
        if self._client is None:
            raise RuntimeError("SonarrClient must be used as async context manager")
        return self._client

    async def _request(self, endpoint: str, params: dict[str, Any]) -> Any:
        """Make a GET request to the Sonarr API.

        Raises:
            SonarrAuthError: Invalid API key (401/403)
            SonarrUnavailableError: Network error or timeout
            SonarrError: Other API errors or malformed payloads
        """
        url = f"{self._base_url}{endpoint}"
        logger.debug("sonarr_request", endpoint=endpoint, params=params)

        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.warning("sonarr_timeout", endpoint=endpoint)
            raise SonarrUnavailableError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.warning("sonarr_http_error", endpoint=endpoint, error=str(e))
            raise SonarrUnavailableError(f"HTTP error: {e}") from e

        if response.status_code in (401, 403):
            raise SonarrAuthError("Sonarr rejected the API key")
        if response.status_code != 200:
            error_msg = response.text[:200] if response.text else "Unknown error"
            raise SonarrError(f"Sonarr API error {response.status_code}: {error_msg}")

        try:
            return response.json()
        except ValueError as e:
            raise SonarrError(f"Invalid JSON from Sonarr: {e}") from e

    async def resolve_series(self, term: str) -> list[SeriesDescriptor]:
        """Look up series matching a title or ``tvdb:<id>`` term.

        Args:
            term: Free-text title or tvdb term

        Returns:
            Candidate series in Sonarr's relevance order
        """
        payload = await self._request(LOOKUP_ENDPOINT, {"term": term})
        if not isinstance(payload, list):
            raise SonarrError("Sonarr lookup response is not a list")

        results = []
        for item in payload:
            if not isinstance(item, dict) or not item.get("title"):
                continue

            tvdb_id = item.get("tvdbId")
            year = item.get("year")
            results.append(
                SeriesDescriptor(
                    title=item["title"],
                    # Sonarr reports 0 for series it cannot tie to TVDB
                    tvdb_id=tvdb_id if isinstance(tvdb_id, int) and tvdb_id > 0 else None,
                    year=year if isinstance(year, int) and year > 0 else None,
                )
            )

        logger.info("sonarr_series_lookup", term=term, results_count=len(results))
        return results
