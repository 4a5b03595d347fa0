"""releases.moe (Seadex) catalog client.

releases.moe exposes its curated anime release list through a PocketBase
REST API. Each *entry* belongs to one AniList ID and expands to the torrents
(``trs``) the Seadex team picked for it; torrents flagged ``isBest`` are the
recommended release, the rest are acceptable alternatives.

Only public Nyaa torrents are emitted, since those are the only ones a PVR
can download without tracker credentials.

API: https://releases.moe/about/
"""

import re
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from seadexerr import __version__
from seadexerr.config import settings

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

ENTRIES_ENDPOINT = "collections/entries/records"

PUBLIC_TRACKER = "Nyaa"

NYAA_DOWNLOAD_URL = "https://nyaa.si/download/{id}.torrent"

USER_AGENT = f"seadexerr/{__version__}"

# Curation ranks derived from the Seadex flags
BEST_RANK = 1
ALTERNATIVE_RANK = 0

_NYAA_VIEW_ID = re.compile(r"/view/(\d+)(?:[/?#]|$)")


# =============================================================================
# Exceptions
# =============================================================================


class ReleasesError(Exception):
    """Base exception for releases.moe errors."""

    pass


class ReleasesUnavailableError(ReleasesError):
    """Raised when releases.moe cannot be reached, times out or fails."""

    pass


class ReleasesParseError(ReleasesError):
    """Raised when a releases.moe payload has an unexpected shape."""

    pass


# =============================================================================
# Data Models
# =============================================================================


class Release(BaseModel):
    """A candidate torrent release for one anime."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    download_url: str
    info_url: str
    info_hash: str | None = None
    size_bytes: int = 0
    seeders: int | None = None
    rank: int = ALTERNATIVE_RANK
    published: datetime | None = None
    anilist_id: int | None = None
    release_group: str = ""
    dual_audio: bool = False
    file_count: int = 0

    @property
    def canonical_id(self) -> str:
        """De-duplication key identifying the physical torrent."""
        if self.info_hash:
            return self.info_hash.strip().lower()
        if self.download_url:
            return self.download_url
        return self.id

    @property
    def is_best(self) -> bool:
        return self.rank >= BEST_RANK


# =============================================================================
# Parsing Helpers
# =============================================================================


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a PocketBase timestamp (``2024-01-05 10:20:30.123Z``).

    Args:
        value: Timestamp string

    Returns:
        Timezone-aware datetime or None if empty/invalid
    """
    if not value:
        return None

    normalized = value.strip().replace(" ", "T", 1)
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def extract_nyaa_id(url: str) -> str | None:
    """Extract the numeric torrent ID from a Nyaa view URL."""
    match = _NYAA_VIEW_ID.search(url or "")
    return match.group(1) if match else None


def nyaa_download_url(url: str) -> str | None:
    """Rewrite a Nyaa view URL into its .torrent download URL."""
    nyaa_id = extract_nyaa_id(url)
    if nyaa_id is None:
        return None
    return NYAA_DOWNLOAD_URL.format(id=nyaa_id)


def _strip_extension(name: str) -> str:
    stem, dot, ext = name.rpartition(".")
    if dot and stem and 1 <= len(ext) <= 4 and ext.isalnum():
        return stem
    return name


def build_title(release_group: str, file_names: list[str], fallback: str) -> str:
    """Build a display title for a torrent from its file list.

    Single-file torrents use the file name; batches use the shared folder
    or the common prefix of their file names. The release group is
    prepended when the name does not already carry it.

    Args:
        release_group: Release group name
        file_names: File names inside the torrent
        fallback: Title to use when nothing better is available

    Returns:
        Human readable title
    """
    names = [name for name in file_names if name]
    title = ""

    if len(names) == 1:
        title = _strip_extension(names[0].rsplit("/", 1)[-1])
    elif names:
        if all("/" in name for name in names):
            folders = {name.split("/", 1)[0] for name in names}
            if len(folders) == 1:
                title = folders.pop()
        if not title:
            prefix = names[0]
            for name in names[1:]:
                while not name.startswith(prefix):
                    prefix = prefix[:-1]
            # Drop a partially shared episode number
            title = prefix.rstrip("0123456789").rstrip(" -_.([")

    title = title.strip() or fallback
    if release_group and release_group.lower() not in title.lower():
        title = f"[{release_group}] {title}"
    return title


def release_from_record(record: dict[str, Any], anilist_id: int | None) -> Release | None:
    """Convert a releases.moe torrent record into a Release.

    Args:
        record: Torrent record from an expanded entry
        anilist_id: AniList ID of the owning entry

    Returns:
        Release, or None for non-public or undownloadable torrents
    """
    if record.get("tracker") != PUBLIC_TRACKER:
        return None

    info_url = record.get("url") or ""
    download_url = nyaa_download_url(info_url)
    if download_url is None:
        return None

    files = [f for f in record.get("files") or [] if isinstance(f, dict)]
    file_names = [str(f.get("name") or "") for f in files]
    size_bytes = sum(int(f.get("length") or 0) for f in files)
    release_group = str(record.get("releaseGroup") or "")

    return Release(
        id=str(record["id"]),
        title=build_title(release_group, file_names, fallback=f"AniList {anilist_id}"),
        download_url=download_url,
        info_url=info_url,
        info_hash=record.get("infoHash") or None,
        size_bytes=size_bytes,
        rank=BEST_RANK if record.get("isBest") else ALTERNATIVE_RANK,
        published=parse_timestamp(record.get("updated")) or parse_timestamp(record.get("created")),
        anilist_id=anilist_id,
        release_group=release_group,
        dual_audio=bool(record.get("dualAudio")),
        file_count=len(files),
    )


# =============================================================================
# Releases Client
# =============================================================================


class ReleasesClient:
    """Async client for the releases.moe PocketBase API.

    Example:
        async with ReleasesClient() as client:
            releases = await client.fetch_releases(154587)
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
    ):
        """Initialize releases.moe client.

        Args:
            base_url: API root. Uses settings.releases_base_url if None.
            timeout: Request timeout in seconds. Uses settings.releases_timeout if None.
            page_size: Entries per request. Uses settings.default_limit if None.
        """
        self._base_url = base_url or settings.releases_base_url
        if not self._base_url.endswith("/"):
            self._base_url += "/"
        self._timeout = timeout if timeout is not None else settings.releases_timeout
        self._page_size = page_size or settings.default_limit
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ReleasesClient":
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
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
            raise RuntimeError("ReleasesClient must be used as async context manager")
        return self._client

    async def _request(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        """Make a GET request to the PocketBase API.

        Raises:
            ReleasesUnavailableError: Network error, timeout or non-200 status
            ReleasesParseError: Response is not a JSON object
        """
        url = f"{self._base_url}{endpoint}"
        logger.debug("releases_request", endpoint=endpoint, params=params)

        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.warning("releases_timeout", endpoint=endpoint)
            raise ReleasesUnavailableError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.warning("releases_http_error", endpoint=endpoint, error=str(e))
            raise ReleasesUnavailableError(f"HTTP error: {e}") from e

        if response.status_code != 200:
            error_msg = response.text[:200] if response.text else "Unknown error"
            raise ReleasesUnavailableError(
                f"releases.moe API error {response.status_code}: {error_msg}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ReleasesParseError(f"Invalid JSON from releases.moe: {e}") from e

        if not isinstance(data, dict):
            raise ReleasesParseError("releases.moe response is not a JSON object")
        return data

    async def fetch_releases(self, anilist_id: int) -> list[Release]:
        """Fetch all public Seadex torrents recorded for an anime.

        Args:
            anilist_id: AniList anime ID

        Returns:
            Releases in the order releases.moe lists them

        Raises:
            ReleasesUnavailableError: If the API cannot be queried
            ReleasesParseError: If the payload is malformed
        """
        params = {
            "filter": f"(alID={anilist_id})",
            "expand": "trs",
            "page": 1,
            "perPage": self._page_size,
        }
        data = await self._request(ENTRIES_ENDPOINT, params)

        items = data.get("items")
        if not isinstance(items, list):
            raise ReleasesParseError("releases.moe response has no items list")

        releases = []
        for entry in items:
            if not isinstance(entry, dict):
                continue
            entry_anilist_id = entry.get("alID")
            if not isinstance(entry_anilist_id, int):
                entry_anilist_id = anilist_id

            expand = entry.get("expand")
            if not isinstance(expand, dict):
                continue
            for record in expand.get("trs") or []:
                if not isinstance(record, dict) or "id" not in record:
                    continue
                release = release_from_record(record, entry_anilist_id)
                if release is not None:
                    releases.append(release)

        logger.info(
            "releases_fetched",
            anilist_id=anilist_id,
            entries=len(items),
            releases_count=len(releases),
        )
        return releases
