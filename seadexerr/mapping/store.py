"""TVDB → AniList mapping store backed by the PlexAniBridge mappings dataset.

The mapping document is a JSON object keyed by AniList ID:

    {
        "21": {"tvdb_id": 81797, "tvdb_mappings": {"s1": "e1-e61", "s2": ""}},
        ...
    }

The store keeps one immutable MappingTable snapshot. Refreshes build a new
table off to the side and publish it with a single reference assignment, so
lookups always see either the old or the new table and never take a lock.
The last successfully parsed document is cached on disk so a restart without
network still has a warm table.

Example:
    store = MappingStore()
    store.load()
    async with httpx.AsyncClient() as http:
        await store.refresh(http)
    anime_ids = store.resolve(81797, season=1)
"""

import asyncio
import json
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import httpx
import structlog

from seadexerr import __version__
from seadexerr.config import settings

logger = structlog.get_logger(__name__)

USER_AGENT = f"seadexerr/{__version__}"

_EPISODE_BOUND = re.compile(r"^e?(\d+)$", re.IGNORECASE)


# =============================================================================
# Exceptions
# =============================================================================


class MappingError(Exception):
    """Base exception for mapping store errors."""

    pass


class MappingDownloadError(MappingError):
    """Raised when the mappings document cannot be downloaded."""

    pass


class MappingParseError(MappingError):
    """Raised when a mappings document is not valid."""

    pass


class MappingPersistError(MappingError):
    """Raised when the mappings cache file cannot be written."""

    pass


# =============================================================================
# Data Model
# =============================================================================


def _parse_bound(value: str) -> int | None:
    match = _EPISODE_BOUND.match(value.strip())
    return int(match.group(1)) if match else None


def episode_range_covers(range_spec: str, episode: int) -> bool:
    """Check whether a PlexAniBridge episode range covers an episode.

    Supported segments (comma separated): ``""`` (whole season), ``e5``,
    ``e1-e12``, ``e13-`` and ``-e5``. A ``|ratio`` suffix on a segment is
    ignored. Unparseable segments are treated as covering, since they still
    belong to the season.

    Args:
        range_spec: Range string from the mappings document
        episode: Episode number within the season

    Returns:
        True if the episode falls in the range
    """
    segments = [part.split("|", 1)[0].strip() for part in range_spec.split(",")]
    segments = [segment for segment in segments if segment]
    if not segments:
        return True

    for segment in segments:
        if "-" not in segment:
            bound = _parse_bound(segment)
            if bound is None or bound == episode:
                return True
            continue

        start_raw, end_raw = segment.split("-", 1)
        start = _parse_bound(start_raw) if start_raw.strip() else 1
        end = _parse_bound(end_raw) if end_raw.strip() else None
        if start is None or (end_raw.strip() and end is None):
            return True
        if episode >= start and (end is None or episode <= end):
            return True

    return False


@dataclass(frozen=True, slots=True)
class MappingEntry:
    """One AniList entry mapped onto a TVDB series.

    season_ranges maps season keys ("s1", "s0", ...) to episode ranges.
    """

    anilist_id: int
    tvdb_id: int
    season_ranges: Mapping[str, str] = field(default_factory=dict)

    def covers_season(self, season: int) -> bool:
        return f"s{season}" in self.season_ranges

    def covers_episode(self, season: int, episode: int) -> bool:
        range_spec = self.season_ranges.get(f"s{season}")
        if range_spec is None:
            return False
        return episode_range_covers(range_spec, episode)


class MappingTable:
    """Immutable index of mapping entries keyed by TVDB ID."""

    __slots__ = ("_index", "_entry_count")

    def __init__(self, entries: Iterable[MappingEntry] = ()):
        grouped: dict[int, list[MappingEntry]] = {}
        for entry in entries:
            grouped.setdefault(entry.tvdb_id, []).append(entry)

        self._index: Mapping[int, tuple[MappingEntry, ...]] = MappingProxyType(
            {
                tvdb_id: tuple(sorted(group, key=lambda e: e.anilist_id))
                for tvdb_id, group in grouped.items()
            }
        )
        self._entry_count = sum(len(group) for group in self._index.values())

    @classmethod
    def empty(cls) -> "MappingTable":
        return cls()

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, tvdb_id: object) -> bool:
        return tvdb_id in self._index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MappingTable):
            return NotImplemented
        return dict(self._index) == dict(other._index)

    __hash__ = None  # type: ignore[assignment]

    @property
    def series_count(self) -> int:
        return len(self._index)

    @property
    def entry_count(self) -> int:
        return self._entry_count

    def entries_for(self, tvdb_id: int) -> tuple[MappingEntry, ...]:
        """Get all entries recorded for a TVDB ID (empty when unmapped)."""
        return self._index.get(tvdb_id, ())

    def lookup(self, tvdb_id: int) -> frozenset[int]:
        """Get every AniList ID recorded for a TVDB ID."""
        return frozenset(entry.anilist_id for entry in self.entries_for(tvdb_id))

    def resolve(
        self,
        tvdb_id: int,
        season: int | None = None,
        episode: int | None = None,
    ) -> frozenset[int]:
        """Get AniList IDs for a TVDB ID narrowed by season/episode hints.

        Without a season hint every entry is included. With one, only entries
        covering that season are kept. An episode hint prefers entries whose
        range covers the episode but falls back to the whole season when
        none does.

        Args:
            tvdb_id: TVDB series ID
            season: Optional season number
            episode: Optional episode number within the season

        Returns:
            Matching AniList IDs
        """
        entries = self.entries_for(tvdb_id)
        if season is None:
            return frozenset(entry.anilist_id for entry in entries)

        in_season = [e for e in entries if e.covers_season(season)]

        if episode is not None:
            covering = [e for e in in_season if e.covers_episode(season, episode)]
            if covering:
                in_season = covering

        return frozenset(e.anilist_id for e in in_season)


def parse_mappings(payload: bytes | str) -> MappingTable:
    """Parse a PlexAniBridge mappings document into a MappingTable.

    Args:
        payload: Raw JSON document

    Returns:
        New MappingTable

    Raises:
        MappingParseError: If the document is not a JSON object
    """
    try:
        document = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MappingParseError(f"Invalid mappings JSON: {e}") from e

    if not isinstance(document, dict):
        raise MappingParseError(
            f"Mappings document must be a JSON object, got {type(document).__name__}"
        )

    entries: list[MappingEntry] = []
    skipped = 0

    for key, record in document.items():
        entry = _parse_record(key, record)
        if entry is None:
            skipped += 1
            continue
        entries.append(entry)

    table = MappingTable(entries)
    logger.debug(
        "mappings_parsed",
        series=table.series_count,
        entries=table.entry_count,
        skipped=skipped,
    )
    return table


def _parse_record(key: str, record: Any) -> MappingEntry | None:
    """Build a MappingEntry from one document record, or None to skip it."""
    try:
        anilist_id = int(key)
    except (TypeError, ValueError):
        # "$meta" style keys and anything else non-numeric
        return None

    if not isinstance(record, dict):
        return None

    tvdb_id = record.get("tvdb_id")
    if isinstance(tvdb_id, bool) or not isinstance(tvdb_id, int):
        return None

    # Movies and specials carry no season data
    raw_seasons = record.get("tvdb_mappings")
    if not isinstance(raw_seasons, dict) or not raw_seasons:
        logger.debug("mapping_without_seasons", anilist_id=anilist_id, tvdb_id=tvdb_id)
        return None

    season_ranges = MappingProxyType(
        {
            str(season).lower(): value if isinstance(value, str) else ""
            for season, value in raw_seasons.items()
        }
    )
    return MappingEntry(anilist_id=anilist_id, tvdb_id=tvdb_id, season_ranges=season_ranges)


# =============================================================================
# Store
# =============================================================================


class MappingStore:
    """Holds the current mapping table and keeps it fresh.

    Lookups read the current snapshot without locking. refresh() is the
    single writer: it never mutates the published table, it replaces it.
    """

    def __init__(
        self,
        path: Path | None = None,
        source_url: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize mapping store.

        Args:
            path: Mappings cache file. Uses settings.mapping_file if None.
            source_url: Remote mappings URL. Uses settings.mapping_source_url if None.
            timeout: Download timeout in seconds. Uses settings.mapping_timeout if None.
        """
        self._path = path or settings.mapping_file
        self._source_url = source_url or settings.mapping_source_url
        self._timeout = timeout if timeout is not None else settings.mapping_timeout
        self._table = MappingTable.empty()
        self._refreshing = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def source_url(self) -> str:
        return self._source_url

    @property
    def table(self) -> MappingTable:
        """Current mapping snapshot."""
        return self._table

    def lookup(self, tvdb_id: int) -> frozenset[int]:
        """Get all AniList IDs mapped to a TVDB ID (empty set when unmapped)."""
        return self._table.lookup(tvdb_id)

    def resolve(
        self,
        tvdb_id: int,
        season: int | None = None,
        episode: int | None = None,
    ) -> frozenset[int]:
        """Season-aware lookup against the current snapshot."""
        return self._table.resolve(tvdb_id, season=season, episode=episode)

    def _publish(self, table: MappingTable) -> None:
        self._table = table

    def load(self) -> bool:
        """Load the cached mappings file from disk.

        Never raises: a missing or broken file leaves the store with an
        empty table so the service can still start.

        Returns:
            True if a table was loaded
        """
        try:
            payload = self._path.read_bytes()
        except FileNotFoundError:
            logger.warning("mapping_cache_missing", path=str(self._path))
            return False
        except OSError as e:
            logger.warning("mapping_cache_unreadable", path=str(self._path), error=str(e))
            return False

        try:
            table = parse_mappings(payload)
        except MappingParseError as e:
            logger.warning("mapping_cache_invalid", path=str(self._path), error=str(e))
            return False

        self._publish(table)
        logger.info(
            "mappings_loaded_from_disk",
            path=str(self._path),
            series=table.series_count,
            entries=table.entry_count,
        )
        return True

    async def _download(self, client: httpx.AsyncClient) -> bytes:
        """Download the raw mappings document.

        Raises:
            MappingDownloadError: On network errors, timeouts or bad status
        """
        try:
            response = await client.get(
                self._source_url,
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
        except httpx.TimeoutException as e:
            raise MappingDownloadError(f"Timed out downloading mappings: {e}") from e
        except httpx.HTTPError as e:
            raise MappingDownloadError(f"HTTP error downloading mappings: {e}") from e

        if response.status_code != 200:
            raise MappingDownloadError(
                f"Mappings source returned HTTP {response.status_code}"
            )

        return response.content

    def _write_cache(self, payload: bytes) -> None:
        """Atomically replace the cache file with a new document.

        Raises:
            MappingPersistError: If the file cannot be written
        """
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(payload)
            os.replace(temp_path, self._path)
        except OSError as e:
            raise MappingPersistError(f"Failed to write {self._path}: {e}") from e

    async def persist(self, payload: bytes) -> bool:
        """Write a mappings document to the cache file off the event loop.

        Returns:
            True if the file was written
        """
        try:
            await asyncio.to_thread(self._write_cache, payload)
        except MappingPersistError as e:
            logger.error("mapping_persist_failed", path=str(self._path), error=str(e))
            return False
        return True

    async def refresh(self, client: httpx.AsyncClient | None = None) -> bool:
        """Fetch the remote mappings and swap in a new table.

        The table is replaced before the cache file is written; a failed
        write is logged and the in-memory update stands. Any download or
        parse failure leaves the current table untouched.

        Args:
            client: HTTP client to use. A short-lived one is created if None.

        Returns:
            True if a new table was published
        """
        if self._refreshing:
            logger.debug("mapping_refresh_already_running")
            return False

        # Held until the cache file is written so two writes never interleave
        self._refreshing = True
        try:
            try:
                if client is None:
                    async with httpx.AsyncClient() as owned_client:
                        payload = await self._download(owned_client)
                else:
                    payload = await self._download(client)

                table = parse_mappings(payload)
            except MappingError as e:
                logger.warning(
                    "mapping_refresh_failed",
                    url=self._source_url,
                    error=str(e),
                    series=self._table.series_count,
                )
                return False

            self._publish(table)
            logger.info(
                "mappings_refreshed",
                url=self._source_url,
                series=table.series_count,
                entries=table.entry_count,
            )

            await self.persist(payload)
            return True
        finally:
            self._refreshing = False
