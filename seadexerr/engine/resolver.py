"""Turns an incoming search into the AniList IDs to look up on releases.moe."""

import asyncio
from typing import Protocol

import structlog

from seadexerr.config import settings
from seadexerr.engine.query import SearchQuery
from seadexerr.mapping.store import MappingStore
from seadexerr.media.sonarr import SeriesDescriptor, SonarrError

logger = structlog.get_logger(__name__)


class SeriesLookup(Protocol):
    """PVR collaborator resolving a free-text term into candidate series."""

    async def resolve_series(self, term: str) -> list[SeriesDescriptor]: ...


class SeriesResolver:
    """Resolves search queries into AniList IDs.

    TVDB queries only touch the mapping store. Free-text queries ask the PVR
    for candidate series first; a PVR failure means no candidates, not an
    error.
    """

    def __init__(
        self,
        store: MappingStore,
        series_lookup: SeriesLookup | None = None,
        timeout: float | None = None,
    ):
        """Initialize series resolver.

        Args:
            store: Mapping store to read from
            series_lookup: PVR client for free-text queries (optional)
            timeout: PVR lookup timeout in seconds. Uses settings.sonarr_timeout if None.
        """
        self._store = store
        self._series_lookup = series_lookup
        self._timeout = timeout if timeout is not None else settings.sonarr_timeout

    async def _lookup_candidates(self, term: str) -> list[SeriesDescriptor]:
        if self._series_lookup is None:
            logger.debug("series_lookup_unavailable", term=term)
            return []

        try:
            async with asyncio.timeout(self._timeout):
                return await self._series_lookup.resolve_series(term)
        except TimeoutError:
            logger.warning("series_lookup_timeout", term=term, timeout=self._timeout)
        except SonarrError as e:
            logger.warning("series_lookup_failed", term=term, error=str(e))
        return []

    async def resolve(self, query: SearchQuery) -> frozenset[int]:
        """Resolve a query into AniList IDs.

        Args:
            query: Validated search query

        Returns:
            AniList IDs to search (empty when nothing maps)
        """
        if query.tvdb_id is not None:
            anilist_ids = self._store.resolve(
                query.tvdb_id, season=query.season, episode=query.episode
            )
            logger.debug(
                "tvdb_query_resolved",
                tvdb_id=query.tvdb_id,
                season=query.season,
                episode=query.episode,
                anilist_ids=sorted(anilist_ids),
            )
            return anilist_ids

        term = (query.term or "").strip()
        if not term:
            return frozenset()

        candidates = await self._lookup_candidates(term)
        anilist_ids: set[int] = set()
        for series in candidates:
            if series.tvdb_id is None:
                continue
            anilist_ids |= self._store.resolve(
                series.tvdb_id, season=query.season, episode=query.episode
            )

        logger.debug(
            "term_query_resolved",
            term=term,
            candidates=len(candidates),
            anilist_ids=sorted(anilist_ids),
        )
        return frozenset(anilist_ids)
