"""Best-release selection over the releases.moe catalog.

For each anime keep the releases carrying the highest curation rank (all of them when several share
it, e.g. two valid groups), drop duplicate listings of the same torrent, and
order everything by rank then recency. The PVR's own quality profile makes
the final pick.
"""

import asyncio
from collections.abc import Iterable
from typing import Protocol

import structlog

from seadexerr.config import settings
from seadexerr.search.releases import Release, ReleasesError

logger = structlog.get_logger(__name__)


class ReleaseCatalog(Protocol):
    """Anything that can list releases for an AniList ID."""

    async def fetch_releases(self, anilist_id: int) -> list[Release]: ...


# =============================================================================
# Ranking
# =============================================================================


def release_sort_key(release: Release) -> tuple[int, float, str]:
    """Total ordering key: rank desc, publish date desc, canonical id asc.

    Releases without a publish date sort after dated ones of the same rank.
    """
    published = release.published.timestamp() if release.published else float("-inf")
    return (-release.rank, -published, release.canonical_id)


def select_best(releases: Iterable[Release]) -> list[Release]:
    """Keep only the releases sharing the highest rank.

    Args:
        releases: Releases for one anime

    Returns:
        Top-ranked releases (possibly several), in input order
    """
    candidates = list(releases)
    if not candidates:
        return []
    top_rank = max(release.rank for release in candidates)
    return [release for release in candidates if release.rank == top_rank]


def rank_releases(releases: Iterable[Release]) -> list[Release]:
    """Sort releases and drop duplicate listings of the same torrent.

    When a torrent is listed twice the better-ranked copy is kept.

    Args:
        releases: Releases to rank

    Returns:
        Ranked, de-duplicated releases
    """
    seen: set[str] = set()
    ranked = []
    for release in sorted(releases, key=release_sort_key):
        key = release.canonical_id
        if key in seen:
            continue
        seen.add(key)
        ranked.append(release)
    return ranked


# =============================================================================
# Selector
# =============================================================================


class ReleaseSelector:
    """Fetches and ranks releases for a set of anime IDs.

    Fetches run concurrently, bounded by a semaphore shared across all
    searches, each under its own timeout. A failed or slow fetch only loses
    that anime's releases.
    """

    def __init__(
        self,
        catalog: ReleaseCatalog,
        timeout: float | None = None,
        max_concurrency: int | None = None,
    ):
        """Initialize release selector.

        Args:
            catalog: Provider catalog client
            timeout: Per-fetch timeout in seconds. Uses settings.releases_timeout if None.
            max_concurrency: Concurrent fetch limit. Uses
                settings.releases_max_concurrency if None.
        """
        self._catalog = catalog
        self._timeout = timeout if timeout is not None else settings.releases_timeout
        self._semaphore = asyncio.Semaphore(
            max_concurrency or settings.releases_max_concurrency
        )

    async def _fetch(self, anilist_id: int) -> list[Release]:
        """Fetch releases for one anime, turning failures into no releases."""
        async with self._semaphore:
            try:
                async with asyncio.timeout(self._timeout):
                    return await self._catalog.fetch_releases(anilist_id)
            except TimeoutError:
                logger.warning(
                    "release_fetch_timeout",
                    anilist_id=anilist_id,
                    timeout=self._timeout,
                )
            except ReleasesError as e:
                logger.warning("release_fetch_failed", anilist_id=anilist_id, error=str(e))
        return []

    async def select(self, anilist_ids: Iterable[int]) -> list[Release]:
        """Fetch and select the best releases for each anime.

        Args:
            anilist_ids: AniList IDs to search

        Returns:
            Ranked, de-duplicated best releases across all anime
        """
        ids = sorted(set(anilist_ids))
        if not ids:
            return []

        results = await asyncio.gather(
            *(self._fetch(anilist_id) for anilist_id in ids),
            return_exceptions=True,
        )

        selected: list[Release] = []
        for anilist_id, result in zip(ids, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "release_fetch_crashed",
                    anilist_id=anilist_id,
                    error=str(result),
                    exc_info=result,
                )
                continue

            best = select_best(result)
            logger.debug(
                "releases_selected",
                anilist_id=anilist_id,
                fetched=len(result),
                selected=len(best),
            )
            selected.extend(best)

        return rank_releases(selected)
