"""Resolution & selection engine: the single entry point for searches."""

import asyncio
from dataclasses import dataclass, field

import structlog

from seadexerr.config import settings
from seadexerr.engine.query import SearchQuery
from seadexerr.engine.resolver import SeriesResolver
from seadexerr.search.releases import Release
from seadexerr.search.selector import ReleaseSelector

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SearchPage:
    """One page of ranked releases and the number of matches before paging."""

    releases: list[Release] = field(default_factory=list)
    total: int = 0


class ResolutionEngine:
    """Composes series resolution and release selection for one query.

    Only a malformed query raises; everything else (unmapped series, PVR or
    catalog failures, the overall timeout) ends in an empty result.
    """

    def __init__(
        self,
        resolver: SeriesResolver,
        selector: ReleaseSelector,
        default_limit: int | None = None,
        request_timeout: float | None = None,
    ):
        """Initialize engine.

        Args:
            resolver: Series resolver
            selector: Release selector
            default_limit: Default and maximum result count. Uses
                settings.default_limit if None.
            request_timeout: Overall timeout per query in seconds. Uses
                settings.request_timeout if None.
        """
        self._resolver = resolver
        self._selector = selector
        self._default_limit = default_limit or settings.default_limit
        self._request_timeout = (
            request_timeout if request_timeout is not None else settings.request_timeout
        )

    @property
    def default_limit(self) -> int:
        return self._default_limit

    def effective_limit(self, requested: int | None) -> int:
        """Clamp a requested limit to the configured maximum."""
        if requested is None:
            return self._default_limit
        return max(1, min(requested, self._default_limit))

    async def resolve_query(self, query: SearchQuery) -> list[Release]:
        """Resolve a query into its ranked best releases.

        Raises:
            MalformedQueryError: If the query is malformed
        """
        page = await self.search(query)
        return page.releases

    async def search(self, query: SearchQuery) -> SearchPage:
        """Resolve a query into one page of ranked best releases.

        Paging (offset/limit) is applied after ranking so a better release
        is never cut before it is compared.

        Args:
            query: Search query from the protocol layer

        Returns:
            Ordered releases, possibly empty, with the total match count

        Raises:
            MalformedQueryError: If the query is malformed
        """
        query.validate()
        limit = self.effective_limit(query.limit)

        if not query.has_target:
            logger.debug("search_without_target")
            return SearchPage()

        try:
            async with asyncio.timeout(self._request_timeout):
                anilist_ids = await self._resolver.resolve(query)
                if not anilist_ids:
                    logger.info(
                        "search_unmapped",
                        tvdb_id=query.tvdb_id,
                        term=query.term,
                        season=query.season,
                    )
                    return SearchPage()
                ranked = await self._selector.select(anilist_ids)
        except TimeoutError:
            logger.warning(
                "search_timeout",
                tvdb_id=query.tvdb_id,
                term=query.term,
                timeout=self._request_timeout,
            )
            return SearchPage()

        results = ranked[query.offset : query.offset + limit]
        logger.info(
            "search_completed",
            tvdb_id=query.tvdb_id,
            term=query.term,
            season=query.season,
            anilist_ids=sorted(anilist_ids),
            total=len(ranked),
            returned=len(results),
        )
        return SearchPage(releases=results, total=len(ranked))
