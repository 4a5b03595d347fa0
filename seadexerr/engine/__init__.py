"""Identifier resolution & release selection engine.

Usage:
    from seadexerr.engine import ResolutionEngine, SearchQuery

    releases = await engine.resolve_query(SearchQuery(tvdb_id=81797, season=1))
"""

from seadexerr.engine.engine import ResolutionEngine, SearchPage
from seadexerr.engine.query import MalformedQueryError, SearchQuery
from seadexerr.engine.resolver import SeriesLookup, SeriesResolver

__all__ = [
    "ResolutionEngine",
    "SearchPage",
    "SearchQuery",
    "MalformedQueryError",
    "SeriesResolver",
    "SeriesLookup",
]
