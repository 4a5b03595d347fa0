"""TVDB → AniList mapping module.

Provides:
- MappingStore: cached, atomically refreshed mapping table
- MappingRefreshScheduler: APScheduler job keeping the store fresh

Usage:
    from seadexerr.mapping import MappingStore

    store = MappingStore()
    store.load()
"""

from seadexerr.mapping.scheduler import MappingRefreshScheduler
from seadexerr.mapping.store import (
    MappingDownloadError,
    MappingEntry,
    MappingError,
    MappingParseError,
    MappingPersistError,
    MappingStore,
    MappingTable,
    parse_mappings,
)

__all__ = [
    "MappingStore",
    "MappingTable",
    "MappingEntry",
    "MappingError",
    "MappingDownloadError",
    "MappingParseError",
    "MappingPersistError",
    "MappingRefreshScheduler",
    "parse_mappings",
]
