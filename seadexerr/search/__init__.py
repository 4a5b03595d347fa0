"""Release search module.

Provides the releases.moe catalog client and the best-release selection
policy applied on top of it.
"""

from seadexerr.search.releases import (
    Release,
    ReleasesClient,
    ReleasesError,
    ReleasesParseError,
    ReleasesUnavailableError,
)
from seadexerr.search.selector import (
    ReleaseCatalog,
    ReleaseSelector,
    rank_releases,
    release_sort_key,
    select_best,
)

__all__ = [
    # releases.moe
    "ReleasesClient",
    "ReleasesError",
    "ReleasesUnavailableError",
    "ReleasesParseError",
    "Release",
    # Selection
    "ReleaseCatalog",
    "ReleaseSelector",
    "rank_releases",
    "release_sort_key",
    "select_best",
]
