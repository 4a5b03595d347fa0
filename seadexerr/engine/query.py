"""Search query model shared by the protocol layer and the engine."""

from dataclasses import dataclass


class MalformedQueryError(ValueError):
    """Raised when a search query cannot be answered meaningfully."""

    pass


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """A TV search identified by TVDB ID or by free-text term.

    Attributes:
        tvdb_id: TVDB series ID, takes precedence over term
        term: Free-text search term
        season: Optional season hint
        episode: Optional episode hint (requires season)
        limit: Requested result count, capped by the configured default
        offset: Number of ranked results to skip
    """

    tvdb_id: int | None = None
    term: str | None = None
    season: int | None = None
    episode: int | None = None
    limit: int | None = None
    offset: int = 0

    @property
    def has_target(self) -> bool:
        """Whether the query names a series at all."""
        return self.tvdb_id is not None or bool(self.term and self.term.strip())

    def validate(self) -> None:
        """Check the query is well formed.

        Raises:
            MalformedQueryError: If any parameter is out of range
        """
        if self.tvdb_id is not None and self.tvdb_id <= 0:
            raise MalformedQueryError(f"tvdbid must be positive, got {self.tvdb_id}")
        if self.season is not None and self.season < 0:
            raise MalformedQueryError(f"season must not be negative, got {self.season}")
        if self.episode is not None:
            if self.episode < 0:
                raise MalformedQueryError(f"ep must not be negative, got {self.episode}")
            if self.season is None:
                raise MalformedQueryError("ep requires season")
        if self.limit is not None and self.limit <= 0:
            raise MalformedQueryError(f"limit must be positive, got {self.limit}")
        if self.offset < 0:
            raise MalformedQueryError(f"offset must not be negative, got {self.offset}")
