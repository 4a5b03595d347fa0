"""Torznab HTTP endpoint consumed by Prowlarr and Sonarr."""

import asyncio

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response

from seadexerr.config import settings
from seadexerr.engine import MalformedQueryError, ResolutionEngine, SearchPage, SearchQuery
from seadexerr.mapping import MappingStore
from seadexerr.torznab.feed import (
    ERROR_INCORRECT_PARAMETER,
    ERROR_MISSING_PARAMETER,
    ERROR_NO_SUCH_FUNCTION,
    ChannelMetadata,
    category_filter_matches,
    render_caps,
    render_error,
    render_feed,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["torznab"])

SEARCH_OPERATIONS = frozenset({"search", "tvsearch", "tv-search"})

# How often an in-flight search checks whether the client went away
DISCONNECT_POLL_INTERVAL = 0.5

# nginx convention for "client closed request"
CLIENT_CLOSED_REQUEST = 499


class XMLResponse(Response):
    media_type = "application/xml"


class ClientDisconnectedError(Exception):
    """Raised when the client goes away before the search finishes."""

    pass


def _error_response(code: int, description: str) -> XMLResponse:
    return XMLResponse(content=render_error(code, description), status_code=400)


def _parse_int(name: str, raw: str | None) -> int | None:
    """Parse an optional integer query parameter.

    Raises:
        MalformedQueryError: If the value is present but not an integer
    """
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as e:
        raise MalformedQueryError(f"{name} must be an integer, got {raw!r}") from e


def _channel_metadata(request: Request) -> ChannelMetadata:
    base = settings.public_base_url or str(request.base_url)
    return ChannelMetadata(
        title=settings.title,
        description=settings.description,
        site_link=base,
        api_link=f"{base}api",
    )


def _build_query(
    operation: str,
    q: str | None,
    tvdbid: str | None,
    season: str | None,
    ep: str | None,
    limit: str | None,
    offset: str | None,
) -> SearchQuery:
    term = q.strip() if q and q.strip() else None
    parsed_limit = _parse_int("limit", limit)
    parsed_offset = _parse_int("offset", offset) or 0

    if operation == "search":
        return SearchQuery(term=term, limit=parsed_limit, offset=parsed_offset)

    return SearchQuery(
        tvdb_id=_parse_int("tvdbid", tvdbid),
        term=term,
        season=_parse_int("season", season),
        episode=_parse_int("ep", ep),
        limit=parsed_limit,
        offset=parsed_offset,
    )


async def _run_search(
    request: Request,
    engine: ResolutionEngine,
    query: SearchQuery,
) -> SearchPage:
    """Run an engine query, cancelling it if the client disconnects.

    Raises:
        MalformedQueryError: If the engine rejects the query
        ClientDisconnectedError: If the client disconnected mid-search
    """
    task = asyncio.create_task(engine.search(query))
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                raise ClientDisconnectedError()
    finally:
        if not task.done():
            task.cancel()


@router.get("/api")
@router.get("/torznab/api")
async def torznab_api(
    request: Request,
    t: str | None = Query(None),
    q: str | None = Query(None),
    tvdbid: str | None = Query(None),
    season: str | None = Query(None),
    ep: str | None = Query(None),
    cat: str | None = Query(None),
    limit: str | None = Query(None),
    offset: str | None = Query(None),
    imdbid: str | None = Query(None),
) -> Response:
    """Torznab API endpoint."""
    engine: ResolutionEngine = request.app.state.engine
    metadata = _channel_metadata(request)

    operation = (t or "").strip().lower()
    if not operation:
        return _error_response(ERROR_MISSING_PARAMETER, "Missing parameter (t)")

    if operation == "caps":
        return XMLResponse(
            content=render_caps(metadata, engine.default_limit, engine.default_limit)
        )

    if operation not in SEARCH_OPERATIONS:
        logger.info("torznab_unsupported_function", t=t)
        return _error_response(ERROR_NO_SUCH_FUNCTION, f"No such function ({t})")

    try:
        query = _build_query(operation, q, tvdbid, season, ep, limit, offset)
        query.validate()
    except MalformedQueryError as e:
        logger.info("torznab_malformed_query", t=operation, error=str(e))
        return _error_response(ERROR_INCORRECT_PARAMETER, f"Incorrect parameter: {e}")

    logger.info(
        "torznab_search",
        t=operation,
        q=query.term,
        tvdb_id=query.tvdb_id,
        season=query.season,
        episode=query.episode,
        cat=cat,
    )

    if not category_filter_matches(cat):
        return XMLResponse(content=render_feed(metadata, [], offset=query.offset))

    try:
        page = await _run_search(request, engine, query)
    except MalformedQueryError as e:
        return _error_response(ERROR_INCORRECT_PARAMETER, f"Incorrect parameter: {e}")
    except ClientDisconnectedError:
        logger.info("torznab_client_disconnected", t=operation, tvdb_id=query.tvdb_id)
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    return XMLResponse(
        content=render_feed(metadata, page.releases, offset=query.offset, total=page.total)
    )


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Liveness check with mapping table stats."""
    store: MappingStore = request.app.state.store
    table = store.table
    return JSONResponse(
        {
            "status": "ok",
            "mapped_series": table.series_count,
            "mapping_entries": table.entry_count,
        }
    )
