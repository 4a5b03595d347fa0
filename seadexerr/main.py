"""Application entry point.

Wires the mapping store, PVR and catalog clients into the resolution engine
and serves the Torznab API with uvicorn.
"""

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import NoReturn

import httpx
import uvicorn
from fastapi import FastAPI

from seadexerr import __version__
from seadexerr.config import settings
from seadexerr.engine import ResolutionEngine, SeriesResolver
from seadexerr.logger import configure_logging, get_logger
from seadexerr.mapping import MappingRefreshScheduler, MappingStore
from seadexerr.mapping.store import USER_AGENT
from seadexerr.media import SonarrClient
from seadexerr.search import ReleasesClient, ReleaseSelector
from seadexerr.torznab import router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open collaborators on startup and close them on shutdown."""
    logger.info(
        "seadexerr_starting",
        version=__version__,
        environment=settings.environment,
        config=settings.get_safe_dict(),
    )

    async with AsyncExitStack() as stack:
        http = await stack.enter_async_context(
            httpx.AsyncClient(
                timeout=httpx.Timeout(settings.mapping_timeout),
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
        )
        releases = await stack.enter_async_context(ReleasesClient())

        sonarr: SonarrClient | None = None
        if settings.has_sonarr:
            sonarr = await stack.enter_async_context(SonarrClient())
        else:
            logger.warning("sonarr_disabled", reason="no API key configured")

        store = MappingStore()
        store.load()
        # A failed first download is not fatal; the cached table keeps serving
        await store.refresh(http)

        scheduler = MappingRefreshScheduler(store, http)
        scheduler.start()
        stack.callback(scheduler.stop)

        engine = ResolutionEngine(
            resolver=SeriesResolver(store, sonarr),
            selector=ReleaseSelector(releases),
        )

        app.state.store = store
        app.state.engine = engine

        logger.info(
            "seadexerr_started",
            host=settings.host,
            port=settings.port,
            mapped_series=store.table.series_count,
            sonarr=sonarr is not None,
        )
        yield

    logger.info("seadexerr_stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.title,
        description=settings.description,
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


async def main_async() -> None:
    """Serve the application until interrupted."""
    configure_logging()
    config = uvicorn.Config(
        create_app(),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> NoReturn:
    """Main entry point, used by the ``seadexerr`` console script."""
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logger.info("seadexerr_interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("seadexerr_crashed", error=str(e))
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
