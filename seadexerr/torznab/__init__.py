"""Torznab protocol adapter.

Provides:
- router: FastAPI routes serving caps, search and health
- feed rendering helpers for caps, RSS results and errors
"""

from seadexerr.torznab.api import router
from seadexerr.torznab.feed import (
    ANIME_CATEGORY_ID,
    ChannelMetadata,
    category_filter_matches,
    render_caps,
    render_error,
    render_feed,
)

__all__ = [
    "router",
    "ANIME_CATEGORY_ID",
    "ChannelMetadata",
    "category_filter_matches",
    "render_caps",
    "render_error",
    "render_feed",
]
