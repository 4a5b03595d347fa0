"""Seadexerr: Torznab indexer bridge for releases.moe (Seadex) best releases."""

__version__ = "0.4.0"
