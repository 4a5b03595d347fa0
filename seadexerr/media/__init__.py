"""PVR metadata module.

Provides the Sonarr client used to resolve free-text searches into series
with TVDB IDs.
"""

from seadexerr.media.sonarr import (
    SeriesDescriptor,
    SonarrAuthError,
    SonarrClient,
    SonarrError,
    SonarrUnavailableError,
)

__all__ = [
    "SonarrClient",
    "SonarrError",
    "SonarrAuthError",
    "SonarrUnavailableError",
    "SeriesDescriptor",
]
