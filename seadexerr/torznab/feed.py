"""Torznab XML rendering.

Builds the three documents a Torznab indexer serves: the capabilities
document (``t=caps``), the RSS result feed and the error document.

Protocol reference: https://torznab.github.io/spec-1.3-draft/torznab/
"""

from collections.abc import Iterable
from dataclasses import dataclass
from email.utils import format_datetime

from lxml import etree

from seadexerr import __version__
from seadexerr.search.releases import Release

ATOM_NS = "http://www.w3.org/2005/Atom"
TORZNAB_NS = "http://torznab.com/schemas/2015/feed"

ANIME_CATEGORY_ID = 5070
ANIME_CATEGORY_NAME = "Anime"

TORRENT_MIME_TYPE = "application/x-bittorrent"

# Torznab error codes
ERROR_MISSING_PARAMETER = 200
ERROR_INCORRECT_PARAMETER = 201
ERROR_NO_SUCH_FUNCTION = 202


@dataclass(frozen=True, slots=True)
class ChannelMetadata:
    """Indexer identity shown in caps and feed channels."""

    title: str
    description: str
    site_link: str
    api_link: str


def category_filter_matches(cat: str | None) -> bool:
    """Check whether a ``cat`` parameter includes the anime category.

    An absent or empty filter, or ``0``, matches everything.

    Args:
        cat: Comma separated category IDs from the request

    Returns:
        True if anime results should be returned
    """
    if cat is None:
        return True

    values = [part.strip() for part in cat.split(",") if part.strip()]
    if not values:
        return True

    return any(value in ("0", str(ANIME_CATEGORY_ID)) for value in values)


def _to_bytes(root: etree._Element) -> bytes:
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


def render_caps(metadata: ChannelMetadata, default_limit: int, max_limit: int) -> bytes:
    """Render the capabilities document.

    Args:
        metadata: Indexer identity
        default_limit: Default results per search
        max_limit: Maximum results per search

    Returns:
        UTF-8 encoded XML document
    """
    caps = etree.Element("caps")
    etree.SubElement(
        caps,
        "server",
        title=metadata.title,
        description=metadata.description,
        version=__version__,
    )
    etree.SubElement(caps, "limits", default=str(default_limit), max=str(max_limit))
    etree.SubElement(caps, "registration", available="no", open="no")

    searching = etree.SubElement(caps, "searching")
    etree.SubElement(searching, "search", available="yes", supportedParams="q")
    etree.SubElement(
        searching,
        "tv-search",
        available="yes",
        supportedParams="q,tvdbid,season,ep",
    )
    etree.SubElement(searching, "movie-search", available="no", supportedParams="q")

    categories = etree.SubElement(caps, "categories")
    etree.SubElement(
        categories,
        "category",
        id=str(ANIME_CATEGORY_ID),
        name=ANIME_CATEGORY_NAME,
    )

    return _to_bytes(caps)


def _torznab_attr(item: etree._Element, name: str, value: object) -> None:
    etree.SubElement(item, f"{{{TORZNAB_NS}}}attr", name=name, value=str(value))


def _text_element(parent: etree._Element, tag: str, text: str, **attrib: str) -> None:
    element = etree.SubElement(parent, tag, **attrib)
    element.text = text


def _render_item(channel: etree._Element, release: Release) -> None:
    item = etree.SubElement(channel, "item")
    _text_element(item, "title", release.title)
    _text_element(item, "guid", release.id, isPermaLink="false")
    _text_element(item, "link", release.download_url)
    if release.info_url:
        _text_element(item, "comments", release.info_url)
    if release.published is not None:
        _text_element(item, "pubDate", format_datetime(release.published))
    _text_element(item, "size", str(release.size_bytes))
    _text_element(item, "category", str(ANIME_CATEGORY_ID))

    description = "Seadex best release" if release.is_best else "Seadex alternative release"
    if release.dual_audio:
        description += " (dual audio)"
    _text_element(item, "description", description)

    etree.SubElement(
        item,
        "enclosure",
        url=release.download_url,
        length=str(release.size_bytes),
        type=TORRENT_MIME_TYPE,
    )

    _torznab_attr(item, "category", ANIME_CATEGORY_ID)
    _torznab_attr(item, "size", release.size_bytes)
    if release.file_count:
        _torznab_attr(item, "files", release.file_count)
    if release.info_hash:
        _torznab_attr(item, "infohash", release.info_hash.lower())
    if release.seeders is not None:
        _torznab_attr(item, "seeders", release.seeders)
    _torznab_attr(item, "downloadvolumefactor", 1)
    _torznab_attr(item, "uploadvolumefactor", 1)


def render_feed(
    metadata: ChannelMetadata,
    releases: Iterable[Release],
    offset: int = 0,
    total: int | None = None,
) -> bytes:
    """Render the RSS result feed.

    Args:
        metadata: Indexer identity
        releases: Releases in display order
        offset: Offset the page starts at
        total: Matches across all pages, defaults to the end of this page

    Returns:
        UTF-8 encoded XML document
    """
    items = list(releases)

    rss = etree.Element("rss", version="2.0", nsmap={"atom": ATOM_NS, "torznab": TORZNAB_NS})
    channel = etree.SubElement(rss, "channel")
    etree.SubElement(
        channel,
        f"{{{ATOM_NS}}}link",
        href=metadata.api_link,
        rel="self",
        type="application/rss+xml",
    )
    _text_element(channel, "title", metadata.title)
    _text_element(channel, "description", metadata.description)
    _text_element(channel, "link", metadata.site_link)
    etree.SubElement(
        channel,
        f"{{{TORZNAB_NS}}}response",
        offset=str(offset),
        total=str(offset + len(items) if total is None else total),
    )

    for release in items:
        _render_item(channel, release)

    return _to_bytes(rss)


def render_error(code: int, description: str) -> bytes:
    """Render a Torznab error document."""
    error = etree.Element("error", code=str(code), description=description)
    return _to_bytes(error)
