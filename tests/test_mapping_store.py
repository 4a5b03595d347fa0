"""Tests for the TVDB → AniList mapping store."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from seadexerr.mapping.store import (
    MappingEntry,
    MappingParseError,
    MappingPersistError,
    MappingStore,
    MappingTable,
    episode_range_covers,
    parse_mappings,
)

# =============================================================================
# Sample Documents
# =============================================================================

SAMPLE_MAPPINGS = {
    # One Piece style: one TVDB series split across several AniList entries
    "21": {"tvdb_id": 81797, "tvdb_mappings": {"s1": "e1-e61"}},
    "1000": {"tvdb_id": 81797, "tvdb_mappings": {"s2": ""}},
    "1001": {"tvdb_id": 81797, "tvdb_mappings": {"s2": "e1-e12"}},
    "1002": {"tvdb_id": 81797, "tvdb_mappings": {"s2": "e13-"}},
    # Single-entry series
    "16498": {"tvdb_id": 267440, "tvdb_mappings": {"s1": "e1-e25"}},
    # Movie attached to the franchise TVDB ID, no season data
    "20954": {"tvdb_id": 267440},
}

REPLACEMENT_MAPPINGS = {
    "5114": {"tvdb_id": 85249, "tvdb_mappings": {"s1": ""}},
}


def _payload(document: dict) -> bytes:
    return json.dumps(document).encode()


@pytest.fixture
def mock_response():
    """Create a mock HTTP response."""

    def _create_response(content: bytes, status_code: int = 200):
        response = MagicMock(spec=httpx.Response)
        response.status_code = status_code
        response.content = content
        response.headers = {}
        return response

    return _create_response


@pytest.fixture
def mock_client(mock_response):
    """Create a mock HTTP client returning a given document."""

    def _create_client(content: bytes, status_code: int = 200):
        client = MagicMock(spec=httpx.AsyncClient)
        client.get = AsyncMock(return_value=mock_response(content, status_code))
        return client

    return _create_client


@pytest.fixture
def store(tmp_path):
    """Create a store caching into a temporary directory."""
    return MappingStore(
        path=tmp_path / "mappings.json",
        source_url="https://example.org/mappings.json",
        timeout=5.0,
    )


# =============================================================================
# Episode Ranges
# =============================================================================


class TestEpisodeRangeCovers:
    """Tests for episode_range_covers."""

    def test_empty_range_covers_everything(self):
        assert episode_range_covers("", 1)
        assert episode_range_covers("", 500)

    def test_closed_range(self):
        assert episode_range_covers("e1-e12", 1)
        assert episode_range_covers("e1-e12", 12)
        assert not episode_range_covers("e1-e12", 13)

    def test_open_ended_range(self):
        assert episode_range_covers("e13-", 13)
        assert episode_range_covers("e13-", 200)
        assert not episode_range_covers("e13-", 12)

    def test_range_without_start(self):
        assert episode_range_covers("-e5", 1)
        assert not episode_range_covers("-e5", 6)

    def test_single_episode(self):
        assert episode_range_covers("e5", 5)
        assert not episode_range_covers("e5", 4)

    def test_multiple_segments(self):
        assert episode_range_covers("e1-e3,e7", 7)
        assert not episode_range_covers("e1-e3,e7", 5)

    def test_ratio_suffix_ignored(self):
        assert episode_range_covers("e1-e4|2", 3)
        assert not episode_range_covers("e1-e4|2", 5)

    def test_ratio_suffix_keeps_later_segments(self):
        assert episode_range_covers("e1-e4|2,e5-e8", 6)
        assert episode_range_covers("e1-e4|2,e5-e8|3", 8)
        assert not episode_range_covers("e1-e4|2,e5-e8", 9)

    def test_unparseable_segment_covers(self):
        assert episode_range_covers("special", 9)


# =============================================================================
# Table
# =============================================================================


class TestMappingTable:
    """Tests for MappingTable lookups."""

    @pytest.fixture
    def table(self):
        return parse_mappings(_payload(SAMPLE_MAPPINGS))

    def test_lookup_present(self, table):
        """All AniList IDs of a TVDB series are returned."""
        assert table.lookup(81797) == frozenset({21, 1000, 1001, 1002})

    def test_lookup_absent(self, table):
        """Unmapped TVDB ID gives an empty set, not an error."""
        assert table.lookup(999999) == frozenset()
        assert 999999 not in table

    def test_counts(self, table):
        assert table.series_count == 2
        assert table.entry_count == 5
        assert len(table) == 2

    def test_entries_sorted_by_anilist_id(self, table):
        ids = [entry.anilist_id for entry in table.entries_for(81797)]
        assert ids == sorted(ids)

    def test_resolve_without_season_returns_all(self, table):
        assert table.resolve(81797) == table.lookup(81797)

    def test_resolve_season_filters(self, table):
        assert table.resolve(81797, season=1) == frozenset({21})
        assert table.resolve(81797, season=2) == frozenset({1000, 1001, 1002})

    def test_records_without_seasons_never_resolve(self, table):
        """Movies sharing the series TVDB ID stay out of TV searches."""
        assert table.lookup(267440) == frozenset({16498})
        assert table.resolve(267440, season=1) == frozenset({16498})
        assert table.resolve(267440, season=1, episode=3) == frozenset({16498})

    def test_resolve_unknown_season(self, table):
        assert table.resolve(81797, season=7) == frozenset()
        assert table.resolve(267440, season=3) == frozenset()

    def test_resolve_episode_prefers_covering_ranges(self, table):
        assert table.resolve(81797, season=2, episode=5) == frozenset({1000, 1001})
        assert table.resolve(81797, season=2, episode=20) == frozenset({1000, 1002})

    def test_resolve_episode_falls_back_to_season(self):
        table = MappingTable(
            [MappingEntry(anilist_id=1, tvdb_id=10, season_ranges={"s1": "e1-e12"})]
        )
        assert table.resolve(10, season=1, episode=40) == frozenset({1})

    def test_equality(self):
        entries = [MappingEntry(anilist_id=1, tvdb_id=10)]
        assert MappingTable(entries) == MappingTable(entries)
        assert MappingTable(entries) != MappingTable.empty()


class TestParseMappings:
    """Tests for parse_mappings."""

    def test_invalid_json(self):
        with pytest.raises(MappingParseError, match="Invalid mappings JSON"):
            parse_mappings(b"{not json")

    def test_non_object_document(self):
        with pytest.raises(MappingParseError, match="must be a JSON object"):
            parse_mappings(b"[1, 2, 3]")

    def test_skips_bad_records(self):
        document = {
            "$meta": {"version": "2.0"},
            "1": {"tvdb_id": 100},
            "2": "not a record",
            "3": {"tvdb_id": "100"},
            "4": {"tvdb_id": True},
            "5": {"tmdb_show_id": 42},
            "6": {"tvdb_id": 100, "tvdb_mappings": ["s1"]},
            "7": {"tvdb_id": 100, "tvdb_mappings": {}},
            "8": {"tvdb_id": 100, "tvdb_mappings": {"S1": "e1-e12"}},
        }
        table = parse_mappings(_payload(document))

        assert table.lookup(100) == frozenset({8})
        assert table.entries_for(100)[0].covers_season(1)

    def test_null_range_means_whole_season(self):
        table = parse_mappings(_payload({"7": {"tvdb_id": 5, "tvdb_mappings": {"s1": None}}}))
        entry = table.entries_for(5)[0]
        assert entry.season_ranges["s1"] == ""
        assert entry.covers_episode(1, 99)

    def test_empty_document(self):
        assert parse_mappings(b"{}") == MappingTable.empty()


# =============================================================================
# Store
# =============================================================================


class TestMappingStoreLoad:
    """Tests for MappingStore.load."""

    def test_missing_file(self, store):
        assert store.load() is False
        assert store.table.series_count == 0

    def test_invalid_file(self, store):
        store.path.write_text("garbage")
        assert store.load() is False
        assert store.table.series_count == 0

    def test_valid_file(self, store):
        store.path.write_bytes(_payload(SAMPLE_MAPPINGS))
        assert store.load() is True
        assert store.lookup(81797) == frozenset({21, 1000, 1001, 1002})

    def test_defaults_from_settings(self, tmp_path):
        with patch("seadexerr.mapping.store.settings") as mock_settings:
            mock_settings.mapping_file = tmp_path / "cached.json"
            mock_settings.mapping_source_url = "https://example.org/m.json"
            mock_settings.mapping_timeout = 3.0

            store = MappingStore()

        assert store.path == tmp_path / "cached.json"
        assert store.source_url == "https://example.org/m.json"


class TestMappingStoreRefresh:
    """Tests for MappingStore.refresh."""

    @pytest.mark.asyncio
    async def test_successful_refresh_replaces_table(self, store, mock_client):
        store.path.write_bytes(_payload(SAMPLE_MAPPINGS))
        store.load()
        before = store.table

        refreshed = await store.refresh(mock_client(_payload(REPLACEMENT_MAPPINGS)))

        assert refreshed is True
        assert store.table is not before
        assert store.lookup(85249) == frozenset({5114})
        assert store.lookup(81797) == frozenset()
        # Readers holding the old snapshot still see the old data
        assert before.lookup(81797) == frozenset({21, 1000, 1001, 1002})

    @pytest.mark.asyncio
    async def test_successful_refresh_persists_document(self, store, mock_client):
        await store.refresh(mock_client(_payload(REPLACEMENT_MAPPINGS)))

        assert json.loads(store.path.read_bytes()) == REPLACEMENT_MAPPINGS
        assert not store.path.with_suffix(".json.tmp").exists()

    @pytest.mark.asyncio
    async def test_download_failure_keeps_table(self, store):
        store.path.write_bytes(_payload(SAMPLE_MAPPINGS))
        store.load()
        before = store.table

        client = MagicMock(spec=httpx.AsyncClient)
        client.get = AsyncMock(side_effect=httpx.ConnectError("connection refused"))

        assert await store.refresh(client) is False
        assert store.table is before

    @pytest.mark.asyncio
    async def test_timeout_keeps_table(self, store):
        before = store.table
        client = MagicMock(spec=httpx.AsyncClient)
        client.get = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

        assert await store.refresh(client) is False
        assert store.table is before

    @pytest.mark.asyncio
    async def test_bad_status_keeps_table(self, store, mock_client):
        before = store.table

        assert await store.refresh(mock_client(b"", status_code=503)) is False
        assert store.table is before

    @pytest.mark.asyncio
    async def test_unparseable_document_keeps_table(self, store, mock_client):
        store.path.write_bytes(_payload(SAMPLE_MAPPINGS))
        store.load()
        before = store.table

        assert await store.refresh(mock_client(b"<html>oops</html>")) is False
        assert store.table is before
        # Cache file is untouched
        assert json.loads(store.path.read_bytes()) == SAMPLE_MAPPINGS

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_new_table(self, store, mock_client):
        with patch.object(
            store, "_write_cache", side_effect=MappingPersistError("disk full")
        ):
            refreshed = await store.refresh(mock_client(_payload(REPLACEMENT_MAPPINGS)))

        assert refreshed is True
        assert store.lookup(85249) == frozenset({5114})

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_skipped(self, store, mock_client):
        store._refreshing = True
        client = mock_client(_payload(REPLACEMENT_MAPPINGS))

        assert await store.refresh(client) is False
        client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_flag_reset_after_failure(self, store, mock_client):
        await store.refresh(mock_client(b"", status_code=500))

        assert store._refreshing is False
        assert await store.refresh(mock_client(_payload(REPLACEMENT_MAPPINGS))) is True

    @pytest.mark.asyncio
    async def test_refresh_during_cache_write_is_skipped(self, store, mock_client):
        """A second refresh cannot start until the first has written its cache."""
        writes: list[bytes] = []

        def _slow_write(payload: bytes) -> None:
            time.sleep(0.3)
            writes.append(payload)

        with patch.object(store, "_write_cache", side_effect=_slow_write):
            first = asyncio.create_task(store.refresh(mock_client(_payload(SAMPLE_MAPPINGS))))
            await asyncio.sleep(0.1)

            second_client = mock_client(_payload(REPLACEMENT_MAPPINGS))
            second = await store.refresh(second_client)

            assert await first is True

        assert second is False
        second_client.get.assert_not_called()
        assert writes == [_payload(SAMPLE_MAPPINGS)]
        assert store.lookup(81797) == frozenset({21, 1000, 1001, 1002})
        assert store._refreshing is False
