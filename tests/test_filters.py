"""Tests for release filtering.

Tests cover:
- Blacklist parsing and file-backed blacklist with TTL cache
- Movie year filter
- Series episode / season pack / season mention matching
- Episode range extraction
"""

from pathlib import Path

import pytest

from src.search.cache import TTLCache
from src.search.filters import (
    Blacklist,
    extract_episode_range,
    filter_by_year,
    filter_for_series,
    is_blacklisted,
    is_season_pack_for,
    matches_episode,
    matches_series,
    mentions_season,
    parse_blacklist,
    range_excludes_episode,
)
from src.search.models import ReleaseCandidate


def titles(candidates: list[ReleaseCandidate]) -> list[str]:
    return [c.title for c in candidates]


# =============================================================================
# Blacklist Tests
# =============================================================================


class TestBlacklistParsing:
    """Tests for blacklist parsing and matching."""

    def test_parse_skips_comments_and_blank_lines(self):
        content = "# comment\nCAM\n\n  TeleSync  \n#other\n"
        assert parse_blacklist(content) == ["cam", "telesync"]

    def test_substring_case_insensitive(self):
        assert is_blacklisted("Movie.2021.HDCAM.x264", ["cam"])
        assert not is_blacklisted("Movie.2021.1080p", ["cam"])

    def test_empty_word_list(self):
        assert not is_blacklisted("Anything", [])


class TestBlacklist:
    """Tests for the file-backed Blacklist."""

    @pytest.mark.asyncio
    async def test_filter_from_file(self, tmp_path: Path):
        path = tmp_path / "blacklist.txt"
        path.write_text("cam\nts\n", encoding="utf-8")
        blacklist = Blacklist(path, TTLCache(ttl=60, name="blacklist"))

        candidates = [
            ReleaseCandidate(title="Movie.2021.CAM"),
            ReleaseCandidate(title="Movie.2021.1080p.BluRay"),
        ]

        kept = await blacklist.filter(candidates)

        assert titles(kept) == ["Movie.2021.1080p.BluRay"]

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path: Path):
        blacklist = Blacklist(tmp_path / "missing.txt", TTLCache(ttl=60))
        candidates = [ReleaseCandidate(title="Movie.CAM")]

        assert await blacklist.words() == []
        assert await blacklist.filter(candidates) == candidates

    @pytest.mark.asyncio
    async def test_words_cached_until_expiry(self, tmp_path: Path):
        """Edits to the file are picked up only after the TTL."""
        now = [0.0]
        path = tmp_path / "blacklist.txt"
        path.write_text("cam\n", encoding="utf-8")
        blacklist = Blacklist(path, TTLCache(ttl=300, clock=lambda: now[0]))

        assert await blacklist.words() == ["cam"]

        path.write_text("cam\nscreener\n", encoding="utf-8")
        assert await blacklist.words() == ["cam"]

        now[0] = 301.0
        assert await blacklist.words() == ["cam", "screener"]


# =============================================================================
# Movie Filter Tests
# =============================================================================


class TestFilterByYear:
    """Tests for filter_by_year."""

    def test_keeps_year_and_next_year(self):
        candidates = [
            ReleaseCandidate(title="Dune.2021.1080p"),
            ReleaseCandidate(title="Dune.2022.1080p"),
            ReleaseCandidate(title="Dune.1984.1080p"),
            ReleaseCandidate(title="Dune.2020.1080p"),
        ]

        kept = filter_by_year(candidates, 2021, current_year=2030)

        assert titles(kept) == ["Dune.2021.1080p", "Dune.2022.1080p"]

    def test_undated_releases_depend_on_recency(self):
        candidates = [ReleaseCandidate(title="Movie.1080p.WEB")]

        assert filter_by_year(candidates, 2024, current_year=2025) == candidates
        assert filter_by_year(candidates, 2015, current_year=2025) == []

    def test_unknown_year_keeps_all(self):
        candidates = [ReleaseCandidate(title="Movie.1999")]
        assert filter_by_year(candidates, 0) == candidates


# =============================================================================
# Series Filter Tests
# =============================================================================


class TestSeriesMatching:
    """Tests for season and episode matching."""

    def test_mentions_season_forms(self):
        assert mentions_season("Show.S01.1080p", 1)
        assert mentions_season("Show S1 Complete", 1)
        assert mentions_season("Show Season 1", 1)
        assert mentions_season("Show Saison 01 VOSTFR", 1)
        assert mentions_season("Show.S01E05.720p", 1)

    def test_mentions_season_digit_boundary(self):
        assert not mentions_season("Show.S10.1080p", 1)
        assert not mentions_season("Show Season 12", 1)

    def test_matches_episode(self):
        assert matches_episode("Show.S01E03.1080p", 1, 3)
        assert matches_episode("Show 1x03 HDTV", 1, 3)
        assert matches_episode("Show Saison 1 Episode 3", 1, 3)
        assert not matches_episode("Show.S01E30.1080p", 1, 3)
        assert not matches_episode("Show.S01E04.1080p", 1, 3)

    def test_season_pack_detection(self):
        assert is_season_pack_for("Show.S01.1080p.WEB", 1)
        assert is_season_pack_for("Show S01 Complete 1080p", 1)
        assert is_season_pack_for("Show Saison 1 Intégrale", 1)
        assert not is_season_pack_for("Show.S01E02.1080p", 1)
        assert not is_season_pack_for("Show.S02.1080p", 1)

    def test_explicit_marker_wins_over_episode_pattern(self):
        assert is_season_pack_for("Show S01E01-E10 Complete", 1)

    def test_matches_series_loose(self):
        assert matches_series("Show.S01E03.1080p", 1, 3)
        assert matches_series("Show.S01.1080p", 1, 3)
        # Another episode of the same season still mentions the season
        assert matches_series("Show.S01E07.1080p", 1, 3)
        assert not matches_series("Show.S02E03.1080p", 1, 3)

    def test_filter_for_series(self):
        candidates = [
            ReleaseCandidate(title="Show.S01E03.1080p"),
            ReleaseCandidate(title="Show.S01.Complete.720p"),
            ReleaseCandidate(title="Show.S03E01.1080p"),
            ReleaseCandidate(title="Other.Movie.2020"),
        ]

        kept = filter_for_series(candidates, 1, 3)

        assert titles(kept) == ["Show.S01E03.1080p", "Show.S01.Complete.720p"]


class TestEpisodeRange:
    """Tests for season pack episode ranges."""

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("Show S01 Episodes 1-8 1080p", (1, 8)),
            ("Show Saison 1 Épisodes 1 à 6", (1, 6)),
            ("Show.S01E01-E08.1080p", (1, 8)),
            ("Show.S01E01-08.1080p", (1, 8)),
            ("Show E01-E10 720p", (1, 10)),
            ("Show S02 (1-5 of 10)", (1, 5)),
            ("Show.S01.1080p", None),
        ],
    )
    def test_extract_episode_range(self, title, expected):
        assert extract_episode_range(title) == expected

    def test_reversed_range_ignored(self):
        assert extract_episode_range("Show Episodes 8-1") is None

    def test_range_excludes_episode(self):
        pack = ReleaseCandidate(title="Show S01 Episodes 1-8", episode_range=(1, 8))

        assert not range_excludes_episode(pack, 5)
        assert range_excludes_episode(pack, 9)

    def test_no_range_excludes_nothing(self):
        pack = ReleaseCandidate(title="Show.S01.1080p")
        assert not range_excludes_episode(pack, 42)
