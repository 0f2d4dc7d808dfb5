"""Release filtering.

Key features:
- Title blacklist loaded from a word-list file and cached with a TTL
- Movie year matching with a recency allowance for undated releases
- Loose series matching (exact episode, season pack, season mention)
- Season pack episode range detection ("Episodes 1-8", "E01-E08", ...)
"""

import asyncio
import re
from pathlib import Path

import structlog

from src.search.cache import TTLCache
from src.search.models import ReleaseCandidate, has_pack_marker, matches_year

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Blacklist
# ---------------------------------------------------------------------------


def parse_blacklist(content: str) -> list[str]:
    """Parse blacklist file content into lowercase words.

    Blank lines and lines starting with '#' are ignored.
    """
    words = []
    for line in content.splitlines():
        word = line.strip()
        if not word or word.startswith("#"):
            continue
        words.append(word.lower())
    return words


def is_blacklisted(title: str, words: list[str]) -> bool:
    """Check if any blacklisted word occurs in the title (case-insensitive)."""
    lower = title.lower()
    return any(word in lower for word in words)


class Blacklist:
    """Blacklist backed by a file and refreshed through a TTL cache.

    A missing file means an empty blacklist.
    """

    CACHE_KEY = "words"

    def __init__(self, path: str | Path, cache: TTLCache[str, list[str]]) -> None:
        self.path = Path(path)
        self._cache = cache

    async def _load(self) -> list[str]:
        if not self.path.exists():
            logger.debug("blacklist_file_missing", path=str(self.path))
            return []
        content = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        words = parse_blacklist(content)
        logger.info("blacklist_loaded", path=str(self.path), words=len(words))
        return words

    async def words(self) -> list[str]:
        return await self._cache.get_or_load(self.CACHE_KEY, self._load)

    async def filter(self, candidates: list[ReleaseCandidate]) -> list[ReleaseCandidate]:
        """Drop candidates whose title contains a blacklisted word."""
        words = await self.words()
        if not words:
            return candidates

        kept = [c for c in candidates if not is_blacklisted(c.title, words)]
        if len(kept) != len(candidates):
            logger.debug("blacklist_rejected", count=len(candidates) - len(kept))
        return kept


# ---------------------------------------------------------------------------
# Movies
# ---------------------------------------------------------------------------


def filter_by_year(
    candidates: list[ReleaseCandidate],
    year: int,
    current_year: int | None = None,
) -> list[ReleaseCandidate]:
    """Keep candidates compatible with the expected release year."""
    if year <= 0:
        return candidates
    return [c for c in candidates if matches_year(c.title, year, current_year)]


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


def _season_patterns(season: int) -> list[str]:
    return [
        rf"season[\s.]*0?{season}(?!\d)",
        rf"saison[\s.]*0?{season}(?!\d)",
        rf"(?<![a-z0-9])s0?{season}(?!\d)",
        rf"(?<![a-z0-9])s\.{season}(?!\d)",
    ]


def mentions_season(title: str, season: int) -> bool:
    """Check if a title refers to the given season in any common form."""
    lower = title.lower()
    return any(re.search(pattern, lower) for pattern in _season_patterns(season))


def matches_episode(title: str, season: int, episode: int) -> bool:
    """Check if a title names exactly this episode (S01E03, 1x03, ...)."""
    lower = title.lower()
    patterns = [
        rf"(?<![a-z0-9])s0?{season}[\s.]?e0?{episode}(?!\d)",
        rf"(?<!\d){season}x0?{episode}(?!\d)",
        rf"season\s*{season}\s*episode\s*{episode}(?!\d)",
        rf"saison\s*{season}\s*[ée]pisode\s*{episode}(?!\d)",
    ]
    return any(re.search(pattern, lower) for pattern in patterns)


def names_specific_episode(title: str, season: int) -> bool:
    """Check if a title names some single episode of the season."""
    lower = title.lower()
    patterns = [
        rf"(?<![a-z0-9])s0?{season}[\s.]?e\d{{1,3}}",
        rf"(?<!\d){season}x\d{{2}}",
        r"[ée]pisode\s*\d",
    ]
    return any(re.search(pattern, lower) for pattern in patterns)


def is_season_pack_for(title: str, season: int) -> bool:
    """Check if a title is a full-season release of the given season.

    The title must mention the season. It is a pack if it carries an
    explicit indicator ("complete", "intégrale", ...), or if no
    specific-episode pattern follows the season mention.
    """
    if not mentions_season(title, season):
        return False

    if has_pack_marker(title):
        return True

    return not names_specific_episode(title, season)


def matches_series(title: str, season: int, episode: int) -> bool:
    """Loose series filter: exact episode, season pack, or season mention."""
    if episode > 0 and matches_episode(title, season, episode):
        return True
    if is_season_pack_for(title, season):
        return True
    return mentions_season(title, season)


def filter_for_series(
    candidates: list[ReleaseCandidate],
    season: int,
    episode: int = 0,
) -> list[ReleaseCandidate]:
    """Keep candidates relevant to a season (and optionally an episode)."""
    if season <= 0:
        return candidates
    return [c for c in candidates if matches_series(c.title, season, episode)]


# ---------------------------------------------------------------------------
# Episode range parsing: which episodes a season pack contains
# ---------------------------------------------------------------------------

EPISODE_RANGE_PATTERNS = [
    # "Episodes 1-8" / "Episode 1-8"
    r"[Ee]pisodes?\s*(\d+)\s*[-–]\s*(\d+)",
    # "Épisodes 1 à 8"
    r"[ÉéEe]pisodes?\s*(\d+)\s*(?:à|a)\s*(\d+)",
    # "S01E01-E08" or "S01E01-08"
    r"S\d+E(\d+)\s*[-–]\s*E?(\d+)",
    # "E01-E08"
    r"E(\d+)\s*[-–]\s*E(\d+)",
    # "(1-8 of 10)"
    r"\((\d+)\s*[-–]\s*(\d+)\s*(?:of|sur)\s*\d+\)",
]


def extract_episode_range(title: str) -> tuple[int, int] | None:
    """Extract episode range (first, last) from a release title.

    Args:
        title: Release title to parse

    Returns:
        Tuple (first_episode, last_episode) or None if no range found
    """
    for pattern in EPISODE_RANGE_PATTERNS:
        match = re.search(pattern, title)
        if match:
            first, last = int(match.group(1)), int(match.group(2))
            if first <= last:
                return (first, last)
    return None


def range_excludes_episode(candidate: ReleaseCandidate, episode: int) -> bool:
    """True when the candidate declares an episode range without this episode."""
    if candidate.episode_range is None or episode <= 0:
        return False
    first, last = candidate.episode_range
    return not first <= episode <= last
