"""Release candidate model and title heuristics.

Every provider normalizes its results into ReleaseCandidate. Quality
signals (resolution, remux, season pack, year) are derived from the
release title only.
"""

import re
from datetime import UTC, datetime
from urllib.parse import quote

from pydantic import BaseModel, Field

# =============================================================================
# Constants
# =============================================================================

# Ordered: the first token found in the title wins
RESOLUTION_TOKENS: list[tuple[str, int]] = [
    ("8k", 8000),
    ("4320p", 4320),
    ("4k", 4000),
    ("2160p", 2160),
    ("1440p", 1440),
    ("1080p", 1080),
    ("720p", 720),
    ("480p", 480),
    ("360p", 360),
    ("240p", 240),
]

UHD_TOKENS = ("uhd", "ultra.hd", "ultra hd")
HD_TOKENS = ("hd", "high.definition", "full.hd", "fhd")

DEFAULT_RESOLUTION = 480

SEASON_PACK_MARKERS = (
    "complete",
    "complet",
    "complète",
    "full season",
    "season pack",
    "all episodes",
    "tous les épisodes",
    "integrale",
    "intégrale",
    "completa",
)

YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")
SEASON_ONLY_PATTERN = re.compile(r"s\d{2}(?:[^e]|$)", re.IGNORECASE)
EPISODE_PATTERN = re.compile(r"s\d{2}e\d{2}", re.IGNORECASE)
SEASON_NUMBER_PATTERNS = [
    re.compile(r"s(\d{1,2})(?:[^e\d]|$)", re.IGNORECASE),
    re.compile(r"season\s*(\d{1,2})", re.IGNORECASE),
    re.compile(r"saison\s*(\d{1,2})", re.IGNORECASE),
]


# =============================================================================
# Title Heuristics
# =============================================================================


def is_remux(title: str) -> bool:
    """Check if a release is a remux (untouched disc video stream)."""
    return "remux" in title.lower()


def extract_resolution(title: str) -> int:
    """Extract a numeric resolution score from a release title.

    Explicit resolution tokens are checked first in a fixed order, then
    UHD aliases (2160), then HD aliases (1080). Titles with no signal
    score 480.

    Args:
        title: Release title.

    Returns:
        Resolution score (e.g. 2160, 1080, 720).
    """
    lower = title.lower()

    for token, value in RESOLUTION_TOKENS:
        if token in lower:
            return value

    if any(token in lower for token in UHD_TOKENS):
        return 2160

    if any(token in lower for token in HD_TOKENS):
        return 1080

    return DEFAULT_RESOLUTION


def extract_years(title: str) -> list[int]:
    """Extract every plausible release year (1900-2099) from a title."""
    return [int(match) for match in YEAR_PATTERN.findall(title)]


def extract_year(title: str) -> int:
    """Return the first year in a title, or 0 if none."""
    years = extract_years(title)
    return years[0] if years else 0


def matches_year(title: str, expected_year: int, current_year: int | None = None) -> bool:
    """Check whether a title is compatible with the expected release year.

    A title matches when it contains the expected year or the year after
    (late-year releases are often tagged with the following year). A title
    without any year is kept only for recent releases, where uploaders
    commonly omit it. Any other explicit year rejects the title.

    Args:
        title: Release title.
        expected_year: Year the movie was released; 0 disables the check.
        current_year: Override for the current year (defaults to now).

    Returns:
        True if the title should be kept.
    """
    if expected_year <= 0:
        return True

    years = extract_years(title)
    if not years:
        if current_year is None:
            current_year = datetime.now(UTC).year
        return expected_year >= current_year - 2

    return any(year in (expected_year, expected_year + 1) for year in years)


def has_pack_marker(title: str) -> bool:
    """Check for an explicit full-season marker ("complete", "intégrale", ...)."""
    lower = title.lower()
    return any(marker in lower for marker in SEASON_PACK_MARKERS)


def is_season_pack_title(title: str) -> bool:
    """Check if a title looks like a full-season release.

    Either an explicit marker or an "S01" token without a following "E01".
    """
    if has_pack_marker(title):
        return True

    return bool(SEASON_ONLY_PATTERN.search(title)) and not EPISODE_PATTERN.search(title)


def extract_season(title: str) -> int:
    """Extract the season number a release refers to, or 0 if none."""
    for pattern in SEASON_NUMBER_PATTERNS:
        match = pattern.search(title)
        if match:
            return int(match.group(1))
    return 0


def build_magnet_link(info_hash: str, name: str = "") -> str:
    """Build a magnet URI from an info hash.

    Args:
        info_hash: BitTorrent info hash (40 hex characters).
        name: Optional display name for the torrent.

    Returns:
        Magnet URI.
    """
    magnet = f"magnet:?xt=urn:btih:{info_hash}"
    if name:
        magnet += f"&dn={quote(name)}"
    return magnet


# =============================================================================
# Data Models
# =============================================================================


class ReleaseCandidate(BaseModel):
    """A single search result from any provider.

    Attributes:
        title: Release title as published by the provider.
        info_hash: Lowercase info hash; empty when not (yet) known.
        size: Size in bytes.
        seeders: Number of seeders (0 for Usenet).
        leechers: Number of leechers (0 for Usenet).
        source: Provider name (e.g. "apibay", "ygg", "newznab").
        provider_id: Provider-specific id, used to resolve a missing hash.
        link: NZB download URL for Usenet candidates.
        episode_range: (first, last) episode range parsed from the title.
    """

    title: str = Field(..., description="Release title")
    info_hash: str = Field(default="", description="Lowercase info hash")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    seeders: int = Field(default=0, ge=0, description="Number of seeders")
    leechers: int = Field(default=0, ge=0, description="Number of leechers")
    source: str = Field(default="", description="Provider name")
    provider_id: str = Field(default="", description="Provider-specific id")
    link: str = Field(default="", description="NZB download URL")
    episode_range: tuple[int, int] | None = Field(default=None)

    @property
    def has_hash(self) -> bool:
        return bool(self.info_hash)

    @property
    def is_remux(self) -> bool:
        return is_remux(self.title)

    @property
    def resolution(self) -> int:
        return extract_resolution(self.title)

    @property
    def is_season_pack(self) -> bool:
        return is_season_pack_title(self.title)

    @property
    def season(self) -> int:
        return extract_season(self.title)

    @property
    def year(self) -> int:
        return extract_year(self.title)

    @property
    def magnet(self) -> str:
        """Magnet URI, or empty string when the hash is unknown."""
        if not self.info_hash:
            return ""
        return build_magnet_link(self.info_hash, self.title)
