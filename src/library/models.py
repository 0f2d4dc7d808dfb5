"""Data models for tracked media and acquisitions.

MediaItem is one watchlist entry (a movie or a single episode).
AcquisitionRecord is what was obtained for it: a torrent handed to the remote
cache service, or an NZB handed to the Usenet downloader. A season pack is an
AcquisitionRecord that covers several episodes of one season.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MediaType(str, Enum):
    """Kind of watchlist entry."""

    MOVIE = "movie"
    EPISODE = "episode"


class AcquisitionKind(str, Enum):
    """How an item was acquired."""

    TORRENT = "torrent"
    NZB = "nzb"


class MediaItem(BaseModel):
    """A movie or episode from the watchlist backlog.

    Attributes:
        id: Stable watchlist id.
        title: Movie title, or episode title for episodes.
        year: Release year (movies); 0 when unknown.
        season: Season number; 0 for movies.
        episode: Episode number; 0 for movies.
        imdb: IMDB id (e.g. "tt0111161"), used by Usenet indexers.
        show_id: Watchlist id of the parent show (episodes only).
        show_title: Parent show title (episodes only).
        acquired: True once a playable file is available.
        file: Direct link or downloader reference once acquired.
        season_pack_id: AcquisitionRecord id when served from a season pack.
    """

    id: int
    title: str
    year: int = 0
    season: int = Field(default=0, ge=0)
    episode: int = Field(default=0, ge=0)
    imdb: str | None = None
    show_id: int | None = None
    show_title: str | None = None
    acquired: bool = False
    file: str | None = None
    season_pack_id: int | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def check_episode_numbering(self) -> "MediaItem":
        """Movies have neither season nor episode, episodes have both."""
        if (self.season == 0) != (self.episode == 0):
            raise ValueError(
                f"season and episode must both be set or both be 0 "
                f"(season={self.season}, episode={self.episode})"
            )
        return self

    @property
    def is_episode(self) -> bool:
        return self.season > 0 and self.episode > 0

    @property
    def is_movie(self) -> bool:
        return self.season == 0 and self.episode == 0

    @property
    def media_type(self) -> MediaType:
        return MediaType.EPISODE if self.is_episode else MediaType.MOVIE

    @property
    def search_title(self) -> str:
        """Title used to build search queries (the show title for episodes)."""
        if self.is_episode and self.show_title:
            return self.show_title
        return self.title

    @property
    def label(self) -> str:
        """Short human-readable label for logs."""
        if self.is_episode:
            return f"{self.search_title} S{self.season:02d}E{self.episode:02d}"
        if self.year:
            return f"{self.title} ({self.year})"
        return self.title


class AcquisitionRecord(BaseModel):
    """A candidate handed to a remote service for a media item.

    Attributes:
        id: Database id (None until saved).
        item_id: MediaItem this record was created for.
        kind: Torrent (remote cache) or NZB (Usenet downloader).
        info_hash: Lowercase torrent info hash; empty for NZBs.
        title: Release title.
        size: Release size in bytes.
        remote_id: Remote magnet id or NZBGet NZB id; 0 when not live.
        failed: True when this candidate could not be used.
        is_season_pack: True when the release covers a whole season.
        show_id: Parent show id (season packs).
        season: Season covered by the pack.
        episodes_in_pack: Episode numbers found in the pack's file list.
        consumed_episodes: Episodes of the pack the user has consumed.
        total_episodes: Largest known episode count for the season.
    """

    id: int | None = None
    item_id: int
    kind: AcquisitionKind = AcquisitionKind.TORRENT
    info_hash: str = ""
    title: str = ""
    size: int = Field(default=0, ge=0)
    remote_id: int = 0
    failed: bool = False
    is_season_pack: bool = False
    show_id: int | None = None
    season: int = 0
    episodes_in_pack: set[int] = Field(default_factory=set)
    consumed_episodes: set[int] = Field(default_factory=set)
    total_episodes: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def mark_failed(self) -> None:
        """Mark the candidate unusable and forget its remote transfer."""
        self.failed = True
        self.remote_id = 0
        self.updated_at = _utcnow()

    def mark_episode_consumed(self, episode: int) -> bool:
        """Record that an episode of this pack was consumed.

        Returns:
            True if the episode was newly recorded, False if it was already
            consumed or the record is not a season pack.
        """
        if not self.is_season_pack or episode in self.consumed_episodes:
            return False
        self.consumed_episodes.add(episode)
        self.updated_at = _utcnow()
        return True

    @property
    def is_live(self) -> bool:
        """A remote transfer exists for this record."""
        return self.remote_id != 0 and not self.failed


class SeasonPackStatus(BaseModel):
    """Derived view of a season pack's consumption progress."""

    pack_id: int
    show_id: int | None = None
    season: int
    title: str = ""
    total_episodes: int
    episodes_in_pack: list[int] = Field(default_factory=list)
    consumed_episodes: list[int] = Field(default_factory=list)
    is_complete: bool = False

    @property
    def remaining(self) -> int:
        return max(self.total_episodes - len(self.consumed_episodes), 0)
