"""Season pack consumption tracking.

A season pack is one remote magnet shared by every episode of a season.
It may only be released from the remote service once nobody will link
from it again, i.e. when:

- every episode found in the pack's file list has been consumed, and
- the number of consumed episodes reaches the season's expected total.

The expected total is the number of distinct episodes of that season
known to the backlog plus those already consumed (consumed items leave
the backlog), and never shrinks below the last computed value.
"""

import structlog

from src.debrid.client import AllDebridClient, DebridError
from src.library.models import AcquisitionRecord, MediaItem, SeasonPackStatus
from src.library.repository import BaseRepository

logger = structlog.get_logger(__name__)


class SeasonPackNotFoundError(LookupError):
    """Raised when a pack id does not refer to a usable season pack."""

    pass


def is_pack_complete(pack: AcquisitionRecord, total_episodes: int) -> bool:
    """Decide completion from the pack's episode sets and the season total.

    Args:
        pack: Season pack record.
        total_episodes: Expected number of episodes in the season.

    Returns:
        True only when every known pack episode is consumed and the
        consumed count has reached the expected total.
    """
    if not pack.consumed_episodes:
        return False
    if not pack.episodes_in_pack <= pack.consumed_episodes:
        return False
    return len(pack.consumed_episodes) >= total_episodes


class SeasonPackTracker:
    """Tracks per-episode consumption of season packs and releases them."""

    def __init__(
        self,
        repository: BaseRepository,
        client: AllDebridClient | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            repository: Persistence for packs and backlog items.
            client: Entered AllDebrid client used to release complete
                packs; without it packs are never released.
        """
        self.repository = repository
        self.client = client

    async def _get_pack(self, pack_id: int) -> AcquisitionRecord:
        pack = await self.repository.get_acquisition(pack_id)
        if pack is None or not pack.is_season_pack:
            raise SeasonPackNotFoundError(f"No season pack with id {pack_id}")
        return pack

    async def total_episodes(self, pack: AcquisitionRecord) -> int:
        """Expected episode count for the pack's season."""
        known: set[int] = set(pack.consumed_episodes)
        if pack.show_id is not None:
            items = await self.repository.list_items_for_season(pack.show_id, pack.season)
            known |= {item.episode for item in items}
        return max(pack.total_episodes, len(known))

    def _status(self, pack: AcquisitionRecord, total: int) -> SeasonPackStatus:
        return SeasonPackStatus(
            pack_id=pack.id or 0,
            show_id=pack.show_id,
            season=pack.season,
            title=pack.title,
            total_episodes=total,
            episodes_in_pack=sorted(pack.episodes_in_pack),
            consumed_episodes=sorted(pack.consumed_episodes),
            is_complete=is_pack_complete(pack, total),
        )

    async def status(self, pack_id: int) -> SeasonPackStatus:
        """Compute the current status of a pack."""
        pack = await self._get_pack(pack_id)
        return self._status(pack, await self.total_episodes(pack))

    async def is_complete(self, pack_id: int) -> bool:
        return (await self.status(pack_id)).is_complete

    async def record_consumption(self, pack_id: int, episode: int) -> SeasonPackStatus:
        """Record that an episode of a pack was consumed.

        Recording the same episode twice has no further effect.

        Returns:
            The pack status after recording.
        """
        pack = await self._get_pack(pack_id)
        total = await self.total_episodes(pack)

        changed = pack.mark_episode_consumed(episode)
        # Count the episode itself when it had already left the backlog
        total = max(total, len(pack.consumed_episodes))
        if changed or total != pack.total_episodes:
            pack.total_episodes = total
            await self.repository.save_acquisition(pack)

        status = self._status(pack, total)
        logger.info(
            "season_pack_episode_consumed",
            pack_id=pack_id,
            season=pack.season,
            episode=episode,
            consumed=len(status.consumed_episodes),
            total=status.total_episodes,
            complete=status.is_complete,
        )
        return status

    async def find_pack_for(self, item: MediaItem) -> AcquisitionRecord | None:
        """Find a live pack of the item's season that can serve the episode."""
        if not item.is_episode or item.show_id is None:
            return None

        for pack in await self.repository.list_season_packs(item.show_id, item.season):
            if not pack.is_live:
                continue
            if pack.episodes_in_pack and item.episode not in pack.episodes_in_pack:
                continue
            return pack
        return None

    async def release_if_complete(self, pack_id: int) -> bool:
        """Delete a complete pack's magnet from the remote service.

        Release failures are logged; the next sweep retries.

        Returns:
            True if the pack is complete and no longer live remotely.
        """
        pack = await self._get_pack(pack_id)
        total = await self.total_episodes(pack)
        if not is_pack_complete(pack, total):
            return False
        if not pack.is_live:
            return True
        if self.client is None:
            logger.debug("season_pack_release_skipped", pack_id=pack_id, reason="no_client")
            return False

        try:
            await self.client.delete_magnet(pack.remote_id)
        except DebridError as e:
            logger.warning(
                "season_pack_release_failed",
                pack_id=pack_id,
                magnet_id=pack.remote_id,
                error=str(e),
            )
            return False

        logger.info("season_pack_released", pack_id=pack_id, magnet_id=pack.remote_id)
        pack.remote_id = 0
        await self.repository.save_acquisition(pack)
        return True

    async def release_completed(self) -> int:
        """Release every complete pack still live remotely.

        Returns:
            Number of packs released in this sweep.
        """
        released = 0
        for pack in await self.repository.list_season_packs():
            if pack.id is None or not pack.is_live:
                continue
            if await self.release_if_complete(pack.id):
                released += 1
        if released:
            logger.info("season_pack_sweep_completed", released=released)
        return released
