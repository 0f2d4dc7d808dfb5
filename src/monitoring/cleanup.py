"""Cleanup of consumed media.

When an item has been watched (removed upstream), its remote transfers
are released and its records deleted. Season packs are shared, so a pack
only goes away once the tracker says it is complete.
"""

import structlog

from src.debrid.client import AllDebridClient, DebridError
from src.library.models import AcquisitionKind, AcquisitionRecord, MediaItem
from src.library.repository import BaseRepository
from src.monitoring.season_packs import SeasonPackNotFoundError, SeasonPackTracker

logger = structlog.get_logger(__name__)


class CleanupService:
    """Releases remote resources of consumed items."""

    def __init__(
        self,
        repository: BaseRepository,
        tracker: SeasonPackTracker,
        client: AllDebridClient | None = None,
    ) -> None:
        self.repository = repository
        self.tracker = tracker
        self.client = client

    async def _release_torrent(self, record: AcquisitionRecord) -> None:
        if self.client is None or record.kind != AcquisitionKind.TORRENT or not record.is_live:
            return
        try:
            await self.client.delete_magnet(record.remote_id)
        except DebridError as e:
            # The record goes anyway; an orphaned magnet expires remotely
            logger.warning(
                "magnet_release_failed",
                record_id=record.id,
                magnet_id=record.remote_id,
                error=str(e),
            )

    async def _consume_from_pack(self, pack_id: int, episode: int) -> None:
        try:
            await self.tracker.record_consumption(pack_id, episode)
        except SeasonPackNotFoundError:
            logger.info("season_pack_missing", pack_id=pack_id, episode=episode)
            return

        if await self.tracker.release_if_complete(pack_id):
            await self.repository.delete_acquisition(pack_id)
            logger.info("season_pack_removed", pack_id=pack_id)

    async def _packs_holding(self, item: MediaItem) -> list[int]:
        """Pack ids that contain the item's episode, whichever way it was acquired."""
        pack_ids = [item.season_pack_id] if item.season_pack_id is not None else []
        if not item.is_episode or item.show_id is None:
            return pack_ids
        for pack in await self.repository.list_season_packs(item.show_id, item.season):
            if pack.is_live and item.episode in pack.episodes_in_pack and pack.id not in pack_ids:
                pack_ids.append(pack.id)
        return pack_ids

    async def consume(self, item_id: int) -> bool:
        """Clean up after an item was consumed.

        - Every pack holding the episode records its consumption, including
          packs uploaded after the episode was acquired on its own. A pack
          that becomes complete is released and its record deleted.
        - Other records of the item are released and deleted.
        - The item itself is deleted.

        Returns:
            False if the item is unknown, True otherwise.
        """
        item = await self.repository.get_item(item_id)
        if item is None:
            logger.info("consume_unknown_item", item_id=item_id)
            return False

        for pack_id in await self._packs_holding(item):
            await self._consume_from_pack(pack_id, item.episode)

        for record in await self.repository.list_acquisitions_for(item_id):
            if record.is_season_pack and not record.failed:
                # Still referenced by other episodes of the season
                continue
            await self._release_torrent(record)
            if record.id is not None:
                await self.repository.delete_acquisition(record.id)

        await self.repository.delete_item(item_id)
        logger.info("item_consumed", item_id=item_id, label=item.label)
        return True
