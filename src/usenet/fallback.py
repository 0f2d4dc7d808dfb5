"""Usenet acquisition path.

Used when no cached torrent could be linked: search the Newznab indexer,
pick the best NZB per resolution tier and hand it to NZBGet. The item
stays pending until the download completes; a live NZB record keeps
later passes from queueing it again.
"""

import asyncio

import structlog

from src.cancellation import raise_if_cancelled
from src.library.models import AcquisitionKind, AcquisitionRecord, MediaItem
from src.library.repository import BaseRepository
from src.search.aggregator import SearchAggregator
from src.search.ranking import rank_nzbs
from src.usenet.nzbget import NZBGetClient, NZBGetError

logger = structlog.get_logger(__name__)

# Post-processing parameter carrying the watchlist id back to the webhook
ITEM_PARAMETER = "Trakt"


class UsenetFallback:
    """Queues the best NZB for an item on NZBGet."""

    def __init__(
        self,
        search: SearchAggregator,
        nzbget: NZBGetClient,
        repository: BaseRepository,
        category: str = "",
    ) -> None:
        """Initialize the fallback.

        Args:
            search: Aggregator over Newznab providers.
            nzbget: Entered NZBGet client.
            repository: Persistence for acquisition records.
            category: NZBGet category for appended NZBs.
        """
        self.search = search
        self.nzbget = nzbget
        self.repository = repository
        self.category = category

    async def acquire(
        self,
        item: MediaItem,
        cancel_event: asyncio.Event | None = None,
    ) -> AcquisitionRecord | None:
        """Queue an NZB for an item.

        NZBs that failed before for this item, and NZBs already in the
        NZBGet queue, are skipped. A failed append marks that NZB failed
        and the next tier is tried.

        Returns:
            The saved NZB record, or None when nothing was queued.

        Raises:
            AcquisitionCancelled: If cancellation is requested between stages.
            NZBGetError: If the NZBGet queue cannot be read.
        """
        raise_if_cancelled(cancel_event, "usenet_search")
        candidates = await self.search.search(item)
        if not candidates:
            logger.info("usenet_no_candidates", item_id=item.id)
            return None

        records = await self.repository.list_acquisitions_for(item.id)
        failed_titles = {r.title for r in records if r.kind == AcquisitionKind.NZB and r.failed}
        ranked = [c for c in rank_nzbs(candidates) if c.title not in failed_titles]

        raise_if_cancelled(cancel_event, "usenet_queue")
        queued = {group.name for group in await self.nzbget.list_groups()}

        for candidate in ranked:
            if candidate.title in queued:
                logger.info("nzb_already_queued", item_id=item.id, title=candidate.title)
                return None

            raise_if_cancelled(cancel_event, "usenet_append")
            record = AcquisitionRecord(
                item_id=item.id,
                kind=AcquisitionKind.NZB,
                title=candidate.title,
                size=candidate.size,
            )
            try:
                content = await self.nzbget.fetch_nzb(candidate.link)
                record.remote_id = await self.nzbget.append(
                    candidate.title,
                    content,
                    category=self.category,
                    parameters={ITEM_PARAMETER: str(item.id)},
                )
            except NZBGetError as e:
                logger.warning(
                    "nzb_append_failed",
                    item_id=item.id,
                    title=candidate.title,
                    error=str(e),
                )
                record.mark_failed()
                await self.repository.save_acquisition(record)
                continue

            record = await self.repository.save_acquisition(record)
            logger.info(
                "nzb_queued",
                item_id=item.id,
                nzb_id=record.remote_id,
                title=candidate.title,
                size=candidate.size,
            )
            return record

        return None
