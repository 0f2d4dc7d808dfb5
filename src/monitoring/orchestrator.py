"""Batch acquisition over the media backlog.

One run reads every item not yet acquired and drives it through
search -> rank -> cache verification, with a small fixed pool of workers.
Items that find nothing stay pending for the next pass. A failing item is
logged and never aborts the batch; only failing to read the backlog does.

Several runs may overlap (scheduled pass plus manual trigger). An
in-memory guard keyed by item id keeps them from working on the same item
twice, so a magnet is never uploaded twice for one item.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

import structlog

from src.cancellation import AcquisitionCancelled, raise_if_cancelled
from src.debrid.verifier import CacheVerifier, VerificationState
from src.library.models import MediaItem
from src.library.repository import BaseRepository
from src.monitoring.season_packs import SeasonPackTracker
from src.search.aggregator import SearchAggregator
from src.search.filters import is_season_pack_for, matches_episode, range_excludes_episode
from src.search.models import ReleaseCandidate
from src.search.ranking import dedupe_by_hash, rank_candidates
from src.usenet.fallback import UsenetFallback

logger = structlog.get_logger(__name__)

DEFAULT_MAX_WORKERS = 3

# Candidates sent to the cache service per item and pass
MAX_CANDIDATES_PER_ITEM = 10


class ItemOutcome(str, Enum):
    """What happened to one item in a run."""

    ACQUIRED = "acquired"
    QUEUED = "queued"
    PENDING = "pending"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunReport:
    """Summary of one batch run."""

    processed: int = 0
    acquired: int = 0
    queued: int = 0
    pending: int = 0
    skipped: int = 0
    failed: int = 0
    released_packs: int = 0
    cancelled: bool = False
    error: str | None = None

    def record(self, outcome: ItemOutcome) -> None:
        if outcome == ItemOutcome.CANCELLED:
            self.cancelled = True
            return
        self.processed += 1
        if outcome == ItemOutcome.ACQUIRED:
            self.acquired += 1
        elif outcome == ItemOutcome.QUEUED:
            self.queued += 1
        elif outcome == ItemOutcome.PENDING:
            self.pending += 1
        elif outcome == ItemOutcome.SKIPPED:
            self.skipped += 1
        elif outcome == ItemOutcome.FAILED:
            self.failed += 1


class BatchOrchestrator:
    """Drives backlog items through the acquisition pipeline.

    Example:
        orchestrator = BatchOrchestrator(repository, search, verifier, tracker)
        report = await orchestrator.run()
    """

    def __init__(
        self,
        repository: BaseRepository,
        search: SearchAggregator,
        verifier: CacheVerifier,
        tracker: SeasonPackTracker | None = None,
        usenet: UsenetFallback | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_candidates: int = MAX_CANDIDATES_PER_ITEM,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            repository: Backlog and acquisition persistence.
            search: Torrent search aggregator (entered).
            verifier: Remote cache verifier.
            tracker: Season pack tracker; enables pack reuse and release.
            usenet: Optional NZB fallback used when no torrent is cached.
            max_workers: Items processed concurrently.
            max_candidates: Candidates verified per item and pass.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.repository = repository
        self.search = search
        self.verifier = verifier
        self.tracker = tracker
        self.usenet = usenet
        self.max_workers = max_workers
        self.max_candidates = max_candidates

        self._in_flight: set[int] = set()
        self._guard = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    async def run(self, cancel_event: asyncio.Event | None = None) -> RunReport:
        """Process the whole backlog once.

        Args:
            cancel_event: When set, items not yet started are abandoned and
                running items stop at their next stage.

        Returns:
            Report of the run; `error` is set only when the backlog could
            not be read.
        """
        report = RunReport()

        try:
            items = await self.repository.list_items_not_acquired()
        except Exception as e:
            logger.exception("backlog_read_failed", error=str(e))
            report.error = f"cannot read backlog: {e}"
            return report

        logger.info("batch_started", items=len(items), max_workers=self.max_workers)
        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(item: MediaItem) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    return
                report.record(await self.process_item(item, cancel_event))

        # Tasks are created in backlog order and the semaphore wakes waiters FIFO
        await asyncio.gather(*(worker(item) for item in items))

        if self.tracker is not None and not report.cancelled:
            try:
                report.released_packs = await self.tracker.release_completed()
            except Exception as e:
                logger.exception("season_pack_sweep_failed", error=str(e))

        logger.info(
            "batch_completed",
            processed=report.processed,
            acquired=report.acquired,
            queued=report.queued,
            pending=report.pending,
            skipped=report.skipped,
            failed=report.failed,
            released_packs=report.released_packs,
            cancelled=report.cancelled,
        )
        return report

    # -------------------------------------------------------------------------
    # Single item
    # -------------------------------------------------------------------------

    async def process_item(
        self,
        item: MediaItem,
        cancel_event: asyncio.Event | None = None,
    ) -> ItemOutcome:
        """Process one item under the idempotency guard.

        Never raises except for asyncio cancellation; errors are logged and
        reported as FAILED.
        """
        async with self._guard:
            if item.id in self._in_flight:
                logger.info("item_already_in_progress", item_id=item.id)
                return ItemOutcome.SKIPPED
            self._in_flight.add(item.id)

        try:
            return await self._acquire(item, cancel_event)
        except AcquisitionCancelled as e:
            logger.info("item_cancelled", item_id=item.id, reason=str(e))
            return ItemOutcome.CANCELLED
        except Exception as e:
            logger.exception("item_processing_failed", item_id=item.id, error=str(e))
            return ItemOutcome.FAILED
        finally:
            async with self._guard:
                self._in_flight.discard(item.id)

    async def _acquire(self, item: MediaItem, cancel_event: asyncio.Event | None) -> ItemOutcome:
        raise_if_cancelled(cancel_event, "backlog_refresh")

        # Another run may have finished this item since the backlog was read
        current = await self.repository.get_item(item.id)
        if current is None or current.acquired:
            return ItemOutcome.SKIPPED
        item = current
        log = logger.bind(item_id=item.id, label=item.label)

        if await self.repository.get_live_nzb(item.id) is not None:
            log.debug("nzb_download_in_progress")
            return ItemOutcome.SKIPPED

        if self.tracker is not None and item.is_episode:
            pack = await self.tracker.find_pack_for(item)
            if pack is not None:
                result = await self.verifier.link_from_pack(pack, item, cancel_event)
                if result.acquired:
                    return ItemOutcome.ACQUIRED

        raise_if_cancelled(cancel_event, "search")
        candidates = await self.search.search(item)
        failed_hashes = await self.repository.get_failed_hashes(item.id)
        live_pack_hashes = await self._live_pack_hashes(item)

        tried = 0
        for candidate in dedupe_by_hash(rank_candidates(candidates)):
            if tried >= self.max_candidates:
                break
            if not candidate.has_hash or candidate.info_hash in failed_hashes:
                continue
            if candidate.info_hash in live_pack_hashes:
                # Live packs are only reached through find_pack_for
                log.debug("candidate_is_live_pack", hash=candidate.info_hash)
                continue

            season_pack = False
            if item.is_episode:
                season_pack = is_season_pack_for(candidate.title, item.season)
                if not self._serves_episode(candidate, item, season_pack):
                    continue

            tried += 1
            result = await self.verifier.verify(
                candidate, item, cancel_event, season_pack=season_pack
            )
            if result.acquired:
                return ItemOutcome.ACQUIRED
            if result.state == VerificationState.NOT_CACHED:
                failed_hashes.add(candidate.info_hash)

        log.info("no_cached_candidate", candidates=len(candidates), tried=tried)

        if self.usenet is not None:
            record = await self.usenet.acquire(item, cancel_event)
            if record is not None:
                return ItemOutcome.QUEUED

        return ItemOutcome.PENDING

    async def _live_pack_hashes(self, item: MediaItem) -> set[str]:
        if not item.is_episode:
            return set()
        packs = await self.repository.list_season_packs(item.show_id, item.season)
        return {pack.info_hash for pack in packs if pack.is_live}

    @staticmethod
    def _serves_episode(candidate: ReleaseCandidate, item: MediaItem, season_pack: bool) -> bool:
        if season_pack:
            return not range_excludes_episode(candidate, item.episode)
        return matches_episode(candidate.title, item.season, item.episode)
