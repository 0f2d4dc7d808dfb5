"""Tests for the batch acquisition orchestrator.

Tests cover:
- Ranked verification and failed-hash skipping
- Idempotency across overlapping runs
- Error isolation per item
- Backlog read failure
- Cancellation
- Season pack reuse and Usenet fallback
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.debrid.client import MagnetStatus, MagnetUpload, RemoteFile, UnlockedLink
from src.debrid.verifier import CacheVerifier
from src.library.models import AcquisitionKind, AcquisitionRecord, MediaItem
from src.library.repository import SQLiteRepository
from src.monitoring.orchestrator import BatchOrchestrator, ItemOutcome, RunReport
from src.monitoring.season_packs import SeasonPackTracker
from src.search.models import ReleaseCandidate

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def repository(tmp_path: Path) -> SQLiteRepository:
    repository = SQLiteRepository(tmp_path / "orchestrator.db")
    await repository.connect()
    yield repository
    await repository.close()


class FakeCacheService:
    """In-memory AllDebrid: knows which hashes are cached."""

    def __init__(self, cached: set[str], files: list[RemoteFile] | None = None) -> None:
        self.cached = cached
        self.files = files or [RemoteFile("release/video.mkv", 1000, "https://l/video")]
        self.magnets: dict[int, str] = {}
        self.uploads: list[str] = []

        self.upload_magnet = AsyncMock(side_effect=self._upload)
        self.get_status = AsyncMock(side_effect=self._status)
        self.list_files = AsyncMock(side_effect=lambda magnet_id: list(self.files))
        self.unlock_link = AsyncMock(side_effect=lambda link: UnlockedLink(link=f"{link}/direct"))
        self.delete_magnet = AsyncMock(side_effect=self._delete)

    async def _upload(self, magnet: str) -> MagnetUpload:
        info_hash = magnet.split("btih:")[1].split("&")[0]
        self.uploads.append(info_hash)
        magnet_id = len(self.uploads)
        self.magnets[magnet_id] = info_hash
        # Let overlapping runs interleave here
        await asyncio.sleep(0)
        return MagnetUpload(id=magnet_id, hash=info_hash)

    async def _status(self, magnet_id: int) -> MagnetStatus:
        ready = self.magnets[magnet_id] in self.cached
        return MagnetStatus(id=magnet_id, status_code=4 if ready else 1)

    async def _delete(self, magnet_id: int) -> None:
        self.magnets.pop(magnet_id, None)


class SharingCacheService(FakeCacheService):
    """Like the real service, uploading a known hash returns its existing magnet."""

    async def _upload(self, magnet: str) -> MagnetUpload:
        info_hash = magnet.split("btih:")[1].split("&")[0]
        for magnet_id, known in self.magnets.items():
            if known == info_hash:
                return MagnetUpload(id=magnet_id, hash=info_hash)
        return await super()._upload(magnet)


def candidate(title: str, info_hash: str, size: int = 1000) -> ReleaseCandidate:
    return ReleaseCandidate(title=title, info_hash=info_hash, size=size, seeders=10)


def make_search(results: list[ReleaseCandidate] | Exception) -> MagicMock:
    search = MagicMock()
    if isinstance(results, Exception):
        search.search = AsyncMock(side_effect=results)
    else:
        search.search = AsyncMock(return_value=results)
    return search


def make_orchestrator(
    repository: SQLiteRepository,
    service: FakeCacheService,
    search: MagicMock,
    **kwargs,
) -> BatchOrchestrator:
    verifier = CacheVerifier(service, repository, settle_delay=0)
    return BatchOrchestrator(repository, search, verifier, **kwargs)


MOVIE_RESULTS = [
    candidate("Dune.2021.720p.WEB", "1" * 40),
    candidate("Dune.2021.2160p.BluRay.REMUX", "2" * 40),
    candidate("Dune.2021.1080p.BluRay", "3" * 40),
]


# =============================================================================
# Report Tests
# =============================================================================


class TestRunReport:
    """Tests for RunReport counters."""

    def test_record(self):
        report = RunReport()
        for outcome in [
            ItemOutcome.ACQUIRED,
            ItemOutcome.PENDING,
            ItemOutcome.PENDING,
            ItemOutcome.FAILED,
            ItemOutcome.CANCELLED,
        ]:
            report.record(outcome)

        assert report.processed == 4
        assert report.acquired == 1
        assert report.pending == 2
        assert report.failed == 1
        assert report.cancelled

    def test_invalid_worker_count(self, repository):
        with pytest.raises(ValueError):
            make_orchestrator(repository, FakeCacheService(set()), make_search([]), max_workers=0)


# =============================================================================
# Movie Flow Tests
# =============================================================================


class TestMovieAcquisition:
    """Tests for the torrent path."""

    @pytest.mark.asyncio
    async def test_best_cached_candidate_wins(self, repository):
        service = FakeCacheService(cached={"2" * 40, "3" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))

        report = await make_orchestrator(repository, service, make_search(MOVIE_RESULTS)).run()

        assert report.acquired == 1
        assert service.uploads == ["2" * 40]
        item = await repository.get_item(1)
        assert item.acquired
        assert item.file == "https://l/video/direct"

    @pytest.mark.asyncio
    async def test_uncached_candidates_skipped_next_pass(self, repository):
        service = FakeCacheService(cached=set())
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        orchestrator = make_orchestrator(repository, service, make_search(MOVIE_RESULTS))

        first = await orchestrator.run()
        second = await orchestrator.run()

        assert first.pending == 1
        assert second.pending == 1
        assert len(service.uploads) == 3
        assert service.magnets == {}

    @pytest.mark.asyncio
    async def test_candidate_limit(self, repository):
        service = FakeCacheService(cached=set())
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))

        await make_orchestrator(
            repository, service, make_search(MOVIE_RESULTS), max_candidates=2
        ).run()

        assert len(service.uploads) == 2

    @pytest.mark.asyncio
    async def test_candidates_without_hash_ignored(self, repository):
        service = FakeCacheService(cached=set())
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))

        report = await make_orchestrator(
            repository, service, make_search([candidate("Dune.2021.2160p", "")])
        ).run()

        assert report.pending == 1
        assert service.uploads == []


# =============================================================================
# Concurrency and Error Tests
# =============================================================================


class TestBatchBehaviour:
    """Tests for batch-level guarantees."""

    @pytest.mark.asyncio
    async def test_overlapping_runs_upload_once(self, repository):
        """Two runs racing on one item upload its magnet exactly once."""
        service = FakeCacheService(cached={"2" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        orchestrator = make_orchestrator(repository, service, make_search(MOVIE_RESULTS))

        first, second = await asyncio.gather(orchestrator.run(), orchestrator.run())

        assert service.upload_magnet.await_count == 1
        assert first.acquired + second.acquired == 1
        assert first.skipped + second.skipped == 1

    @pytest.mark.asyncio
    async def test_item_error_does_not_abort_batch(self, repository):
        service = FakeCacheService(cached={"2" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        await repository.save_item(MediaItem(id=2, title="Dune", year=2021))
        search = make_search(MOVIE_RESULTS)
        search.search.side_effect = [RuntimeError("provider bug"), MOVIE_RESULTS]

        report = await make_orchestrator(repository, service, search, max_workers=1).run()

        assert report.failed == 1
        assert report.acquired == 1
        assert report.error is None

    @pytest.mark.asyncio
    async def test_backlog_read_failure(self):
        repository = MagicMock()
        repository.list_items_not_acquired = AsyncMock(side_effect=RuntimeError("db locked"))
        orchestrator = BatchOrchestrator(repository, make_search([]), MagicMock())

        report = await orchestrator.run()

        assert report.error is not None
        assert "db locked" in report.error
        assert report.processed == 0

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, repository):
        service = FakeCacheService(cached={"2" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        cancel = asyncio.Event()
        cancel.set()

        report = await make_orchestrator(repository, service, make_search(MOVIE_RESULTS)).run(
            cancel
        )

        assert report.cancelled
        assert report.processed == 0
        assert service.uploads == []

    @pytest.mark.asyncio
    async def test_cancel_mid_verification_withdraws(self, repository):
        service = FakeCacheService(cached={"2" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        cancel = asyncio.Event()
        upload = service.upload_magnet.side_effect

        async def upload_then_cancel(magnet: str) -> MagnetUpload:
            cancel.set()
            return await upload(magnet)

        service.upload_magnet.side_effect = upload_then_cancel

        report = await make_orchestrator(repository, service, make_search(MOVIE_RESULTS)).run(
            cancel
        )

        assert report.cancelled
        assert service.magnets == {}
        assert not (await repository.get_item(1)).acquired

    @pytest.mark.asyncio
    async def test_acquired_items_not_processed(self, repository):
        service = FakeCacheService(cached={"2" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021, acquired=True))
        search = make_search(MOVIE_RESULTS)

        report = await make_orchestrator(repository, service, search).run()

        assert report.processed == 0
        search.search.assert_not_called()


# =============================================================================
# Episode and Fallback Tests
# =============================================================================


def episode(number: int) -> MediaItem:
    return MediaItem(
        id=100 + number,
        title=f"Episode {number}",
        season=1,
        episode=number,
        show_id=5,
        show_title="Show",
    )


PACK_FILES = [
    RemoteFile(f"Show.S01/Show.S01E0{n}.1080p.mkv", 1000, f"https://l/e{n}") for n in (1, 2, 3)
]


class TestEpisodes:
    """Tests for episode acquisition and season pack reuse."""

    @pytest.mark.asyncio
    async def test_pack_uploaded_once_for_whole_season(self, repository):
        service = FakeCacheService(cached={"p" * 40}, files=PACK_FILES)
        for number in (1, 2, 3):
            await repository.save_item(episode(number))
        search = make_search([candidate("Show.S01.1080p.WEB-DL", "p" * 40)])
        orchestrator = make_orchestrator(
            repository, service, search, tracker=SeasonPackTracker(repository, service), max_workers=1
        )

        report = await orchestrator.run()

        assert report.acquired == 3
        assert service.uploads == ["p" * 40]
        items = [await repository.get_item(100 + n) for n in (1, 2, 3)]
        assert [item.file for item in items] == [f"https://l/e{n}/direct" for n in (1, 2, 3)]
        assert len({item.season_pack_id for item in items}) == 1

    @pytest.mark.asyncio
    async def test_wrong_episode_not_verified(self, repository):
        service = FakeCacheService(cached={"e" * 40})
        await repository.save_item(episode(2))
        search = make_search([candidate("Show.S01E05.1080p", "e" * 40)])

        report = await make_orchestrator(repository, service, search).run()

        assert report.pending == 1
        assert service.uploads == []

    @pytest.mark.asyncio
    async def test_pack_range_excluding_episode_skipped(self, repository):
        service = FakeCacheService(cached={"r" * 40})
        await repository.save_item(episode(8))
        pack = candidate("Show S01 Episodes 1-5 1080p", "r" * 40).model_copy(
            update={"episode_range": (1, 5)}
        )

        report = await make_orchestrator(repository, service, make_search([pack])).run()

        assert report.pending == 1
        assert service.uploads == []

    @pytest.mark.asyncio
    async def test_live_pack_not_uploaded_again_for_missing_episode(self, repository):
        service = SharingCacheService(cached={"p" * 40}, files=PACK_FILES[:2])
        for number in (1, 2):
            await repository.save_item(episode(number))
        search = make_search([candidate("Show.S01.1080p.WEB-DL", "p" * 40)])
        tracker = SeasonPackTracker(repository, service)
        orchestrator = make_orchestrator(
            repository, service, search, tracker=tracker, max_workers=1
        )
        assert (await orchestrator.run()).acquired == 2

        await repository.save_item(episode(3))
        report = await orchestrator.run()

        assert report.pending == 1
        assert service.uploads == ["p" * 40]
        service.delete_magnet.assert_not_called()
        [pack] = await repository.list_season_packs(5, 1)
        assert pack.is_live
        assert pack.episodes_in_pack == {1, 2}


class TestUsenetFallback:
    """Tests for handing items to the Usenet fallback."""

    @pytest.mark.asyncio
    async def test_queued_when_nothing_cached(self, repository):
        service = FakeCacheService(cached=set())
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        usenet = MagicMock()
        usenet.acquire = AsyncMock(
            return_value=AcquisitionRecord(item_id=1, kind=AcquisitionKind.NZB, remote_id=3)
        )

        report = await make_orchestrator(
            repository, service, make_search(MOVIE_RESULTS), usenet=usenet
        ).run()

        assert report.queued == 1
        usenet.acquire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_live_nzb_skips_item(self, repository):
        service = FakeCacheService(cached={"2" * 40})
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021))
        await repository.save_acquisition(
            AcquisitionRecord(item_id=1, kind=AcquisitionKind.NZB, title="Dune.nzb", remote_id=3)
        )
        search = make_search(MOVIE_RESULTS)

        report = await make_orchestrator(repository, service, search).run()

        assert report.skipped == 1
        search.search.assert_not_called()
