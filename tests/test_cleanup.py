"""Tests for cleanup of consumed items."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.debrid.client import DebridAPIError
from src.library.models import AcquisitionKind, AcquisitionRecord, MediaItem
from src.library.repository import SQLiteRepository
from src.monitoring.cleanup import CleanupService
from src.monitoring.season_packs import SeasonPackTracker


@pytest.fixture
async def repository(tmp_path: Path) -> SQLiteRepository:
    repository = SQLiteRepository(tmp_path / "cleanup.db")
    await repository.connect()
    yield repository
    await repository.close()


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.delete_magnet = AsyncMock(return_value=None)
    return client


@pytest.fixture
def service(repository: SQLiteRepository, client: MagicMock) -> CleanupService:
    return CleanupService(repository, SeasonPackTracker(repository, client), client)


def episode(number: int, pack_id: int | None) -> MediaItem:
    return MediaItem(
        id=100 + number,
        title=f"Episode {number}",
        season=1,
        episode=number,
        show_id=5,
        show_title="Show",
        acquired=True,
        season_pack_id=pack_id,
    )


class TestConsume:
    """Tests for CleanupService.consume."""

    @pytest.mark.asyncio
    async def test_unknown_item(self, service: CleanupService, client: MagicMock):
        assert not await service.consume(404)
        client.delete_magnet.assert_not_called()

    @pytest.mark.asyncio
    async def test_movie_releases_magnet_and_records(self, service, repository, client):
        await repository.save_item(MediaItem(id=1, title="Dune", year=2021, acquired=True))
        await repository.save_acquisition(AcquisitionRecord(item_id=1, info_hash="a", remote_id=11))
        failed = AcquisitionRecord(item_id=1, info_hash="b")
        failed.mark_failed()
        await repository.save_acquisition(failed)

        assert await service.consume(1)

        client.delete_magnet.assert_awaited_once_with(11)
        assert await repository.get_item(1) is None
        assert await repository.list_acquisitions_for(1) == []

    @pytest.mark.asyncio
    async def test_nzb_records_are_not_sent_to_cache_service(self, service, repository, client):
        await repository.save_item(MediaItem(id=1, title="Dune"))
        await repository.save_acquisition(
            AcquisitionRecord(item_id=1, kind=AcquisitionKind.NZB, title="Dune.nzb", remote_id=4)
        )

        assert await service.consume(1)

        client.delete_magnet.assert_not_called()
        assert await repository.list_acquisitions_for(1) == []

    @pytest.mark.asyncio
    async def test_release_error_still_removes_records(self, service, repository, client):
        client.delete_magnet.side_effect = DebridAPIError("MAGNET_INVALID_ID", "gone")
        await repository.save_item(MediaItem(id=1, title="Dune"))
        await repository.save_acquisition(AcquisitionRecord(item_id=1, remote_id=11))

        assert await service.consume(1)

        assert await repository.list_acquisitions_for(1) == []
        assert await repository.get_item(1) is None

    @pytest.mark.asyncio
    async def test_pack_kept_until_last_episode(self, service, repository, client):
        """The shared pack survives until every episode is consumed."""
        pack = await repository.save_acquisition(
            AcquisitionRecord(
                item_id=101,
                remote_id=77,
                is_season_pack=True,
                show_id=5,
                season=1,
                episodes_in_pack={1, 2},
            )
        )
        await repository.save_item(episode(1, pack.id))
        await repository.save_item(episode(2, pack.id))

        assert await service.consume(101)
        client.delete_magnet.assert_not_called()
        kept = await repository.get_acquisition(pack.id)
        assert kept is not None
        assert kept.consumed_episodes == {1}

        assert await service.consume(102)
        client.delete_magnet.assert_awaited_once_with(77)
        assert await repository.get_acquisition(pack.id) is None

    @pytest.mark.asyncio
    async def test_single_episode_counts_toward_later_pack(self, service, repository, client):
        await repository.save_item(episode(1, pack_id=None))
        await repository.save_acquisition(
            AcquisitionRecord(item_id=101, info_hash="e", remote_id=11)
        )
        pack = await repository.save_acquisition(
            AcquisitionRecord(
                item_id=102,
                info_hash="p",
                remote_id=77,
                is_season_pack=True,
                show_id=5,
                season=1,
                episodes_in_pack={1, 2},
            )
        )
        await repository.save_item(episode(2, pack.id))

        assert await service.consume(101)
        client.delete_magnet.assert_awaited_once_with(11)
        assert (await repository.get_acquisition(pack.id)).consumed_episodes == {1}

        assert await service.consume(102)
        client.delete_magnet.assert_awaited_with(77)
        assert await repository.get_acquisition(pack.id) is None

    @pytest.mark.asyncio
    async def test_missing_pack_is_tolerated(self, service, repository, client):
        await repository.save_item(episode(1, pack_id=999))

        assert await service.consume(101)
        assert await repository.get_item(101) is None
