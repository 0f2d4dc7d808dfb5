"""Persistence for media items and acquisition records.

This module provides:
- The repository contract the acquisition engine depends on
- A SQLite implementation backed by aiosqlite
- Database migrations for schema evolution

Usage:
    async with get_repository() as repo:
        backlog = await repo.list_items_not_acquired()
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.library.models import AcquisitionKind, AcquisitionRecord, MediaItem

logger = structlog.get_logger()


class RepositoryError(Exception):
    """Raised when a read or write against the store fails."""

    pass


# =============================================================================
# Repository Contract
# =============================================================================


class BaseRepository(ABC):
    """Abstract base class for persistence backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the store and initialize schema."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the store."""
        pass

    async def __aenter__(self) -> "BaseRepository":
        await self.connect()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: object | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Media items
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_item(self, item: MediaItem) -> MediaItem:
        """Insert or update a media item by its watchlist id."""
        pass

    @abstractmethod
    async def get_item(self, item_id: int) -> MediaItem | None:
        """Get a media item by id."""
        pass

    @abstractmethod
    async def delete_item(self, item_id: int) -> bool:
        """Delete a media item. Returns True if a row was removed."""
        pass

    @abstractmethod
    async def list_items_not_acquired(self) -> list[MediaItem]:
        """List the backlog in insertion order."""
        pass

    @abstractmethod
    async def list_items_for_season(self, show_id: int, season: int) -> list[MediaItem]:
        """List every tracked episode of one season, acquired or not."""
        pass

    # -------------------------------------------------------------------------
    # Acquisition records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_acquisition(self, record: AcquisitionRecord) -> AcquisitionRecord:
        """Insert a record (id is None) or update it. Returns the saved record."""
        pass

    @abstractmethod
    async def get_acquisition(self, record_id: int) -> AcquisitionRecord | None:
        """Get an acquisition record by id."""
        pass

    @abstractmethod
    async def list_acquisitions_for(self, item_id: int) -> list[AcquisitionRecord]:
        """List every record created for an item, failed ones included."""
        pass

    @abstractmethod
    async def delete_acquisition(self, record_id: int) -> bool:
        """Delete one acquisition record."""
        pass

    @abstractmethod
    async def delete_acquisitions_for(self, item_id: int) -> int:
        """Delete every record of an item. Returns the number removed."""
        pass

    @abstractmethod
    async def list_season_packs(
        self,
        show_id: int | None = None,
        season: int | None = None,
    ) -> list[AcquisitionRecord]:
        """List usable (not failed) season-pack records, optionally filtered."""
        pass

    # -------------------------------------------------------------------------
    # Convenience helpers (backend-agnostic)
    # -------------------------------------------------------------------------

    async def get_failed_hashes(self, item_id: int) -> set[str]:
        """Info hashes already found unusable for an item."""
        records = await self.list_acquisitions_for(item_id)
        return {r.info_hash for r in records if r.failed and r.info_hash}

    async def get_live_nzb(self, item_id: int) -> AcquisitionRecord | None:
        """The NZB currently downloading for an item, if any."""
        for record in await self.list_acquisitions_for(item_id):
            if record.kind == AcquisitionKind.NZB and not record.failed:
                return record
        return None


# =============================================================================
# SQLite Implementation
# =============================================================================


MIGRATIONS = [
    # Migration 1: Migrations tracking table
    """
    CREATE TABLE IF NOT EXISTS _migrations (
        version INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        applied_at TEXT NOT NULL
    );
    """,
    # Migration 2: Media items
    """
    CREATE TABLE IF NOT EXISTS media_items (
        id INTEGER PRIMARY KEY,
        title TEXT NOT NULL,
        year INTEGER DEFAULT 0,
        season INTEGER DEFAULT 0,
        episode INTEGER DEFAULT 0,
        imdb TEXT,
        show_id INTEGER,
        show_title TEXT,
        acquired INTEGER DEFAULT 0,
        file TEXT,
        season_pack_id INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_media_items_acquired ON media_items(acquired);
    CREATE INDEX IF NOT EXISTS idx_media_items_show ON media_items(show_id, season);
    """,
    # Migration 3: Acquisition records
    """
    CREATE TABLE IF NOT EXISTS acquisitions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER NOT NULL,
        kind TEXT NOT NULL DEFAULT 'torrent',
        info_hash TEXT DEFAULT '',
        title TEXT DEFAULT '',
        size INTEGER DEFAULT 0,
        remote_id INTEGER DEFAULT 0,
        failed INTEGER DEFAULT 0,
        is_season_pack INTEGER DEFAULT 0,
        show_id INTEGER,
        season INTEGER DEFAULT 0,
        episodes_in_pack TEXT DEFAULT '[]',
        consumed_episodes TEXT DEFAULT '[]',
        total_episodes INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_acquisitions_item ON acquisitions(item_id);
    CREATE INDEX IF NOT EXISTS idx_acquisitions_pack ON acquisitions(is_season_pack, show_id, season);
    """,
]


class SQLiteRepository(BaseRepository):
    """SQLite-backed repository."""

    def __init__(self, db_path: str | Path):
        """Initialize SQLite repository.

        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._apply_migrations()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Get active database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected. Use 'async with' or call connect()")
        return self._db

    async def _apply_migrations(self) -> None:
        """Apply pending database migrations."""
        cursor = await self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='_migrations'"
        )
        if await cursor.fetchone() is None:
            current_version = 0
        else:
            cursor = await self.db.execute("SELECT MAX(version) FROM _migrations")
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0

        for i, sql in enumerate(MIGRATIONS, 1):
            if i <= current_version:
                continue

            logger.info("applying_migration", version=i)
            await self.db.executescript(sql)
            await self.db.execute(
                "INSERT OR IGNORE INTO _migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (i, f"migration_{i}", datetime.now(UTC).isoformat()),
            )
            await self.db.commit()
            logger.info("migration_applied", version=i)

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[Any]:
        try:
            cursor = await self.db.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise RepositoryError(f"Query failed: {e}") from e

    async def _write(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        try:
            cursor = await self.db.execute(sql, params)
            await self.db.commit()
            return cursor
        except aiosqlite.Error as e:
            raise RepositoryError(f"Write failed: {e}") from e

    # -------------------------------------------------------------------------
    # Media items
    # -------------------------------------------------------------------------

    async def save_item(self, item: MediaItem) -> MediaItem:
        item.updated_at = datetime.now(UTC)
        await self._write(
            """
            INSERT INTO media_items
                (id, title, year, season, episode, imdb, show_id, show_title,
                 acquired, file, season_pack_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                year = excluded.year,
                season = excluded.season,
                episode = excluded.episode,
                imdb = excluded.imdb,
                show_id = excluded.show_id,
                show_title = excluded.show_title,
                acquired = excluded.acquired,
                file = excluded.file,
                season_pack_id = excluded.season_pack_id,
                updated_at = excluded.updated_at
            """,
            (
                item.id,
                item.title,
                item.year,
                item.season,
                item.episode,
                item.imdb,
                item.show_id,
                item.show_title,
                1 if item.acquired else 0,
                item.file,
                item.season_pack_id,
                item.created_at.isoformat(),
                item.updated_at.isoformat(),
            ),
        )
        return item

    async def get_item(self, item_id: int) -> MediaItem | None:
        rows = await self._fetchall("SELECT * FROM media_items WHERE id = ?", (item_id,))
        return self._row_to_item(rows[0]) if rows else None

    async def delete_item(self, item_id: int) -> bool:
        cursor = await self._write("DELETE FROM media_items WHERE id = ?", (item_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("media_item_deleted", item_id=item_id)
        return deleted

    async def list_items_not_acquired(self) -> list[MediaItem]:
        rows = await self._fetchall(
            "SELECT * FROM media_items WHERE acquired = 0 ORDER BY created_at, id"
        )
        return [self._row_to_item(row) for row in rows]

    async def list_items_for_season(self, show_id: int, season: int) -> list[MediaItem]:
        rows = await self._fetchall(
            "SELECT * FROM media_items WHERE show_id = ? AND season = ? ORDER BY episode",
            (show_id, season),
        )
        return [self._row_to_item(row) for row in rows]

    def _row_to_item(self, row: Any) -> MediaItem:
        """Convert database row to MediaItem model."""
        return MediaItem(
            id=row["id"],
            title=row["title"],
            year=row["year"] or 0,
            season=row["season"] or 0,
            episode=row["episode"] or 0,
            imdb=row["imdb"],
            show_id=row["show_id"],
            show_title=row["show_title"],
            acquired=bool(row["acquired"]),
            file=row["file"],
            season_pack_id=row["season_pack_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # -------------------------------------------------------------------------
    # Acquisition records
    # -------------------------------------------------------------------------

    async def save_acquisition(self, record: AcquisitionRecord) -> AcquisitionRecord:
        record.updated_at = datetime.now(UTC)
        values = (
            record.item_id,
            record.kind.value,
            record.info_hash,
            record.title,
            record.size,
            record.remote_id,
            1 if record.failed else 0,
            1 if record.is_season_pack else 0,
            record.show_id,
            record.season,
            json.dumps(sorted(record.episodes_in_pack)),
            json.dumps(sorted(record.consumed_episodes)),
            record.total_episodes,
            record.updated_at.isoformat(),
        )

        if record.id is None:
            cursor = await self._write(
                """
                INSERT INTO acquisitions
                    (item_id, kind, info_hash, title, size, remote_id, failed,
                     is_season_pack, show_id, season, episodes_in_pack,
                     consumed_episodes, total_episodes, updated_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*values, record.created_at.isoformat()),
            )
            if cursor.lastrowid is None:
                raise RepositoryError("Failed to create acquisition record")
            record.id = cursor.lastrowid
            logger.debug("acquisition_created", record_id=record.id, item_id=record.item_id)
        else:
            await self._write(
                """
                UPDATE acquisitions SET
                    item_id = ?, kind = ?, info_hash = ?, title = ?, size = ?,
                    remote_id = ?, failed = ?, is_season_pack = ?, show_id = ?,
                    season = ?, episodes_in_pack = ?, consumed_episodes = ?,
                    total_episodes = ?, updated_at = ?
                WHERE id = ?
                """,
                (*values, record.id),
            )
        return record

    async def get_acquisition(self, record_id: int) -> AcquisitionRecord | None:
        rows = await self._fetchall("SELECT * FROM acquisitions WHERE id = ?", (record_id,))
        return self._row_to_acquisition(rows[0]) if rows else None

    async def list_acquisitions_for(self, item_id: int) -> list[AcquisitionRecord]:
        rows = await self._fetchall(
            "SELECT * FROM acquisitions WHERE item_id = ? ORDER BY id", (item_id,)
        )
        return [self._row_to_acquisition(row) for row in rows]

    async def delete_acquisition(self, record_id: int) -> bool:
        cursor = await self._write("DELETE FROM acquisitions WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    async def delete_acquisitions_for(self, item_id: int) -> int:
        cursor = await self._write("DELETE FROM acquisitions WHERE item_id = ?", (item_id,))
        return cursor.rowcount

    async def list_season_packs(
        self,
        show_id: int | None = None,
        season: int | None = None,
    ) -> list[AcquisitionRecord]:
        sql = "SELECT * FROM acquisitions WHERE is_season_pack = 1 AND failed = 0"
        params: list[Any] = []
        if show_id is not None:
            sql += " AND show_id = ?"
            params.append(show_id)
        if season is not None:
            sql += " AND season = ?"
            params.append(season)
        sql += " ORDER BY id"

        rows = await self._fetchall(sql, tuple(params))
        return [self._row_to_acquisition(row) for row in rows]

    def _row_to_acquisition(self, row: Any) -> AcquisitionRecord:
        """Convert database row to AcquisitionRecord model."""
        return AcquisitionRecord(
            id=row["id"],
            item_id=row["item_id"],
            kind=AcquisitionKind(row["kind"]),
            info_hash=row["info_hash"] or "",
            title=row["title"] or "",
            size=row["size"] or 0,
            remote_id=row["remote_id"] or 0,
            failed=bool(row["failed"]),
            is_season_pack=bool(row["is_season_pack"]),
            show_id=row["show_id"],
            season=row["season"] or 0,
            episodes_in_pack=set(json.loads(row["episodes_in_pack"] or "[]")),
            consumed_episodes=set(json.loads(row["consumed_episodes"] or "[]")),
            total_episodes=row["total_episodes"] or 0,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


# =============================================================================
# Factory
# =============================================================================


@asynccontextmanager
async def get_repository(db_path: str | Path | None = None) -> AsyncIterator[BaseRepository]:
    """Get a connected repository as a context manager.

    Args:
        db_path: SQLite database path; defaults to settings.database_path.

    Yields:
        Connected repository instance
    """
    from src.config import settings

    repository = SQLiteRepository(db_path or settings.database_path)
    async with repository:
        yield repository
