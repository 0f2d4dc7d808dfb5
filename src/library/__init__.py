"""Media library persistence.

Tracks watchlist items and what was acquired for them.
"""

from src.library.models import (
    AcquisitionKind,
    AcquisitionRecord,
    MediaItem,
    MediaType,
    SeasonPackStatus,
)
from src.library.repository import (
    BaseRepository,
    RepositoryError,
    SQLiteRepository,
    get_repository,
)

__all__ = [
    # Models
    "MediaItem",
    "MediaType",
    "AcquisitionKind",
    "AcquisitionRecord",
    "SeasonPackStatus",
    # Repository
    "BaseRepository",
    "SQLiteRepository",
    "RepositoryError",
    "get_repository",
]
