"""Multi-provider release search.

Fans a query out to every registered provider, isolates provider failures,
and applies the blacklist and relevance filters to the merged results.

Usage:
    async with SearchAggregator([APIBayProvider(), YggProvider()], blacklist) as search:
        candidates = await search.search(item)
"""

import asyncio
from contextlib import AsyncExitStack
from typing import Any

import httpx
import structlog

from src.library.models import MediaItem
from src.search.base import SearchError, SearchProvider
from src.search.filters import (
    Blacklist,
    extract_episode_range,
    filter_by_year,
    filter_for_series,
    is_season_pack_for,
)
from src.search.models import ReleaseCandidate

logger = structlog.get_logger(__name__)


def build_query(item: MediaItem) -> str:
    """Build the provider query for an item.

    Movies with a known year search "Title Year". Episodes search the
    season ("Title s01") so that single episodes and season packs both
    come back in one pass.
    """
    title = item.search_title.strip()
    if item.is_episode:
        return f"{title} s{item.season:02d}"
    if item.year > 0:
        return f"{title} {item.year}"
    return title


class SearchAggregator:
    """Runs every provider for an item and merges the filtered results."""

    def __init__(
        self,
        providers: list[SearchProvider],
        blacklist: Blacklist | None = None,
        current_year: int | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            providers: Providers queried for every item, in result order.
            blacklist: Optional title blacklist.
            current_year: Override for the year filter's recency window.
        """
        self.providers = providers
        self.blacklist = blacklist
        self.current_year = current_year
        self._stack: AsyncExitStack | None = None

    async def __aenter__(self) -> "SearchAggregator":
        self._stack = AsyncExitStack()
        for provider in self.providers:
            await self._stack.enter_async_context(provider)
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: Any,
    ) -> None:
        if self._stack:
            await self._stack.aclose()
            self._stack = None

    async def _search_provider(
        self, provider: SearchProvider, query: str, item: MediaItem
    ) -> list[ReleaseCandidate]:
        try:
            return await provider.search(query, item)
        except (SearchError, httpx.HTTPError) as e:
            logger.warning(
                "provider_search_failed",
                provider=provider.name,
                item_id=item.id,
                error=str(e),
            )
        except Exception:
            logger.exception("provider_search_crashed", provider=provider.name, item_id=item.id)
        return []

    async def search(self, item: MediaItem) -> list[ReleaseCandidate]:
        """Search every provider for an item.

        Provider failures count as zero results from that provider; this
        method does not raise for them.

        Args:
            item: Movie or episode to search for.

        Returns:
            Filtered candidates, grouped by provider in registration order.
        """
        query = build_query(item)
        per_provider = await asyncio.gather(
            *(self._search_provider(provider, query, item) for provider in self.providers)
        )

        candidates = [candidate for results in per_provider for candidate in results]
        total = len(candidates)
        candidates = await self.apply_filters(candidates, item)

        for candidate in candidates:
            if candidate.episode_range is None and self._is_pack(candidate, item):
                candidate.episode_range = extract_episode_range(candidate.title)

        logger.info(
            "search_completed",
            item_id=item.id,
            query=query,
            providers=len(self.providers),
            raw_results=total,
            kept=len(candidates),
        )
        return candidates

    @staticmethod
    def _is_pack(candidate: ReleaseCandidate, item: MediaItem) -> bool:
        if item.is_episode:
            return is_season_pack_for(candidate.title, item.season)
        return candidate.is_season_pack

    async def apply_filters(
        self, candidates: list[ReleaseCandidate], item: MediaItem
    ) -> list[ReleaseCandidate]:
        """Apply blacklist and relevance filters for an item."""
        if self.blacklist is not None:
            candidates = await self.blacklist.filter(candidates)

        if item.is_episode:
            return filter_for_series(candidates, item.season, item.episode)
        return filter_by_year(candidates, item.year, self.current_year)
