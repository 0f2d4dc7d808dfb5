"""YggTorrent search through the yggapi.eu JSON API.

Search results carry no info hash. Hashes are fetched with a second call
per torrent, only for the best-seeded results, and cached by torrent id.
"""

import asyncio

import httpx
import structlog

from src.library.models import MediaItem
from src.search.base import REQUEST_TIMEOUT, ProviderUnavailableError, SearchProvider
from src.search.cache import TTLCache
from src.search.models import ReleaseCandidate

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

YGG_API_URL = "https://yggapi.eu"

MOVIE_CATEGORIES = [2178, 2181, 2183]
SERIES_CATEGORIES = [2179, 2181, 2182, 2184]

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 100

# Only the best results get a hash lookup
HASH_LOOKUP_LIMIT = 10
MAX_CONCURRENT_HASH_FETCHES = 5

HASH_CACHE_TTL = 3600.0


class YggProvider(SearchProvider):
    """Async client for the yggapi.eu search API.

    Example:
        async with YggProvider() as provider:
            results = await provider.search("Dune 2021", item)
    """

    name = "ygg"

    def __init__(
        self,
        base_url: str = YGG_API_URL,
        timeout: float = REQUEST_TIMEOUT,
        hash_cache: TTLCache[str, str] | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            base_url: API base URL.
            timeout: Request timeout in seconds.
            hash_cache: Cache of torrent id -> info hash.
        """
        super().__init__(timeout)
        self.base_url = base_url.rstrip("/")
        self.hash_cache = hash_cache or TTLCache(ttl=HASH_CACHE_TTL, name="ygg_hashes")
        self._hash_semaphore = asyncio.Semaphore(MAX_CONCURRENT_HASH_FETCHES)

    async def search(self, query: str, item: MediaItem) -> list[ReleaseCandidate]:
        """Search YGG and resolve hashes for the top results.

        A non-200 answer or a body that is not JSON yields no results;
        only transport errors are raised.

        Raises:
            ProviderUnavailableError: If the API cannot be reached.
        """
        categories = SERIES_CATEGORIES if item.is_episode else MOVIE_CATEGORIES
        params: list[tuple[str, str | int]] = [
            ("q", query),
            ("page", DEFAULT_PAGE),
            ("per_page", DEFAULT_PER_PAGE),
        ]
        params.extend(("category_id", category) for category in categories)

        logger.info("searching_ygg", query=query, item_id=item.id)

        try:
            response = await self.client.get(f"{self.base_url}/torrents", params=params)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Cannot connect to YGG: {e}") from e

        if response.status_code != 200:
            logger.warning("ygg_bad_status", status=response.status_code)
            return []

        try:
            data = response.json()
        except ValueError:
            logger.warning("ygg_invalid_json")
            return []

        if not isinstance(data, list):
            logger.warning("ygg_unexpected_payload", payload_type=type(data).__name__)
            return []

        results: list[ReleaseCandidate] = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("title"):
                continue
            try:
                results.append(
                    ReleaseCandidate(
                        title=str(entry["title"]),
                        size=int(entry.get("size") or 0),
                        seeders=int(entry.get("seeders") or 0),
                        leechers=int(entry.get("leechers") or 0),
                        source=self.name,
                        provider_id=str(entry.get("id", "")),
                    )
                )
            except (ValueError, TypeError) as e:
                logger.warning("ygg_result_skipped", error=str(e), torrent_id=entry.get("id"))

        logger.info("ygg_results_found", query=query, count=len(results))

        if results:
            results = await self.resolve_hashes(results)
        return results

    async def resolve_hashes(
        self,
        results: list[ReleaseCandidate],
        limit: int = HASH_LOOKUP_LIMIT,
    ) -> list[ReleaseCandidate]:
        """Fill in info hashes for the best-seeded results.

        Lookups run concurrently (bounded). A failed lookup leaves the
        candidate without a hash.
        """
        by_seeders = sorted(range(len(results)), key=lambda i: results[i].seeders, reverse=True)
        targets = [i for i in by_seeders[:limit] if results[i].provider_id]

        async def _resolve(index: int) -> None:
            candidate = results[index]
            async with self._hash_semaphore:
                try:
                    info_hash = await self.hash_cache.get_or_load(
                        candidate.provider_id,
                        lambda: self._fetch_hash(candidate.provider_id),
                    )
                except (httpx.HTTPError, ProviderUnavailableError) as e:
                    logger.error(
                        "ygg_hash_fetch_failed",
                        torrent_id=candidate.provider_id,
                        error=str(e),
                    )
                    return
            results[index] = candidate.model_copy(update={"info_hash": info_hash})

        await asyncio.gather(*(_resolve(i) for i in targets))
        return results

    async def _fetch_hash(self, torrent_id: str) -> str:
        response = await self.client.get(f"{self.base_url}/torrent/{torrent_id}")
        if response.status_code != 200:
            raise ProviderUnavailableError(
                f"YGG torrent {torrent_id} returned status {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderUnavailableError(f"YGG torrent {torrent_id} returned invalid JSON") from e

        info_hash = str(data.get("hash", "")).strip().lower() if isinstance(data, dict) else ""
        if not info_hash:
            raise ProviderUnavailableError(f"YGG torrent {torrent_id} has no hash")
        return info_hash
