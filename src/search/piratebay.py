"""PirateBay search through the apibay.org JSON API.

The API answers with a JSON list where every field is a string. An empty
search returns a single sentinel entry with id "0".
"""

import asyncio

import httpx
import structlog

from src.library.models import MediaItem
from src.search.base import (
    REQUEST_TIMEOUT,
    ProviderParseError,
    ProviderUnavailableError,
    SearchProvider,
)
from src.search.models import ReleaseCandidate

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

PIRATEBAY_API_URL = "https://apibay.org"

# API retry settings (API is flaky, returns 502 sometimes)
API_MAX_RETRIES = 3
API_RETRY_DELAY = 0.5  # seconds

# PirateBay category IDs
CATEGORY_VIDEO = 200


# =============================================================================
# Helpers
# =============================================================================


def _to_int(value: object) -> int:
    try:
        return max(int(str(value)), 0)
    except (TypeError, ValueError):
        return 0


def parse_api_results(data: object) -> list[ReleaseCandidate]:
    """Convert an apibay.org response body into candidates.

    Entries without a usable info hash are skipped.

    Raises:
        ProviderParseError: If the body is not a JSON list.
    """
    if not isinstance(data, list):
        raise ProviderParseError(f"Unexpected API payload type: {type(data).__name__}")

    if not data:
        return []
    if len(data) == 1 and isinstance(data[0], dict) and str(data[0].get("id", "")) == "0":
        return []

    results: list[ReleaseCandidate] = []
    for item in data:
        if not isinstance(item, dict):
            continue

        name = str(item.get("name", "")).strip()
        info_hash = str(item.get("info_hash", "")).strip().lower()
        if not name or info_hash in ("", "0"):
            continue

        results.append(
            ReleaseCandidate(
                title=name,
                info_hash=info_hash,
                size=_to_int(item.get("size")),
                seeders=_to_int(item.get("seeders")),
                leechers=_to_int(item.get("leechers")),
                source=APIBayProvider.name,
                provider_id=str(item.get("id", "")),
            )
        )

    return results


# =============================================================================
# Provider
# =============================================================================


class APIBayProvider(SearchProvider):
    """Async client for the apibay.org search API."""

    name = "apibay"

    def __init__(
        self,
        base_url: str = PIRATEBAY_API_URL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the provider.

        Args:
            base_url: API base URL.
            timeout: Request timeout in seconds.
        """
        super().__init__(timeout)
        self.base_url = base_url.rstrip("/")

    async def search(self, query: str, item: MediaItem) -> list[ReleaseCandidate]:
        """Search apibay.org.

        Raises:
            ProviderUnavailableError: If the API is unavailable.
            ProviderParseError: If the response is not the expected JSON.
        """
        api_url = f"{self.base_url}/q.php"
        params = {"q": query, "cat": str(CATEGORY_VIDEO)}

        logger.info("searching_apibay", query=query, item_id=item.id)

        response: httpx.Response | None = None
        for attempt in range(API_MAX_RETRIES):
            try:
                response = await self.client.get(api_url, params=params)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as e:
                if e.response.status_code in (502, 503, 504) and attempt < API_MAX_RETRIES - 1:
                    logger.warning(
                        "apibay_retry",
                        attempt=attempt + 1,
                        max_retries=API_MAX_RETRIES,
                        status=e.response.status_code,
                    )
                    await asyncio.sleep(API_RETRY_DELAY * (attempt + 1))
                    continue
                raise ProviderUnavailableError(
                    f"apibay returned error {e.response.status_code}"
                ) from e
            except httpx.TimeoutException as e:
                raise ProviderUnavailableError(f"apibay request timed out: {e}") from e
            except httpx.HTTPError as e:
                raise ProviderUnavailableError(f"Cannot connect to apibay: {e}") from e

        if response is None:
            raise ProviderUnavailableError("No response received from apibay")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderParseError(f"Failed to parse apibay response: {e}") from e

        results = parse_api_results(data)
        logger.info("apibay_results_found", query=query, count=len(results))
        return results
