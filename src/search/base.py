"""Common interface for release search providers."""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.library.models import MediaItem
from src.search.models import ReleaseCandidate

# Request timeout in seconds
REQUEST_TIMEOUT = 30.0

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


# =============================================================================
# Exceptions
# =============================================================================


class SearchError(Exception):
    """Base exception for search provider errors."""

    pass


class ProviderUnavailableError(SearchError):
    """Raised when a provider cannot be reached or answers with an error."""

    pass


class ProviderParseError(SearchError):
    """Raised when a provider response cannot be parsed."""

    pass


# =============================================================================
# Base Provider
# =============================================================================


class SearchProvider(ABC):
    """Abstract base class for release search providers.

    Concrete providers implement `search()` and set `name`. The HTTP client
    lives for the duration of the async context.

    Example:
        async with APIBayProvider() as provider:
            results = await provider.search("Dune 2021", item)
    """

    name: str = "provider"

    def __init__(self, timeout: float = REQUEST_TIMEOUT) -> None:
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "SearchProvider":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized.

        Raises:
            RuntimeError: If client is not initialized (not in context manager).
        """
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    @abstractmethod
    async def search(self, query: str, item: MediaItem) -> list[ReleaseCandidate]:
        """Search the provider.

        Args:
            query: Provider query built from the item (e.g. "Dune 2021").
            item: The media item being acquired.

        Returns:
            Normalized candidates (possibly empty).

        Raises:
            SearchError: If the provider fails.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
