"""Newznab indexer search (Usenet).

Newznab indexers answer `t=movie` and `t=tvsearch` queries with an RSS
feed. Items carry the NZB link in `<enclosure>` and extra metadata in
`<newznab:attr name=... value=...>` elements.
"""

from xml.etree import ElementTree

import httpx
import structlog

from src.library.models import MediaItem
from src.search.base import (
    REQUEST_TIMEOUT,
    ProviderParseError,
    ProviderUnavailableError,
    SearchError,
    SearchProvider,
)
from src.search.models import ReleaseCandidate

logger = structlog.get_logger(__name__)

NEWZNAB_NS = "http://www.newznab.com/DTD/2010/feeds/attributes/"


def normalize_imdb_id(imdb: str | None) -> str:
    """Strip the "tt" prefix indexers do not expect."""
    if not imdb:
        return ""
    imdb = imdb.strip()
    return imdb[2:] if imdb.lower().startswith("tt") else imdb


def parse_feed(xml_content: str) -> list[ReleaseCandidate]:
    """Parse a Newznab RSS response into NZB candidates.

    Args:
        xml_content: Raw RSS body.

    Returns:
        Candidates in feed order.

    Raises:
        SearchError: If the indexer answered with an <error> element.
        ProviderParseError: If the body is not valid XML.
    """
    try:
        root = ElementTree.fromstring(xml_content)
    except ElementTree.ParseError as e:
        raise ProviderParseError(f"Invalid Newznab XML: {e}") from e

    if root.tag == "error":
        raise SearchError(
            f"Newznab error {root.get('code', '?')}: {root.get('description', 'unknown')}"
        )

    channel = root.find("channel")
    if channel is None:
        return []

    results: list[ReleaseCandidate] = []
    for item in channel.findall("item"):
        title = (item.findtext("title") or "").strip()
        if not title:
            continue

        attrs = {
            attr.get("name", ""): attr.get("value", "")
            for attr in item.findall(f"{{{NEWZNAB_NS}}}attr")
        }

        enclosure = item.find("enclosure")
        link = ""
        size = 0
        if enclosure is not None:
            link = enclosure.get("url", "")
            size = _to_int(enclosure.get("length"))
        if not link:
            link = (item.findtext("link") or "").strip()
        if not size:
            size = _to_int(attrs.get("size"))

        if not link:
            continue

        results.append(
            ReleaseCandidate(
                title=title,
                size=size,
                source=NewznabProvider.name,
                provider_id=(item.findtext("guid") or "").strip(),
                link=link,
            )
        )

    return results


def _to_int(value: str | None) -> int:
    try:
        return max(int(value or 0), 0)
    except ValueError:
        return 0


class NewznabProvider(SearchProvider):
    """Async client for a Newznab-compatible indexer.

    Searches by IMDB id rather than by title, so the query string built by
    the aggregator is only logged.
    """

    name = "newznab"

    def __init__(self, host: str, api_key: str, timeout: float = REQUEST_TIMEOUT) -> None:
        """Initialize the provider.

        Args:
            host: Indexer host, with or without scheme.
            api_key: Indexer API key.
            timeout: Request timeout in seconds.
        """
        super().__init__(timeout)
        host = host.rstrip("/")
        self.base_url = host if host.startswith(("http://", "https://")) else f"https://{host}"
        self.api_key = api_key

    def _build_params(self, item: MediaItem) -> dict[str, str | int] | None:
        imdb = normalize_imdb_id(item.imdb)
        if not imdb:
            return None

        params: dict[str, str | int] = {"apikey": self.api_key, "imdbid": imdb}
        if item.is_episode:
            params.update({"t": "tvsearch", "season": item.season, "ep": item.episode})
        else:
            params["t"] = "movie"
        return params

    async def search(self, query: str, item: MediaItem) -> list[ReleaseCandidate]:
        """Search the indexer for an item by IMDB id.

        Items without an IMDB id yield no results.

        Raises:
            ProviderUnavailableError: If the indexer is unreachable or not 200.
            SearchError: If the indexer reports an error.
        """
        params = self._build_params(item)
        if params is None:
            logger.debug("newznab_no_imdb", item_id=item.id)
            return []

        logger.info("searching_newznab", query=query, item_id=item.id, t=params["t"])

        try:
            response = await self.client.get(f"{self.base_url}/api", params=params)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Cannot connect to Newznab: {e}") from e

        if response.status_code != 200:
            raise ProviderUnavailableError(f"Newznab returned status {response.status_code}")

        results = parse_feed(response.text)
        logger.info("newznab_results_found", item_id=item.id, count=len(results))
        return results
