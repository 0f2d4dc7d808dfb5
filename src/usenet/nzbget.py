"""NZBGet JSON-RPC client.

NZBGet exposes a JSON-RPC API at /jsonrpc protected by HTTP basic auth.
NZB files are appended as base64 content together with a category, a
duplicate-handling mode and post-processing parameters.
"""

import base64
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

logger = structlog.get_logger()

# Largest NZB file we are willing to download
MAX_NZB_SIZE = 50 * 1024 * 1024

DEFAULT_DUPE_MODE = "score"


class NZBGetError(Exception):
    """Base exception for NZBGet operations."""

    pass


class NZBGetConnectionError(NZBGetError):
    """Failed to connect to NZBGet or to the NZB host."""

    pass


class NZBGetRPCError(NZBGetError):
    """NZBGet rejected an RPC call."""

    pass


@dataclass
class QueueItem:
    """An NZB in the NZBGet download queue."""

    nzb_id: int
    name: str
    status: str = ""


class NZBGetClient:
    """Async client for the NZBGet JSON-RPC API.

    Example:
        async with NZBGetClient("http://localhost:6789", "nzbget", "secret") as client:
            content = await client.fetch_nzb(link)
            nzb_id = await client.append("Movie.2021.nzb", content, category="movies")
    """

    def __init__(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize NZBGet client.

        Args:
            url: NZBGet base URL (e.g., http://localhost:6789)
            username: Control username
            password: Control password
            timeout: HTTP request timeout in seconds
        """
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

    async def __aenter__(self) -> "NZBGetClient":
        auth = (self.username, self.password or "") if self.username else None
        self._client = httpx.AsyncClient(timeout=self.timeout, auth=auth, follow_redirects=True)
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
        """Get HTTP client, raising if not in context."""
        if self._client is None:
            raise RuntimeError("NZBGetClient must be used as async context manager")
        return self._client

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """Make a JSON-RPC call and return its result.

        Raises:
            NZBGetConnectionError: If NZBGet cannot be reached.
            NZBGetRPCError: If the call fails.
        """
        self._request_id += 1
        payload = {"method": method, "params": params or [], "id": self._request_id}

        try:
            response = await self.client.post(f"{self.url}/jsonrpc", json=payload)
        except httpx.TimeoutException as e:
            raise NZBGetConnectionError(f"NZBGet {method} timed out") from e
        except httpx.HTTPError as e:
            raise NZBGetConnectionError(f"Failed to connect to NZBGet: {e}") from e

        if response.status_code == 401:
            raise NZBGetRPCError("Invalid NZBGet credentials")
        if response.status_code != 200:
            raise NZBGetRPCError(f"NZBGet RPC failed: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise NZBGetRPCError(f"NZBGet returned invalid JSON for {method}") from e

        if data.get("error"):
            error = data["error"]
            message = error.get("message", "Unknown error") if isinstance(error, dict) else error
            raise NZBGetRPCError(f"NZBGet RPC error: {message}")

        return data.get("result")

    async def fetch_nzb(self, link: str) -> bytes:
        """Download an NZB file from an indexer link.

        Raises:
            NZBGetConnectionError: If the download fails.
            NZBGetError: If the file exceeds MAX_NZB_SIZE.
        """
        try:
            async with self.client.stream("GET", link) as response:
                if response.status_code != 200:
                    raise NZBGetConnectionError(
                        f"NZB download failed with status {response.status_code}"
                    )
                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    if total > MAX_NZB_SIZE:
                        raise NZBGetError(f"NZB file larger than {MAX_NZB_SIZE} bytes")
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise NZBGetConnectionError(f"Failed to download NZB: {e}") from e

        return b"".join(chunks)

    async def append(
        self,
        filename: str,
        content: bytes,
        category: str = "",
        dupe_mode: str = DEFAULT_DUPE_MODE,
        parameters: dict[str, str] | None = None,
    ) -> int:
        """Add an NZB to the download queue.

        Args:
            filename: Name shown in NZBGet (".nzb" appended if missing).
            content: Raw NZB file content.
            category: NZBGet category.
            dupe_mode: Duplicate handling ("score", "all", "force").
            parameters: Post-processing parameters.

        Returns:
            NZBGet id of the queued NZB.

        Raises:
            NZBGetRPCError: If NZBGet refuses the NZB.
        """
        if not filename.endswith(".nzb"):
            filename = f"{filename}.nzb"

        pp_parameters = [{"Name": k, "Value": v} for k, v in (parameters or {}).items()]
        result = await self._rpc_call(
            "append",
            [
                filename,
                base64.b64encode(content).decode("ascii"),
                category,
                0,  # Priority
                False,  # AddToTop
                False,  # AddPaused
                "",  # DupeKey
                0,  # DupeScore
                dupe_mode.upper(),
                pp_parameters,
            ],
        )

        if not isinstance(result, int) or result <= 0:
            raise NZBGetRPCError(f"NZBGet refused {filename}")

        logger.info("nzbget_nzb_appended", nzb_id=result, filename=filename, category=category)
        return result

    async def list_groups(self) -> list[QueueItem]:
        """List NZBs currently in the download queue."""
        result = await self._rpc_call("listgroups", [0])
        return [
            QueueItem(
                nzb_id=int(group.get("NZBID", 0)),
                name=str(group.get("NZBName", "")),
                status=str(group.get("Status", "")),
            )
            for group in result or []
        ]
