"""AllDebrid API v4 client.

The remote cache service: a magnet is uploaded by hash, its status is
polled, and once ready its files can be listed and unlocked into direct
download links. Each endpoint's JSON is normalized by a small adapter
into one value type (MagnetUpload, MagnetStatus, RemoteFile,
UnlockedLink) so the rest of the code never sees the raw schema.
"""

import json
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

import httpx
import structlog

logger = structlog.get_logger()


# ============================================================================
# Constants
# ============================================================================

ALLDEBRID_API_URL = "https://api.alldebrid.com/v4"

# magnet/status statusCode meaning "downloaded and ready"
READY_STATUS_CODE = 4

VIDEO_EXTENSIONS = frozenset(
    {".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v", ".mpg", ".mpeg"}
)


# ============================================================================
# Exceptions
# ============================================================================


class DebridError(Exception):
    """Base exception for remote cache service operations."""

    pass


class DebridConnectionError(DebridError):
    """Failed to reach the service (network error or timeout)."""

    pass


class DebridAPIError(DebridError):
    """The service answered with an error payload or an unusable body."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class DebridAuthError(DebridAPIError):
    """The API key was rejected."""

    pass


# ============================================================================
# Value types
# ============================================================================


@dataclass
class MagnetUpload:
    """Result of uploading one magnet."""

    id: int
    hash: str = ""
    name: str = ""
    ready: bool = False


@dataclass
class MagnetStatus:
    """Status of an uploaded magnet."""

    id: int
    status_code: int
    status: str = ""
    filename: str = ""
    size: int = 0

    @property
    def is_ready(self) -> bool:
        return self.status_code == READY_STATUS_CODE


@dataclass
class RemoteFile:
    """One file inside a ready magnet."""

    filename: str
    size: int
    link: str

    @property
    def is_video(self) -> bool:
        return PurePosixPath(self.filename.lower()).suffix in VIDEO_EXTENSIONS


@dataclass
class UnlockedLink:
    """Direct download link resolved from a file link."""

    link: str
    filename: str = ""
    size: int = 0


# ============================================================================
# Response adapters
# ============================================================================


def decode_json_body(text: str) -> dict[str, Any]:
    """Decode a response body, tolerating concatenated JSON objects.

    The service occasionally answers with two objects back to back
    (`{...}{...}`); the last one is the real answer. Trailing garbage after
    the first complete object is ignored.

    Raises:
        DebridAPIError: If no JSON object can be decoded.
    """
    body = text.strip()
    if "}{" in body:
        body = "{" + body.split("}{")[-1]

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        start = body.find("{")
        if start < 0:
            raise DebridAPIError("INVALID_JSON", f"Undecodable body: {body[:100]!r}") from None
        try:
            payload, _ = json.JSONDecoder().raw_decode(body[start:])
        except json.JSONDecodeError as e:
            raise DebridAPIError("INVALID_JSON", f"Undecodable body: {e}") from e

    if not isinstance(payload, dict):
        raise DebridAPIError("INVALID_JSON", "Response is not a JSON object")
    return payload


def _first_magnet(data: dict[str, Any]) -> dict[str, Any]:
    """Return the first magnet entry; the API uses both a list and a dict."""
    magnets = data.get("magnets")
    if isinstance(magnets, dict):
        return magnets
    if isinstance(magnets, list) and magnets and isinstance(magnets[0], dict):
        return magnets[0]
    raise DebridAPIError("NO_MAGNET", "Response contains no magnet")


def _raise_for_error(error: Any) -> None:
    if not isinstance(error, dict):
        error = {"code": "UNKNOWN", "message": str(error)}
    code = str(error.get("code", "UNKNOWN"))
    message = str(error.get("message", "Unknown error"))
    if code.startswith("AUTH_"):
        raise DebridAuthError(code, message)
    raise DebridAPIError(code, message)


def _int_field(magnet: dict[str, Any], key: str, default: int) -> int:
    value = magnet.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DebridAPIError("INVALID_JSON", f"Malformed {key}: {value!r}") from None


def parse_upload(data: dict[str, Any]) -> MagnetUpload:
    magnet = _first_magnet(data)
    if magnet.get("error"):
        _raise_for_error(magnet["error"])
    return MagnetUpload(
        id=_int_field(magnet, "id", 0),
        hash=str(magnet.get("hash", "")).lower(),
        name=str(magnet.get("name", "")),
        ready=bool(magnet.get("ready", False)),
    )


def parse_status(data: dict[str, Any]) -> MagnetStatus:
    magnet = _first_magnet(data)
    return MagnetStatus(
        id=_int_field(magnet, "id", 0),
        status_code=_int_field(magnet, "statusCode", -1),
        status=str(magnet.get("status", "")),
        filename=str(magnet.get("filename", magnet.get("name", ""))),
        size=_int_field(magnet, "size", 0),
    )


def _flatten_tree(nodes: list[Any], prefix: str = "") -> list[RemoteFile]:
    """Flatten the nested file tree (n=name, s=size, l=link, e=entries)."""
    files: list[RemoteFile] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        name = str(node.get("n", ""))
        if "e" in node:
            files.extend(_flatten_tree(node.get("e") or [], f"{prefix}{name}/"))
        elif node.get("l"):
            files.append(
                RemoteFile(
                    filename=f"{prefix}{name}",
                    size=int(node.get("s", 0) or 0),
                    link=str(node["l"]),
                )
            )
    return files


def parse_files(data: dict[str, Any]) -> list[RemoteFile]:
    """Normalize a file listing.

    Older responses carry a flat `links` list, newer ones a nested `files`
    tree.
    """
    magnet = _first_magnet(data)
    if magnet.get("error"):
        _raise_for_error(magnet["error"])

    if isinstance(magnet.get("links"), list):
        return [
            RemoteFile(
                filename=str(entry.get("filename", "")),
                size=int(entry.get("size", 0) or 0),
                link=str(entry.get("link", "")),
            )
            for entry in magnet["links"]
            if isinstance(entry, dict) and entry.get("link")
        ]

    return _flatten_tree(magnet.get("files") or [])


def parse_unlock(data: dict[str, Any]) -> UnlockedLink:
    link = data.get("link")
    if not link:
        raise DebridAPIError("NO_LINK", "Unlock response contains no link")
    return UnlockedLink(
        link=str(link),
        filename=str(data.get("filename", "")),
        size=int(data.get("filesize", 0) or 0),
    )


def pick_largest_video(files: list[RemoteFile]) -> RemoteFile | None:
    """Return the largest playable file, or None when there is none."""
    videos = [f for f in files if f.is_video]
    if not videos:
        return None
    return max(videos, key=lambda f: f.size)


# ============================================================================
# Client
# ============================================================================


class AllDebridClient:
    """Async client for the AllDebrid v4 API.

    Every call carries the `agent` and `apikey` parameters; POST calls send
    them form-encoded, GET calls as query parameters.

    Example:
        async with AllDebridClient(api_key) as client:
            upload = await client.upload_magnet(magnet)
            status = await client.get_status(upload.id)
    """

    def __init__(
        self,
        api_key: str,
        agent: str = "mediafetch",
        base_url: str = ALLDEBRID_API_URL,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            api_key: AllDebrid API key
            agent: Agent name registered with the service
            base_url: API base URL
            timeout: HTTP request timeout in seconds
        """
        self.api_key = api_key
        self.agent = agent
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "AllDebridClient":
        self._client = httpx.AsyncClient(timeout=self.timeout)
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
            raise RuntimeError("AllDebridClient must be used as async context manager")
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call an endpoint and return its `data` object.

        Raises:
            DebridConnectionError: On network errors and timeouts.
            DebridAuthError: If the API key is rejected.
            DebridAPIError: On error payloads or undecodable bodies.
        """
        url = f"{self.base_url}/{endpoint}"
        payload = {"agent": self.agent, "apikey": self.api_key, **(params or {})}

        try:
            if method == "POST":
                response = await self.client.post(url, data=payload)
            else:
                response = await self.client.get(url, params=payload)
        except httpx.TimeoutException as e:
            raise DebridConnectionError(f"AllDebrid {endpoint} timed out") from e
        except httpx.HTTPError as e:
            raise DebridConnectionError(f"Failed to reach AllDebrid {endpoint}: {e}") from e

        try:
            body = decode_json_body(response.text)
        except DebridAPIError:
            if response.status_code != 200:
                raise DebridAPIError(
                    f"HTTP_{response.status_code}", f"AllDebrid {endpoint} failed"
                ) from None
            raise

        if body.get("status") != "success":
            _raise_for_error(body.get("error") or {"code": f"HTTP_{response.status_code}"})

        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def upload_magnet(self, magnet: str) -> MagnetUpload:
        """Upload a magnet (or bare info hash)."""
        data = await self._request("POST", "magnet/upload", {"magnets[]": [magnet]})
        upload = parse_upload(data)
        logger.info("alldebrid_magnet_uploaded", magnet_id=upload.id, hash=upload.hash)
        return upload

    async def get_status(self, magnet_id: int) -> MagnetStatus:
        data = await self._request("GET", "magnet/status", {"id[]": [magnet_id]})
        return parse_status(data)

    async def list_files(self, magnet_id: int) -> list[RemoteFile]:
        data = await self._request("GET", "magnet/files", {"id[]": [magnet_id]})
        return parse_files(data)

    async def unlock_link(self, link: str) -> UnlockedLink:
        data = await self._request("GET", "link/unlock", {"link": link})
        return parse_unlock(data)

    async def delete_magnet(self, magnet_id: int) -> None:
        await self._request("POST", "magnet/delete", {"id": magnet_id})
        logger.info("alldebrid_magnet_deleted", magnet_id=magnet_id)
