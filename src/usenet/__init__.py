"""Usenet integration: NZBGet client and the NZB acquisition path."""

from src.usenet.fallback import UsenetFallback
from src.usenet.nzbget import (
    NZBGetClient,
    NZBGetConnectionError,
    NZBGetError,
    NZBGetRPCError,
    QueueItem,
)

__all__ = [
    "NZBGetClient",
    "NZBGetError",
    "NZBGetConnectionError",
    "NZBGetRPCError",
    "QueueItem",
    "UsenetFallback",
]
