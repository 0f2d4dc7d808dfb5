"""Remote cache service integration.

Provides the AllDebrid client and the verification state machine that
turns a release candidate into a direct download link.
"""

from src.debrid.client import (
    AllDebridClient,
    DebridAPIError,
    DebridAuthError,
    DebridConnectionError,
    DebridError,
    MagnetStatus,
    MagnetUpload,
    RemoteFile,
    UnlockedLink,
)
from src.debrid.verifier import (
    CacheVerification,
    CacheVerifier,
    VerificationResult,
    VerificationState,
)

__all__ = [
    # Client
    "AllDebridClient",
    "MagnetUpload",
    "MagnetStatus",
    "RemoteFile",
    "UnlockedLink",
    # Errors
    "DebridError",
    "DebridAuthError",
    "DebridConnectionError",
    "DebridAPIError",
    # Verification
    "CacheVerification",
    "CacheVerifier",
    "VerificationResult",
    "VerificationState",
]
