"""
Session authentication package.

Holds the identity provider contract, the coordinator that syncs the
signed-in identity into a backend profile, and the pure fallback-profile
derivation used when the backend is unreachable.
"""

from .coordinator import SessionCoordinator
from .fallback import build_fallback_profile, derive_permissions
from .token_source import BackendSyncClient, TokenSource

__all__ = [
    "BackendSyncClient",
    "SessionCoordinator",
    "TokenSource",
    "build_fallback_profile",
    "derive_permissions",
]
