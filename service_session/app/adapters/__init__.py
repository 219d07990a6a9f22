"""
Adapters package for the session layer.

Contains HTTP client wrappers for the RetroLens backend. These adapters
encapsulate:

- Base URL and request shapes
- Bearer token attachment
- Error mapping onto shared errors and circuit breaking

Keep adapters thin: retry, staleness and dedup live in the query cache.
"""

from .api_client import ApiClient
from .cameras_client import CamerasClient
from .discussions_client import DiscussionsClient
from .likes_client import LikesClient
from .users_client import UsersClient

__all__ = [
    "ApiClient",
    "CamerasClient",
    "DiscussionsClient",
    "LikesClient",
    "UsersClient",
]
