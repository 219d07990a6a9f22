"""
Likes API client.
"""

from typing import Any, Dict, Optional

from ..domain.models import LikeCount, LikeStatus, LikeTarget
from .api_client import ApiClient

LIKES = "/api/v1/likes/"


class LikesClient:
    """Client for likes on discussions, cameras and comments."""

    def __init__(self, api: ApiClient):
        self.api = api

    async def like(self, target: LikeTarget, token: str) -> Dict[str, Any]:
        return await self.api.post(LIKES, json=target.as_params(), token=token, endpoint=LIKES) or {}

    async def unlike(self, target: LikeTarget, token: str) -> Dict[str, Any]:
        return await self.api.delete(LIKES, json=target.as_params(), token=token, endpoint=LIKES) or {}

    async def check_status(self, target: LikeTarget, token: Optional[str] = None) -> LikeStatus:
        data = await self.api.get(
            f"{LIKES}check",
            params=target.as_params(),
            token=token,
            endpoint=f"{LIKES}check",
        )
        return LikeStatus.model_validate(data or {})

    async def count(self, target: LikeTarget, token: Optional[str] = None) -> LikeCount:
        data = await self.api.get(
            f"{LIKES}count",
            params=target.as_params(),
            token=token,
            endpoint=f"{LIKES}count",
        )
        return LikeCount.model_validate(data or {})
