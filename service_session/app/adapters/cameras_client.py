"""
Cameras API client.
"""

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from ..domain.models import Camera
from .api_client import ApiClient, as_list

CAMERAS = "/api/v1/cameras"

FILTER_FIELDS = (
    "brand_name",
    "camera_type",
    "film_format",
    "condition",
    "min_year",
    "max_year",
    "is_for_sale",
    "is_for_trade",
)


class CamerasClient:
    """Client for camera collections."""

    def __init__(self, api: ApiClient):
        self.api = api

    async def list_cameras(
        self,
        token: Optional[str] = None,
        *,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Camera]:
        params: Dict[str, Any] = {
            "page": page,
            "limit": limit,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        for name in FILTER_FIELDS:
            params[name] = (filters or {}).get(name)

        data = await self.api.get(CAMERAS, token=token, params=params, endpoint=CAMERAS)
        return [Camera.model_validate(item) for item in as_list(data)]

    async def get_camera(self, camera_id: str, token: Optional[str] = None) -> Camera:
        data = await self.api.get(
            f"{CAMERAS}/{quote(camera_id, safe='')}",
            token=token,
            endpoint=f"{CAMERAS}/{{id}}",
        )
        return Camera.model_validate(data)

    async def get_user_cameras(self, user_id: str, token: Optional[str] = None) -> List[Camera]:
        # No per-user endpoint exists; filter the full listing.
        cameras = await self.list_cameras(token)
        return [camera for camera in cameras if camera.user_id == user_id]
