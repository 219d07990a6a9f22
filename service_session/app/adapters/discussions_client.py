"""
Discussions API client.
"""

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from ..domain.models import Discussion, DiscussionComment
from .api_client import ApiClient, as_list

DISCUSSIONS = "/api/v1/discussions"

FILTER_FIELDS = ("category_id", "author_id", "is_pinned", "created_after", "created_before")


def build_list_params(
    *,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    filters: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "page": page,
        "limit": limit,
        "sortBy": sort_by,
        "sortOrder": sort_order,
    }
    filters = filters or {}
    for name in FILTER_FIELDS:
        params[name] = filters.get(name)
    if filters.get("tags"):
        params["tags[]"] = list(filters["tags"])
    return params


class DiscussionsClient:
    """Client for discussions and their comments."""

    def __init__(self, api: ApiClient):
        self.api = api

    async def list_discussions(
        self,
        token: Optional[str] = None,
        *,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Discussion]:
        data = await self.api.get(
            DISCUSSIONS,
            token=token,
            params=build_list_params(
                page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, filters=filters,
            ),
            endpoint=DISCUSSIONS,
        )
        return [Discussion.model_validate(item) for item in as_list(data)]

    async def get_discussion(self, discussion_id: str, token: Optional[str] = None) -> Discussion:
        data = await self.api.get(
            f"{DISCUSSIONS}/{quote(discussion_id, safe='')}",
            token=token,
            endpoint=f"{DISCUSSIONS}/{{id}}",
        )
        return Discussion.model_validate(data)

    async def get_user_discussions(
        self,
        user_id: str,
        token: Optional[str] = None,
        *,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> List[Discussion]:
        """Discussions authored by ``user_id``.

        The backend filter on ``author_id`` is advisory, so results are
        filtered again here.
        """
        discussions = await self.list_discussions(
            token,
            sort_by=sort_by,
            sort_order=sort_order,
            filters={"author_id": user_id},
        )
        return [d for d in discussions if d.user_id == user_id]

    async def get_comments(self, discussion_id: str, token: Optional[str] = None) -> List[DiscussionComment]:
        data = await self.api.get(
            f"{DISCUSSIONS}/{quote(discussion_id, safe='')}/comments",
            token=token,
            endpoint=f"{DISCUSSIONS}/{{id}}/comments",
        )
        return [DiscussionComment.model_validate(item) for item in as_list(data)]
