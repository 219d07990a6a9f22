"""
Query accessors: cache keys, staleness windows and fetchers per resource.
"""

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from shared.errors import AuthenticationError, TokenUnavailableError
from shared.logging import get_logger
from ..adapters import CamerasClient, DiscussionsClient, LikesClient, UsersClient
from ..auth.coordinator import SessionCoordinator
from ..caching import CacheStore, QueryKeys, QueryResult
from ..domain.models import (
    Camera, Discussion, DiscussionComment, LikeCount, LikeStatus, LikeTarget, Profile,
)

MINUTE = 60.0

# Staleness per resource; anything unlisted uses the store defaults.
USER_STALE_TIME = 5 * MINUTE
FOLLOW_STALE_TIME = 2 * MINUTE
DISCUSSION_LIST_STALE_TIME = 2 * MINUTE
DISCUSSION_LIST_GC_TIME = 5 * MINUTE
DISCUSSION_STALE_TIME = 2 * MINUTE
USER_DISCUSSIONS_STALE_TIME = 2 * MINUTE
CAMERA_STALE_TIME = 5 * MINUTE
COMMENT_STALE_TIME = 1 * MINUTE
LIKE_STALE_TIME = 1 * MINUTE


class QueryAccessors:
    """Reads and writes for backend resources, routed through ``CacheStore``.

    Reads return ``QueryResult`` and never raise on fetch failure. Every
    fetcher asks the coordinator for a fresh token, so a retried fetch
    picks up a refreshed token. Writes require a token and invalidate the
    cache keys they affect.
    """

    def __init__(
        self,
        cache: CacheStore,
        coordinator: SessionCoordinator,
        users: UsersClient,
        discussions: DiscussionsClient,
        cameras: CamerasClient,
        likes: LikesClient,
    ):
        self.cache = cache
        self.coordinator = coordinator
        self.users = users
        self.discussions_client = discussions
        self.cameras_client = cameras
        self.likes = likes
        self.logger = get_logger("session.queries")

    # Users

    async def user(self, user_id: str) -> QueryResult[Profile]:
        return await self.cache.query(
            QueryKeys.user(user_id),
            self._with_token(lambda token: self.users.get_user(user_id, token)),
            stale_time=USER_STALE_TIME,
        )

    async def user_by_username(self, username: str) -> QueryResult[Profile]:
        return await self.cache.query(
            QueryKeys.user_by_username(username),
            self._with_token(lambda token: self.users.get_user_by_username(username, token)),
            stale_time=USER_STALE_TIME,
        )

    async def followers(self, user_id: str) -> QueryResult[List[Profile]]:
        return await self.cache.query(
            QueryKeys.followers(user_id),
            self._with_token(lambda token: self.users.get_followers(user_id, token)),
            stale_time=FOLLOW_STALE_TIME,
        )

    async def following(self, user_id: str) -> QueryResult[List[Profile]]:
        return await self.cache.query(
            QueryKeys.following(user_id),
            self._with_token(lambda token: self.users.get_following(user_id, token)),
            stale_time=FOLLOW_STALE_TIME,
        )

    async def prefetch_user(self, user_id: str) -> None:
        await self.cache.prefetch(
            QueryKeys.user(user_id),
            self._with_token(lambda token: self.users.get_user(user_id, token)),
            stale_time=USER_STALE_TIME,
        )

    # Discussions

    async def discussions(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> QueryResult[List[Discussion]]:
        request = dict(filters or {}, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
        return await self.cache.query(
            QueryKeys.discussion_list(request),
            self._with_token(lambda token: self.discussions_client.list_discussions(
                token,
                page=page,
                limit=limit,
                sort_by=sort_by,
                sort_order=sort_order,
                filters=filters,
            )),
            stale_time=DISCUSSION_LIST_STALE_TIME,
            gc_time=DISCUSSION_LIST_GC_TIME,
        )

    async def discussion(self, discussion_id: str) -> QueryResult[Discussion]:
        return await self.cache.query(
            QueryKeys.discussion(discussion_id),
            self._with_token(lambda token: self.discussions_client.get_discussion(discussion_id, token)),
            stale_time=DISCUSSION_STALE_TIME,
        )

    async def user_discussions(self, user_id: str) -> QueryResult[List[Discussion]]:
        return await self.cache.query(
            QueryKeys.user_discussions(user_id),
            self._with_token(lambda token: self.discussions_client.get_user_discussions(user_id, token)),
            stale_time=USER_DISCUSSIONS_STALE_TIME,
        )

    async def discussion_comments(self, discussion_id: str) -> QueryResult[List[DiscussionComment]]:
        return await self.cache.query(
            QueryKeys.discussion_comments(discussion_id),
            self._with_token(lambda token: self.discussions_client.get_comments(discussion_id, token)),
            stale_time=COMMENT_STALE_TIME,
        )

    async def prefetch_discussion(self, discussion_id: str) -> None:
        await self.cache.prefetch(
            QueryKeys.discussion(discussion_id),
            self._with_token(lambda token: self.discussions_client.get_discussion(discussion_id, token)),
            stale_time=DISCUSSION_STALE_TIME,
        )

    # Cameras

    async def cameras(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> QueryResult[List[Camera]]:
        request = dict(filters or {}, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
        return await self.cache.query(
            QueryKeys.camera_list(request),
            self._with_token(lambda token: self.cameras_client.list_cameras(
                token,
                page=page,
                limit=limit,
                sort_by=sort_by,
                sort_order=sort_order,
                filters=filters,
            )),
            stale_time=CAMERA_STALE_TIME,
        )

    async def camera(self, camera_id: str) -> QueryResult[Camera]:
        return await self.cache.query(
            QueryKeys.camera(camera_id),
            self._with_token(lambda token: self.cameras_client.get_camera(camera_id, token)),
            stale_time=CAMERA_STALE_TIME,
        )

    async def user_cameras(self, user_id: str) -> QueryResult[List[Camera]]:
        return await self.cache.query(
            QueryKeys.user_cameras(user_id),
            self._with_token(lambda token: self.cameras_client.get_user_cameras(user_id, token)),
            stale_time=CAMERA_STALE_TIME,
        )

    # Likes

    async def like_status(self, target: LikeTarget) -> QueryResult[LikeStatus]:
        return await self.cache.query(
            QueryKeys.like_status(target.kind, target.target_id),
            self._with_token(lambda token: self.likes.check_status(target, token)),
            stale_time=LIKE_STALE_TIME,
        )

    async def like_count(self, target: LikeTarget) -> QueryResult[LikeCount]:
        return await self.cache.query(
            QueryKeys.like_count(target.kind, target.target_id),
            self._with_token(lambda token: self.likes.count(target, token)),
            stale_time=LIKE_STALE_TIME,
        )

    # Mutations

    async def follow_user(self, user_id: str) -> Dict[str, Any]:
        token, follower_id = await self._require_session()
        result = await self.users.follow(user_id, follower_id, token)
        self._invalidate_follow_graph(user_id, follower_id)
        self.logger.info("Followed user", target_user_id=user_id)
        return result

    async def unfollow_user(self, user_id: str) -> Dict[str, Any]:
        token, follower_id = await self._require_session()
        result = await self.users.unfollow(user_id, follower_id, token)
        self._invalidate_follow_graph(user_id, follower_id)
        self.logger.info("Unfollowed user", target_user_id=user_id)
        return result

    async def like(self, target: LikeTarget) -> Dict[str, Any]:
        token = await self._require_token()
        result = await self.likes.like(target, token)
        self._invalidate_likes(target)
        return result

    async def unlike(self, target: LikeTarget) -> Dict[str, Any]:
        token = await self._require_token()
        result = await self.likes.unlike(target, token)
        self._invalidate_likes(target)
        return result

    async def update_profile(self, changes: Dict[str, Any]) -> Profile:
        """Persist ``changes`` to the signed-in user's profile.

        The session profile is patched locally and the cached copy replaced
        with the backend's answer.
        """
        token, user_id = await self._require_session()
        updated = await self.users.update_user(user_id, changes, token)
        self.coordinator.update_profile_locally(updated.model_dump(exclude={"id"}))
        self.cache.set_query_data(QueryKeys.user(user_id), updated, stale_time=USER_STALE_TIME)
        self.cache.invalidate(lambda key: key[:2] == ("users", "username"))
        self.cache.invalidate(QueryKeys.followers(user_id))
        self.cache.invalidate(QueryKeys.following(user_id))
        return updated

    # Helpers

    def _with_token(self, call: Callable[[Optional[str]], Awaitable[Any]]) -> Callable[[], Awaitable[Any]]:
        async def fetcher() -> Any:
            token = await self.coordinator.get_valid_token()
            return await call(token)
        return fetcher

    async def _require_token(self) -> str:
        token = await self.coordinator.get_valid_token()
        if not token:
            raise TokenUnavailableError()
        return token

    async def _require_session(self):
        profile = self.coordinator.profile
        if profile is None or not self.coordinator.is_authenticated:
            raise AuthenticationError("Sign in required")
        return await self._require_token(), profile.id

    def _invalidate_follow_graph(self, user_id: str, follower_id: str) -> None:
        for key in (
            QueryKeys.followers(user_id),
            QueryKeys.following(follower_id),
            QueryKeys.user(user_id),
            QueryKeys.user(follower_id),
        ):
            self.cache.invalidate(key)

    def _invalidate_likes(self, target: LikeTarget) -> None:
        self.cache.invalidate(QueryKeys.likes(target.kind, target.target_id))
        if target.discussion_id:
            self.cache.invalidate(QueryKeys.discussion(target.discussion_id))
            self.cache.invalidate(lambda key: key[:2] == ("discussions", "list"))
        elif target.camera_id:
            self.cache.invalidate(QueryKeys.camera(target.camera_id))
        elif target.comment_id:
            self.cache.invalidate(("comments",))
