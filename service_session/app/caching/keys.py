"""
Query key factory.

Keys are tuples: a resource namespace followed by discriminating
parameters. Logically identical requests must produce equal tuples so they
collapse into one cache entry.
"""

import hashlib
import json
from typing import Any, Mapping, Optional, Tuple

QueryKey = Tuple[Any, ...]


def filter_hash(filters: Optional[Mapping[str, Any]]) -> str:
    """Stable digest of a filter mapping; ``None`` and ``{}`` hash alike."""
    cleaned = {k: v for k, v in (filters or {}).items() if v is not None}
    canonical = json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode()).hexdigest()


def matches_prefix(key: QueryKey, prefix: QueryKey) -> bool:
    return key[:len(prefix)] == prefix


class QueryKeys:
    """Every cache key used by the accessors."""

    @staticmethod
    def users() -> QueryKey:
        return ("users",)

    @staticmethod
    def user(user_id: str) -> QueryKey:
        return ("users", "byId", user_id)

    @staticmethod
    def user_by_username(username: str) -> QueryKey:
        return ("users", "username", username)

    @staticmethod
    def followers(user_id: str) -> QueryKey:
        return ("users", "followers", user_id)

    @staticmethod
    def following(user_id: str) -> QueryKey:
        return ("users", "following", user_id)

    @staticmethod
    def discussions() -> QueryKey:
        return ("discussions",)

    @staticmethod
    def discussion_list(filters: Optional[Mapping[str, Any]] = None) -> QueryKey:
        return ("discussions", "list", filter_hash(filters))

    @staticmethod
    def discussion(discussion_id: str) -> QueryKey:
        return ("discussions", "byId", discussion_id)

    @staticmethod
    def user_discussions(user_id: str) -> QueryKey:
        return ("discussions", "byUser", user_id)

    @staticmethod
    def discussion_comments(discussion_id: str) -> QueryKey:
        return ("comments", "discussion", discussion_id)

    @staticmethod
    def cameras() -> QueryKey:
        return ("cameras",)

    @staticmethod
    def camera_list(filters: Optional[Mapping[str, Any]] = None) -> QueryKey:
        return ("cameras", "list", filter_hash(filters))

    @staticmethod
    def camera(camera_id: str) -> QueryKey:
        return ("cameras", "byId", camera_id)

    @staticmethod
    def user_cameras(user_id: str) -> QueryKey:
        return ("cameras", "byUser", user_id)

    @staticmethod
    def likes(kind: str, target_id: str) -> QueryKey:
        return ("likes", kind, target_id)

    @staticmethod
    def like_status(kind: str, target_id: str) -> QueryKey:
        return ("likes", kind, target_id, "status")

    @staticmethod
    def like_count(kind: str, target_id: str) -> QueryKey:
        return ("likes", kind, target_id, "count")
