"""
Domain package for the session layer.

Pydantic models shared by the coordinator, the cache accessors and the
backend adapters.
"""

from .models import (
    Camera,
    CameraImage,
    Discussion,
    DiscussionComment,
    ExpertiseLevel,
    ExternalAccount,
    Identity,
    LikeCount,
    LikeStatus,
    LikeTarget,
    Permissions,
    Profile,
    SyncState,
    SyncStatus,
)

__all__ = [
    "Camera",
    "CameraImage",
    "Discussion",
    "DiscussionComment",
    "ExpertiseLevel",
    "ExternalAccount",
    "Identity",
    "LikeCount",
    "LikeStatus",
    "LikeTarget",
    "Permissions",
    "Profile",
    "SyncState",
    "SyncStatus",
]
