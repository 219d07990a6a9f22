"""
Domain models for the session layer.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExpertiseLevel(str, Enum):
    """User expertise tiers, lowest first."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class ExternalAccount(BaseModel):
    """An OAuth account linked to an identity."""

    model_config = ConfigDict(frozen=True)

    provider: str
    email: str = ""


class Identity(BaseModel):
    """Principal issued by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    primary_email: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None
    email_verified: bool = False
    external_accounts: List[ExternalAccount] = Field(default_factory=list)


class Profile(BaseModel):
    """Backend-owned representation of a user."""

    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    display_name: Optional[str] = ""
    bio: Optional[str] = ""
    avatar_url: Optional[str] = ""
    location: Optional[str] = ""
    expertise_level: Optional[ExpertiseLevel] = ExpertiseLevel.BEGINNER
    website_url: Optional[str] = ""
    instagram_url: Optional[str] = ""
    created_at: str
    camera_count: int = 0
    discussion_count: int = 0
    follower_count: int = 0
    following_count: int = 0


class Permissions(BaseModel):
    """Capabilities derived from identity claims."""

    model_config = ConfigDict(frozen=True)

    can_create_discussion: bool = False
    can_upload_images: bool = False
    can_moderate: bool = False
    is_verified: bool = False


class SyncStatus(str, Enum):
    """Session synchronization states."""
    UNINITIALIZED = "uninitialized"
    WAITING_FOR_IDENTITY = "waiting_for_identity"
    SYNCING = "syncing"
    SYNCED = "synced"
    DEGRADED = "degraded"
    SIGNED_OUT = "signed_out"


class SyncState(BaseModel):
    """Immutable snapshot of the session synchronization state."""

    model_config = ConfigDict(frozen=True)

    status: SyncStatus = SyncStatus.UNINITIALIZED
    profile: Optional[Profile] = None
    error: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class Discussion(BaseModel):
    """Discussion thread summary."""

    model_config = ConfigDict(extra="allow")

    id: str
    user_id: str
    category_id: Optional[str] = None
    title: str = ""
    body: str = ""
    tags: List[str] = Field(default_factory=list)
    is_pinned: bool = False
    is_locked: bool = False
    view_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    author_username: Optional[str] = None
    author_avatar: Optional[str] = None
    comment_count: int = 0
    like_count: int = 0
    is_liked: bool = False


class DiscussionComment(BaseModel):
    """Comment on a discussion, possibly with nested replies."""

    model_config = ConfigDict(extra="allow")

    id: str
    discussion_id: str
    user_id: str
    parent_comment_id: Optional[str] = None
    body: str = ""
    like_count: int = 0
    is_liked: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    author_username: Optional[str] = None
    replies: List["DiscussionComment"] = Field(default_factory=list)


class CameraImage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    camera_id: str
    image_url: str
    thumbnail_url: Optional[str] = None
    is_primary: bool = False
    display_order: int = 0


class Camera(BaseModel):
    """Camera in a user's collection."""

    model_config = ConfigDict(extra="allow")

    id: str
    user_id: str
    brand_name: str = ""
    model: str = ""
    year: Optional[str] = None
    camera_type: Optional[str] = None
    film_format: Optional[str] = None
    condition: Optional[str] = None
    is_for_sale: bool = False
    is_for_trade: bool = False
    is_public: bool = True
    view_count: int = 0
    created_at: Optional[str] = None
    images: List[CameraImage] = Field(default_factory=list)
    owner_username: Optional[str] = None
    like_count: int = 0
    comment_count: int = 0
    is_liked: bool = False


class LikeTarget(BaseModel):
    """Identifies exactly one likeable piece of content."""

    model_config = ConfigDict(frozen=True)

    discussion_id: Optional[str] = None
    camera_id: Optional[str] = None
    comment_id: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> "LikeTarget":
        targets = [v for v in (self.discussion_id, self.camera_id, self.comment_id) if v]
        if len(targets) != 1:
            raise ValueError("exactly one of discussion_id, camera_id, comment_id is required")
        return self

    @property
    def kind(self) -> str:
        if self.discussion_id:
            return "discussion"
        if self.camera_id:
            return "camera"
        return "comment"

    @property
    def target_id(self) -> str:
        return self.discussion_id or self.camera_id or self.comment_id  # type: ignore[return-value]

    def as_params(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class LikeStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    is_liked: bool = False


class LikeCount(BaseModel):
    model_config = ConfigDict(extra="allow")

    like_count: int = 0
