"""
Profile derivation from identity claims alone.

Used when the backend cannot be reached so that a signed-in identity always
has a usable profile.
"""

from datetime import datetime
from typing import Optional

from ..domain.models import ExpertiseLevel, Identity, Permissions, Profile, utc_now


def email_local_part(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.split("@", 1)[0]


def fallback_username(identity: Identity) -> str:
    """username -> first name -> email local part -> ``user_<last 8 of id>``."""
    return (
        identity.username
        or identity.first_name
        or email_local_part(identity.primary_email)
        or f"user_{identity.id[-8:]}"
    )


def sync_username(identity: Identity) -> str:
    """Username proposed to the backend on sync; first names are lowercased."""
    if identity.username:
        return identity.username
    if identity.first_name:
        return identity.first_name.lower()
    return email_local_part(identity.primary_email) or f"user_{identity.id[-8:]}"


def display_name(identity: Identity) -> str:
    if identity.full_name:
        return identity.full_name
    return f"{identity.first_name or ''} {identity.last_name or ''}".strip()


def build_fallback_profile(identity: Identity, now: Optional[datetime] = None) -> Profile:
    """Derive a degraded profile deterministically from ``identity``."""
    created_at = identity.created_at or now or utc_now()
    return Profile(
        id=identity.id,
        username=fallback_username(identity),
        display_name=display_name(identity),
        bio="",
        avatar_url=identity.image_url or "",
        location="",
        expertise_level=ExpertiseLevel.BEGINNER,
        website_url="",
        instagram_url="",
        created_at=created_at.isoformat(),
        camera_count=0,
        discussion_count=0,
        follower_count=0,
        following_count=0,
    )


def derive_permissions(identity: Optional[Identity]) -> Permissions:
    if identity is None:
        return Permissions()
    # Moderation rights come from backend roles, which the client never sees.
    return Permissions(
        can_create_discussion=bool(identity.primary_email),
        can_upload_images=identity.email_verified,
        can_moderate=False,
        is_verified=identity.email_verified,
    )
