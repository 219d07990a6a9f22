"""
Users API client: identity sync, profiles and the follow graph.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from shared.logging import get_logger
from ..auth.fallback import sync_username
from ..domain.models import Identity, Profile
from .api_client import ApiClient, as_list

USERS = "/api/v1/users"


def _epoch_ms(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp() * 1000) if value else None


def build_sync_payload(identity: Identity) -> Dict[str, Any]:
    """Payload for ``POST /users/sync``.

    Display name and avatar are left out so the backend keeps values the
    user customised.
    """
    return {
        "clerk_id": identity.id,
        "email": identity.primary_email or "",
        "username": sync_username(identity),
        "metadata": {
            "created_at": _epoch_ms(identity.created_at),
            "updated_at": _epoch_ms(identity.updated_at),
            "last_sign_in": _epoch_ms(identity.last_sign_in_at),
            "external_accounts": [
                {"provider": account.provider, "email": account.email}
                for account in identity.external_accounts
            ],
        },
    }


class UsersClient:
    """Client for the users resource; also the backend sync client."""

    def __init__(self, api: ApiClient):
        self.api = api
        self.logger = get_logger("session.users_client")

    async def sync(self, identity: Identity, token: str) -> Profile:
        """Upsert ``identity`` and return the stored profile."""
        result = await self.api.post(
            f"{USERS}/sync",
            json=build_sync_payload(identity),
            token=token,
            endpoint=f"{USERS}/sync",
        )
        self.logger.info(
            "User sync acknowledged",
            backend_user_id=(result or {}).get("user_id") if isinstance(result, dict) else None,
        )
        return await self.get_user(identity.id, token)

    async def get_user(self, user_id: str, token: Optional[str] = None) -> Profile:
        data = await self.api.get(f"{USERS}/{quote(user_id, safe='')}", token=token, endpoint=f"{USERS}/{{id}}")
        return Profile.model_validate(data)

    async def get_user_by_username(self, username: str, token: Optional[str] = None) -> Profile:
        data = await self.api.get(
            f"{USERS}/username/{quote(username, safe='')}",
            token=token,
            endpoint=f"{USERS}/username/{{username}}",
        )
        return Profile.model_validate(data)

    async def update_user(self, user_id: str, changes: Dict[str, Any], token: str) -> Profile:
        data = await self.api.patch(
            f"{USERS}/{quote(user_id, safe='')}",
            json=changes,
            token=token,
            endpoint=f"{USERS}/{{id}}",
        )
        return Profile.model_validate(data)

    async def get_followers(self, user_id: str, token: Optional[str] = None) -> List[Profile]:
        data = await self.api.get(
            f"{USERS}/{quote(user_id, safe='')}/followers",
            token=token,
            endpoint=f"{USERS}/{{id}}/followers",
        )
        return [Profile.model_validate(item) for item in as_list(data)]

    async def get_following(self, user_id: str, token: Optional[str] = None) -> List[Profile]:
        data = await self.api.get(
            f"{USERS}/{quote(user_id, safe='')}/following",
            token=token,
            endpoint=f"{USERS}/{{id}}/following",
        )
        return [Profile.model_validate(item) for item in as_list(data)]

    async def follow(self, user_id: str, follower_id: str, token: str) -> Dict[str, Any]:
        return await self.api.post(
            f"{USERS}/{quote(user_id, safe='')}/follow",
            json={"follower_id": follower_id},
            token=token,
            endpoint=f"{USERS}/{{id}}/follow",
        ) or {}

    async def unfollow(self, user_id: str, follower_id: str, token: str) -> Dict[str, Any]:
        return await self.api.post(
            f"{USERS}/{quote(user_id, safe='')}/unfollow",
            json={"follower_id": follower_id},
            token=token,
            endpoint=f"{USERS}/{{id}}/unfollow",
        ) or {}
