"""
Unit tests for identity-derived profiles and query keys.
"""

from datetime import datetime, timezone

import pytest

from shared.test_helpers import create_mock_identity
from service_session.app.auth.fallback import (
    build_fallback_profile,
    derive_permissions,
    fallback_username,
    sync_username,
)
from service_session.app.caching import QueryKeys, filter_hash
from service_session.app.domain.models import ExpertiseLevel

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


class TestFallbackProfile:
    """Test cases for build_fallback_profile."""

    def test_username_preferred(self):
        identity = create_mock_identity(username="alice", first_name="Alice")
        assert fallback_username(identity) == "alice"

    def test_first_name_before_email(self):
        identity = create_mock_identity(username=None, first_name="Dora", email="d.smith@example.com")
        assert fallback_username(identity) == "Dora"
        assert sync_username(identity) == "dora"

    def test_email_local_part(self):
        identity = create_mock_identity(username=None, email="bob@example.com")
        assert fallback_username(identity) == "bob"

    def test_id_suffix_last_resort(self):
        identity = create_mock_identity("user_2xYz98765432", username=None, email=None)
        assert fallback_username(identity) == "user_98765432"
        assert sync_username(identity) == "user_98765432"

    def test_profile_fields(self):
        """Test every derived field of a fallback profile."""
        identity = create_mock_identity(
            "user_bob00000042",
            username=None,
            email="bob@example.com",
            first_name="Bob",
            last_name="Builder",
            image_url="https://img.example.com/bob.png",
        )

        profile = build_fallback_profile(identity, NOW)

        assert profile.id == "user_bob00000042"
        assert profile.username == "Bob"
        assert profile.display_name == "Bob Builder"
        assert profile.avatar_url == "https://img.example.com/bob.png"
        assert profile.expertise_level == ExpertiseLevel.BEGINNER
        assert profile.bio == profile.location == profile.website_url == profile.instagram_url == ""
        assert profile.camera_count == profile.discussion_count == 0
        assert profile.follower_count == profile.following_count == 0
        assert profile.created_at == "2024-01-01T00:00:00+00:00"

    def test_full_name_wins(self):
        identity = create_mock_identity(full_name="Robert B.", first_name="Bob", last_name="Builder")
        assert build_fallback_profile(identity, NOW).display_name == "Robert B."

    def test_created_at_defaults_to_now(self):
        identity = create_mock_identity(created_at=None)
        assert build_fallback_profile(identity, NOW).created_at == NOW.isoformat()

    def test_deterministic(self):
        identity = create_mock_identity()
        assert build_fallback_profile(identity, NOW) == build_fallback_profile(identity, NOW)

    def test_permissions_without_identity(self):
        permissions = derive_permissions(None)
        assert not permissions.can_create_discussion
        assert not permissions.is_verified

    def test_permissions_unverified_email(self):
        permissions = derive_permissions(create_mock_identity(email_verified=False))
        assert permissions.can_create_discussion
        assert not permissions.can_upload_images


class TestQueryKeys:
    """Test cases for the query key factory."""

    def test_equal_filters_equal_keys(self):
        assert QueryKeys.discussion_list({"page": 1, "tags": ["film"]}) == \
            QueryKeys.discussion_list({"tags": ["film"], "page": 1})

    def test_none_values_ignored(self):
        assert filter_hash({"page": None}) == filter_hash(None) == filter_hash({})

    def test_different_filters_different_keys(self):
        assert QueryKeys.camera_list({"brand_name": "Leica"}) != QueryKeys.camera_list({"brand_name": "Nikon"})

    @pytest.mark.parametrize("key", [
        QueryKeys.user("u1"),
        QueryKeys.followers("u1"),
        QueryKeys.user_by_username("alice"),
    ])
    def test_user_keys_share_namespace(self, key):
        assert key[:1] == QueryKeys.users()

    def test_like_keys_nest_under_target(self):
        prefix = QueryKeys.likes("camera", "c1")
        assert QueryKeys.like_status("camera", "c1")[:3] == prefix
        assert QueryKeys.like_count("camera", "c1")[:3] == prefix
