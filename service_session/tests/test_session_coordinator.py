"""
Unit tests for the session coordinator.
"""

import asyncio
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock

from shared.errors import ApiError
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeTokenSource, create_mock_identity, create_mock_profile
from service_session.app.auth import SessionCoordinator
from service_session.app.domain.models import SyncState, SyncStatus

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestSessionCoordinator:
    """Test cases for SessionCoordinator."""

    @pytest.fixture
    def alice(self):
        return create_mock_identity("user_alice0001", username="alice", email="alice@example.com")

    @pytest.fixture
    def token_source(self, alice):
        return FakeTokenSource(alice)

    @pytest.fixture
    def sync_client(self):
        client = AsyncMock()
        client.sync.return_value = create_mock_profile("user_alice0001", "alice")
        return client

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("session")

    @pytest.fixture
    def coordinator(self, token_source, sync_client, metrics):
        return SessionCoordinator(token_source, sync_client, metrics=metrics, clock=lambda: NOW)

    def test_initial_state(self, coordinator):
        """Test a new coordinator waits for an identity."""
        assert coordinator.state.status == SyncStatus.WAITING_FOR_IDENTITY
        assert coordinator.profile is None
        assert not coordinator.is_syncing

    @pytest.mark.asyncio
    async def test_initialize_syncs_ready_identity(self, coordinator, sync_client, metrics):
        """Test initialization syncs when the provider already has an identity."""
        state = await coordinator.initialize()

        assert state.status == SyncStatus.SYNCED
        assert state.profile.username == "alice"
        assert state.error is None
        assert state.last_synced_at == NOW
        sync_client.sync.assert_awaited_once()
        identity, token = sync_client.sync.await_args.args
        assert identity.id == "user_alice0001"
        assert token == "test-token"
        assert metrics.get_sample_value("session_syncs_total", result="synced") == 1

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, coordinator, sync_client):
        """Test repeated initialization does not resync."""
        await coordinator.initialize()
        await coordinator.initialize()

        assert sync_client.sync.await_count == 1

    @pytest.mark.asyncio
    async def test_waits_until_provider_ready(self, alice, sync_client):
        """Test nothing happens until the provider reports ready."""
        source = FakeTokenSource(alice, ready=False)
        coordinator = SessionCoordinator(source, sync_client)

        await coordinator.initialize()
        assert coordinator.state.status == SyncStatus.WAITING_FOR_IDENTITY
        sync_client.sync.assert_not_awaited()

        source.set_ready()
        await asyncio.sleep(0)
        await coordinator.wait_for_sync()

        assert coordinator.state.status == SyncStatus.SYNCED
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_waits_for_backend_client(self, token_source, sync_client):
        """Test sync is deferred until the backend client is ready."""
        coordinator = SessionCoordinator(token_source, sync_client, backend_ready=False)

        await coordinator.initialize()
        sync_client.sync.assert_not_awaited()

        coordinator.mark_backend_ready()
        await asyncio.sleep(0)
        await coordinator.wait_for_sync()

        assert coordinator.state.status == SyncStatus.SYNCED
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_ready_without_identity_is_signed_out(self, sync_client):
        """Test a ready provider with nobody signed in skips sync."""
        coordinator = SessionCoordinator(FakeTokenSource(None), sync_client)

        state = await coordinator.initialize()

        assert state.status == SyncStatus.SIGNED_OUT
        assert state.profile is None
        sync_client.sync.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_sync_calls_make_one_backend_call(self, coordinator, sync_client):
        """Test reentrant sync requests collapse into one call."""
        gate = asyncio.Event()

        async def slow_sync(identity, token):
            await gate.wait()
            return create_mock_profile(identity.id, "alice")

        sync_client.sync.side_effect = slow_sync

        first = asyncio.create_task(coordinator.sync_now())
        await asyncio.sleep(0)
        others = await asyncio.gather(*(coordinator.sync_now() for _ in range(4)))

        assert all(state.status == SyncStatus.SYNCING for state in others)
        assert coordinator.is_syncing

        gate.set()
        final = await first

        assert final.status == SyncStatus.SYNCED
        assert sync_client.sync.await_count == 1

    @pytest.mark.asyncio
    async def test_sync_failure_uses_fallback_profile(self, sync_client, metrics):
        """Test a failed first sync degrades to an identity-derived profile."""
        bob = create_mock_identity(
            "user_bob00000042",
            username=None,
            email="bob@example.com",
            created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        )
        sync_client.sync.side_effect = ApiError(0)
        coordinator = SessionCoordinator(FakeTokenSource(bob), sync_client, metrics=metrics, clock=lambda: NOW)

        state = await coordinator.initialize()

        assert state.status == SyncStatus.DEGRADED
        assert state.profile.username == "bob"
        assert state.profile.id == "user_bob00000042"
        assert state.profile.follower_count == 0
        assert state.profile.created_at == "2024-05-01T00:00:00+00:00"
        assert state.error == "Network error: Unable to connect to server"
        assert state.last_synced_at is None
        assert metrics.get_sample_value("session_syncs_total", result="degraded") == 1

    @pytest.mark.asyncio
    async def test_failure_never_replaces_synced_profile(self, coordinator, sync_client):
        """Test a later failure keeps the profile from the last good sync."""
        await coordinator.initialize()
        synced = coordinator.profile

        sync_client.sync.side_effect = ApiError(500)
        state = await coordinator.sync_now()

        assert state.status == SyncStatus.DEGRADED
        assert state.profile == synced
        assert state.last_synced_at == NOW
        assert state.error

    @pytest.mark.asyncio
    async def test_mismatched_profile_id_degrades(self, sync_client, metrics):
        """Test a synced profile for another user is rejected."""
        identity = create_mock_identity("user_abc", username="abc")
        sync_client.sync.return_value = create_mock_profile("other", "other")
        coordinator = SessionCoordinator(FakeTokenSource(identity), sync_client, metrics=metrics, clock=lambda: NOW)

        state = await coordinator.initialize()

        assert state.status == SyncStatus.DEGRADED
        assert state.profile.id == "user_abc"
        assert state.error == "Backend returned profile other for identity user_abc"
        assert metrics.get_sample_value("session_syncs_total", result="synced") is None
        assert metrics.get_sample_value("session_syncs_total", result="degraded") == 1

    @pytest.mark.asyncio
    async def test_mismatched_profile_id_keeps_synced_profile(self, coordinator, sync_client):
        """Test a mismatched resync keeps the profile from the last good sync."""
        await coordinator.initialize()
        synced = coordinator.profile

        sync_client.sync.return_value = create_mock_profile("other", "other")
        state = await coordinator.sync_now()

        assert state.status == SyncStatus.DEGRADED
        assert state.profile == synced
        assert state.profile.id == "user_alice0001"

    @pytest.mark.asyncio
    async def test_missing_token_without_profile_degrades(self, alice, sync_client):
        """Test a missing token still leaves the identity with a profile."""
        source = FakeTokenSource(alice, token=None)
        coordinator = SessionCoordinator(source, sync_client)

        state = await coordinator.initialize()

        assert state.status == SyncStatus.DEGRADED
        assert state.profile.username == "alice"
        assert state.error == "No authentication token available"
        sync_client.sync.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_token_restores_previous_state(self, coordinator, token_source, sync_client):
        """Test a missing token after a good sync leaves the state untouched."""
        await coordinator.initialize()
        before = coordinator.state

        token_source.token = None
        state = await coordinator.sync_now()

        assert state == before
        assert sync_client.sync.await_count == 1

    @pytest.mark.asyncio
    async def test_token_errors_are_absorbed(self, coordinator, token_source):
        """Test get_valid_token never raises."""
        token_source.token_error = RuntimeError("provider offline")

        assert await coordinator.get_valid_token() is None

    @pytest.mark.asyncio
    async def test_sign_out_clears_state(self, coordinator, token_source):
        """Test sign-out drops the profile and ends the provider session."""
        await coordinator.initialize()

        await coordinator.sign_out()

        assert coordinator.profile is None
        assert coordinator.state.error is None
        assert coordinator.state.status in (SyncStatus.WAITING_FOR_IDENTITY, SyncStatus.SIGNED_OUT)
        assert token_source.sign_out_calls == 1
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_sign_out_clears_state_when_provider_fails(self, alice, sync_client, metrics):
        """Test local state is cleared even if the provider rejects sign-out."""
        source = FakeTokenSource(alice, sign_out_error=RuntimeError("network down"))
        coordinator = SessionCoordinator(source, sync_client, metrics=metrics)
        await coordinator.initialize()

        await coordinator.sign_out()

        assert coordinator.profile is None
        assert coordinator.state.status == SyncStatus.WAITING_FOR_IDENTITY
        assert metrics.get_sample_value("errors_total", error_type="SIGN_OUT_FAILURE", service="session") == 1

    @pytest.mark.asyncio
    async def test_sign_out_during_sync_discards_result(self, coordinator, sync_client):
        """Test a sync that finishes after sign-out does not restore the profile."""
        gate = asyncio.Event()

        async def slow_sync(identity, token):
            await gate.wait()
            return create_mock_profile(identity.id, "alice")

        sync_client.sync.side_effect = slow_sync
        task = asyncio.create_task(coordinator.sync_now())
        await asyncio.sleep(0)

        await coordinator.sign_out()
        gate.set()
        await task

        assert coordinator.profile is None
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_identity_change_resyncs_new_identity(self, coordinator, token_source, sync_client):
        """Test switching accounts replaces the profile with the new user's."""
        await coordinator.initialize()
        carol = create_mock_identity("user_carol0003", username="carol", email="carol@example.com")
        sync_client.sync.return_value = create_mock_profile("user_carol0003", "carol")

        token_source.set_identity(carol)
        await asyncio.sleep(0)
        await coordinator.wait_for_sync()
        await asyncio.sleep(0)

        assert coordinator.profile.username == "carol"
        assert coordinator.identity.id == "user_carol0003"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_update_profile_locally(self, coordinator, sync_client):
        """Test local patches merge into the current profile."""
        await coordinator.initialize()
        listener_states = []
        unsubscribe = coordinator.subscribe(listener_states.append)

        updated = coordinator.update_profile_locally({"bio": "Half-frame enthusiast", "id": "hijack", "unknown": 1})

        assert updated.bio == "Half-frame enthusiast"
        assert updated.id == "user_alice0001"
        assert coordinator.profile.bio == "Half-frame enthusiast"
        assert listener_states[-1].profile == updated
        sync_client.sync.assert_awaited_once()

        unsubscribe()
        coordinator.update_profile_locally({"bio": "again"})
        assert len(listener_states) == 1

    def test_update_profile_locally_without_profile(self, coordinator):
        """Test local patches are ignored while no profile exists."""
        assert coordinator.update_profile_locally({"bio": "x"}) is None

    @pytest.mark.asyncio
    async def test_listener_receives_transitions(self, coordinator):
        """Test subscribers observe syncing then synced."""
        states = []
        coordinator.subscribe(states.append)

        await coordinator.initialize()

        assert [s.status for s in states] == [SyncStatus.SYNCING, SyncStatus.SYNCED]
        assert all(isinstance(s, SyncState) for s in states)

    @pytest.mark.asyncio
    async def test_permissions_follow_identity(self, coordinator):
        """Test permissions derive from identity claims."""
        permissions = coordinator.permissions

        assert permissions.can_create_discussion
        assert permissions.can_upload_images
        assert not permissions.can_moderate
