"""
End-to-end session flow: identity -> backend sync -> cached reads -> sign-out.
"""

import json

import httpx
import pytest

from shared.config import get_config
from shared.test_helpers import (
    FakeClock,
    FakeTokenSource,
    create_mock_cameras,
    create_mock_discussions,
    create_mock_identity,
    create_mock_jwt_token,
)
from service_session.app.caching import QueryKeys
from service_session.app.domain.models import SyncStatus
from service_session.app.main import SessionRuntime


class FakeBackend:
    """In-memory RetroLens API."""

    def __init__(self):
        self.users = {}
        self.calls = []
        self.sync_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if path == "/api/v1/users/sync":
            if self.sync_status != 200:
                return httpx.Response(self.sync_status, json={"detail": "sync unavailable"})
            if not request.headers.get("Authorization", "").startswith("Bearer "):
                return httpx.Response(401, json={"detail": "Missing token"})
            payload = json.loads(request.content)
            self.users[payload["clerk_id"]] = {
                "id": payload["clerk_id"],
                "username": payload["username"],
                "created_at": "2024-01-01T00:00:00Z",
                "camera_count": 1,
            }
            return httpx.Response(200, json={"message": "User synced", "user_id": "1"})

        if path.startswith("/api/v1/users/"):
            user_id = path.rsplit("/", 1)[-1]
            if user_id in self.users:
                return httpx.Response(200, json=self.users[user_id])
            return httpx.Response(404, json={"detail": "User not found"})

        if path == "/api/v1/discussions":
            return httpx.Response(200, json=create_mock_discussions(["user_alice0001", "user_other"]))

        if path == "/api/v1/cameras":
            return httpx.Response(200, json=create_mock_cameras(["user_alice0001"]))

        if path == "/health":
            return httpx.Response(200, json={"status": "healthy"})

        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def config():
    return get_config(api_base_url="http://api.test", cache_retry_base_delay=0, log_level="warning")


@pytest.fixture
def clock():
    return FakeClock()


def make_runtime(source, config, backend, clock):
    return SessionRuntime(source, config, transport=httpx.MockTransport(backend.handler), cache_clock=clock)


class TestSessionFlow:
    """End-to-end tests through SessionRuntime."""

    @pytest.mark.asyncio
    async def test_sign_in_sync_read_sign_out(self, backend, config, clock):
        """Test the complete happy path of one session."""
        source = FakeTokenSource(
            create_mock_identity("user_alice0001", username="alice"),
            token=create_mock_jwt_token("user_alice0001"),
        )

        async with make_runtime(source, config, backend, clock) as runtime:
            state = await runtime.coordinator.wait_for_sync()
            assert state.status == SyncStatus.SYNCED
            assert state.profile.username == "alice"
            assert state.profile.camera_count == 1

            mine = await runtime.queries.user_discussions("user_alice0001")
            again = await runtime.queries.user_discussions("user_alice0001")
            assert [d.user_id for d in mine.data] == ["user_alice0001"]
            assert again.data is mine.data
            assert backend.calls.count(("GET", "/api/v1/discussions")) == 1

            cameras = await runtime.queries.user_cameras("user_alice0001")
            assert [c.id for c in cameras.data] == ["cam-1"]
            assert await runtime.api.health_check() == {"status": "healthy"}

            await runtime.sign_out()

            assert runtime.coordinator.profile is None
            assert len(runtime.cache) == 0
            assert source.sign_out_calls == 1
            assert runtime.cache.peek(QueryKeys.user_discussions("user_alice0001")) is None

        assert runtime.cache._sweeper is None

    @pytest.mark.asyncio
    async def test_backend_outage_degrades(self, backend, config, clock):
        """Test an unreachable sync endpoint leaves a usable fallback profile."""
        backend.sync_status = 503
        source = FakeTokenSource(create_mock_identity("user_bob00000042", username=None, email="bob@example.com"))

        async with make_runtime(source, config, backend, clock) as runtime:
            state = runtime.coordinator.state

            assert state.status == SyncStatus.DEGRADED
            assert state.profile.username == "bob"
            assert state.error.startswith("HTTP 503")
            assert runtime.metrics.get_sample_value("session_syncs_total", result="degraded") == 1

            backend.sync_status = 200
            state = await runtime.coordinator.sync_now()
            assert state.status == SyncStatus.SYNCED
            assert state.profile.username == "bob"

    @pytest.mark.asyncio
    async def test_signed_out_reads_are_anonymous(self, backend, config, clock):
        """Test a session with no identity still reads public data."""
        source = FakeTokenSource(None)

        async with make_runtime(source, config, backend, clock) as runtime:
            assert runtime.coordinator.state.status == SyncStatus.SIGNED_OUT

            result = await runtime.queries.user("missing")

            assert not result.ok
            assert result.error.attempts == 1
            assert ("POST", "/api/v1/users/sync") not in backend.calls
