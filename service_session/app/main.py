"""
Session runtime for the RetroLens access layer.

Wires configuration, logging, metrics, the backend adapters, the shared
query cache and the session coordinator into one object with an explicit
lifecycle.
"""

import time
from datetime import datetime
from typing import Callable, Optional

import httpx

from shared.config import BaseConfig, get_config
from shared.logging import configure_logging, get_logger, set_session_id
from shared.metrics import get_metrics_collector
from .adapters import ApiClient, CamerasClient, DiscussionsClient, LikesClient, UsersClient
from .auth.coordinator import SessionCoordinator
from .auth.token_source import TokenSource
from .caching import CacheStore
from .domain.models import SyncState, utc_now
from .queries import QueryAccessors


class SessionRuntime:
    """One signed-in (or signed-out) client session."""

    def __init__(
        self,
        token_source: TokenSource,
        config: Optional[BaseConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache_clock: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utc_now,
        backend_ready: bool = True,
    ):
        self.config = config or get_config()
        self.service_name = getattr(self.config, "service_name", "session")

        configure_logging(self.service_name, self.config.log_level)
        self.logger = get_logger(f"{self.service_name}.runtime")
        self.metrics = get_metrics_collector(self.service_name)

        self.api = ApiClient.from_config(self.config, transport=transport, metrics=self.metrics)
        self.users = UsersClient(self.api)
        self.discussions = DiscussionsClient(self.api)
        self.cameras = CamerasClient(self.api)
        self.likes = LikesClient(self.api)

        self.cache = CacheStore.from_config(self.config, clock=cache_clock, metrics=self.metrics)
        self.coordinator = SessionCoordinator(
            token_source,
            self.users,
            backend_ready=backend_ready,
            metrics=self.metrics,
            clock=clock,
        )
        self.queries = QueryAccessors(
            self.cache,
            self.coordinator,
            self.users,
            self.discussions,
            self.cameras,
            self.likes,
        )
        self.session_id: Optional[str] = None

    async def init(self) -> SyncState:
        """Start the cache sweeper and begin tracking the identity provider."""
        self.session_id = set_session_id()
        await self.cache.init()
        state = await self.coordinator.initialize()
        self.logger.info(
            "Session runtime started",
            api_base_url=self.config.api_base_url,
            status=state.status.value,
        )
        return state

    async def teardown(self) -> None:
        await self.coordinator.close()
        await self.cache.teardown()
        self.logger.info("Session runtime stopped")

    async def sign_out(self) -> None:
        """End the session and drop every cached response."""
        await self.coordinator.sign_out()
        self.cache.clear()

    async def __aenter__(self) -> "SessionRuntime":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.teardown()


def create_runtime(token_source: TokenSource, **overrides) -> SessionRuntime:
    """Build a runtime from environment configuration plus ``overrides``."""
    return SessionRuntime(token_source, get_config(**overrides))
