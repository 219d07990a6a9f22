"""
Session coordinator: identity provider -> backend profile synchronization.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, TYPE_CHECKING

from shared.errors import SignOutError, SyncTransportError, TokenUnavailableError
from shared.logging import clear_context, get_logger, set_user_context
from ..domain.models import Identity, Permissions, Profile, SyncState, SyncStatus, utc_now
from .fallback import build_fallback_profile, derive_permissions
from .token_source import BackendSyncClient, TokenSource

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

StateListener = Callable[[SyncState], None]


class SessionCoordinator:
    """Owns the session's ``SyncState``.

    Sync runs once both the identity provider and the backend client are
    ready and an identity is present. Failures are absorbed: the state moves
    to ``DEGRADED`` with a profile derived from the identity, and a profile
    that was already synced is never replaced by a fallback. Only one sync
    runs at a time; a ``sync_now()`` issued while one is in flight returns
    immediately and callers use ``wait_for_sync()`` to observe the outcome.
    """

    def __init__(
        self,
        token_source: TokenSource,
        sync_client: BackendSyncClient,
        *,
        backend_ready: bool = True,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.token_source = token_source
        self.sync_client = sync_client
        self.metrics = metrics
        self.logger = get_logger("session.coordinator")
        self._clock = clock
        self._backend_ready = backend_ready

        self._state = SyncState(status=SyncStatus.WAITING_FOR_IDENTITY)
        self._listeners: List[StateListener] = []
        self._initialized = False
        self._token_unsubscribe: Optional[Callable[[], None]] = None

        self._sync_in_flight = False
        self._sync_done: Optional[asyncio.Event] = None
        # Bumped whenever the principal changes; results from an older epoch are dropped.
        self._epoch = 0
        self._identity_id: Optional[str] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def profile(self) -> Optional[Profile]:
        return self._state.profile

    @property
    def identity(self) -> Optional[Identity]:
        return self.token_source.current_identity if self.token_source.is_ready else None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def is_syncing(self) -> bool:
        return self._sync_in_flight

    @property
    def permissions(self) -> Permissions:
        return derive_permissions(self.identity)

    async def initialize(self) -> SyncState:
        """Subscribe to the identity provider and sync if it is already ready."""
        if self._initialized:
            return self._state

        self._initialized = True
        self._token_unsubscribe = self.token_source.subscribe(self._on_token_source_change)
        self.logger.info(
            "Session coordinator initialized",
            identity_ready=self.token_source.is_ready,
            backend_ready=self._backend_ready,
        )
        await self._reconcile()
        return self._state

    def mark_backend_ready(self) -> None:
        """Signal that the backend client finished initializing."""
        if self._backend_ready:
            return
        self._backend_ready = True
        self.logger.debug("Backend client ready")
        self._schedule_reconcile()

    async def sync_now(self) -> SyncState:
        """Upsert the current identity into the backend.

        No-op while another sync is in flight or when no identity is present.
        """
        if self._sync_in_flight:
            self.logger.debug("Sync already in flight; ignoring request")
            return self._state

        identity = self.token_source.current_identity
        if identity is None:
            self.logger.debug("No identity present; skipping sync")
            return self._state

        self._adopt_identity(identity)
        self._sync_in_flight = True
        self._sync_done = asyncio.Event()
        epoch = self._epoch
        previous = self._state
        self._set_state(previous.model_copy(update={"status": SyncStatus.SYNCING}))
        try:
            await self._perform_sync(identity, epoch, previous)
        finally:
            self._sync_in_flight = False
            self._sync_done.set()
        return self._state

    async def wait_for_sync(self) -> SyncState:
        """Wait for the in-flight sync, if any, and return the resulting state."""
        while self._sync_in_flight and self._sync_done is not None:
            await self._sync_done.wait()
        return self._state

    async def get_valid_token(self) -> Optional[str]:
        """Fresh bearer token from the identity provider; None on any failure."""
        try:
            return await self.token_source.get_token()
        except Exception as exc:
            self.logger.error("Error getting auth token", error=str(exc))
            return None

    def update_profile_locally(self, patch: Dict[str, Any]) -> Optional[Profile]:
        """Shallow-merge ``patch`` into the current profile without contacting the backend."""
        profile = self._state.profile
        if profile is None:
            return None

        changes = {k: v for k, v in patch.items() if k in Profile.model_fields and k != "id"}
        updated = profile.model_copy(update=changes)
        self._set_state(self._state.model_copy(update={"profile": updated}))
        return updated

    async def sign_out(self) -> None:
        """Clear the local session, then end the provider session.

        Local state is cleared even when the provider call fails.
        """
        self._epoch += 1
        self._identity_id = None
        self._set_state(SyncState(status=SyncStatus.SIGNED_OUT))
        clear_context()

        try:
            await self.token_source.sign_out()
            self.logger.info("User signed out")
        except Exception as exc:
            error = SignOutError(f"Identity provider sign out failed: {exc}")
            self.logger.error(error.message, code=error.code)
            if self.metrics:
                self.metrics.record_error(error.code)

        self._set_state(SyncState(status=SyncStatus.WAITING_FOR_IDENTITY))

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for state snapshots; returns an unsubscribe handle."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def close(self) -> None:
        """Detach from the identity provider and drop background work."""
        if self._token_unsubscribe is not None:
            self._token_unsubscribe()
            self._token_unsubscribe = None
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._initialized = False

    async def _perform_sync(self, identity: Identity, epoch: int, previous: SyncState) -> None:
        token = await self.get_valid_token()
        if epoch != self._epoch:
            self.logger.info("Session changed during token acquisition; discarding sync")
            return

        if not token:
            error = TokenUnavailableError()
            self.logger.warning("No authentication token available; backend sync skipped", code=error.code)
            self._record_sync("token_unavailable")
            if previous.profile is None:
                self._set_state(SyncState(
                    status=SyncStatus.DEGRADED,
                    profile=build_fallback_profile(identity, self._clock()),
                    error=error.message,
                ))
            else:
                self._set_state(previous)
            return

        try:
            self.logger.info("Syncing user data with backend")
            profile = await self.sync_client.sync(identity, token)
            if profile.id != identity.id:
                raise SyncTransportError(
                    f"Backend returned profile {profile.id} for identity {identity.id}"
                )
        except Exception as exc:
            if epoch != self._epoch:
                self.logger.info("Session changed during failed sync; discarding")
                return
            error = SyncTransportError(str(exc) or exc.__class__.__name__)
            self.logger.warning(
                "Backend user sync failed, continuing with identity-only profile",
                code=error.code,
                error=error.message,
                error_type=exc.__class__.__name__,
            )
            self._record_sync("degraded")
            self._set_state(SyncState(
                status=SyncStatus.DEGRADED,
                profile=previous.profile or build_fallback_profile(identity, self._clock()),
                error=error.message,
                last_synced_at=previous.last_synced_at,
            ))
            return

        if epoch != self._epoch:
            self.logger.info("Session changed during sync; discarding result")
            return

        self.logger.info("User profile synchronized", username=profile.username)
        self._record_sync("synced")
        self._set_state(SyncState(
            status=SyncStatus.SYNCED,
            profile=profile,
            error=None,
            last_synced_at=self._clock(),
        ))

    def _adopt_identity(self, identity: Identity) -> None:
        if identity.id == self._identity_id:
            return
        self._epoch += 1
        self._identity_id = identity.id
        set_user_context(identity.id)
        if self._state.profile is not None and self._state.profile.id != identity.id:
            self._set_state(SyncState(status=SyncStatus.WAITING_FOR_IDENTITY))

    def _on_token_source_change(self) -> None:
        self._schedule_reconcile()

    def _schedule_reconcile(self) -> None:
        if not self._initialized:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running event loop; readiness change ignored")
            return
        task = loop.create_task(self._reconcile())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _reconcile(self) -> None:
        """Bring the state in line with the provider's current readiness and identity."""
        if not self.token_source.is_ready:
            return

        identity = self.token_source.current_identity
        if identity is None:
            if self._identity_id is not None or self._state.status != SyncStatus.SIGNED_OUT:
                self._epoch += 1
                self._identity_id = None
                clear_context()
                self._set_state(SyncState(status=SyncStatus.SIGNED_OUT))
            return

        changed = identity.id != self._identity_id
        needs_sync = changed or self._state.status in (
            SyncStatus.WAITING_FOR_IDENTITY,
            SyncStatus.SIGNED_OUT,
            SyncStatus.UNINITIALIZED,
        )
        if changed:
            self._adopt_identity(identity)
        if not needs_sync or not self._backend_ready:
            return

        if self._sync_in_flight:
            # An older principal's sync is running; its result will be discarded.
            await self.wait_for_sync()
        await self.sync_now()

    def _set_state(self, state: SyncState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                self.logger.error("Session listener failed", error=str(exc))

    def _record_sync(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("session_syncs_total", result=result)
