"""
Identity provider and backend sync contracts.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Protocol

from shared.logging import get_logger
from ..domain.models import Identity, Profile

Listener = Callable[[], None]
Unsubscribe = Callable[[], None]


class TokenSource(ABC):
    """Identity provider seen by the session layer.

    Any provider can be adapted by implementing the four members below and
    calling ``_notify()`` whenever readiness or the signed-in identity
    changes.
    """

    def __init__(self):
        self._listeners: List[Listener] = []
        self._logger = get_logger("session.token_source")

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once the provider finished loading its session."""

    @property
    @abstractmethod
    def current_identity(self) -> Optional[Identity]:
        """The signed-in identity, or None."""

    @abstractmethod
    async def get_token(self) -> Optional[str]:
        """Return a fresh bearer token, or None when signed out."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the provider session."""

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as exc:
                self._logger.error("Token source listener failed", error=str(exc))


class BackendSyncClient(Protocol):
    """Upserts an identity into the backend and returns its profile."""

    async def sync(self, identity: Identity, token: str) -> Profile:
        ...
