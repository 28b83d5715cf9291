"""
Session Registry

In-memory map of session identifier to session controller. The registry is
the single source of truth for whether a session exists. Nothing is persisted:
a restart loses live sessions, while credential blobs on disk survive and are
resumed by the next ``start`` for the same identifier.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Tuple

from .errors import SessionAlreadyExists, SessionNotFound

if TYPE_CHECKING:
    from .controller import SessionController

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[str], "SessionController"]


class SessionRegistry:
    """Owns the lifecycle of every live session"""

    def __init__(self):
        self._sessions: Dict[str, "SessionController"] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(self, session_id: str, factory: ControllerFactory) -> "SessionController":
        """Register and initialize a new session; fails if one exists"""
        controller, created = await self.create_or_get(session_id, factory)
        if not created:
            raise SessionAlreadyExists(session_id)
        return controller

    async def create_or_get(
        self,
        session_id: str,
        factory: ControllerFactory
    ) -> Tuple["SessionController", bool]:
        """
        Return the session for ``session_id``, creating it if needed.

        The membership check and insert happen under one lock, so concurrent
        callers for the same identifier share a single controller. A caller
        that finds an existing controller joins its initialization.

        Returns:
            (controller, created)

        Raises:
            InitializationFailure: The new session could not be initialized;
                it is not left in the registry.
        """
        async with self._lock:
            controller = self._sessions.get(session_id)
            created = controller is None
            if created:
                controller = factory(session_id)
                self._sessions[session_id] = controller
                logger.info(f"Registered session {session_id}")

        try:
            await controller.initialize()
        except Exception:
            if created:
                await self._discard(session_id, controller)
            raise

        return controller, created

    def get(self, session_id: str) -> "SessionController":
        controller = self._sessions.get(session_id)
        if controller is None:
            raise SessionNotFound(session_id)
        return controller

    def remove(self, session_id: str) -> None:
        """Drop a session; unknown identifiers are ignored"""
        if self._sessions.pop(session_id, None) is not None:
            logger.info(f"Removed session {session_id}")

    def list(self) -> List[Dict]:
        return [controller.session.to_dict() for controller in self._sessions.values()]

    async def close_all(self) -> None:
        """Close every session and clear the registry"""
        async with self._lock:
            controllers = list(self._sessions.values())
            self._sessions.clear()

        for controller in controllers:
            try:
                await controller.close()
            except Exception as e:
                logger.error(f"Error closing session {controller.session_id}: {e}")

    async def _discard(self, session_id: str, controller: "SessionController") -> None:
        async with self._lock:
            if self._sessions.get(session_id) is controller:
                del self._sessions[session_id]
                logger.info(f"Discarded session {session_id} after failed initialization")
