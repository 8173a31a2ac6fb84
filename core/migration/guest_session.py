from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from core.gateway.base import RoadmapGateway
from core.migration.local_state import LocalStateFile
from core.roadmap.errors import EntityNotFoundError

logger = logging.getLogger(__name__)

GUEST_SESSION_KEY = "guest_session_id"
GUEST_USER_KEY = "guest_user_id"


def new_guest_session_id() -> str:
    return f"guest_{uuid4().hex}"


class GuestSessionStore:
    """Locally persisted anonymous identity.

    The session id is minted on first use; the guest user id is whatever
    the gateway assigned for that session and is re-validated before reuse.
    """

    def __init__(self, state: LocalStateFile) -> None:
        self._state = state
        self._pending: asyncio.Task | None = None

    @property
    def session_id(self) -> str | None:
        value = self._state.get(GUEST_SESSION_KEY)
        return str(value) if value else None

    @property
    def guest_user_id(self) -> str | None:
        value = self._state.get(GUEST_USER_KEY)
        return str(value) if value else None

    def get_or_create_session_id(self) -> str:
        current = self.session_id
        if current:
            return current
        created = new_guest_session_id()
        self._state.set(GUEST_SESSION_KEY, created)
        return created

    def is_guest_user(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id == self.guest_user_id

    def clear(self) -> None:
        self._state.delete(GUEST_SESSION_KEY, GUEST_USER_KEY)

    async def get_or_create_guest_user(self, gateway: RoadmapGateway) -> str:
        # Concurrent callers share one creation round trip.
        if self._pending is not None and not self._pending.done():
            return await self._pending
        self._pending = asyncio.ensure_future(self._resolve_guest_user(gateway))
        try:
            return await self._pending
        finally:
            self._pending = None

    async def _resolve_guest_user(self, gateway: RoadmapGateway) -> str:
        session_id = self.get_or_create_session_id()
        cached = self.guest_user_id
        if cached:
            try:
                server_user_id = await gateway.get_guest_user_id(session_id)
            except EntityNotFoundError:
                server_user_id = None
            if server_user_id == cached:
                return cached
            logger.info("stale guest identity dropped cached=%s server=%s", cached, server_user_id)
            self._state.delete(GUEST_USER_KEY)
            if server_user_id:
                self._state.set(GUEST_USER_KEY, server_user_id)
                return server_user_id

        guest = await gateway.create_guest_user(session_id)
        self._state.set(GUEST_USER_KEY, guest.user_id)
        logger.info("guest identity ready user=%s new=%s", guest.user_id, guest.is_new)
        return guest.user_id
