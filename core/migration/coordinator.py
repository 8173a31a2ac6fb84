from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from core.gateway.base import RoadmapGateway
from core.migration.guest_session import GuestSessionStore
from core.migration.local_state import LocalStateFile
from core.roadmap.errors import RoadmapError
from core.roadmap.models import Identity, RoadmapRecord

logger = logging.getLogger(__name__)

STATUS_KEY_PREFIX = "migration_status:"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MigrationPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    MIGRATING = "migrating"
    COMPLETE = "complete"
    SKIPPED = "skipped"


class AuthContext(BaseModel):
    user_id: str | None = None
    email: str | None = None
    is_authenticated: bool = False
    profile_loading: bool = False
    email_verified: bool = False


class MigrationStatus(BaseModel):
    guest_user_id: str | None = None
    is_complete: bool = False
    is_skipped: bool = False
    migrated_count: int = 0
    completed_at: datetime | None = None
    skipped_at: datetime | None = None


class GuestRoadmapCheck(BaseModel):
    has_guest_roadmaps: bool = False
    guest_user_id: str | None = None
    roadmaps: list[RoadmapRecord] = Field(default_factory=list)
    is_complete: bool = False
    is_skipped: bool = False


class MigrationOutcome(BaseModel):
    phase: MigrationPhase
    migrated_count: int = 0
    reason: str | None = None
    error: str | None = None

    @property
    def migrated(self) -> bool:
        return self.phase == MigrationPhase.COMPLETE and self.reason is None


class GuestMigrationCoordinator:
    """Moves a guest identity's roadmaps into an authenticated account once.

    Completion and skip markers live in the local state file, keyed by the
    guest user id, so a recorded guest never triggers a second transfer.
    A failed transfer leaves the guest identity and markers untouched and
    is retried on the next qualifying trigger.
    """

    def __init__(self, gateway: RoadmapGateway, guest_sessions: GuestSessionStore, state: LocalStateFile) -> None:
        self._gateway = gateway
        self._guest_sessions = guest_sessions
        self._state = state
        self._lock = asyncio.Lock()
        self.phase = MigrationPhase.IDLE
        self.last_error: str | None = None

    def _status_key(self, guest_user_id: str) -> str:
        return f"{STATUS_KEY_PREFIX}{guest_user_id}"

    def status(self, guest_user_id: str | None = None) -> MigrationStatus:
        guest_user_id = guest_user_id or self._guest_sessions.guest_user_id
        if not guest_user_id:
            return MigrationStatus()
        raw = self._state.get(self._status_key(guest_user_id))
        if not isinstance(raw, dict):
            return MigrationStatus(guest_user_id=guest_user_id)
        return MigrationStatus.model_validate({**raw, "guest_user_id": guest_user_id})

    def _save_status(self, status: MigrationStatus) -> None:
        self._state.set(self._status_key(status.guest_user_id), status.model_dump(mode="json"))

    async def check_for_guest_roadmaps(self) -> GuestRoadmapCheck:
        guest_user_id = self._guest_sessions.guest_user_id
        if not guest_user_id:
            return GuestRoadmapCheck()
        status = self.status(guest_user_id)
        roadmaps = await self._gateway.list_roadmaps_by_owner(guest_user_id)
        return GuestRoadmapCheck(
            has_guest_roadmaps=bool(roadmaps),
            guest_user_id=guest_user_id,
            roadmaps=roadmaps,
            is_complete=status.is_complete,
            is_skipped=status.is_skipped,
        )

    async def maybe_migrate(self, auth: AuthContext) -> MigrationOutcome:
        """Automatic trigger: honours completion and skip markers."""
        async with self._lock:
            return await self._run(auth, honour_skip=True)

    async def migrate_now(self, auth: AuthContext) -> MigrationOutcome:
        """Manual trigger: runs even when the guest previously skipped."""
        async with self._lock:
            return await self._run(auth, honour_skip=False)

    def skip(self) -> MigrationStatus:
        guest_user_id = self._guest_sessions.guest_user_id
        if not guest_user_id:
            return MigrationStatus()
        status = self.status(guest_user_id).model_copy(update={"is_skipped": True, "skipped_at": _utc_now()})
        self._save_status(status)
        self.phase = MigrationPhase.SKIPPED
        logger.info("guest migration skipped guest=%s", guest_user_id)
        return status

    def reset_status(self, guest_user_id: str | None = None) -> None:
        guest_user_id = guest_user_id or self._guest_sessions.guest_user_id
        if guest_user_id:
            self._state.delete(self._status_key(guest_user_id))
        self.phase = MigrationPhase.IDLE
        self.last_error = None

    def _gate(self, auth: AuthContext, guest_user_id: str | None) -> str | None:
        if not guest_user_id:
            return "no_guest_identity"
        if not auth.is_authenticated or not auth.user_id:
            return "not_authenticated"
        if auth.profile_loading:
            return "profile_loading"
        if not auth.email_verified:
            return "email_unverified"
        if auth.user_id == guest_user_id:
            return "same_identity"
        return None

    async def _run(self, auth: AuthContext, *, honour_skip: bool) -> MigrationOutcome:
        guest_user_id = self._guest_sessions.guest_user_id
        blocked = self._gate(auth, guest_user_id)
        if blocked:
            return MigrationOutcome(phase=self.phase, reason=blocked)

        status = self.status(guest_user_id)
        if status.is_complete:
            self.phase = MigrationPhase.COMPLETE
            return MigrationOutcome(phase=self.phase, migrated_count=status.migrated_count, reason="already_complete")
        if honour_skip and status.is_skipped:
            self.phase = MigrationPhase.SKIPPED
            return MigrationOutcome(phase=self.phase, reason="skipped")

        self.phase = MigrationPhase.CHECKING
        try:
            roadmaps = await self._gateway.list_roadmaps_by_owner(guest_user_id)
        except RoadmapError as exc:
            return self._fail("check", guest_user_id, exc)
        if not roadmaps:
            self.phase = MigrationPhase.IDLE
            return MigrationOutcome(phase=self.phase, reason="nothing_to_migrate")

        self.phase = MigrationPhase.MIGRATING
        acting = self._gateway.with_identity(Identity(user_id=auth.user_id, email=auth.email))
        try:
            result = await acting.transfer_ownership(guest_user_id, auth.user_id)
        except RoadmapError as exc:
            return self._fail("transfer", guest_user_id, exc)

        self._save_status(
            MigrationStatus(
                guest_user_id=guest_user_id,
                is_complete=True,
                migrated_count=result.migrated_count,
                completed_at=_utc_now(),
            )
        )
        self._guest_sessions.clear()
        self.phase = MigrationPhase.COMPLETE
        self.last_error = None
        logger.info(
            "guest migration complete guest=%s target=%s count=%d", guest_user_id, auth.user_id, result.migrated_count
        )
        return MigrationOutcome(phase=self.phase, migrated_count=result.migrated_count)

    def _fail(self, step: str, guest_user_id: str, exc: RoadmapError) -> MigrationOutcome:
        logger.warning("guest migration %s failed guest=%s: %s", step, guest_user_id, exc)
        self.phase = MigrationPhase.IDLE
        self.last_error = str(exc)
        return MigrationOutcome(phase=self.phase, reason=f"{step}_failed", error=str(exc))
