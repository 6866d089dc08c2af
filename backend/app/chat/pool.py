"""Pool of cloned inference sessions, one per active conversation.

The pool owns a single base session created from the engine and clones it
lazily for every conversation that takes a turn. Clones are cached and evicted
after a period of inactivity by an APScheduler job.

Lifecycle:
    pool = SessionPool(idle_timeout_seconds=300)
    await pool.initialize(engine)   # call once at startup
    ...
    await pool.shutdown()           # call once at shutdown

Every refresh bumps the entry's ``generation`` and replaces the eviction job
(``evict:<conversation_id>``). The job carries the generation it was
scheduled for, so a job that fires after a newer refresh is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, AsyncIterator

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from app.engine.base import Availability, InferenceEngine, Session
from app.engine.errors import EngineUnavailable, EvictionFailure, PoolUnavailable

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT_SECONDS = 5 * 60


class PoolState(str, Enum):
    NEW = "new"
    READY = "ready"
    DEGRADED = "degraded"
    SHUT_DOWN = "shut_down"


@dataclass
class PoolEntry:
    """Bookkeeping for one conversation's cloned session."""

    conversation_id: str
    session: Session
    generation: int = 0
    idle_deadline: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    busy: int = 0


def _job_id(conversation_id: str) -> str:
    return f"evict:{conversation_id}"


class SessionPool:
    """Keyed cache of cloned sessions with idle-timeout eviction."""

    def __init__(
        self,
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._base: Session | None = None
        self._entries: dict[str, PoolEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._state = PoolState.NEW
        self._availability: Availability | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(
        self,
        engine: InferenceEngine,
        session_options: dict[str, Any] | None = None,
    ) -> bool:
        """Probe the engine and create the base session.

        Args:
            engine: Engine the base session is created from.
            session_options: Passed through to ``engine.create_session``.

        Returns:
            True when the pool is ready. False leaves the pool degraded:
            every later ``acquire`` raises ``EngineUnavailable``.
        """
        if self._state is PoolState.SHUT_DOWN:
            raise PoolUnavailable(self._state.value)
        if self._state is not PoolState.NEW:
            logger.warning("SessionPool already initialized - skipping")
            return self._state is PoolState.READY

        try:
            self._availability = Availability(await engine.availability())
        except Exception:
            logger.exception("Engine availability probe failed")
            self._availability = Availability.UNAVAILABLE

        if self._availability is not Availability.AVAILABLE:
            logger.warning(
                "Inference engine reported %s - running in degraded mode",
                self._availability.value,
            )
            self._state = PoolState.DEGRADED
            return False

        try:
            self._base = await engine.create_session(session_options)
        except Exception:
            logger.exception("Failed to create base session - running in degraded mode")
            self._availability = Availability.UNAVAILABLE
            self._state = PoolState.DEGRADED
            return False

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(
                event_loop=asyncio.get_running_loop(),
                timezone=timezone.utc,
            )
        if not self._scheduler.running:
            self._scheduler.start()

        self._state = PoolState.READY
        logger.info(
            "SessionPool ready (idle timeout %.0fs)",
            self._idle_timeout.total_seconds(),
        )
        return True

    async def shutdown(self) -> None:
        """Destroy every session and stop eviction. Safe to call repeatedly."""
        if self._state is PoolState.SHUT_DOWN:
            return
        self._state = PoolState.SHUT_DOWN

        entries = list(self._entries.values())
        self._entries.clear()
        self._locks.clear()

        for entry in entries:
            self._cancel_eviction(entry.conversation_id)
            try:
                await self._destroy(entry.conversation_id, entry.session)
            except EvictionFailure:
                logger.exception("Session teardown failed during shutdown")

        if self._scheduler is not None and self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        base, self._base = self._base, None
        if base is not None:
            try:
                await base.destroy()
                logger.info("Base session destroyed")
            except Exception:
                logger.exception("Failed to destroy base session")

        logger.info("SessionPool shut down (%d sessions released)", len(entries))

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def acquire(self, conversation_id: str) -> Session:
        """Return the conversation's session, cloning the base on first use.

        An existing session is returned unchanged and its idle deadline is
        pushed back. Concurrent calls for the same id share one clone.
        """
        self._ensure_ready()
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        async with lock:
            self._ensure_ready()
            entry = self._entries.get(conversation_id)
            if entry is not None:
                self._refresh(entry)
                return entry.session

            session = await self._base.clone()
            if self._state is not PoolState.READY:
                # Pool was shut down while cloning.
                try:
                    await self._destroy(conversation_id, session)
                except EvictionFailure:
                    logger.exception("Failed to destroy orphaned clone")
                raise PoolUnavailable(self._state.value)

            entry = PoolEntry(conversation_id=conversation_id, session=session)
            self._entries[conversation_id] = entry
            self._refresh(entry)
            logger.info("Cloned session for conversation %s", conversation_id)
            return session

    @asynccontextmanager
    async def lease(self, conversation_id: str) -> AsyncIterator[Session]:
        """Hold the conversation's session for the duration of a turn.

        Eviction is deferred while the lease is held and the idle deadline
        restarts when it is released.
        """
        session = await self.acquire(conversation_id)
        entry = self._entries[conversation_id]
        entry.busy += 1
        try:
            yield session
        finally:
            entry.busy -= 1
            if self._state is PoolState.READY and self._entries.get(conversation_id) is entry:
                self._refresh(entry)

    async def release_idle(self, conversation_id: str, generation: int) -> bool:
        """Evict an idle session. Scheduled by the pool, not called by clients.

        Returns:
            True if a session was removed. Missing entries, stale generations
            and busy entries are left alone.
        """
        entry = self._entries.get(conversation_id)
        if entry is None:
            logger.debug("Eviction for %s skipped: no entry", conversation_id)
            return False
        if entry.generation != generation:
            logger.debug(
                "Eviction for %s skipped: stale generation %d (current %d)",
                conversation_id,
                generation,
                entry.generation,
            )
            return False
        if entry.busy:
            logger.debug("Eviction for %s deferred: turn in progress", conversation_id)
            self._refresh(entry)
            return False

        del self._entries[conversation_id]
        self._drop_lock(conversation_id)
        try:
            await self._destroy(conversation_id, entry.session)
        except EvictionFailure:
            logger.exception("Idle eviction failed; entry dropped from tracking")
        else:
            logger.info("Destroyed inactive session for conversation %s", conversation_id)
        return True

    async def discard(self, conversation_id: str) -> bool:
        """Drop a conversation's session immediately (e.g. conversation deleted)."""
        entry = self._entries.pop(conversation_id, None)
        if entry is None:
            return False
        self._cancel_eviction(conversation_id)
        self._drop_lock(conversation_id)
        try:
            await self._destroy(conversation_id, entry.session)
        except EvictionFailure:
            logger.exception("Failed to destroy discarded session")
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def availability(self) -> Availability | None:
        return self._availability

    def get(self, conversation_id: str) -> Session | None:
        entry = self._entries.get(conversation_id)
        return entry.session if entry is not None else None

    def entry(self, conversation_id: str) -> PoolEntry | None:
        return self._entries.get(conversation_id)

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "availability": self._availability.value if self._availability else None,
            "active_sessions": len(self._entries),
            "idle_timeout_seconds": self._idle_timeout.total_seconds(),
        }

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_ready(self) -> None:
        if self._state is PoolState.READY:
            return
        if self._state is PoolState.DEGRADED:
            availability = self._availability or Availability.UNAVAILABLE
            raise EngineUnavailable(availability.value)
        raise PoolUnavailable(self._state.value)

    def _refresh(self, entry: PoolEntry) -> None:
        """Push the idle deadline back and replace the eviction job."""
        entry.generation += 1
        entry.idle_deadline = datetime.now(timezone.utc) + self._idle_timeout
        self._scheduler.add_job(
            self.release_idle,
            trigger=DateTrigger(run_date=entry.idle_deadline),
            args=[entry.conversation_id, entry.generation],
            id=_job_id(entry.conversation_id),
            name=f"Evict idle session {entry.conversation_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _cancel_eviction(self, conversation_id: str) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(_job_id(conversation_id))
        except JobLookupError:
            pass

    def _drop_lock(self, conversation_id: str) -> None:
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]

    async def _destroy(self, conversation_id: str, session: Session) -> None:
        try:
            await session.destroy()
        except Exception as exc:
            raise EvictionFailure(conversation_id) from exc
