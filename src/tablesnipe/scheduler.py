"""Snipe timers and startup recovery.

Each pending snipe gets one APScheduler date job whose id is the snipe id.
The job fires ``lead_time`` seconds before the release time so polling is
already underway when the slot opens, absorbing clock skew and latency.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tablesnipe.models import Snipe, SnipeStatus
from tablesnipe.store import SnipeStore

logger = logging.getLogger(__name__)

LEAD_TIME_SECONDS = 30.0

MISSED_RELEASE_RESULT = "Missed release time (server was not running)"
INTERRUPTED_RESULT = "Interrupted: process stopped while the snipe was running"


class Executor(Protocol):
    async def execute(self, snipe: Snipe) -> Snipe: ...


class SnipeScheduler:
    """
    Owns the snipe id → armed timer registry.

    Arming and disarming are the only mutations of the registry. A fired
    timer leaves the registry before its executor starts, so cancelling after
    the handoff is a no-op and never interrupts a running snipe.
    """

    def __init__(
        self,
        store: SnipeStore,
        executor: Executor,
        lead_time: float = LEAD_TIME_SECONDS,
    ) -> None:
        self.store = store
        self.executor = executor
        self.lead_time = lead_time
        self._timers: AsyncIOScheduler | None = None
        self._in_flight: set[str] = set()

    @staticmethod
    def _now() -> datetime:
        """Current UTC time. Extracted for testability."""
        return datetime.now(timezone.utc)

    def _registry(self) -> AsyncIOScheduler:
        """The timer registry, started on the running event loop."""
        if self._timers is None:
            self._timers = AsyncIOScheduler(
                timezone="UTC", event_loop=asyncio.get_running_loop()
            )
        if not self._timers.running:
            self._timers.start()
            logger.info("Snipe timer registry started")
        return self._timers

    async def startup(self) -> None:
        """Recover persisted snipes: fail the ones that missed their window, arm the rest.

        Safe to call more than once; resolved snipes are no longer pending and
        re-arming an armed snipe replaces its timer.
        """
        self._registry()
        now = self._now()

        for snipe in self.store.list_snipes(SnipeStatus.RUNNING):
            if snipe.id in self._in_flight:
                continue
            logger.warning("Snipe %s was interrupted mid-run, marking failed", snipe.id)
            self.store.update_status(
                snipe.id, SnipeStatus.FAILED, INTERRUPTED_RESULT, expected=SnipeStatus.RUNNING
            )

        armed = missed = 0
        for snipe in self.store.pending():
            if snipe.release_time <= now:
                logger.warning(
                    "Snipe %s missed its release time %s", snipe.id, snipe.release_time.isoformat()
                )
                self.cancel(snipe.id)
                self.store.update_status(
                    snipe.id, SnipeStatus.FAILED, MISSED_RELEASE_RESULT, expected=SnipeStatus.PENDING
                )
                missed += 1
                continue
            self.schedule(snipe)
            armed += 1

        logger.info("Scheduler startup: %d armed, %d missed", armed, missed)

    def fire_time(self, snipe: Snipe) -> datetime:
        return snipe.release_time - timedelta(seconds=self.lead_time)

    def schedule(self, snipe: Snipe) -> datetime:
        """Arm (or re-arm) the timer for a snipe. Returns when it will fire."""
        timers = self._registry()
        self.cancel(snipe.id)

        now = self._now()
        fire_delay = max(0.0, (self.fire_time(snipe) - now).total_seconds())
        run_at = now + timedelta(seconds=fire_delay)
        timers.add_job(
            self._fire,
            trigger="date",
            run_date=run_at,
            id=snipe.id,
            args=[snipe.id],
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info(
            "Snipe %s armed: fires at %s (%.1fs), release %s",
            snipe.id, run_at.isoformat(), fire_delay, snipe.release_time.isoformat(),
        )
        return run_at

    def cancel(self, snipe_id: str) -> bool:
        """Disarm a snipe's timer. Returns whether one was armed."""
        if self._timers is None:
            return False
        try:
            self._timers.remove_job(snipe_id)
        except JobLookupError:
            return False
        logger.info("Snipe %s disarmed", snipe_id)
        return True

    def is_scheduled(self, snipe_id: str) -> bool:
        return self._timers is not None and self._timers.get_job(snipe_id) is not None

    def list_scheduled_ids(self) -> list[str]:
        if self._timers is None:
            return []
        return [job.id for job in self._timers.get_jobs()]

    def is_running(self, snipe_id: str) -> bool:
        return snipe_id in self._in_flight

    def shutdown(self) -> None:
        """Disarm every timer. Store state is untouched; pending snipes stay pending."""
        if self._timers is None:
            return
        self._timers.remove_all_jobs()
        if self._timers.running:
            self._timers.shutdown(wait=False)
        self._timers = None
        logger.info("Snipe scheduler stopped")

    async def _fire(self, snipe_id: str) -> None:
        # Re-read: the snipe may have been cancelled from another process
        snipe = self.store.get(snipe_id)
        if snipe is None or snipe.status != SnipeStatus.PENDING:
            logger.info("Snipe %s no longer pending at fire time, skipping", snipe_id)
            return
        self._in_flight.add(snipe_id)
        try:
            await self.executor.execute(snipe)
        finally:
            self._in_flight.discard(snipe_id)


def check_clock_offset(server: str = "pool.ntp.org") -> float | None:
    """System clock offset against NTP in seconds, or None if unreachable.

    BLOCKING. Use ``asyncio.to_thread`` in async contexts.
    """
    try:
        import ntplib

        resp = ntplib.NTPClient().request(server, version=3)
        return resp.offset
    except Exception:
        return None
