"""Snipe executor: the polling/booking race run once per fired timer.

Flow per snipe:

    pending → running → poll (rate-limited) → match → book → success | failed

Availability errors, empty results and limiter timeouts are transient and
retried until the poll deadline. Once a concrete slot is matched, the booking
call gets exactly one shot: a failed submission ends the snipe, since the
slot is probably gone and replaying could double-book.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping

import httpx

from tablesnipe.models import Platform, Slot, Snipe, SniperSettings, SnipeStatus
from tablesnipe.notifications import SNIPE_FAILED, SNIPE_SUCCEEDED, Notifier, NullNotifier, snipe_details
from tablesnipe.platforms import PlatformClient
from tablesnipe.rate_limiter import RateLimiter
from tablesnipe.selector import SlotSelector
from tablesnipe.store import SnipeStore

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.5
MAX_POLL_DURATION_SECONDS = 120.0
ACQUIRE_TIMEOUT_SECONDS = 30.0


def _describe_error(e: Exception) -> str:
    if isinstance(e, httpx.HTTPStatusError):
        return f"HTTP {e.response.status_code}: {e.response.text[:200]}"
    return str(e) or type(e).__name__


class SnipeExecutor:
    """
    Runs a single snipe to a terminal state.

    ``execute()`` never raises: every outcome, including unexpected errors,
    is written to the store as status + human-readable result text.
    """

    def __init__(
        self,
        store: SnipeStore,
        clients: Mapping[Platform, PlatformClient],
        rate_limiter: RateLimiter,
        notifier: Notifier | None = None,
        selector: SlotSelector | None = None,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_duration: float = MAX_POLL_DURATION_SECONDS,
        acquire_timeout: float = ACQUIRE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.clients = clients
        self.rate_limiter = rate_limiter
        self.notifier = notifier or NullNotifier()
        self.selector = selector or SlotSelector()
        self.poll_interval = poll_interval
        self.max_poll_duration = max_poll_duration
        self.acquire_timeout = acquire_timeout
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: SniperSettings,
        store: SnipeStore,
        clients: Mapping[Platform, PlatformClient],
        rate_limiter: RateLimiter,
        notifier: Notifier | None = None,
    ) -> SnipeExecutor:
        return cls(
            store,
            clients,
            rate_limiter,
            notifier,
            SlotSelector(tolerance_minutes=settings.match_tolerance_minutes),
            poll_interval=settings.poll_interval_seconds,
            max_poll_duration=settings.max_poll_duration_seconds,
            acquire_timeout=settings.acquire_timeout_seconds,
        )

    async def execute(self, snipe: Snipe) -> Snipe:
        """Mark running, race for a slot, persist the terminal outcome."""
        try:
            started = self.store.update_status(
                snipe.id, SnipeStatus.RUNNING, expected=SnipeStatus.PENDING
            )
        except Exception:
            logger.exception("Could not mark snipe %s running; not starting", snipe.id)
            return snipe
        if not started:
            logger.info("Snipe %s is no longer pending; not starting", snipe.id)
            return self.store.get(snipe.id) or snipe

        logger.info(
            "Snipe %s running: %s %s on %s for %d, preferences %s",
            snipe.id,
            snipe.platform.value,
            snipe.restaurant.restaurant_id,
            snipe.date.isoformat(),
            snipe.party_size,
            snipe.preferred_times,
        )

        try:
            status, result = await self._snipe_loop(snipe)
        except Exception as e:
            logger.exception("Snipe %s: unexpected error", snipe.id)
            status, result = SnipeStatus.FAILED, f"Unexpected error: {e}"

        try:
            persisted = self.store.update_status(
                snipe.id, status, result, expected=SnipeStatus.RUNNING
            )
        except Exception:
            logger.exception("Could not persist outcome for snipe %s", snipe.id)
            persisted = True

        if not persisted:
            # Someone else already finished this snipe; their status stands
            logger.warning(
                "Snipe %s left running state while executing; discarding outcome %s: %s",
                snipe.id, status.value, result,
            )
            return self.store.get(snipe.id) or snipe

        final = snipe.model_copy(update={"status": status, "result": result})
        logger.info("Snipe %s %s: %s", snipe.id, status.value, result)
        await self._notify(final)
        return final

    async def _snipe_loop(self, snipe: Snipe) -> tuple[SnipeStatus, str]:
        """Poll → match → book until a slot is claimed or the deadline passes."""
        client = self.clients.get(snipe.platform)
        if client is None:
            return SnipeStatus.FAILED, f"No client configured for platform {snipe.platform.value}"

        platform = snipe.platform.value
        start = self._clock()
        deadline = start + self.max_poll_duration
        attempt = 0

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            attempt += 1

            acquired = await self.rate_limiter.acquire(
                platform, timeout=min(self.acquire_timeout, remaining)
            )
            if not acquired:
                logger.debug("Attempt %d: rate limited on %s", attempt, platform)
                await self._pause(deadline)
                continue
            if self._clock() >= deadline:
                break

            try:
                slots = await client.get_availability(
                    snipe.restaurant.restaurant_id, snipe.date, snipe.party_size
                )
            except Exception as e:
                logger.warning("Attempt %d: availability check failed: %s", attempt, _describe_error(e))
                await self._pause(deadline)
                continue

            selected = self.selector.select(slots, snipe.preferred_times)
            if selected is None:
                logger.debug("Attempt %d: %d slots, none match preferences", attempt, len(slots))
                await self._pause(deadline)
                continue

            logger.info(
                "Attempt %d: matched %s (%s) after %.1fs",
                attempt, selected.time, selected.seating_type or "any", self._clock() - start,
            )
            return await self._book(client, snipe, selected)

        elapsed = self._clock() - start
        logger.warning("Snipe %s: poll window exhausted after %d attempts (%.1fs)", snipe.id, attempt, elapsed)
        return (
            SnipeStatus.FAILED,
            f"Snipe timed out - no matching slots became available "
            f"({attempt} attempts in {elapsed:.0f}s)",
        )

    async def _book(
        self, client: PlatformClient, snipe: Snipe, slot: Slot
    ) -> tuple[SnipeStatus, str]:
        try:
            outcome = await client.book(slot, snipe.date, snipe.party_size)
        except Exception as e:
            return SnipeStatus.FAILED, f"Booking failed for {slot.time}: {_describe_error(e)}"

        if not outcome.success:
            return SnipeStatus.FAILED, f"Booking failed for {slot.time}: {outcome.error or 'unknown error'}"
        if outcome.confirmation_id:
            return (
                SnipeStatus.SUCCESS,
                f"Successfully booked! Reservation ID: {outcome.confirmation_id}, Time: {slot.time}",
            )
        return SnipeStatus.SUCCESS, f"Slot found! Complete booking at: {outcome.booking_url}"

    async def _pause(self, deadline: float) -> None:
        delay = min(self.poll_interval, deadline - self._clock())
        if delay > 0:
            await asyncio.sleep(delay)

    async def _notify(self, snipe: Snipe) -> None:
        event = SNIPE_SUCCEEDED if snipe.status == SnipeStatus.SUCCESS else SNIPE_FAILED
        try:
            await self.notifier.notify(event, snipe_details(snipe))
        except Exception as e:
            logger.warning("Notification for snipe %s failed: %s", snipe.id, e)
