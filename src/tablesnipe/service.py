"""Caller-facing snipe lifecycle operations: create, list, get, cancel.

This is the validation boundary. Bad input is rejected here with a
``TablesnipeError`` subclass and never reaches the scheduler or executor.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from tablesnipe.errors import SnipeNotFoundError, SnipeStateError, SnipeValidationError
from tablesnipe.models import Snipe, SnipeRequest, SnipeStatus
from tablesnipe.scheduler import SnipeScheduler
from tablesnipe.store import SNIPE_ID_RE, SnipeStore

logger = logging.getLogger(__name__)

CANCELLED_RESULT = "Cancelled by user"


class SnipeService:
    """
    Lifecycle operations over the store.

    Without a scheduler the service is store-only: it can list, show and
    cancel, but refuses to create snipes since nothing would ever fire them.
    """

    def __init__(self, store: SnipeStore, scheduler: SnipeScheduler | None = None) -> None:
        self.store = store
        self.scheduler = scheduler

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def create_snipe(self, request: SnipeRequest) -> Snipe:
        """Persist a pending snipe and arm its timer.

        Rejects a release time that is not strictly in the future, so an
        already-expired request is never persisted.
        """
        if self.scheduler is None:
            raise SnipeStateError("No scheduler running; snipes can only be created by a server")
        if request.release_time <= self._now():
            raise SnipeValidationError(
                f"Release time must be in the future (got {request.release_time.isoformat()})"
            )
        snipe = self.store.create(request)
        self.scheduler.schedule(snipe)
        return snipe

    def list_snipes(self, status: SnipeStatus | str | None = None) -> list[Snipe]:
        if status is not None:
            try:
                status = SnipeStatus(status)
            except ValueError as e:
                raise SnipeValidationError(f"Unknown status: {status}") from e
        return self.store.list_snipes(status)

    def get_snipe(self, snipe_id: str) -> Snipe:
        self._check_id(snipe_id)
        snipe = self.store.get(snipe_id)
        if snipe is None:
            raise SnipeNotFoundError(f"Snipe not found: {snipe_id}")
        return snipe

    def cancel_snipe(self, snipe_id: str) -> Snipe:
        """Cancel a pending snipe: disarm, record cancelled, then delete the row."""
        snipe = self.get_snipe(snipe_id)
        if not snipe.status.can_transition_to(SnipeStatus.CANCELLED):
            raise SnipeStateError(f"Cannot cancel snipe with status: {snipe.status.value}")

        if self.scheduler is not None:
            self.scheduler.cancel(snipe_id)
        # The timer may have fired between the read and here
        if not self.store.update_status(
            snipe_id, SnipeStatus.CANCELLED, CANCELLED_RESULT, expected=SnipeStatus.PENDING
        ):
            current = self.store.get(snipe_id)
            if current is None:
                raise SnipeNotFoundError(f"Snipe not found: {snipe_id}")
            raise SnipeStateError(f"Cannot cancel snipe with status: {current.status.value}")
        self.store.delete(snipe_id)
        logger.info("Snipe %s cancelled", snipe_id)
        return snipe.model_copy(
            update={"status": SnipeStatus.CANCELLED, "result": CANCELLED_RESULT}
        )

    def is_scheduled(self, snipe_id: str) -> bool:
        return self.scheduler is not None and self.scheduler.is_scheduled(snipe_id)

    @staticmethod
    def _check_id(snipe_id: str) -> None:
        if not isinstance(snipe_id, str) or not SNIPE_ID_RE.match(snipe_id):
            raise SnipeValidationError(f"Malformed snipe id: {snipe_id!r}")
