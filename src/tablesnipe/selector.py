"""Slot selection algorithm with priority-ordered time preferences."""

from __future__ import annotations

import logging
import re
from datetime import datetime, time

from tablesnipe.models import Slot

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MINUTES = 15
MINUTES_PER_DAY = 24 * 60

_TIME_12H_RE = re.compile(r"^(\d{1,2})(?::?(\d{2}))?\s*([AP])\.?M\.?$")
_TIME_24H_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time_of_day(value: str) -> time | None:
    """Parse a time-of-day string, returning None when it can't be read.

    Accepts "7:00 PM", "7PM", "7:30pm", "19:00", "19:00:00" and full
    timestamps such as "2026-03-26 19:00:00" or ISO 8601.
    """
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    if not normalized:
        return None

    m = _TIME_12H_RE.match(normalized)
    if m:
        hours = int(m.group(1))
        minutes = int(m.group(2) or 0)
        if not 1 <= hours <= 12 or minutes > 59:
            return None
        if m.group(3) == "P" and hours != 12:
            hours += 12
        elif m.group(3) == "A" and hours == 12:
            hours = 0
        return time(hours, minutes)

    m = _TIME_24H_RE.match(normalized)
    if m:
        hours, minutes = int(m.group(1)), int(m.group(2))
        seconds = int(m.group(3) or 0)
        if hours > 23 or minutes > 59 or seconds > 59:
            return None
        return time(hours, minutes, seconds)

    try:
        return datetime.fromisoformat(value.strip()).time()
    except ValueError:
        return None


def _minutes_of_day(t: time) -> float:
    return t.hour * 60 + t.minute + t.second / 60


def _distance(a: time, b: time) -> float:
    """Minutes between two times of day, the short way round midnight."""
    diff = abs(_minutes_of_day(a) - _minutes_of_day(b))
    return min(diff, MINUTES_PER_DAY - diff)


class SlotSelector:
    """
    Selects the best slot from available options based on priority preferences.

    Iterates through the priority-ordered preferred times. For each one,
    collects slots within ±tolerance minutes (inclusive). The first preference
    with any candidate wins; among its candidates the closest slot wins.
    Unparseable preferences or slot times never match.
    """

    def __init__(self, tolerance_minutes: int = DEFAULT_TOLERANCE_MINUTES) -> None:
        self.tolerance_minutes = tolerance_minutes

    def select(self, slots: list[Slot], preferred_times: list[str]) -> Slot | None:
        """Return the best matching slot, or None if no match found."""
        if not slots or not preferred_times:
            return None

        parsed_slots: list[tuple[time, Slot]] = []
        for slot in slots:
            parsed = parse_time_of_day(slot.time)
            if parsed is None:
                logger.debug("Skipping slot with unparseable time %r", slot.time)
                continue
            parsed_slots.append((parsed, slot))

        for preferred in preferred_times:
            ideal = parse_time_of_day(preferred)
            if ideal is None:
                logger.debug("Skipping unparseable preferred time %r", preferred)
                continue

            candidates: list[tuple[float, Slot]] = []
            for slot_t, slot in parsed_slots:
                diff = _distance(slot_t, ideal)
                if diff <= self.tolerance_minutes:
                    candidates.append((diff, slot))

            if candidates:
                # Stable sort: equal distances keep platform order
                candidates.sort(key=lambda x: x[0])
                return candidates[0][1]

        return None

    def matches(self, slot_time: str, preferred_time: str) -> bool:
        """True if slot_time falls within the tolerance window of preferred_time."""
        slot_t = parse_time_of_day(slot_time)
        pref_t = parse_time_of_day(preferred_time)
        if slot_t is None or pref_t is None:
            return False
        return _distance(slot_t, pref_t) <= self.tolerance_minutes
