"""Slot allocator: earliest feasible start time for an action.

Probing starts at the preferred start (or business open) and walks forward in
fixed increments. A candidate ``[t, t + duration)`` is accepted when it sits
inside business hours, misses the lunch break, and intersects nothing in
either the global schedule or the specialist's own schedule for that date.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time

from renewal_sync.ledger import BookingLedger, from_minutes, overlaps, to_minutes

logger = logging.getLogger(__name__)

DEFAULT_SLOT_INCREMENT_MINUTES = 15


@dataclass(frozen=True)
class BusinessHours:
    """Working day boundaries and the daily lunch break."""

    start: time = time(9, 0)
    end: time = time(17, 0)
    lunch_start: time = time(12, 30)
    lunch_end: time = time(13, 30)
    slot_increment_minutes: int = DEFAULT_SLOT_INCREMENT_MINUTES

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("business hours start must be before end")
        if self.lunch_start >= self.lunch_end:
            raise ValueError("lunch break start must be before end")
        if self.slot_increment_minutes <= 0:
            raise ValueError("slot_increment_minutes must be positive")

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    @property
    def lunch_start_minutes(self) -> int:
        return to_minutes(self.lunch_start)

    @property
    def lunch_end_minutes(self) -> int:
        return to_minutes(self.lunch_end)


class SlotAllocator:
    """Finds free slots against a :class:`BookingLedger`."""

    def __init__(self, ledger: BookingLedger, hours: BusinessHours | None = None) -> None:
        self.ledger = ledger
        self.hours = hours or BusinessHours()

    def is_slot_available(
        self,
        specialist: str,
        day: date,
        start: time,
        duration_minutes: int,
    ) -> bool:
        """Check a single candidate against every allocation constraint."""
        return self._is_free(specialist, day, to_minutes(start), duration_minutes)

    def find_slot(
        self,
        specialist: str,
        day: date,
        duration_minutes: int,
        preferred_start: time | None = None,
    ) -> time | None:
        """Return the first feasible start time, or ``None`` if the day is full."""
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

        hours = self.hours
        candidate = (
            to_minutes(preferred_start) if preferred_start is not None else hours.start_minutes
        )
        while candidate < hours.end_minutes:
            if self._is_free(specialist, day, candidate, duration_minutes):
                return from_minutes(candidate)
            candidate += hours.slot_increment_minutes

        logger.debug(
            "No %d-minute slot for %s on %s (searched from %s)",
            duration_minutes,
            specialist,
            day.isoformat(),
            preferred_start or hours.start,
        )
        return None

    def _is_free(self, specialist: str, day: date, start: int, duration_minutes: int) -> bool:
        hours = self.hours
        end = start + duration_minutes

        if start < hours.start_minutes or end > hours.end_minutes:
            return False

        if overlaps(start, end, hours.lunch_start_minutes, hours.lunch_end_minutes):
            return False

        # Global schedule: no two specialists share a slot.
        if self.ledger.conflicts(day, start, end):
            return False

        return not self.ledger.conflicts(day, start, end, specialist)
