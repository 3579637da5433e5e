"""Booking ledger: in-memory bookkeeping for one sync run.

All bookings for a date live in a single list sorted by start time and
tagged with the owning specialist. That list is the global schedule; a
specialist's own schedule is a filtered view of it, so the two can never
drift apart. A separate client/date index enforces at most one action per
client per day.
"""

from __future__ import annotations

import bisect
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time

MINUTES_PER_DAY = 24 * 60


class BookingConflictError(ValueError):
    """Raised when a booking would overlap an existing interval."""


def to_minutes(value: time) -> int:
    """Minutes since midnight for a time-of-day value."""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Time-of-day for *minutes* since midnight (must fall within the day)."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside a single day")
    return time(minutes // 60, minutes % 60)


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    """Half-open interval intersection test on minute offsets."""
    return start < other_end and end > other_start


@dataclass(frozen=True, order=True)
class BookedInterval:
    """A committed ``[start, end)`` slot on one calendar date."""

    start_minutes: int
    end_minutes: int
    day: date = field(compare=False)
    title: str = field(compare=False)
    specialist: str = field(compare=False)
    client: str | None = field(default=None, compare=False)

    @property
    def start(self) -> time:
        return from_minutes(self.start_minutes)

    @property
    def end(self) -> time:
        return from_minutes(self.end_minutes)

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def overlaps(self, start_minutes: int, end_minutes: int) -> bool:
        return overlaps(start_minutes, end_minutes, self.start_minutes, self.end_minutes)


class BookingLedger:
    """Mutable schedule state owned by a single sync run."""

    def __init__(self) -> None:
        self._by_date: dict[date, list[BookedInterval]] = defaultdict(list)
        self._client_days: dict[str, set[date]] = defaultdict(set)

    def __len__(self) -> int:
        return sum(len(intervals) for intervals in self._by_date.values())

    # -- queries -----------------------------------------------------------

    def intervals(self, day: date, specialist: str | None = None) -> list[BookedInterval]:
        """Bookings on *day*, sorted by start.

        With ``specialist`` unset this is the global schedule; otherwise only
        that specialist's bookings are returned.
        """
        booked = self._by_date.get(day, [])
        if specialist is None:
            return list(booked)
        return [interval for interval in booked if interval.specialist == specialist]

    def dates(self) -> list[date]:
        """Dates with at least one booking, ascending."""
        return sorted(day for day, booked in self._by_date.items() if booked)

    def conflicts(
        self,
        day: date,
        start_minutes: int,
        end_minutes: int,
        specialist: str | None = None,
    ) -> list[BookedInterval]:
        """Existing bookings that intersect ``[start_minutes, end_minutes)``."""
        return [
            interval
            for interval in self.intervals(day, specialist)
            if interval.overlaps(start_minutes, end_minutes)
        ]

    def has_client_acted_on(self, client: str, day: date) -> bool:
        return day in self._client_days.get(client, ())

    def density(self) -> dict[date, int]:
        """Number of bookings per date, ascending by date."""
        return {day: len(self._by_date[day]) for day in self.dates()}

    def summary_lines(self) -> list[str]:
        """Human-readable per-date booking density."""
        lines: list[str] = []
        for day in self.dates():
            booked = self._by_date[day]
            lines.append(f"{day.isoformat()}: {len(booked)} total events")
            times = ", ".join(
                f"{interval.start:%H:%M} ({interval.specialist})" for interval in booked
            )
            lines.append(f"   Times: {times}")
        return lines

    # -- mutations ---------------------------------------------------------

    def book(
        self,
        specialist: str,
        day: date,
        start: time,
        duration_minutes: int,
        title: str,
        client: str | None = None,
    ) -> BookedInterval:
        """Commit ``[start, start + duration)`` for *specialist* on *day*."""
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

        start_minutes = to_minutes(start)
        end_minutes = start_minutes + duration_minutes
        if end_minutes > MINUTES_PER_DAY - 1:
            raise ValueError("booking must end on the same day it starts")

        clashes = self.conflicts(day, start_minutes, end_minutes)
        if clashes:
            clash = clashes[0]
            raise BookingConflictError(
                f"{start:%H:%M}+{duration_minutes}m on {day.isoformat()} overlaps "
                f"{clash.title!r} ({clash.start:%H:%M}-{clash.end:%H:%M}, {clash.specialist})"
            )

        interval = BookedInterval(
            start_minutes=start_minutes,
            end_minutes=end_minutes,
            day=day,
            title=title,
            specialist=specialist,
            client=client,
        )
        bisect.insort(self._by_date[day], interval)
        return interval

    def mark_client_acted_on(self, client: str, day: date) -> None:
        self._client_days[client].add(day)
