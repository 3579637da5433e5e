"""Sync driver: turns renewal records into booked calendar actions.

Each record walks a fixed sequence: parse expiry, compute the target date,
check the client/day gate, derive the action, find a slot, book it, and (on
live runs) create the calendar event. Every early exit is counted; nothing is
retried within a run and no per-record failure aborts the run.

Slot search and booking for a record happen without yielding to the event
loop, so the ledger is never observed half-updated. Event creation happens
after the booking is committed; if it fails the booking stays in the ledger
and the record is counted as an external failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from opentelemetry import trace
from structlog.contextvars import bound_contextvars

from renewal_sync.allocator import BusinessHours, SlotAllocator
from renewal_sync.calendar import (
    DEFAULT_REMINDERS,
    CalendarCredentialError,
    CalendarEventCreate,
    CalendarProvider,
    CalendarReminder,
    GoogleCalendarProvider,
    GoogleOAuthCredentials,
    RecordingProvider,
)
from renewal_sync.config import (
    DEFAULT_SPECIALIST,
    DEFAULT_TIMEZONE,
    ConfigError,
    RenewalSyncConfig,
)
from renewal_sync.ledger import BookingLedger
from renewal_sync.policy import Action, derive_action, target_date_for
from renewal_sync.records import RenewalRecord

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    """Terminal state of one record within a run."""

    BOOKED = "booked"
    SKIPPED = "skipped"
    NO_SLOT = "no_slot"


class SkipReason(StrEnum):
    NO_EXPIRY = "no_expiry"
    CLIENT_ALREADY_BOOKED = "client_already_booked"
    NO_ACTION = "no_action"


@dataclass(frozen=True)
class ScheduledAction:
    """An action paired with the slot it was booked into."""

    action: Action
    start: time
    end: time

    def start_at(self, tz: ZoneInfo) -> datetime:
        return datetime.combine(self.action.target_date, self.start, tzinfo=tz)

    def end_at(self, tz: ZoneInfo) -> datetime:
        return self.start_at(tz) + timedelta(minutes=self.action.duration_minutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.action.target_date.isoformat(),
            "start": f"{self.start:%H:%M}",
            "end": f"{self.end:%H:%M}",
            "client": self.action.client,
            "specialist": self.action.specialist,
            "title": self.action.title,
            "kind": self.action.kind,
            "duration_minutes": self.action.duration_minutes,
            "urgent": self.action.urgent,
        }


@dataclass(frozen=True)
class RecordResult:
    """What happened to a single record."""

    outcome: Outcome
    client: str
    specialist: str
    reason: SkipReason | None = None
    target_date: date | None = None
    scheduled: ScheduledAction | None = None


@dataclass
class SyncReport:
    """Counters and bookings accumulated over one run."""

    dry_run: bool
    total: int = 0
    processed: int = 0
    events_created: int = 0
    skipped: dict[str, int] = field(default_factory=lambda: {r.value: 0 for r in SkipReason})
    no_slot: int = 0
    external_failures: int = 0
    specialists: list[str] = field(default_factory=list)
    bookings: list[ScheduledAction] = field(default_factory=list)
    density: dict[date, int] = field(default_factory=dict)
    summary_lines: list[str] = field(default_factory=list)

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    @property
    def errors(self) -> int:
        return self.no_slot + self.external_failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": "preview" if self.dry_run else "live",
            "total": self.total,
            "processed": self.processed,
            "events_created": self.events_created,
            "skipped": self.skipped_total,
            "skipped_by_reason": dict(self.skipped),
            "no_slot": self.no_slot,
            "external_failures": self.external_failures,
            "errors": self.errors,
            "specialists": list(self.specialists),
            "density": {day.isoformat(): count for day, count in self.density.items()},
            "schedules": list(self.summary_lines),
            "bookings": [booking.to_dict() for booking in self.bookings],
        }


def group_by_specialist(
    records: Iterable[RenewalRecord],
    default_specialist: str = DEFAULT_SPECIALIST,
) -> dict[str, list[RenewalRecord]]:
    """Group records by assignee, preserving first-appearance and feed order."""
    groups: dict[str, list[RenewalRecord]] = {}
    for record in records:
        specialist = record.specialist.strip() or default_specialist
        groups.setdefault(specialist, []).append(record)
    return groups


class RenewalScheduler:
    """Ledger and allocator for one run; the synchronous scheduling core."""

    def __init__(self, hours: BusinessHours | None = None) -> None:
        self.ledger = BookingLedger()
        self.allocator = SlotAllocator(self.ledger, hours)

    def schedule(self, record: RenewalRecord, *, specialist: str, today: date) -> RecordResult:
        """Run one record through the scheduling states and commit on success."""
        client = record.client

        target_date = target_date_for(record, today)
        if target_date is None:
            logger.info(
                "Skipped %s - no valid expiry date (raw: %r)", client, record.expiry_raw
            )
            return RecordResult(Outcome.SKIPPED, client, specialist, SkipReason.NO_EXPIRY)

        if self.ledger.has_client_acted_on(client, target_date):
            logger.info("Skipped %s - already has event on %s", client, target_date.isoformat())
            return RecordResult(
                Outcome.SKIPPED,
                client,
                specialist,
                SkipReason.CLIENT_ALREADY_BOOKED,
                target_date=target_date,
            )

        action = derive_action(record, target_date, today=today, specialist=specialist)
        if action is None:
            logger.info("Skipped %s - no action for status %r", client, record.status)
            return RecordResult(
                Outcome.SKIPPED, client, specialist, SkipReason.NO_ACTION, target_date=target_date
            )

        start = self.allocator.find_slot(
            specialist,
            target_date,
            action.duration_minutes,
            action.preferred_start,
        )
        if start is None:
            logger.warning("No available slot for %s on %s", client, target_date.isoformat())
            return RecordResult(Outcome.NO_SLOT, client, specialist, target_date=target_date)

        interval = self.ledger.book(
            specialist,
            target_date,
            start,
            action.duration_minutes,
            action.title,
            client=client,
        )
        self.ledger.mark_client_acted_on(client, target_date)
        logger.info("Scheduled %s on %s at %s", client, target_date.isoformat(), f"{start:%H:%M}")
        return RecordResult(
            Outcome.BOOKED,
            client,
            specialist,
            target_date=target_date,
            scheduled=ScheduledAction(action=action, start=interval.start, end=interval.end),
        )


class RenewalSync:
    """Drives a full sync run and forwards bookings to a calendar provider."""

    def __init__(
        self,
        *,
        hours: BusinessHours | None = None,
        provider: CalendarProvider | None = None,
        timezone: str = DEFAULT_TIMEZONE,
        calendar_id: str = "primary",
        reminders: Sequence[CalendarReminder] = DEFAULT_REMINDERS,
        event_delay_seconds: float = 0.0,
        default_specialist: str = DEFAULT_SPECIALIST,
    ) -> None:
        self.hours = hours or BusinessHours()
        self.provider = provider
        self.timezone = timezone
        self.calendar_id = calendar_id
        self.reminders = list(reminders)
        self.event_delay_seconds = event_delay_seconds
        self.default_specialist = default_specialist
        self._tz = ZoneInfo(timezone)

    @classmethod
    def from_config(
        cls,
        config: RenewalSyncConfig,
        provider: CalendarProvider | None = None,
    ) -> RenewalSync:
        return cls(
            hours=config.hours,
            provider=provider,
            timezone=config.timezone,
            calendar_id=config.calendar.calendar_id,
            reminders=config.calendar.reminders,
            event_delay_seconds=config.event_delay_seconds,
            default_specialist=config.default_specialist,
        )

    def build_event(self, scheduled: ScheduledAction) -> CalendarEventCreate:
        return CalendarEventCreate(
            title=scheduled.action.title,
            description=scheduled.action.description,
            start_at=scheduled.start_at(self._tz),
            end_at=scheduled.end_at(self._tz),
            timezone=self.timezone,
            color_id=scheduled.action.color_id,
            reminders=self.reminders,
        )

    async def run(
        self,
        records: Sequence[RenewalRecord],
        *,
        today: date | None = None,
        dry_run: bool = False,
        max_records: int | None = None,
    ) -> SyncReport:
        """Schedule *records* against a fresh ledger and report the outcome."""
        if not dry_run and self.provider is None:
            raise ValueError("a calendar provider is required unless dry_run is set")
        if max_records is not None and max_records < 0:
            raise ValueError("max_records must not be negative")

        today = today or datetime.now(self._tz).date()
        selected = list(records[:max_records] if max_records is not None else records)
        scheduler = RenewalScheduler(self.hours)
        report = SyncReport(dry_run=dry_run, total=len(selected))

        mode = "preview" if dry_run else "live"
        tracer = trace.get_tracer("renewal_sync")
        with (
            tracer.start_as_current_span("renewal_sync.run") as span,
            bound_contextvars(mode=mode, run_date=today.isoformat()),
        ):
            span.set_attribute("records", len(selected))
            span.set_attribute("dry_run", dry_run)

            groups = group_by_specialist(selected, self.default_specialist)
            report.specialists = list(groups)
            logger.info(
                "Starting %s sync of %d record(s) across %d specialist(s)",
                mode,
                len(selected),
                len(groups),
            )

            for specialist, specialist_records in groups.items():
                with bound_contextvars(specialist=specialist):
                    logger.info(
                        "Processing %d record(s) for: %s", len(specialist_records), specialist
                    )
                    for record in specialist_records:
                        result = scheduler.schedule(record, specialist=specialist, today=today)
                        await self._apply(result, report, dry_run=dry_run)

            report.density = scheduler.ledger.density()
            report.summary_lines = scheduler.ledger.summary_lines()

            span.set_attribute("processed", report.processed)
            span.set_attribute("events_created", report.events_created)
            span.set_attribute("skipped", report.skipped_total)
            span.set_attribute("no_slot", report.no_slot)
            span.set_attribute("external_failures", report.external_failures)

        logger.info(
            "Sync completed: processed=%d created=%d skipped=%d errors=%d total=%d",
            report.processed,
            report.events_created,
            report.skipped_total,
            report.errors,
            report.total,
        )
        return report

    async def _apply(self, result: RecordResult, report: SyncReport, *, dry_run: bool) -> None:
        if result.outcome is Outcome.SKIPPED:
            assert result.reason is not None
            report.skipped[result.reason.value] += 1
            return
        if result.outcome is Outcome.NO_SLOT:
            report.no_slot += 1
            return

        assert result.scheduled is not None
        report.processed += 1
        report.bookings.append(result.scheduled)
        if dry_run:
            return

        assert self.provider is not None
        try:
            await self.provider.create_event(
                calendar_id=self.calendar_id,
                payload=self.build_event(result.scheduled),
            )
        except Exception:
            logger.exception("Failed to create event for %s", result.client)
            report.external_failures += 1
            return

        report.events_created += 1
        if self.event_delay_seconds > 0:
            await asyncio.sleep(self.event_delay_seconds)


def build_provider(config: RenewalSyncConfig) -> CalendarProvider:
    """Instantiate the event sink named in ``[calendar]``."""
    if config.calendar.provider == "recording":
        return RecordingProvider()

    if not config.calendar.credentials_json:
        raise ConfigError(
            "calendar.credentials_json is required when calendar.provider = 'google'"
        )
    try:
        credentials = GoogleOAuthCredentials.from_json(config.calendar.credentials_json)
    except CalendarCredentialError as exc:
        raise ConfigError(f"Invalid calendar.credentials_json: {exc}") from exc
    return GoogleCalendarProvider(credentials)
