"""Calendar event sinks for booked renewal actions.

This module defines:
- ``CalendarEventCreate`` / ``CalendarEvent``: provider-neutral payloads
- ``CalendarProvider``: the interface the sync driver forwards bookings to
- ``GoogleCalendarProvider``: Google Calendar v3 over refresh-token OAuth
- ``RecordingProvider``: in-memory sink for previews and tests
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Literal
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

# Retry on 429 Too Many Requests and 503 Service Unavailable with exponential backoff.
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0

DEFAULT_TOKEN_TTL_SECONDS = 3600


class CalendarError(RuntimeError):
    """Base error raised by calendar event sinks."""


class CalendarCredentialError(CalendarError):
    """Raised when Google credential JSON is missing or invalid."""


class CalendarTokenRefreshError(CalendarError):
    """Raised when refresh-token exchange fails."""


class CalendarRequestError(CalendarError):
    """Raised when a Google Calendar API request fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class CalendarReminder(BaseModel):
    """A reminder override attached to a created event."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["popup", "email"] = "popup"
    minutes: int = Field(ge=0)


DEFAULT_REMINDERS: tuple[CalendarReminder, ...] = (
    CalendarReminder(method="popup", minutes=30),
    CalendarReminder(method="email", minutes=60),
)


class CalendarEventCreate(BaseModel):
    """Event to create for a booked action."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    description: str = ""
    start_at: datetime
    end_at: datetime
    timezone: str
    color_id: str | None = None
    reminders: list[CalendarReminder] = Field(default_factory=lambda: list(DEFAULT_REMINDERS))

    @field_validator("timezone")
    @classmethod
    def _normalize_timezone(cls, value: str) -> str:
        normalized = value.strip()
        ensure_valid_timezone(normalized)
        return normalized

    @model_validator(mode="after")
    def _validate_window(self) -> CalendarEventCreate:
        if self.start_at.tzinfo is None or self.end_at.tzinfo is None:
            raise ValueError("start_at and end_at must be timezone-aware")
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class CalendarEvent(BaseModel):
    """Event as acknowledged by the provider."""

    event_id: str
    title: str
    start_at: datetime
    end_at: datetime
    timezone: str
    html_link: str | None = None


def ensure_valid_timezone(value: str) -> None:
    if not value:
        raise ValueError("timezone must be a non-empty string")
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {value!r}") from exc


def google_rfc3339(value: datetime) -> str:
    """Format an aware datetime the way the Calendar API expects."""
    return value.isoformat()


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------


class CalendarProvider(abc.ABC):
    """Destination for booked actions."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., ``google``)."""
        ...

    @abc.abstractmethod
    async def create_event(
        self,
        *,
        calendar_id: str,
        payload: CalendarEventCreate,
    ) -> CalendarEvent:
        """Create an event."""
        ...

    async def shutdown(self) -> None:
        """Release provider resources."""
        return None


class RecordingProvider(CalendarProvider):
    """Keeps created events in memory; optionally fails selected titles."""

    def __init__(self, *, fail_titles: set[str] | None = None) -> None:
        self.created: list[tuple[str, CalendarEventCreate]] = []
        self._fail_titles = fail_titles or set()

    @property
    def name(self) -> str:
        return "recording"

    async def create_event(
        self,
        *,
        calendar_id: str,
        payload: CalendarEventCreate,
    ) -> CalendarEvent:
        if payload.title in self._fail_titles:
            raise CalendarError(f"Simulated failure for: {payload.title}")
        self.created.append((calendar_id, payload))
        return CalendarEvent(
            event_id=f"rec-{uuid.uuid4().hex[:12]}",
            title=payload.title,
            start_at=payload.start_at,
            end_at=payload.end_at,
            timezone=payload.timezone,
        )


# ---------------------------------------------------------------------------
# Google Calendar
# ---------------------------------------------------------------------------


class GoogleOAuthCredentials(BaseModel):
    """Refresh-token credentials for the account that owns the calendar."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)

    @classmethod
    def from_json(cls, raw: str) -> GoogleOAuthCredentials:
        """Parse credential JSON, including Google's downloaded client-secret files.

        Those files nest ``client_id``/``client_secret`` under ``installed`` or
        ``web``; top-level keys win over nested ones.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CalendarCredentialError(f"Credential JSON is not valid JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise CalendarCredentialError("Credential JSON must be a JSON object")

        merged: dict[str, Any] = {}
        for section in (data.get("installed"), data.get("web"), data):
            if isinstance(section, dict):
                merged.update(section)
        try:
            return cls.model_validate(merged)
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise CalendarCredentialError(
                f"Credential JSON needs non-empty string field(s): {', '.join(fields)}"
            ) from exc


def describe_google_error(response: httpx.Response) -> str:
    """One-line reason for a failed Google response, capped at 200 chars."""
    try:
        error = response.json().get("error")
    except (ValueError, AttributeError):
        error = None
    if isinstance(error, dict):
        error = error.get("message")
    text = error if isinstance(error, str) and error.strip() else response.text
    return " ".join(text.split())[:200] or f"HTTP {response.status_code} with an empty body"


def build_google_event_body(payload: CalendarEventCreate) -> dict[str, Any]:
    """Translate a neutral payload into a Calendar v3 ``events.insert`` body."""
    body: dict[str, Any] = {
        "summary": payload.title,
        "description": payload.description,
        "start": {"dateTime": google_rfc3339(payload.start_at), "timeZone": payload.timezone},
        "end": {"dateTime": google_rfc3339(payload.end_at), "timeZone": payload.timezone},
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": reminder.method, "minutes": reminder.minutes}
                for reminder in payload.reminders
            ],
        },
    }
    if payload.color_id:
        body["colorId"] = payload.color_id
    return body


class GoogleCalendarProvider(CalendarProvider):
    """Inserts booked actions into a Google calendar.

    Holds one access token for the life of the provider and refreshes it a
    minute before expiry, or once when an insert comes back 401. Inserts that
    hit 429/503 are retried with doubling backoff (``Retry-After`` wins on 429).
    """

    def __init__(
        self,
        credentials: GoogleOAuthCredentials,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_backoff_seconds: float = RATE_LIMIT_BASE_BACKOFF_SECONDS,
    ) -> None:
        self._credentials = credentials
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self._base_backoff_seconds = base_backoff_seconds
        self._token: str | None = None
        self._token_expires_at = datetime.min.replace(tzinfo=UTC)
        self._token_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "google"

    async def create_event(
        self,
        *,
        calendar_id: str,
        payload: CalendarEventCreate,
    ) -> CalendarEvent:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}/events"
        body = build_google_event_body(payload)

        response = await self._insert(url, body)
        if response.status_code == 401:
            response = await self._insert(url, body, refresh=True)

        for attempt in range(1, RATE_LIMIT_MAX_RETRIES + 1):
            if response.status_code not in RATE_LIMIT_RETRY_STATUS_CODES:
                break
            delay = self._retry_delay(response, attempt)
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                delay,
                attempt,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(delay)
            response = await self._insert(url, body)

        if not response.is_success:
            raise CalendarRequestError(
                status_code=response.status_code, message=describe_google_error(response)
            )

        try:
            created = response.json()
        except ValueError as exc:
            raise CalendarError("Google Calendar returned invalid JSON for the event") from exc
        event_id = created.get("id") if isinstance(created, dict) else None
        if not isinstance(event_id, str) or not event_id:
            raise CalendarError("Google Calendar create response is missing an event id")

        logger.info("Created calendar event %s: %s", event_id, payload.title)
        return CalendarEvent(
            event_id=event_id,
            title=str(created.get("summary") or payload.title),
            start_at=payload.start_at,
            end_at=payload.end_at,
            timezone=payload.timezone,
            html_link=created.get("htmlLink"),
        )

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After", "")
        if response.status_code == 429 and retry_after.replace(".", "", 1).isdigit():
            return float(retry_after)
        return self._base_backoff_seconds * 2 ** (attempt - 1)

    async def _insert(
        self, url: str, body: dict[str, Any], *, refresh: bool = False
    ) -> httpx.Response:
        token = await self._access_token(refresh=refresh)
        try:
            return await self._http_client.post(
                url, json=body, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as exc:
            raise CalendarError(f"Google Calendar request failed: {exc}") from exc

    async def _access_token(self, *, refresh: bool) -> str:
        async with self._token_lock:
            if refresh or self._token is None or datetime.now(UTC) >= self._token_expires_at:
                await self._refresh_token()
            assert self._token is not None
            return self._token

    async def _refresh_token(self) -> None:
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._credentials.client_id,
                    "client_secret": self._credentials.client_secret,
                    "refresh_token": self._credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CalendarTokenRefreshError(f"Google OAuth token refresh failed: {exc}") from exc
        if not response.is_success:
            raise CalendarTokenRefreshError(
                f"Google OAuth token refresh failed ({response.status_code}): "
                f"{describe_google_error(response)}"
            )

        try:
            grant = response.json()
        except ValueError as exc:
            raise CalendarTokenRefreshError("Google OAuth token response is not JSON") from exc
        token = grant.get("access_token") if isinstance(grant, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise CalendarTokenRefreshError("Google OAuth token response has no access_token")

        expires_in = grant.get("expires_in")
        valid_ttl = isinstance(expires_in, int | float) and not isinstance(expires_in, bool)
        if not valid_ttl or expires_in <= 0:
            expires_in = DEFAULT_TOKEN_TTL_SECONDS
        self._token = token.strip()
        # Refresh a minute early, but never sooner than 30s out.
        self._token_expires_at = datetime.now(UTC) + timedelta(seconds=max(expires_in - 60, 30))
