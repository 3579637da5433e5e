"""Tests for renewal_sync.calendar: payload models and event sinks."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import httpx
import pytest
from pydantic import ValidationError

from renewal_sync.calendar import (
    GOOGLE_OAUTH_TOKEN_URL,
    RATE_LIMIT_MAX_RETRIES,
    CalendarCredentialError,
    CalendarError,
    CalendarEventCreate,
    CalendarReminder,
    CalendarRequestError,
    CalendarTokenRefreshError,
    GoogleCalendarProvider,
    GoogleOAuthCredentials,
    RecordingProvider,
    build_google_event_body,
    describe_google_error,
)

pytestmark = pytest.mark.unit

TZ = ZoneInfo("Asia/Kolkata")
CREDENTIALS = GoogleOAuthCredentials(client_id="cid", client_secret="secret", refresh_token="rt")


def _payload(**overrides) -> CalendarEventCreate:
    start = datetime(2025, 6, 3, 9, 30, tzinfo=TZ)
    fields = {
        "title": "URGENT EXPIRY: Acme (5 days left)",
        "description": "PURPOSE: Policy expires in 5 days",
        "start_at": start,
        "end_at": start + timedelta(minutes=30),
        "timezone": "Asia/Kolkata",
        "color_id": "11",
    }
    fields.update(overrides)
    return CalendarEventCreate(**fields)


class FakeGoogle:
    """httpx.MockTransport handler emulating the token and events endpoints."""

    def __init__(self, event_responses: list[httpx.Response] | None = None) -> None:
        self.event_responses = list(event_responses or [])
        self.token_requests = 0
        self.event_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_OAUTH_TOKEN_URL:
            self.token_requests += 1
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600}
            )
        self.event_requests.append(request)
        if self.event_responses:
            return self.event_responses.pop(0)
        return httpx.Response(200, json={"id": "evt-1", "htmlLink": "https://calendar/evt-1"})

    def provider(self) -> GoogleCalendarProvider:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return GoogleCalendarProvider(CREDENTIALS, client, base_backoff_seconds=0.01)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestCalendarEventCreate:
    def test_valid(self):
        payload = _payload()
        assert payload.reminders == [
            CalendarReminder(method="popup", minutes=30),
            CalendarReminder(method="email", minutes=60),
        ]

    def test_naive_datetimes_rejected(self):
        with pytest.raises(ValidationError, match="timezone-aware"):
            _payload(start_at=datetime(2025, 6, 3, 9, 30), end_at=datetime(2025, 6, 3, 10, 0))

    def test_end_before_start_rejected(self):
        start = datetime(2025, 6, 3, 9, 30, tzinfo=TZ)
        with pytest.raises(ValidationError, match="end_at must be after start_at"):
            _payload(start_at=start, end_at=start)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            _payload(timezone="Mars/Olympus")

    def test_reminder_minutes_non_negative(self):
        with pytest.raises(ValidationError):
            CalendarReminder(method="popup", minutes=-1)


class TestBuildGoogleEventBody:
    def test_body(self):
        body = build_google_event_body(_payload())
        assert body["summary"] == "URGENT EXPIRY: Acme (5 days left)"
        assert body["start"] == {
            "dateTime": "2025-06-03T09:30:00+05:30",
            "timeZone": "Asia/Kolkata",
        }
        assert body["end"]["dateTime"] == "2025-06-03T10:00:00+05:30"
        assert body["colorId"] == "11"
        assert body["reminders"] == {
            "useDefault": False,
            "overrides": [
                {"method": "popup", "minutes": 30},
                {"method": "email", "minutes": 60},
            ],
        }

    def test_color_omitted_when_unset(self):
        assert "colorId" not in build_google_event_body(_payload(color_id=None))


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestGoogleOAuthCredentials:
    def test_top_level(self):
        creds = GoogleOAuthCredentials.from_json(
            json.dumps({"client_id": "a", "client_secret": "b", "refresh_token": "c"})
        )
        assert (creds.client_id, creds.client_secret, creds.refresh_token) == ("a", "b", "c")

    @pytest.mark.parametrize("nested_key", ["installed", "web"])
    def test_nested(self, nested_key):
        raw = json.dumps(
            {nested_key: {"client_id": "a", "client_secret": "b"}, "refresh_token": "c"}
        )
        assert GoogleOAuthCredentials.from_json(raw).client_secret == "b"

    def test_invalid_json(self):
        with pytest.raises(CalendarCredentialError, match="valid JSON"):
            GoogleOAuthCredentials.from_json("{nope")

    def test_not_an_object(self):
        with pytest.raises(CalendarCredentialError, match="JSON object"):
            GoogleOAuthCredentials.from_json("[]")

    def test_missing_fields(self):
        with pytest.raises(CalendarCredentialError, match="client_secret, refresh_token"):
            GoogleOAuthCredentials.from_json(json.dumps({"client_id": "a"}))

    def test_blank_fields(self):
        raw = json.dumps({"client_id": " ", "client_secret": "b", "refresh_token": "c"})
        with pytest.raises(CalendarCredentialError, match="client_id"):
            GoogleOAuthCredentials.from_json(raw)

    def test_non_string_field(self):
        raw = json.dumps({"client_id": 42, "client_secret": "b", "refresh_token": "c"})
        with pytest.raises(CalendarCredentialError, match="client_id"):
            GoogleOAuthCredentials.from_json(raw)

    def test_client_secret_file_extras_ignored_and_values_stripped(self):
        raw = json.dumps(
            {
                "installed": {
                    "client_id": " a ",
                    "client_secret": "b",
                    "token_uri": "https://oauth2.googleapis.com/token",
                },
                "refresh_token": "c\n",
            }
        )
        creds = GoogleOAuthCredentials.from_json(raw)
        assert (creds.client_id, creds.refresh_token) == ("a", "c")


class TestDescribeGoogleError:
    def test_error_object(self):
        response = httpx.Response(403, json={"error": {"message": "Forbidden\n  access"}})
        assert describe_google_error(response) == "Forbidden access"

    def test_error_string(self):
        response = httpx.Response(400, json={"error": "invalid_grant"})
        assert describe_google_error(response) == "invalid_grant"

    def test_plain_text_truncated(self):
        response = httpx.Response(500, text="x" * 500)
        assert len(describe_google_error(response)) == 200

    def test_empty(self):
        assert describe_google_error(httpx.Response(500)) == "HTTP 500 with an empty body"

    def test_non_object_json_uses_body_text(self):
        response = httpx.Response(502, text='["bad", "gateway"]')
        assert describe_google_error(response) == '["bad", "gateway"]'


# ---------------------------------------------------------------------------
# RecordingProvider
# ---------------------------------------------------------------------------


class TestRecordingProvider:
    async def test_records_events(self):
        provider = RecordingProvider()
        event = await provider.create_event(calendar_id="team", payload=_payload())
        assert provider.name == "recording"
        assert event.event_id.startswith("rec-")
        assert provider.created == [("team", _payload())]

    async def test_fail_titles(self):
        provider = RecordingProvider(fail_titles={"boom"})
        with pytest.raises(CalendarError):
            await provider.create_event(calendar_id="team", payload=_payload(title="boom"))
        assert provider.created == []


# ---------------------------------------------------------------------------
# GoogleCalendarProvider
# ---------------------------------------------------------------------------


class TestGoogleCalendarProvider:
    async def test_create_event(self):
        fake = FakeGoogle()
        provider = fake.provider()

        event = await provider.create_event(calendar_id="team@example.com", payload=_payload())

        assert event.event_id == "evt-1"
        assert event.html_link == "https://calendar/evt-1"
        assert event.title == "URGENT EXPIRY: Acme (5 days left)"
        [request] = fake.event_requests
        assert request.method == "POST"
        assert request.url.raw_path.endswith(b"/calendars/team%40example.com/events")
        assert request.headers["Authorization"] == "Bearer token-1"
        assert json.loads(request.content)["summary"] == "URGENT EXPIRY: Acme (5 days left)"

    async def test_access_token_is_cached(self):
        fake = FakeGoogle()
        provider = fake.provider()
        await provider.create_event(calendar_id="primary", payload=_payload())
        await provider.create_event(calendar_id="primary", payload=_payload())
        assert fake.token_requests == 1

    async def test_expired_access_token_is_refreshed(self):
        fake = FakeGoogle()
        provider = fake.provider()
        await provider.create_event(calendar_id="primary", payload=_payload())
        provider._token_expires_at = datetime.now(TZ) - timedelta(seconds=1)

        await provider.create_event(calendar_id="primary", payload=_payload())

        assert fake.token_requests == 2
        assert fake.event_requests[-1].headers["Authorization"] == "Bearer token-2"

    async def test_401_forces_one_refresh(self):
        fake = FakeGoogle([httpx.Response(401, json={"error": {"message": "expired"}})])
        provider = fake.provider()

        event = await provider.create_event(calendar_id="primary", payload=_payload())

        assert event.event_id == "evt-1"
        assert fake.token_requests == 2
        assert fake.event_requests[-1].headers["Authorization"] == "Bearer token-2"

    async def test_rate_limit_retries_with_backoff(self):
        fake = FakeGoogle([httpx.Response(503), httpx.Response(429)])
        provider = fake.provider()

        with patch("renewal_sync.calendar.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            event = await provider.create_event(calendar_id="primary", payload=_payload())

        assert event.event_id == "evt-1"
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.01, 0.02]

    async def test_retry_after_header_honoured(self):
        fake = FakeGoogle([httpx.Response(429, headers={"Retry-After": "7"})])
        provider = fake.provider()

        with patch("renewal_sync.calendar.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await provider.create_event(calendar_id="primary", payload=_payload())

        mock_sleep.assert_awaited_once_with(7.0)

    async def test_rate_limit_exhausted(self):
        fake = FakeGoogle([httpx.Response(429)] * (RATE_LIMIT_MAX_RETRIES + 1))
        provider = fake.provider()

        with patch("renewal_sync.calendar.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(CalendarRequestError) as exc_info:
                await provider.create_event(calendar_id="primary", payload=_payload())

        assert exc_info.value.status_code == 429
        assert len(fake.event_requests) == RATE_LIMIT_MAX_RETRIES + 1

    async def test_error_response(self):
        fake = FakeGoogle([httpx.Response(403, json={"error": {"message": "Forbidden"}})])
        provider = fake.provider()
        with pytest.raises(CalendarRequestError, match="Forbidden") as exc_info:
            await provider.create_event(calendar_id="primary", payload=_payload())
        assert exc_info.value.status_code == 403

    async def test_missing_event_id(self):
        fake = FakeGoogle([httpx.Response(200, json={"summary": "x"})])
        provider = fake.provider()
        with pytest.raises(CalendarError, match="missing an event id"):
            await provider.create_event(calendar_id="primary", payload=_payload())

    async def test_token_refresh_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GoogleCalendarProvider(CREDENTIALS, client)
        with pytest.raises(CalendarTokenRefreshError, match="invalid_grant"):
            await provider.create_event(calendar_id="primary", payload=_payload())

    async def test_transport_error_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == GOOGLE_OAUTH_TOKEN_URL:
                return httpx.Response(200, json={"access_token": "t"})
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GoogleCalendarProvider(CREDENTIALS, client)
        with pytest.raises(CalendarError, match="connection refused"):
            await provider.create_event(calendar_id="primary", payload=_payload())

    async def test_shutdown_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(FakeGoogle()))
        provider = GoogleCalendarProvider(CREDENTIALS, client)
        await provider.shutdown()
        assert not client.is_closed
        await client.aclose()

    async def test_shutdown_closes_owned_client(self):
        provider = GoogleCalendarProvider(CREDENTIALS)
        await provider.shutdown()
        assert provider._http_client.is_closed
