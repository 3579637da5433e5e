"""Pydantic request/response models for the Renewal Sync API."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Base response wrappers
# ---------------------------------------------------------------------------


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Generic API response wrapper.

    All successful responses follow ``{"data": T, "meta": {...}}``.
    """

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Calendar sync
# ---------------------------------------------------------------------------


class SyncRequest(BaseModel):
    """Body for ``POST /api/calendar-sync/renewals``."""

    dry_run: bool = True
    max_records: int | None = Field(default=None, ge=1)
    feed_path: str | None = None
    today: date | None = None


class SyncResult(BaseModel):
    """Run report as returned to API callers."""

    mode: str
    total: int
    processed: int
    events_created: int
    skipped: int
    skipped_by_reason: dict[str, int]
    no_slot: int
    external_failures: int
    errors: int
    specialists: list[str]
    density: dict[str, int]
    schedules: list[str]
    bookings: list[dict[str, Any]]
