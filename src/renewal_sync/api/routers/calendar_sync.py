"""Calendar sync endpoints: trigger runs and manage the renewal feed."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from fastapi import APIRouter, Depends, Request

from renewal_sync.api.deps import get_config, get_provider_factory
from renewal_sync.api.models import ApiMeta, ApiResponse, SyncRequest, SyncResult
from renewal_sync.calendar import CalendarProvider
from renewal_sync.config import RenewalSyncConfig
from renewal_sync.records import FeedStatus, feed_status, parse_feed, read_feed
from renewal_sync.sync import RenewalSync

router = APIRouter(prefix="/api/calendar-sync", tags=["calendar-sync"])
logger = logging.getLogger(__name__)


@router.post("/renewals", response_model=ApiResponse[SyncResult])
async def sync_renewals(
    body: SyncRequest,
    config: RenewalSyncConfig = Depends(get_config),
    provider_factory: Callable[[RenewalSyncConfig], CalendarProvider] = Depends(
        get_provider_factory
    ),
) -> ApiResponse[SyncResult]:
    """Schedule renewal actions from the feed, optionally creating events."""
    feed_path = Path(body.feed_path or config.feed_path)
    records = read_feed(feed_path)

    provider = None if body.dry_run else provider_factory(config)
    driver = RenewalSync.from_config(config, provider)
    try:
        report = await driver.run(
            records,
            today=body.today,
            dry_run=body.dry_run,
            max_records=body.max_records,
        )
    finally:
        if provider is not None:
            await provider.shutdown()

    return ApiResponse[SyncResult](
        data=SyncResult(**report.to_dict()),
        meta=ApiMeta(feed_path=str(feed_path)),
    )


@router.get("/status", response_model=ApiResponse[FeedStatus])
async def get_feed_status(
    config: RenewalSyncConfig = Depends(get_config),
) -> ApiResponse[FeedStatus]:
    """Report whether the configured feed is present and ready to sync."""
    return ApiResponse[FeedStatus](data=feed_status(config.feed_path))


@router.post("/upload", response_model=ApiResponse[FeedStatus])
async def upload_feed(
    request: Request,
    config: RenewalSyncConfig = Depends(get_config),
) -> ApiResponse[FeedStatus]:
    """Replace the configured feed with the CSV/TSV request body."""
    raw = await request.body()
    text = raw.decode("utf-8-sig", errors="replace")
    if not text.strip():
        raise ValueError("Uploaded feed is empty")

    records = parse_feed(text)
    path = Path(config.feed_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("Stored uploaded feed at %s (%d record(s))", path, len(records))

    return ApiResponse[FeedStatus](
        data=feed_status(path),
        meta=ApiMeta(parsed_records=len(records)),
    )
