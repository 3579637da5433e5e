"""FastAPI dependencies for the Renewal Sync API.

Configuration is loaded once at startup and stored module-level. The
provider factory is a separate dependency so tests can swap in a
:class:`~renewal_sync.calendar.RecordingProvider` via
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from renewal_sync.calendar import CalendarProvider
from renewal_sync.config import RenewalSyncConfig, load_config
from renewal_sync.sync import build_provider

logger = logging.getLogger(__name__)

_config: RenewalSyncConfig | None = None


def init_dependencies(config_path: Path | str | None = None) -> RenewalSyncConfig:
    """Load configuration and cache it for request handlers."""
    global _config
    _config = load_config(config_path)
    logger.info("Loaded renewal sync config (provider=%s)", _config.calendar.provider)
    return _config


def shutdown_dependencies() -> None:
    global _config
    _config = None


def get_config() -> RenewalSyncConfig:
    """Return the active configuration, loading defaults on first use.

    Usage in a router::

        @router.get("/status")
        async def status(config: RenewalSyncConfig = Depends(get_config)):
            ...
    """
    if _config is None:
        return init_dependencies()
    return _config


def get_provider_factory() -> Callable[[RenewalSyncConfig], CalendarProvider]:
    """Return the callable used to build the event sink for live runs."""
    return build_provider
