"""Renewal Sync configuration loading and validation.

Reads ``renewal_sync.toml`` (from a file path or a config directory), resolves
``${VAR}`` environment references, and returns a validated
:class:`RenewalSyncConfig` dataclass. Every section is optional; an absent
file yields the defaults.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from typing import Any

from renewal_sync.allocator import DEFAULT_SLOT_INCREMENT_MINUTES, BusinessHours
from renewal_sync.calendar import DEFAULT_REMINDERS, CalendarReminder, ensure_valid_timezone

CONFIG_FILE_NAME = "renewal_sync.toml"
CONFIG_ENV_VAR = "RENEWAL_SYNC_CONFIG"

DEFAULT_TIMEZONE = "Asia/Kolkata"
DEFAULT_SPECIALIST = "Unassigned"
DEFAULT_FEED_PATH = "data/renewals.csv"
VALID_PROVIDERS = ("google", "recording")
VALID_LOG_FORMATS = ("text", "json")

# Matches ${VAR_NAME} with alphanumeric and underscore names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [sync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class CalendarConfig:
    """Event sink configuration from [calendar] section."""

    provider: str = "google"
    calendar_id: str = "primary"
    credentials_json: str | None = None
    reminders: list[CalendarReminder] = field(default_factory=lambda: list(DEFAULT_REMINDERS))


@dataclass
class RenewalSyncConfig:
    """Parsed and validated configuration."""

    timezone: str = DEFAULT_TIMEZONE
    default_specialist: str = DEFAULT_SPECIALIST
    event_delay_seconds: float = 0.5
    confirm_countdown_seconds: int = 5
    feed_path: str = DEFAULT_FEED_PATH
    hours: BusinessHours = field(default_factory=BusinessHours)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _require_table(raw: Any, path: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must be a TOML table")
    return raw


def parse_time(value: Any, path: str) -> time:
    """Parse an ``HH:MM`` string into a :class:`datetime.time`."""
    if not isinstance(value, str):
        raise ConfigError(f"{path} must be an 'HH:MM' string")
    match = _TIME_PATTERN.match(value.strip())
    if match is None:
        raise ConfigError(f"Invalid {path}: {value!r}. Expected 'HH:MM'.")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ConfigError(f"Invalid {path}: {value!r}. Hour must be 0-23 and minute 0-59.")
    return time(hour, minute)


def _parse_number(value: Any, path: str, *, kind: type) -> Any:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{path} must be a number")
    if value < 0:
        raise ConfigError(f"{path} must not be negative")
    if kind is int and not float(value).is_integer():
        raise ConfigError(f"{path} must be a whole number")
    return kind(value)


def _parse_hours(raw: Any) -> BusinessHours:
    section = _require_table(raw, "sync.hours")
    defaults = BusinessHours()
    times = {}
    for key, default in (
        ("business_start", defaults.start),
        ("business_end", defaults.end),
        ("lunch_start", defaults.lunch_start),
        ("lunch_end", defaults.lunch_end),
    ):
        times[key] = parse_time(section[key], f"sync.hours.{key}") if key in section else default

    increment = section.get("slot_increment_minutes", DEFAULT_SLOT_INCREMENT_MINUTES)
    increment = _parse_number(increment, "sync.hours.slot_increment_minutes", kind=int)

    try:
        return BusinessHours(
            start=times["business_start"],
            end=times["business_end"],
            lunch_start=times["lunch_start"],
            lunch_end=times["lunch_end"],
            slot_increment_minutes=increment,
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid sync.hours: {exc}") from exc


def _parse_logging(raw: Any) -> LoggingConfig:
    section = _require_table(raw, "sync.logging")
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in VALID_LOG_FORMATS:
        raise ConfigError(
            f"Invalid sync.logging.format: {fmt!r}. Expected one of: {', '.join(VALID_LOG_FORMATS)}"
        )
    log_root = section.get("log_root")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("sync.logging.log_root must be a string when set")
    return LoggingConfig(level=level, format=fmt, log_root=log_root or None)


def _parse_reminders(raw: Any) -> list[CalendarReminder]:
    if raw is None:
        return list(DEFAULT_REMINDERS)
    if not isinstance(raw, list):
        raise ConfigError("calendar.reminders must be an array of tables")
    reminders: list[CalendarReminder] = []
    for index, entry in enumerate(raw):
        entry_path = f"calendar.reminders[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{entry_path} must be a TOML table")
        method = entry.get("method", "popup")
        if method not in ("popup", "email"):
            raise ConfigError(f"Invalid {entry_path}.method: {method!r}. Expected 'popup' or 'email'.")
        minutes = _parse_number(entry.get("minutes"), f"{entry_path}.minutes", kind=int)
        reminders.append(CalendarReminder(method=method, minutes=minutes))
    return reminders


def _parse_calendar(raw: Any) -> CalendarConfig:
    section = _require_table(raw, "calendar")
    provider = str(section.get("provider", "google")).strip().lower()
    if provider not in VALID_PROVIDERS:
        raise ConfigError(
            f"Invalid calendar.provider: {provider!r}. "
            f"Expected one of: {', '.join(VALID_PROVIDERS)}"
        )

    calendar_id = section.get("calendar_id", "primary")
    if not isinstance(calendar_id, str) or not calendar_id.strip():
        raise ConfigError("calendar.calendar_id must be a non-empty string")

    credentials_json = section.get("credentials_json")
    if credentials_json is not None and not isinstance(credentials_json, str):
        raise ConfigError("calendar.credentials_json must be a string when set")

    return CalendarConfig(
        provider=provider,
        calendar_id=calendar_id.strip(),
        credentials_json=credentials_json or None,
        reminders=_parse_reminders(section.get("reminders")),
    )


def parse_config(data: dict[str, Any]) -> RenewalSyncConfig:
    """Build a :class:`RenewalSyncConfig` from already-decoded TOML data."""
    data = resolve_env_vars(data)
    sync_section = _require_table(data.get("sync"), "sync")

    timezone = sync_section.get("timezone", DEFAULT_TIMEZONE)
    if not isinstance(timezone, str):
        raise ConfigError("sync.timezone must be a string")
    try:
        ensure_valid_timezone(timezone.strip())
    except ValueError as exc:
        raise ConfigError(f"Invalid sync.timezone: {exc}") from exc

    default_specialist = sync_section.get("default_specialist", DEFAULT_SPECIALIST)
    if not isinstance(default_specialist, str) or not default_specialist.strip():
        raise ConfigError("sync.default_specialist must be a non-empty string")

    feed_path = sync_section.get("feed_path", DEFAULT_FEED_PATH)
    if not isinstance(feed_path, str) or not feed_path.strip():
        raise ConfigError("sync.feed_path must be a non-empty string")

    return RenewalSyncConfig(
        timezone=timezone.strip(),
        default_specialist=default_specialist.strip(),
        event_delay_seconds=_parse_number(
            sync_section.get("event_delay_seconds", 0.5), "sync.event_delay_seconds", kind=float
        ),
        confirm_countdown_seconds=_parse_number(
            sync_section.get("confirm_countdown_seconds", 5),
            "sync.confirm_countdown_seconds",
            kind=int,
        ),
        feed_path=feed_path.strip(),
        hours=_parse_hours(sync_section.get("hours")),
        logging=_parse_logging(sync_section.get("logging")),
        calendar=_parse_calendar(data.get("calendar")),
    )


def load_config(path: Path | str | None = None) -> RenewalSyncConfig:
    """Load configuration from *path* (file or directory).

    Falls back to ``$RENEWAL_SYNC_CONFIG`` when *path* is ``None``; when
    neither is given the defaults are returned.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return RenewalSyncConfig()
        path = env_path

    config_path = Path(path)
    if config_path.is_dir():
        config_path = config_path / CONFIG_FILE_NAME
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    return parse_config(data)
