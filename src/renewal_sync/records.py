"""Renewal feed normalizer.

Turns a delimited text export (comma or tab separated, optionally quoted)
into immutable :class:`RenewalRecord` objects. Rows without a client name are
treated as malformed and dropped; the scheduling core never sees them.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Column headers used by the placement export.
COLUMN_CLIENT = "Client"
COLUMN_STATUS = "Placement Status"
COLUMN_EXPIRY = "Placement Expiry Date"
COLUMN_SPECIALIST = "Placement Specialist"
COLUMN_PREMIUM = "Total Premium"
COLUMN_COVERAGE = "Coverage"
COLUMN_PRODUCT_LINE = "Product Line"
COLUMN_CARRIER = "Carrier Group"
COLUMN_PLACEMENT_ID = "Placement Id"
COLUMN_PRODUCTION_CODE = "Production Code"

_KNOWN_COLUMNS = {
    COLUMN_CLIENT: "client",
    COLUMN_STATUS: "status",
    COLUMN_EXPIRY: "expiry_raw",
    COLUMN_SPECIALIST: "specialist",
    COLUMN_PREMIUM: "premium",
    COLUMN_COVERAGE: "coverage",
    COLUMN_PRODUCT_LINE: "product_line",
    COLUMN_CARRIER: "carrier",
    COLUMN_PLACEMENT_ID: "placement_id",
    COLUMN_PRODUCTION_CODE: "production_code",
}

_EMPTY_DATE_MARKERS = {"", "-"}
_PREMIUM_NOISE = re.compile(r"[^0-9.\-]")


class FeedError(Exception):
    """Raised when a renewal feed cannot be read."""


class FeedNotFoundError(FeedError):
    """Raised when the renewal feed file does not exist."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"Renewal feed not found: {self.path}")


class RenewalRecord(BaseModel):
    """One client's policy row from the renewal feed."""

    model_config = ConfigDict(frozen=True)

    client: str = Field(min_length=1)
    status: str = ""
    expiry_raw: str = ""
    expiry_date: date | None = None
    specialist: str = ""
    premium: float = 0.0
    coverage: str = ""
    product_line: str = ""
    carrier: str = ""
    placement_id: str = ""
    production_code: str = ""
    extra: dict[str, str] = Field(default_factory=dict)


class FeedStatus(BaseModel):
    """Readiness information about a feed file on disk."""

    ready: bool
    path: str
    size_bytes: int | None = None
    record_count: int | None = None
    delimiter: str | None = None
    columns: list[str] = Field(default_factory=list)
    last_modified: datetime | None = None


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def parse_expiry(text: str | None) -> date | None:
    """Parse an expiry date cell.

    Accepts ``DD-MM-YYYY``, ``DD/MM/YYYY`` and their two-digit-year forms
    (``YY`` means ``20YY``) as well as ISO ``YYYY-MM-DD``. Returns ``None`` for
    blanks, the ``-`` placeholder and anything that does not form a real date.
    """
    if text is None:
        return None
    cleaned = text.strip()
    if cleaned in _EMPTY_DATE_MARKERS:
        return None

    if "-" in cleaned:
        parts = cleaned.split("-")
    elif "/" in cleaned:
        parts = cleaned.split("/")
    else:
        return None

    if len(parts) != 3 or not all(part.strip().isdigit() for part in parts):
        logger.debug("Unrecognised expiry date format: %r", cleaned)
        return None

    first, second, third = (part.strip() for part in parts)
    if len(first) == 4:
        year, month, day = first, second, third
    else:
        day, month, year = first, second, third
        if len(year) == 2:
            year = f"20{year}"

    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        logger.debug("Invalid expiry date: %r", cleaned)
        return None


def parse_premium(text: str | None) -> float:
    """Parse a premium amount, ignoring currency symbols and separators."""
    if not text:
        return 0.0
    cleaned = _PREMIUM_NOISE.sub("", text)
    if not cleaned:
        return 0.0
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def _clean_cell(value: str | None) -> str:
    if value is None:
        return ""
    stripped = value.strip()
    if len(stripped) >= 2 and stripped[0] == '"' and stripped[-1] == '"':
        stripped = stripped[1:-1].strip()
    return stripped


# ---------------------------------------------------------------------------
# Feed parsing
# ---------------------------------------------------------------------------


def detect_delimiter(text: str) -> str:
    """Return ``"\\t"`` when the header line contains a tab, else ``","``."""
    header = text.lstrip("\ufeff").split("\n", 1)[0]
    return "\t" if "\t" in header else ","


def _record_from_row(row: dict[str, str]) -> RenewalRecord:
    known: dict[str, Any] = {}
    extra: dict[str, str] = {}
    for header, value in row.items():
        field_name = _KNOWN_COLUMNS.get(header)
        if field_name is None:
            extra[header] = value
        else:
            known[field_name] = value

    known["premium"] = parse_premium(known.get("premium"))
    known["expiry_date"] = parse_expiry(known.get("expiry_raw"))
    return RenewalRecord(**known, extra=extra)


def parse_feed(text: str) -> list[RenewalRecord]:
    """Parse a comma- or tab-delimited feed into renewal records.

    The first non-blank line is the header. Short rows are padded with empty
    cells, surplus cells are ignored, and rows without a client are dropped.
    """
    text = text.lstrip("\ufeff").strip()
    if not text:
        return []

    delimiter = detect_delimiter(text)
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, skipinitialspace=True)

    headers: list[str] | None = None
    records: list[RenewalRecord] = []
    dropped = 0
    for raw_row in reader:
        if not any(cell.strip() for cell in raw_row):
            continue
        if headers is None:
            headers = [_clean_cell(cell) for cell in raw_row]
            continue

        cells = [_clean_cell(cell) for cell in raw_row]
        row = {header: cells[i] if i < len(cells) else "" for i, header in enumerate(headers)}
        if not row.get(COLUMN_CLIENT):
            dropped += 1
            continue
        records.append(_record_from_row(row))

    logger.info(
        "Parsed %d renewal record(s) (delimiter=%s, columns=%d, dropped=%d)",
        len(records),
        "TAB" if delimiter == "\t" else "COMMA",
        len(headers or []),
        dropped,
    )
    return records


def _read_text(path: Path) -> str:
    if not path.is_file():
        raise FeedNotFoundError(path)
    try:
        return path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise FeedError(f"Could not read renewal feed {path}: {exc}") from exc


def read_feed(path: Path | str) -> list[RenewalRecord]:
    """Read and parse a feed file."""
    return parse_feed(_read_text(Path(path)))


def feed_status(path: Path | str) -> FeedStatus:
    """Describe a feed file without parsing its records."""
    path = Path(path)
    if not path.is_file():
        return FeedStatus(ready=False, path=str(path))

    text = _read_text(path)
    stat = path.stat()
    lines = [line for line in text.strip().splitlines() if line.strip()]
    delimiter = detect_delimiter(text)
    columns = [_clean_cell(cell) for cell in lines[0].split(delimiter)] if lines else []
    return FeedStatus(
        ready=True,
        path=str(path),
        size_bytes=stat.st_size,
        record_count=max(len(lines) - 1, 0),
        delimiter="tab" if delimiter == "\t" else "comma",
        columns=columns,
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
    )
