"""Shared fixtures for the renewal_sync test suite."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from renewal_sync.records import RenewalRecord, parse_expiry

TODAY = date(2025, 6, 2)


def make_record(
    client: str,
    status: str = "Quote",
    *,
    days_left: int | None = 60,
    specialist: str = "Asha",
    expiry_raw: str | None = None,
    premium: float = 125000.0,
) -> RenewalRecord:
    """Build a record expiring *days_left* days after :data:`TODAY`."""
    if expiry_raw is None and days_left is None:
        expiry_raw = ""
    elif expiry_raw is None:
        expiry_raw = (TODAY + timedelta(days=days_left)).strftime("%d-%m-%Y")
    return RenewalRecord(
        client=client,
        status=status,
        expiry_raw=expiry_raw,
        expiry_date=parse_expiry(expiry_raw),
        specialist=specialist,
        premium=premium,
        coverage="Property",
        product_line="Commercial",
        carrier="Acme Insurance",
        placement_id=f"PL-{client[:3].upper()}",
    )


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def record_factory():
    return make_record


SAMPLE_FEED = (
    "Client,Placement Status,Placement Expiry Date,Placement Specialist,Total Premium,"
    "Coverage,Product Line,Carrier Group,Placement Id\n"
    'Acme Traders,Quote,01-09-2025,Asha,"₹1,25,000",Property,Commercial,Star Re,PL-1\n'
    "Blue Fin Foods,Submitted,15-08-2025,Ravi,54000,Marine,Commercial,Tata AIG,PL-2\n"
    "Cedar Labs,No Response,10-06-2025,,98000,Liability,Specialty,HDFC Ergo,PL-3\n"
    ",Quote,01-09-2025,Asha,1000,Property,Commercial,Star Re,PL-4\n"
)


@pytest.fixture
def sample_feed() -> str:
    return SAMPLE_FEED


@pytest.fixture
def feed_file(tmp_path):
    path = tmp_path / "renewals.csv"
    path.write_text(SAMPLE_FEED, encoding="utf-8")
    return path
