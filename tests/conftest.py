"""Pytest fixtures and row factories.

Raw rows mirror the insights export: every numeric value arrives as a string.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure project root on sys.path so 'adinsight' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from adinsight.utils import FixedClock, iter_days  # noqa: E402


def raw_row(ad_id="ad_1", date="2024-01-01", **fields):
    row = {
        "ad_id": ad_id,
        "ad_name": f"Ad {ad_id}",
        "adset_id": "adset_1",
        "adset_name": "Adset 1",
        "campaign_id": "cmp_1",
        "campaign_name": "Campaign 1",
        "account_id": "act_1",
        "date_start": date,
        "date_stop": date,
        "publisher_platform": "facebook",
        "impressions": "1000",
        "clicks": "20",
        "spend": "10.00",
        "reach": "800",
        "frequency": "1.25",
        "conversions": "2",
        "conversion_values": "40",
    }
    for key, value in fields.items():
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        row[key] = value
    return row


@pytest.fixture
def make_row():
    return raw_row


@pytest.fixture
def series_rows():
    """One row per day for one ad; callables in **fields receive the day index."""
    def _series(ad_id, start, end, **fields):
        rows = []
        for i, day in enumerate(iter_days(start, end)):
            values = {k: (v(i) if callable(v) else v) for k, v in fields.items()}
            rows.append(raw_row(ad_id, day, **values))
        return rows
    return _series


@pytest.fixture
def fixed_clock():
    return FixedClock(datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc))
