"""
Date range labels and analysis windows.
Maps Meta date presets ("last_7d", "yesterday", ...) and custom
"yyyy-mm-dd:yyyy-mm-dd" labels onto concrete windows and strictness classes.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Optional

from adinsight.utils import DateWindow, Timekit, parse_ymd

logger = logging.getLogger(__name__)

SHORT_TERM_PRESETS = frozenset({"today", "yesterday", "last_3d", "last_7d"})

PRESET_DAYS = {
    "yesterday": 1,
    "last_3d": 3,
    "last_7d": 7,
    "last_14d": 14,
    "last_28d": 28,
    "last_30d": 30,
    "last_60d": 60,
    "last_90d": 90,
}

_CUSTOM_RANGE_RE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})\s*:\s*(\d{4}-\d{2}-\d{2})\s*$")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
)


class DateRangeValidator:
    """Interprets date-range labels and row dates."""

    def __init__(self, timekit: Optional[Timekit] = None):
        self.logger = logging.getLogger(f"{__name__}.DateRangeValidator")
        self.timekit = timekit

    def is_short_term(self, label: Optional[str]) -> bool:
        """
        True for the presets that warrant stricter fatigue thresholds.

        Custom ranges count as short-term when they span 7 days or fewer.
        """
        if not label:
            return False
        norm = label.strip().lower()
        if norm in SHORT_TERM_PRESETS:
            return True
        custom = self.parse_custom_range(norm)
        if custom is not None:
            return custom.total_days <= 7
        return False

    def parse_custom_range(self, label: str) -> Optional[DateWindow]:
        m = _CUSTOM_RANGE_RE.match(label or "")
        if not m:
            return None
        try:
            return DateWindow(m.group(1), m.group(2))
        except ValueError:
            self.logger.warning(f"Ignoring inverted custom range {label!r}")
            return None

    def resolve_window(self, label: str) -> DateWindow:
        """
        Turn a preset or custom label into a concrete window.

        Args:
            label: Meta date preset or "yyyy-mm-dd:yyyy-mm-dd"

        Returns:
            DateWindow in the account timezone

        Raises:
            ValueError: the label is not recognised
        """
        norm = (label or "").strip().lower()
        custom = self.parse_custom_range(norm)
        if custom is not None:
            return custom

        kit = self.timekit or Timekit()
        today = kit.today_account()
        if norm == "today":
            return DateWindow(today.isoformat(), today.isoformat())
        if norm in PRESET_DAYS:
            since, until = kit.last_n_full_days(PRESET_DAYS[norm])
            return DateWindow(since, until)
        if norm == "this_month":
            return DateWindow(today.replace(day=1).isoformat(), today.isoformat())
        if norm == "last_month":
            last_day = today.replace(day=1) - timedelta(days=1)
            return DateWindow(last_day.replace(day=1).isoformat(), last_day.isoformat())
        raise ValueError(f"Unknown date range label: {label!r}")

    def coerce_ymd(self, value: Any, field_name: str = "date") -> Optional[str]:
        """Normalise a row date to yyyy-mm-dd, or None when it cannot be parsed."""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.date().isoformat()
        if hasattr(value, "isoformat") and not isinstance(value, str):
            return parse_ymd(value).isoformat()
        s = str(value).strip()
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(s, fmt).date().isoformat()
            except ValueError:
                continue
        self.logger.debug(f"Unparseable {field_name} {value!r}")
        return None


_default_validator = DateRangeValidator()


def is_short_term_range(label: Optional[str]) -> bool:
    return _default_validator.is_short_term(label)


def coerce_ymd(value: Any, field_name: str = "date") -> Optional[str]:
    return _default_validator.coerce_ymd(value, field_name)


def resolve_window(label: str, timekit: Optional[Timekit] = None) -> DateWindow:
    return DateRangeValidator(timekit).resolve_window(label)
