from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterator, Optional, Tuple

import pytz


# -----------------------
# Clock primitives
# -----------------------
class Clock:
    def now_utc(self) -> datetime:
        raise NotImplementedError


class RealClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    def __init__(self, dt_utc: datetime):
        if dt_utc.tzinfo is None:
            dt_utc = dt_utc.replace(tzinfo=timezone.utc)
        self._dt = dt_utc.astimezone(timezone.utc)

    @staticmethod
    def from_env(var: str = "NOW_UTC") -> Optional["FixedClock"]:
        val = os.getenv(var)
        if not val:
            return None
        return FixedClock(_parse_any_datetime(val))

    def now_utc(self) -> datetime:
        return self._dt


def _parse_any_datetime(s: str) -> datetime:
    s = s.strip()
    if re.fullmatch(r"\d{10}", s):
        return datetime.fromtimestamp(int(s), tz=timezone.utc)
    if re.fullmatch(r"\d{13}", s):
        return datetime.fromtimestamp(int(s) / 1000.0, tz=timezone.utc)
    s = s.replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as e:
        raise ValueError(f"Invalid datetime: {s!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def require_tz(name: str) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name)
    except Exception as e:
        raise ValueError(f"Invalid IANA timezone: {name!r}") from e


# -----------------------
# Numeric coercion
# -----------------------
def safe_f(x: Any, default: float = 0.0) -> float:
    """Parse Graph API style numerics ("1,234.5", "", None) into a float."""
    try:
        if x is None or isinstance(x, bool):
            return default
        if isinstance(x, (int, float)):
            v = float(x)
        else:
            s = str(x).strip().replace(",", "")
            if s == "":
                return default
            v = float(s)
    except (TypeError, ValueError):
        return default
    if v != v or v in (float("inf"), float("-inf")):
        return default
    return v


def safe_div(n: float, d: float, default: float = 0.0) -> float:
    if not d:
        return default
    return n / d


# -----------------------
# ISO day helpers
# -----------------------
def parse_ymd(s: str) -> date:
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    try:
        return date.fromisoformat(str(s).strip()[:10])
    except ValueError as e:
        raise ValueError(f"Invalid ISO date: {s!r}") from e


def days_inclusive(start: str, end: str) -> int:
    return (parse_ymd(end) - parse_ymd(start)).days + 1


def iter_days(start: str, end: str) -> Iterator[str]:
    cur = parse_ymd(start)
    stop = parse_ymd(end)
    while cur <= stop:
        yield cur.isoformat()
        cur += timedelta(days=1)


def is_weekend(day: str) -> bool:
    # Mon=0 .. Sat=5, Sun=6
    return parse_ymd(day).weekday() >= 5


@dataclass(frozen=True)
class DateWindow:
    start: str
    end: str

    def __post_init__(self) -> None:
        s = parse_ymd(self.start)
        e = parse_ymd(self.end)
        if e < s:
            raise ValueError(f"Window end {self.end!r} is before start {self.start!r}")
        object.__setattr__(self, "start", s.isoformat())
        object.__setattr__(self, "end", e.isoformat())

    @property
    def total_days(self) -> int:
        return days_inclusive(self.start, self.end)

    def contains(self, day: str) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[str]:
        return iter_days(self.start, self.end)

    def as_dict(self) -> Dict[str, str]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def coerce(cls, value: Any) -> "DateWindow":
        if isinstance(value, DateWindow):
            return value
        if isinstance(value, dict):
            start = value.get("start") or value.get("since")
            end = value.get("end") or value.get("until")
            return cls(start, end)
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(value[0], value[1])
        raise ValueError(f"Cannot interpret {value!r} as a date window")


# -----------------------
# Account-timezone "today"
# -----------------------
class Timekit:
    def __init__(self, account_tz: Optional[str] = None, clock: Optional[Clock] = None):
        self.account_tz = account_tz or os.getenv("ACCOUNT_TIMEZONE") or os.getenv("TIMEZONE") or "Europe/Amsterdam"
        self.clock = clock or FixedClock.from_env() or RealClock()
        self._acc = require_tz(self.account_tz)

    def now_account(self) -> datetime:
        return self.clock.now_utc().astimezone(self._acc)

    def today_account(self) -> date:
        return self.now_account().date()

    def last_n_full_days(self, n: int) -> Tuple[str, str]:
        if n <= 0:
            raise ValueError("n must be >= 1")
        today = self.today_account()
        return (today - timedelta(days=n)).isoformat(), (today - timedelta(days=1)).isoformat()
