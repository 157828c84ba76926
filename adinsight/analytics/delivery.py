from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from adinsight import config as C
from adinsight.analytics.metrics import EMPTY_METRICS, CalculatedMetrics, MetricTotals
from adinsight.infrastructure.data_validation import normalize_rows
from adinsight.infrastructure.error_handling import ConfigurationError
from adinsight.utils import DateWindow, safe_div

logger = logging.getLogger(__name__)

HIGH_INTENSITY_RATIO = 1.2
MEDIUM_INTENSITY_RATIO = 0.5


class DeliveryPattern(Enum):
    NONE = "none"
    CONTINUOUS = "continuous"
    SINGLE = "single"
    PARTIAL = "partial"
    INTERMITTENT = "intermittent"


class DeliveryIntensity(Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class DeliveryAnalysis:
    total_requested_days: int
    actual_delivery_days: int
    delivery_ratio: float
    pattern: DeliveryPattern
    first_delivery_date: Optional[str] = None
    last_delivery_date: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_requested_days": self.total_requested_days,
            "actual_delivery_days": self.actual_delivery_days,
            "delivery_ratio": self.delivery_ratio,
            "pattern": self.pattern.value,
            "first_delivery_date": self.first_delivery_date,
            "last_delivery_date": self.last_delivery_date,
        }


@dataclass(frozen=True)
class DailyDeliveryStatus:
    date: str
    has_delivery: bool
    metrics: CalculatedMetrics = EMPTY_METRICS
    delivery_intensity: DeliveryIntensity = DeliveryIntensity.NONE
    entity_id: str = ""


@dataclass(frozen=True)
class Timeline:
    date_range: DateWindow
    daily_statuses: Tuple[DailyDeliveryStatus, ...]
    entity_id: str = ""

    @property
    def total_days(self) -> int:
        return len(self.daily_statuses)

    @property
    def delivery_days(self) -> int:
        return sum(1 for s in self.daily_statuses if s.has_delivery)

    @property
    def gap_days(self) -> int:
        return self.total_days - self.delivery_days

    def summary(self) -> Dict[str, int]:
        return {"total_days": self.total_days, "delivery_days": self.delivery_days, "gap_days": self.gap_days}


def classify_pattern(actual_days: int, total_days: int, ratio: float,
                     partial_ratio: float = C.PARTIAL_PATTERN_RATIO) -> DeliveryPattern:
    if actual_days == 0:
        return DeliveryPattern.NONE
    if ratio == 1.0:
        return DeliveryPattern.CONTINUOUS
    if actual_days == 1 and total_days > 1:
        return DeliveryPattern.SINGLE
    if ratio > partial_ratio:
        return DeliveryPattern.PARTIAL
    return DeliveryPattern.INTERMITTENT


def _intensity(impressions: float, mean_impressions: float) -> DeliveryIntensity:
    if impressions <= 0:
        return DeliveryIntensity.NONE
    rel = safe_div(impressions, mean_impressions, default=1.0)
    if rel >= HIGH_INTENSITY_RATIO:
        return DeliveryIntensity.HIGH
    if rel >= MEDIUM_INTENSITY_RATIO:
        return DeliveryIntensity.MEDIUM
    return DeliveryIntensity.LOW


class DeliveryPatternAnalyzer:
    """Classifies how continuously one entity delivered inside a window."""

    def __init__(self, partial_ratio: float = C.PARTIAL_PATTERN_RATIO):
        if not 0 < partial_ratio < 1:
            raise ConfigurationError("partial_ratio must be within (0, 1)", field="partial_ratio", value=partial_ratio)
        self.partial_ratio = partial_ratio

    def analyze(self, rows: Iterable[Any], window: Any) -> DeliveryAnalysis:
        # One row per delivery day is assumed; deduplicate upstream.
        window = DateWindow.coerce(window)
        rows = normalize_rows(rows)
        total = window.total_days
        actual = len(rows)
        ratio = min(1.0, safe_div(actual, total))
        dates = sorted(r.date_start for r in rows if r.date_start)

        analysis = DeliveryAnalysis(
            total_requested_days=total,
            actual_delivery_days=actual,
            delivery_ratio=ratio,
            pattern=classify_pattern(actual, total, ratio, self.partial_ratio),
            first_delivery_date=dates[0] if dates else None,
            last_delivery_date=dates[-1] if dates else None,
        )
        logger.debug(
            f"Delivery {window.start}..{window.end}: {actual}/{total} days, pattern={analysis.pattern.value}"
        )
        return analysis

    def build_timeline(self, rows: Iterable[Any], window: Any, entity_id: Optional[str] = None) -> Timeline:
        """One status per calendar day in the window; absent days are synthesized as no delivery."""
        window = DateWindow.coerce(window)
        by_day: Dict[str, MetricTotals] = {}
        for r in normalize_rows(rows):
            if r.date_start and window.contains(r.date_start):
                by_day.setdefault(r.date_start, MetricTotals()).add(r)

        day_metrics = {day: totals.finalize() for day, totals in by_day.items()}
        delivering = [m.impressions for m in day_metrics.values() if m.impressions > 0]
        mean_impr = safe_div(sum(delivering), len(delivering))

        statuses: List[DailyDeliveryStatus] = []
        for day in window.days():
            metrics = day_metrics.get(day, EMPTY_METRICS)
            statuses.append(DailyDeliveryStatus(
                date=day,
                has_delivery=metrics.impressions > 0,
                metrics=metrics,
                delivery_intensity=_intensity(metrics.impressions, mean_impr),
                entity_id=entity_id or "",
            ))

        timeline = Timeline(date_range=window, daily_statuses=tuple(statuses), entity_id=entity_id or "")
        logger.debug(f"Timeline {entity_id or '-'}: {timeline.summary()}")
        return timeline


def build_timeline(rows: Sequence[Any], window: Any, entity_id: Optional[str] = None) -> Timeline:
    return DeliveryPatternAnalyzer().build_timeline(rows, window, entity_id)


__all__ = [
    "DeliveryPattern",
    "DeliveryIntensity",
    "DeliveryAnalysis",
    "DailyDeliveryStatus",
    "Timeline",
    "DeliveryPatternAnalyzer",
    "classify_pattern",
    "build_timeline",
]
