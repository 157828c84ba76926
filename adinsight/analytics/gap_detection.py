"""
Delivery-gap detection.

Scans a per-day delivery timeline once, extracts contiguous non-delivery runs
and classifies each by severity (duration thresholds) and type (heuristic
labels: weekend, scheduled maintenance, budget exhaustion, performance pause,
unexpected). The type labels have no ground-truth stop-reason behind them and
should be presented as best-effort guesses.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from prometheus_client import Counter

from adinsight import config as C
from adinsight.analytics.delivery import DailyDeliveryStatus, DeliveryPatternAnalyzer, Timeline
from adinsight.analytics.metrics import CalculatedMetrics
from adinsight.config import section
from adinsight.infrastructure.error_handling import ConfigurationError
from adinsight.utils import Clock, DateWindow, RealClock, is_weekend, safe_div

logger = logging.getLogger(__name__)

GAPS_DETECTED = Counter("adinsight_gaps_detected_total", "Delivery gaps detected", ["severity"])

_MAINTENANCE_RE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})\s*(?::\s*(\d{4}-\d{2}-\d{2}))?\s*$")


class GapSeverity(Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    NEGLIGIBLE = "negligible"


class GapType(Enum):
    WEEKEND = "weekend"
    SCHEDULED_MAINTENANCE = "scheduled_maintenance"
    BUDGET_EXHAUSTION = "budget_exhaustion"
    PERFORMANCE_PAUSE = "performance_pause"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class GapThresholds:
    critical_gap_days: int = 7
    major_gap_days: int = 3
    minor_gap_days: int = 1
    performance_drop_threshold: float = 25.0
    recovery_time_threshold: int = 3

    def __post_init__(self) -> None:
        if self.minor_gap_days <= 0:
            raise ConfigurationError("minor_gap_days must be > 0", field="minor_gap_days", value=self.minor_gap_days)
        if self.major_gap_days <= self.minor_gap_days:
            raise ConfigurationError(
                "major_gap_days must be greater than minor_gap_days", field="major_gap_days", value=self.major_gap_days
            )
        if self.critical_gap_days <= self.major_gap_days:
            raise ConfigurationError(
                "critical_gap_days must be greater than major_gap_days",
                field="critical_gap_days", value=self.critical_gap_days,
            )


@dataclass(frozen=True)
class GapPatterns:
    weekend_tolerance: bool = True
    scheduled_maintenance_windows: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "scheduled_maintenance_windows", tuple(self.scheduled_maintenance_windows))
        for w in self.scheduled_maintenance_windows:
            try:
                parse_maintenance_window(w)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid maintenance window {w!r}: {e}", field="scheduled_maintenance_windows", value=w
                ) from e

    @property
    def maintenance_windows(self) -> Tuple[DateWindow, ...]:
        return tuple(parse_maintenance_window(w) for w in self.scheduled_maintenance_windows)


@dataclass(frozen=True)
class GapDetectionConfig:
    min_gap_days: int = 1
    # Unset analyzes the full timeline; a value keeps only the most recent N days.
    max_analysis_window: Optional[int] = None
    thresholds: GapThresholds = field(default_factory=GapThresholds)
    patterns: GapPatterns = field(default_factory=GapPatterns)
    budget_exhaustion_spend: float = C.BUDGET_EXHAUSTION_SPEND
    performance_pause_ctr: float = C.PERFORMANCE_PAUSE_CTR
    max_recovery_days: int = C.MAX_RECOVERY_DAYS
    revenue_loss_factor: float = C.REVENUE_LOSS_FACTOR
    context_window_days: int = C.GAP_CONTEXT_WINDOW_DAYS

    def __post_init__(self) -> None:
        if self.min_gap_days < 1:
            raise ConfigurationError("min_gap_days must be at least 1", field="min_gap_days", value=self.min_gap_days)
        if self.max_analysis_window is not None and self.max_analysis_window < 1:
            raise ConfigurationError(
                "max_analysis_window must be at least 1", field="max_analysis_window", value=self.max_analysis_window
            )
        if self.max_recovery_days < 0 or self.context_window_days < 0:
            raise ConfigurationError("max_recovery_days and context_window_days must be >= 0")
        if self.revenue_loss_factor < 0:
            raise ConfigurationError(
                "revenue_loss_factor must be >= 0", field="revenue_loss_factor", value=self.revenue_loss_factor
            )

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]] = None) -> "GapDetectionConfig":
        values = section(settings, "gap_detection")
        thresholds = GapThresholds(**values.pop("thresholds", {}) or {})
        patterns = dict(values.pop("patterns", {}) or {})
        if "scheduled_maintenance_windows" in patterns:
            patterns["scheduled_maintenance_windows"] = tuple(patterns["scheduled_maintenance_windows"] or ())
        return cls(thresholds=thresholds, patterns=GapPatterns(**patterns), **values)

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["patterns"]["scheduled_maintenance_windows"] = list(self.patterns.scheduled_maintenance_windows)
        return d


def create_default_config() -> GapDetectionConfig:
    return GapDetectionConfig()


def parse_maintenance_window(value: str) -> DateWindow:
    """'yyyy-mm-dd:yyyy-mm-dd' or a single 'yyyy-mm-dd' day."""
    m = _MAINTENANCE_RE.match(str(value))
    if not m:
        raise ValueError("expected yyyy-mm-dd or yyyy-mm-dd:yyyy-mm-dd")
    start, end = m.group(1), m.group(2) or m.group(1)
    return DateWindow(start, end)


@dataclass(frozen=True)
class GapImpact:
    performance_drop_pct: float = 0.0
    recovery_time_days: int = 0
    estimated_lost_impressions: float = 0.0
    estimated_lost_revenue: float = 0.0
    is_significant: bool = False


@dataclass(frozen=True)
class GapContext:
    preceding_delivery_days: int = 0
    following_delivery_days: int = 0


@dataclass(frozen=True)
class DeliveryGap:
    start_date: str
    end_date: str
    duration_days: int
    severity: GapSeverity
    type: GapType
    impact: GapImpact
    before_gap_metrics: Optional[CalculatedMetrics]
    after_gap_metrics: Optional[CalculatedMetrics]
    gap_context: GapContext = GapContext()

    @property
    def is_ongoing(self) -> bool:
        return self.after_gap_metrics is None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date,
            "end_date": self.end_date,
            "duration_days": self.duration_days,
            "severity": self.severity.value,
            "type": self.type.value,
            "impact": asdict(self.impact),
            "before_gap_metrics": self.before_gap_metrics.as_dict() if self.before_gap_metrics else None,
            "after_gap_metrics": self.after_gap_metrics.as_dict() if self.after_gap_metrics else None,
            "gap_context": asdict(self.gap_context),
            "is_ongoing": self.is_ongoing,
        }


@dataclass(frozen=True)
class GapStatistics:
    total_gap_days: int = 0
    gap_rate: float = 0.0
    average_gap_duration: float = 0.0
    longest_gap_days: int = 0
    continuity_score: float = 100.0
    severity_distribution: Dict[str, int] = field(default_factory=dict)
    type_distribution: Dict[str, int] = field(default_factory=dict)
    estimated_total_impact: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class GapDetectionResult:
    gaps: Tuple[DeliveryGap, ...]
    statistics: GapStatistics
    metadata: Dict[str, Any]

    @property
    def total_gaps(self) -> int:
        return len(self.gaps)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_gaps": self.total_gaps,
            "gaps": [g.as_dict() for g in self.gaps],
            "statistics": asdict(self.statistics),
            "metadata": self.metadata,
        }


@dataclass
class _RawGap:
    start_index: int
    end_index: int
    before: Optional[CalculatedMetrics]
    after: Optional[CalculatedMetrics]

    @property
    def duration(self) -> int:
        return self.end_index - self.start_index + 1


class GapDetectionEngine:
    def __init__(self, config: Optional[GapDetectionConfig] = None, clock: Optional[Clock] = None):
        # Threshold ordering is validated when the config is built.
        self.config = config or create_default_config()
        self.clock = clock or RealClock()
        self._maintenance = self.config.patterns.maintenance_windows

    def detect_gaps(self, timeline: Union[Timeline, Sequence[DailyDeliveryStatus]]) -> GapDetectionResult:
        statuses = list(timeline.daily_statuses if isinstance(timeline, Timeline) else timeline)
        limit = self.config.max_analysis_window
        if limit is not None and len(statuses) > limit:
            logger.info(f"Timeline has {len(statuses)} days, analyzing the last {limit}")
            statuses = statuses[-limit:]

        raw = [g for g in self._identify_raw_gaps(statuses) if g.duration >= self.config.min_gap_days]
        gaps = tuple(self._build_gap(g, statuses) for g in raw)
        statistics = self._statistics(gaps, len(statuses))

        for g in gaps:
            GAPS_DETECTED.labels(g.severity.value).inc()
        logger.info(
            f"Gap analysis over {len(statuses)} days: {len(gaps)} gaps, "
            f"continuity {statistics.continuity_score:.1f}"
        )

        delivery_days = sum(1 for s in statuses if s.has_delivery)
        return GapDetectionResult(
            gaps=gaps,
            statistics=statistics,
            metadata={
                "analysis_timestamp": self.clock.now_utc().isoformat(),
                "config_used": self.config.as_dict(),
                "timeline_summary": {
                    "total_days": len(statuses),
                    "delivery_days": delivery_days,
                    "gap_days": len(statuses) - delivery_days,
                },
            },
        )

    def analyze_entity(self, rows: Iterable[Any], window: Any,
                       entity_id: Optional[str] = None) -> Tuple[Timeline, GapDetectionResult]:
        timeline = DeliveryPatternAnalyzer().build_timeline(rows, window, entity_id)
        return timeline, self.detect_gaps(timeline)

    @staticmethod
    def _identify_raw_gaps(statuses: Sequence[DailyDeliveryStatus]) -> List[_RawGap]:
        gaps: List[_RawGap] = []
        start: Optional[int] = None
        last_delivery: Optional[CalculatedMetrics] = None
        before: Optional[CalculatedMetrics] = None

        for i, status in enumerate(statuses):
            if not status.has_delivery:
                if start is None:
                    start = i
                    before = last_delivery
                continue
            if start is not None:
                gaps.append(_RawGap(start, i - 1, before, status.metrics))
                start = None
            last_delivery = status.metrics

        if start is not None:
            gaps.append(_RawGap(start, len(statuses) - 1, before, None))
        return gaps

    def _build_gap(self, raw: _RawGap, statuses: Sequence[DailyDeliveryStatus]) -> DeliveryGap:
        duration = raw.duration
        start_date = statuses[raw.start_index].date
        end_date = statuses[raw.end_index].date
        window = self.config.context_window_days
        preceding = statuses[max(0, raw.start_index - window):raw.start_index]
        following = statuses[raw.end_index + 1:raw.end_index + 1 + window]

        gap = DeliveryGap(
            start_date=start_date,
            end_date=end_date,
            duration_days=duration,
            severity=self.determine_severity(duration),
            type=self.determine_type(start_date, end_date, duration, raw.before),
            impact=self._impact(duration, raw.before, raw.after),
            before_gap_metrics=raw.before,
            after_gap_metrics=raw.after,
            gap_context=GapContext(
                preceding_delivery_days=sum(1 for s in preceding if s.has_delivery),
                following_delivery_days=sum(1 for s in following if s.has_delivery),
            ),
        )
        logger.debug(f"Gap {start_date}..{end_date} ({duration}d): {gap.severity.value}/{gap.type.value}")
        return gap

    def determine_severity(self, duration_days: int) -> GapSeverity:
        t = self.config.thresholds
        if duration_days >= t.critical_gap_days:
            return GapSeverity.CRITICAL
        if duration_days >= t.major_gap_days:
            return GapSeverity.MAJOR
        if duration_days >= t.minor_gap_days:
            return GapSeverity.MINOR
        return GapSeverity.NEGLIGIBLE

    def determine_type(self, start_date: str, end_date: str, duration_days: int,
                       before: Optional[CalculatedMetrics]) -> GapType:
        if self.config.patterns.weekend_tolerance and duration_days <= 2 and is_weekend(start_date):
            return GapType.WEEKEND
        if any(w.contains(start_date) and w.contains(end_date) for w in self._maintenance):
            return GapType.SCHEDULED_MAINTENANCE
        if before is not None and before.spend > self.config.budget_exhaustion_spend:
            return GapType.BUDGET_EXHAUSTION
        if before is not None and 0 < before.ctr < self.config.performance_pause_ctr:
            return GapType.PERFORMANCE_PAUSE
        return GapType.UNEXPECTED

    def _impact(self, duration: int, before: Optional[CalculatedMetrics],
                after: Optional[CalculatedMetrics]) -> GapImpact:
        if before is None:
            return GapImpact()
        drop = 0.0
        if after is not None and before.ctr > 0:
            drop = (before.ctr - after.ctr) / before.ctr * 100.0
        recovery = min(duration, self.config.max_recovery_days)
        t = self.config.thresholds
        return GapImpact(
            performance_drop_pct=drop,
            recovery_time_days=recovery,
            estimated_lost_impressions=before.impressions * duration,
            estimated_lost_revenue=before.spend * duration * self.config.revenue_loss_factor,
            is_significant=drop >= t.performance_drop_threshold or recovery >= t.recovery_time_threshold,
        )

    @staticmethod
    def _statistics(gaps: Sequence[DeliveryGap], total_days: int) -> GapStatistics:
        durations = [g.duration_days for g in gaps]
        total_gap_days = sum(durations)
        if total_days == 0:
            gap_rate, continuity = 0.0, 100.0
        else:
            gap_rate = total_gap_days / total_days * 100.0
            continuity = min(100.0, max(0.0, 100.0 - gap_rate))

        severity_distribution = {s.value: 0 for s in GapSeverity}
        type_distribution: Dict[str, int] = {}
        for g in gaps:
            severity_distribution[g.severity.value] += 1
            type_distribution[g.type.value] = type_distribution.get(g.type.value, 0) + 1

        return GapStatistics(
            total_gap_days=total_gap_days,
            gap_rate=gap_rate,
            average_gap_duration=safe_div(total_gap_days, len(gaps)),
            longest_gap_days=max(durations, default=0),
            continuity_score=continuity,
            severity_distribution=severity_distribution,
            type_distribution=type_distribution,
            estimated_total_impact={
                "lost_impressions": sum(g.impact.estimated_lost_impressions for g in gaps),
                "lost_revenue": sum(g.impact.estimated_lost_revenue for g in gaps),
            },
        )


__all__ = [
    "GapSeverity",
    "GapType",
    "GapThresholds",
    "GapPatterns",
    "GapDetectionConfig",
    "GapImpact",
    "GapContext",
    "DeliveryGap",
    "GapStatistics",
    "GapDetectionResult",
    "GapDetectionEngine",
    "create_default_config",
    "parse_maintenance_window",
]
