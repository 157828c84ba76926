"""
Date-range-aware fatigue scoring.

Scores creative (CTR), audience (frequency) and platform (CPM) fatigue per
entity. Short-term ranges, or entities with too few rows, are judged with
stricter change thresholds and tighter overall tiers, and skip the
long-range time-series analysis.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from prometheus_client import Counter

from adinsight import config as C
from adinsight.analytics.aggregator import Aggregator
from adinsight.analytics.metrics import CalculatedMetrics, summarize_rows
from adinsight.config import section
from adinsight.infrastructure.data_validation import InsightRow, group_key, normalize_rows
from adinsight.infrastructure.date_validation import is_short_term_range
from adinsight.infrastructure.error_handling import ConfigurationError
from adinsight.utils import Clock, RealClock, safe_div

logger = logging.getLogger(__name__)

FATIGUE_ENTITIES = Counter("adinsight_fatigue_entities_total", "Entities scored for fatigue", ["severity"])

SEVERITY_SCORES = {"low": 1, "medium": 2, "high": 3}


class FatigueSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def score(self) -> int:
        return SEVERITY_SCORES[self.value]


_SEVERITY_ORDER = {FatigueSeverity.HIGH: 0, FatigueSeverity.MEDIUM: 1, FatigueSeverity.LOW: 2}


@dataclass(frozen=True)
class FatigueThresholds:
    ctr_decline_threshold: float = 0.25
    frequency_warning_threshold: float = 3.5
    cpm_increase_threshold: float = 0.20
    min_impressions: float = 1000

    def __post_init__(self) -> None:
        for name in ("ctr_decline_threshold", "frequency_warning_threshold", "cpm_increase_threshold"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0", field=name, value=getattr(self, name))
        if self.min_impressions < 0:
            raise ConfigurationError("min_impressions must be >= 0", field="min_impressions")


@dataclass(frozen=True)
class TimeSeriesConfig:
    min_data_points: int = 7
    trend_analysis_window: int = 7
    seasonality_min_points: int = C.SEASONALITY_MIN_POINTS
    seasonality_autocorr: float = C.SEASONALITY_AUTOCORR

    def __post_init__(self) -> None:
        if self.min_data_points < 1:
            raise ConfigurationError("min_data_points must be >= 1", field="min_data_points")
        if self.trend_analysis_window < 2:
            raise ConfigurationError("trend_analysis_window must be >= 2", field="trend_analysis_window")
        if self.seasonality_min_points < 8:
            # lag-7 autocorrelation needs at least one overlapping pair beyond a week
            raise ConfigurationError("seasonality_min_points must be >= 8", field="seasonality_min_points")


@dataclass(frozen=True)
class SeverityTiers:
    high: int
    medium: int

    def classify(self, score: int) -> FatigueSeverity:
        if score >= self.high:
            return FatigueSeverity.HIGH
        if score >= self.medium:
            return FatigueSeverity.MEDIUM
        return FatigueSeverity.LOW


@dataclass(frozen=True)
class FatigueConfig:
    thresholds: FatigueThresholds = field(default_factory=FatigueThresholds)
    time_series: TimeSeriesConfig = field(default_factory=TimeSeriesConfig)
    short_term_multiplier: float = C.SHORT_TERM_MULTIPLIER
    severity_escalation: float = C.SEVERITY_ESCALATION
    frequency_high_multiplier: float = C.FREQUENCY_HIGH_MULTIPLIER
    frequency_dead_band: float = C.FREQUENCY_DEAD_BAND
    short_term_tiers: SeverityTiers = SeverityTiers(high=6, medium=4)
    long_term_tiers: SeverityTiers = SeverityTiers(high=7, medium=5)

    def __post_init__(self) -> None:
        if not 0 < self.short_term_multiplier <= 1:
            raise ConfigurationError("short_term_multiplier must be within (0, 1]", field="short_term_multiplier")
        if self.severity_escalation <= 1:
            raise ConfigurationError("severity_escalation must be > 1", field="severity_escalation")
        if self.frequency_high_multiplier <= 1:
            raise ConfigurationError("frequency_high_multiplier must be > 1", field="frequency_high_multiplier")
        if self.frequency_dead_band < 0:
            raise ConfigurationError("frequency_dead_band must be >= 0", field="frequency_dead_band")
        for name in ("short_term_tiers", "long_term_tiers"):
            tiers = getattr(self, name)
            if not 3 < tiers.medium < tiers.high <= 9:
                raise ConfigurationError(f"{name} must satisfy 3 < medium < high <= 9", field=name)

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]] = None) -> "FatigueConfig":
        values = section(settings, "fatigue")
        kwargs: Dict[str, Any] = {
            "thresholds": FatigueThresholds(**(values.pop("thresholds", {}) or {})),
            "time_series": TimeSeriesConfig(**(values.pop("time_series", {}) or {})),
        }
        for name in ("short_term_tiers", "long_term_tiers"):
            if name in values:
                kwargs[name] = SeverityTiers(**values.pop(name))
        return cls(**kwargs, **values)

    def tiers(self, short_term: bool) -> SeverityTiers:
        return self.short_term_tiers if short_term else self.long_term_tiers


@dataclass(frozen=True)
class CreativeFatigue:
    trend: str
    severity: FatigueSeverity
    ctr_change_pct: float


@dataclass(frozen=True)
class AudienceFatigue:
    frequency_trend: str
    severity: FatigueSeverity
    current_frequency: float


@dataclass(frozen=True)
class PlatformFatigue:
    cpm_trend: str
    severity: FatigueSeverity
    cpm_change_pct: float


@dataclass(frozen=True)
class FatigueIndicatorSet:
    creative: CreativeFatigue
    audience: AudienceFatigue
    platform: PlatformFatigue
    overall_severity: FatigueSeverity
    recommendations: Tuple[str, ...] = ()

    @property
    def severity_score(self) -> int:
        return self.creative.severity.score + self.audience.severity.score + self.platform.severity.score


@dataclass(frozen=True)
class AdFatigueGap:
    entity_id: str
    entity_name: str
    severity: FatigueSeverity
    severity_score: int
    is_short_term: bool
    fatigue_indicators: FatigueIndicatorSet
    recommendations: Tuple[str, ...]
    data_points: int

    def as_dict(self) -> Dict[str, Any]:
        ind = self.fatigue_indicators
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "severity": self.severity.value,
            "severity_score": self.severity_score,
            "is_short_term": self.is_short_term,
            "fatigue_indicators": {
                "creative": {**asdict(ind.creative), "severity": ind.creative.severity.value},
                "audience": {**asdict(ind.audience), "severity": ind.audience.severity.value},
                "platform": {**asdict(ind.platform), "severity": ind.platform.severity.value},
                "overall_severity": ind.overall_severity.value,
            },
            "recommendations": list(self.recommendations),
            "data_points": self.data_points,
        }


@dataclass(frozen=True)
class TimeSeriesAnalysis:
    enabled: bool
    date_range: str
    data_points_count: int
    trend_strength: float = 0.0
    trend_direction: str = "stable"
    seasonality_detected: bool = False
    seasonal_pattern: Optional[str] = None


@dataclass(frozen=True)
class FatigueSummary:
    total_entities: int = 0
    critical_count: int = 0
    warning_count: int = 0
    healthy_count: int = 0
    average_severity_score: float = 0.0


@dataclass(frozen=True)
class FatigueAnalysisResult:
    date_range: str
    data_points: int
    analysis_timestamp: str
    gaps: Tuple[AdFatigueGap, ...]
    summary: FatigueSummary
    time_series_analysis: TimeSeriesAnalysis

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date_range": self.date_range,
            "data_points": self.data_points,
            "analysis_timestamp": self.analysis_timestamp,
            "gaps": [g.as_dict() for g in self.gaps],
            "summary": asdict(self.summary),
            "time_series_analysis": asdict(self.time_series_analysis),
        }


def relative_change(first: float, last: float) -> float:
    return safe_div(last - first, first)


class DateRangeAwareFatigueEngine:
    def __init__(self, config: Optional[FatigueConfig] = None, clock: Optional[Clock] = None,
                 group_by: str = "ad"):
        self.config = config or FatigueConfig()
        self.clock = clock or RealClock()
        self.group_by = group_by
        group_key(group_by)

    def analyze_gaps(self, rows: Iterable[Any], date_range_label: str) -> FatigueAnalysisResult:
        rows = normalize_rows(rows)
        label_short = is_short_term_range(date_range_label)
        entities: "OrderedDict[str, List[InsightRow]]" = OrderedDict()
        for r in rows:
            entity_id = r.entity_id(self.group_by)
            if entity_id:
                entities.setdefault(entity_id, []).append(r)

        gaps = [self.analyze_entity(entity_id, entity_rows, label_short) for entity_id, entity_rows in entities.items()]
        gaps.sort(key=lambda g: (_SEVERITY_ORDER[g.severity], g.entity_id))

        short_series = label_short or len(rows) < self.config.time_series.min_data_points
        ts = self.time_series_analysis(rows, date_range_label, short_series)
        summary = self._summary(gaps)

        for g in gaps:
            FATIGUE_ENTITIES.labels(g.severity.value).inc()
        logger.info(
            f"Fatigue analysis ({date_range_label}): {summary.total_entities} entities, "
            f"{summary.critical_count} critical, {summary.warning_count} warning"
        )
        return FatigueAnalysisResult(
            date_range=date_range_label,
            data_points=len(rows),
            analysis_timestamp=self.clock.now_utc().isoformat(),
            gaps=tuple(gaps),
            summary=summary,
            time_series_analysis=ts,
        )

    def analyze_entity(self, entity_id: str, rows: Sequence[InsightRow], label_short: bool = False) -> AdFatigueGap:
        cfg = self.config
        is_short = label_short or len(rows) < cfg.time_series.min_data_points
        series = [m for _, m in daily_series(rows)]

        creative = self.creative_indicator(series, is_short)
        audience = self.audience_indicator(series)
        platform = self.platform_indicator(series, is_short)
        score = creative.severity.score + audience.severity.score + platform.severity.score
        overall = cfg.tiers(is_short).classify(score)

        total_impressions = sum(r.impressions for r in rows)
        recommendations = self.recommendations(overall, is_short, creative, audience, platform, total_impressions)
        indicators = FatigueIndicatorSet(creative, audience, platform, overall, recommendations)

        logger.debug(f"Fatigue {entity_id}: score={score} overall={overall.value} short_term={is_short}")
        return AdFatigueGap(
            entity_id=entity_id,
            entity_name=rows[0].ad_name if self.group_by == "ad" else (
                rows[0].adset_name if self.group_by == "adset" else rows[0].campaign_name
            ),
            severity=overall,
            severity_score=score,
            is_short_term=is_short,
            fatigue_indicators=indicators,
            recommendations=recommendations,
            data_points=len(rows),
        )

    def _change_severity(self, change: float, threshold: float) -> FatigueSeverity:
        magnitude = abs(change)
        if magnitude > threshold * self.config.severity_escalation:
            return FatigueSeverity.HIGH
        if magnitude > threshold:
            return FatigueSeverity.MEDIUM
        return FatigueSeverity.LOW

    def _threshold(self, base: float, is_short: bool) -> float:
        return base * self.config.short_term_multiplier if is_short else base

    def creative_indicator(self, series: Sequence[CalculatedMetrics], is_short: bool) -> CreativeFatigue:
        threshold = self._threshold(self.config.thresholds.ctr_decline_threshold, is_short)
        change = relative_change(series[0].ctr, series[-1].ctr) if len(series) >= 2 else 0.0
        if change < -threshold:
            trend = "declining"
        elif change > threshold:
            trend = "improving"
        else:
            trend = "stable"
        return CreativeFatigue(trend=trend, severity=self._change_severity(change, threshold),
                               ctr_change_pct=change * 100.0)

    def audience_indicator(self, series: Sequence[CalculatedMetrics]) -> AudienceFatigue:
        cfg = self.config
        freqs = [m.frequency for m in series if m.frequency > 0]
        current = freqs[-1] if freqs else 0.0
        trend = "stable"
        if len(freqs) >= 2:
            delta = freqs[-1] - freqs[0]
            if delta > cfg.frequency_dead_band:
                trend = "increasing"
            elif delta < -cfg.frequency_dead_band:
                trend = "decreasing"

        warning = cfg.thresholds.frequency_warning_threshold
        if current >= warning * cfg.frequency_high_multiplier:
            severity = FatigueSeverity.HIGH
        elif current >= warning:
            severity = FatigueSeverity.MEDIUM
        else:
            severity = FatigueSeverity.LOW
        return AudienceFatigue(frequency_trend=trend, severity=severity, current_frequency=current)

    def platform_indicator(self, series: Sequence[CalculatedMetrics], is_short: bool) -> PlatformFatigue:
        threshold = self._threshold(self.config.thresholds.cpm_increase_threshold, is_short)
        change = relative_change(series[0].cpm, series[-1].cpm) if len(series) >= 2 else 0.0
        if change > threshold:
            trend = "increasing"
        elif change < -threshold:
            trend = "decreasing"
        else:
            trend = "stable"
        return PlatformFatigue(cpm_trend=trend, severity=self._change_severity(change, threshold),
                               cpm_change_pct=change * 100.0)

    def recommendations(self, overall: FatigueSeverity, is_short: bool, creative: CreativeFatigue,
                        audience: AudienceFatigue, platform: PlatformFatigue,
                        total_impressions: float) -> Tuple[str, ...]:
        recs: List[str] = []
        if overall is FatigueSeverity.HIGH:
            if is_short:
                recs.append("immediate action: pause the ad or swap in a fresh creative")
            else:
                recs.append("gradual rotation: shift budget to fresher ads and rotate creatives over the coming weeks")
        elif overall is FatigueSeverity.MEDIUM:
            if is_short:
                recs.append("monitor closely over the next few days before changing budget")
            else:
                recs.append("optimize targeting and plan a gradual creative refresh")

        if creative.severity is FatigueSeverity.HIGH:
            recs.append(f"CTR changed {creative.ctr_change_pct:.1f}% over the period: refresh the creative")
        if audience.severity is FatigueSeverity.HIGH:
            recs.append(
                f"Frequency {audience.current_frequency:.1f} is well above "
                f"{self.config.thresholds.frequency_warning_threshold:g}: expand or refresh the audience"
            )
        if platform.severity is FatigueSeverity.HIGH:
            recs.append(f"CPM changed {platform.cpm_change_pct:.1f}%: review placements and bidding")
        if total_impressions < self.config.thresholds.min_impressions:
            recs.append(
                f"insufficient data: fewer than {self.config.thresholds.min_impressions:g} impressions, "
                f"treat this assessment as preliminary"
            )
        return tuple(recs)

    def time_series_analysis(self, rows: Sequence[InsightRow], label: str, short_term: bool) -> TimeSeriesAnalysis:
        if short_term:
            return TimeSeriesAnalysis(enabled=False, date_range=label, data_points_count=len(rows))

        ts_cfg = self.config.time_series
        ctr = pd.Series({day: m.ctr for day, m in daily_series(rows)}, dtype=float).sort_index()
        strength, direction = 0.0, "stable"
        if len(ctr) >= ts_cfg.trend_analysis_window:
            strength, slope = trend_fit(ctr.to_numpy())
            if strength >= 0.1 and slope != 0:
                direction = "increasing" if slope > 0 else "decreasing"

        seasonal = False
        if len(ctr) >= ts_cfg.seasonality_min_points:
            autocorr = ctr.autocorr(lag=7)
            seasonal = bool(not np.isnan(autocorr) and autocorr > ts_cfg.seasonality_autocorr)

        return TimeSeriesAnalysis(
            enabled=True,
            date_range=label,
            data_points_count=len(rows),
            trend_strength=strength,
            trend_direction=direction,
            seasonality_detected=seasonal,
            seasonal_pattern="weekly" if seasonal else None,
        )

    @staticmethod
    def _summary(gaps: Sequence[AdFatigueGap]) -> FatigueSummary:
        return FatigueSummary(
            total_entities=len(gaps),
            critical_count=sum(1 for g in gaps if g.severity is FatigueSeverity.HIGH),
            warning_count=sum(1 for g in gaps if g.severity is FatigueSeverity.MEDIUM),
            healthy_count=sum(1 for g in gaps if g.severity is FatigueSeverity.LOW),
            average_severity_score=safe_div(sum(g.severity_score for g in gaps), len(gaps)),
        )


def daily_series(rows: Iterable[InsightRow]) -> List[Tuple[str, CalculatedMetrics]]:
    """Per-day metrics, oldest first, using the aggregator's summation."""
    return [(d.date, d.metrics) for d in Aggregator.daily_breakdown(rows)]


def trend_fit(values: np.ndarray) -> Tuple[float, float]:
    """Least-squares line through the series. Returns (r_squared, slope)."""
    y = np.asarray(values, dtype=float)
    if y.size < 2:
        return 0.0, 0.0
    x = np.arange(y.size, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot == 0:
        return 0.0, 0.0
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    return max(0.0, 1.0 - ss_res / ss_tot), float(slope)


__all__ = [
    "FatigueSeverity",
    "FatigueThresholds",
    "TimeSeriesConfig",
    "SeverityTiers",
    "FatigueConfig",
    "CreativeFatigue",
    "AudienceFatigue",
    "PlatformFatigue",
    "FatigueIndicatorSet",
    "AdFatigueGap",
    "TimeSeriesAnalysis",
    "FatigueSummary",
    "FatigueAnalysisResult",
    "DateRangeAwareFatigueEngine",
    "daily_series",
    "relative_change",
    "trend_fit",
]
