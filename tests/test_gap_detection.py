import pytest

from adinsight.analytics.delivery import DailyDeliveryStatus, DeliveryPatternAnalyzer
from adinsight.analytics.gap_detection import (
    GapDetectionConfig,
    GapDetectionEngine,
    GapPatterns,
    GapSeverity,
    GapThresholds,
    GapType,
    create_default_config,
)
from adinsight.analytics.metrics import CalculatedMetrics
from adinsight.infrastructure.error_handling import ConfigurationError
from adinsight.utils import iter_days

NORMAL = CalculatedMetrics(impressions=1000, clicks=20, spend=10.0, ctr=2.0)


def timeline(pattern, start="2024-01-01", metrics=None):
    """'D' = delivery day, '_' = no delivery. 2024-01-01 is a Monday."""
    metrics = metrics or {}
    days = list(iter_days(start, "2030-01-01"))[:len(pattern)]
    out = []
    for i, (ch, day) in enumerate(zip(pattern, days)):
        if ch == "D":
            out.append(DailyDeliveryStatus(day, True, metrics.get(i, NORMAL)))
        else:
            out.append(DailyDeliveryStatus(day, False))
    return out


@pytest.fixture
def engine(fixed_clock):
    return GapDetectionEngine(create_default_config(), clock=fixed_clock)


def test_empty_timeline(engine):
    result = engine.detect_gaps([])
    assert result.gaps == ()
    assert result.statistics.continuity_score == 100.0
    assert result.statistics.gap_rate == 0.0


def test_all_gap_timeline(engine):
    result = engine.detect_gaps(timeline("_____"))
    (gap,) = result.gaps
    assert gap.duration_days == 5
    assert gap.start_date == "2024-01-01"
    assert gap.end_date == "2024-01-05"
    assert gap.is_ongoing
    assert gap.before_gap_metrics is None
    assert gap.type is GapType.UNEXPECTED
    assert result.statistics.continuity_score == 0.0


def test_continuous_week_has_no_gaps(engine, series_rows):
    rows = series_rows("ad_1", "2024-01-01", "2024-01-07")
    tl, result = engine.analyze_entity(rows, ("2024-01-01", "2024-01-07"), "ad_1")
    assert tl.delivery_days == 7
    assert result.total_gaps == 0
    assert result.statistics.continuity_score == 100.0


def test_closed_gap_impact_and_context(engine):
    result = engine.detect_gaps(timeline("DD___D"))
    (gap,) = result.gaps
    assert (gap.start_date, gap.end_date, gap.duration_days) == ("2024-01-03", "2024-01-05", 3)
    assert gap.severity is GapSeverity.MAJOR
    assert not gap.is_ongoing
    assert gap.gap_context.preceding_delivery_days == 2
    assert gap.gap_context.following_delivery_days == 1
    assert gap.impact.performance_drop_pct == 0.0
    assert gap.impact.recovery_time_days == 3
    assert gap.impact.estimated_lost_impressions == 3000
    assert gap.impact.estimated_lost_revenue == pytest.approx(24.0)


def test_performance_drop_after_gap(engine):
    after = CalculatedMetrics(impressions=1000, clicks=15, spend=10.0, ctr=1.5)
    (gap,) = engine.detect_gaps(timeline("D__D", metrics={3: after})).gaps
    assert gap.impact.performance_drop_pct == pytest.approx(25.0)
    assert gap.impact.is_significant


def test_ongoing_gap_keeps_before_metrics(engine):
    (gap,) = engine.detect_gaps(timeline("DDD__")).gaps
    assert gap.is_ongoing
    assert gap.after_gap_metrics is None
    assert gap.before_gap_metrics == NORMAL
    assert gap.impact.performance_drop_pct == 0.0
    assert gap.impact.estimated_lost_impressions == 2000


def test_weekend_gap(engine):
    # 2024-01-05 is a Friday
    (gap,) = engine.detect_gaps(timeline("D__D", start="2024-01-05")).gaps
    assert gap.type is GapType.WEEKEND

    strict = GapDetectionEngine(GapDetectionConfig(patterns=GapPatterns(weekend_tolerance=False)))
    (gap,) = strict.detect_gaps(timeline("D__D", start="2024-01-05")).gaps
    assert gap.type is GapType.UNEXPECTED


def test_scheduled_maintenance_window():
    config = GapDetectionConfig(patterns=GapPatterns(scheduled_maintenance_windows=("2024-01-02:2024-01-04",)))
    engine = GapDetectionEngine(config)
    (gap,) = engine.detect_gaps(timeline("D___D")).gaps
    assert gap.type is GapType.SCHEDULED_MAINTENANCE
    (partly,) = engine.detect_gaps(timeline("D____D")).gaps
    assert partly.type is GapType.UNEXPECTED


def test_budget_exhaustion_and_performance_pause(engine):
    big_spend = CalculatedMetrics(impressions=50000, clicks=1000, spend=1500.0, ctr=2.0)
    (gap,) = engine.detect_gaps(timeline("D___D", metrics={0: big_spend})).gaps
    assert gap.type is GapType.BUDGET_EXHAUSTION

    low_ctr = CalculatedMetrics(impressions=1000, clicks=5, spend=10.0, ctr=0.5)
    (gap,) = engine.detect_gaps(timeline("D___D", metrics={0: low_ctr})).gaps
    assert gap.type is GapType.PERFORMANCE_PAUSE


def test_severity_thresholds(engine):
    assert engine.determine_severity(7) is GapSeverity.CRITICAL
    assert engine.determine_severity(3) is GapSeverity.MAJOR
    assert engine.determine_severity(1) is GapSeverity.MINOR
    lenient = GapDetectionEngine(GapDetectionConfig(thresholds=GapThresholds(7, 3, 2)))
    assert lenient.determine_severity(1) is GapSeverity.NEGLIGIBLE


def test_min_gap_days_filters_short_runs():
    engine = GapDetectionEngine(GapDetectionConfig(min_gap_days=2))
    gaps = engine.detect_gaps(timeline("D_D___D")).gaps
    assert [g.duration_days for g in gaps] == [3]


def test_statistics(engine):
    result = engine.detect_gaps(timeline("D_D___D"))
    stats = result.statistics
    assert stats.total_gap_days == 4
    assert stats.gap_rate == pytest.approx(4 / 7 * 100)
    assert stats.average_gap_duration == 2.0
    assert stats.longest_gap_days == 3
    assert stats.continuity_score == pytest.approx(100 - 4 / 7 * 100)
    assert stats.severity_distribution == {"critical": 0, "major": 1, "minor": 1, "negligible": 0}
    assert stats.estimated_total_impact["lost_impressions"] == 4000


def test_metadata(engine, fixed_clock):
    result = engine.detect_gaps(timeline("DD_"))
    assert result.metadata["analysis_timestamp"] == fixed_clock.now_utc().isoformat()
    assert result.metadata["timeline_summary"] == {"total_days": 3, "delivery_days": 2, "gap_days": 1}
    assert result.metadata["config_used"]["min_gap_days"] == 1


def test_accepts_timeline_object(engine, make_row):
    tl = DeliveryPatternAnalyzer().build_timeline([make_row(date="2024-01-01")], ("2024-01-01", "2024-01-04"))
    (gap,) = engine.detect_gaps(tl).gaps
    assert gap.duration_days == 3


def test_long_all_gap_timeline_is_one_gap(engine):
    result = engine.detect_gaps(timeline("_" * 120))
    (gap,) = result.gaps
    assert gap.duration_days == 120
    assert gap.start_date == "2024-01-01"
    assert result.metadata["timeline_summary"]["total_days"] == 120
    assert result.statistics.continuity_score == 0


def test_explicit_analysis_window_keeps_recent_days():
    engine = GapDetectionEngine(GapDetectionConfig(max_analysis_window=5))
    (gap,) = engine.detect_gaps(timeline("_" * 10)).gaps
    assert gap.duration_days == 5
    assert gap.start_date == "2024-01-06"


@pytest.mark.parametrize("build", [
    lambda: GapThresholds(critical_gap_days=3, major_gap_days=3, minor_gap_days=1),
    lambda: GapThresholds(critical_gap_days=7, major_gap_days=1, minor_gap_days=1),
    lambda: GapThresholds(critical_gap_days=7, major_gap_days=3, minor_gap_days=0),
    lambda: GapDetectionConfig(min_gap_days=0),
    lambda: GapPatterns(scheduled_maintenance_windows=("2024/01/01",)),
    lambda: GapPatterns(scheduled_maintenance_windows=("2024-01-05:2024-01-01",)),
])
def test_invalid_config_raises_before_analysis(build):
    with pytest.raises(ConfigurationError):
        build()


def test_config_from_settings():
    config = GapDetectionConfig.from_settings({
        "gap_detection": {
            "min_gap_days": 2,
            "thresholds": {"critical_gap_days": 10, "major_gap_days": 5, "minor_gap_days": 2},
            "patterns": {"scheduled_maintenance_windows": ["2024-03-01"]},
        }
    })
    assert config.min_gap_days == 2
    assert config.thresholds.critical_gap_days == 10
    assert config.patterns.maintenance_windows[0].total_days == 1
    with pytest.raises(ConfigurationError):
        GapDetectionConfig.from_settings({"gap_detection": {"thresholds": {"major_gap_days": 9}}})


def test_config_from_settings_leaves_settings_untouched():
    settings = {"gap_detection": {"patterns": {"scheduled_maintenance_windows": ["2024-03-01"]}}}
    GapDetectionConfig.from_settings(settings)
    assert settings["gap_detection"]["patterns"]["scheduled_maintenance_windows"] == ["2024-03-01"]


def test_config_from_settings_accepts_null_window():
    config = GapDetectionConfig.from_settings({"gap_detection": {"max_analysis_window": None}})
    assert config.max_analysis_window is None
