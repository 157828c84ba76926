import pytest

from adinsight.analytics.delivery import (
    DeliveryIntensity,
    DeliveryPattern,
    DeliveryPatternAnalyzer,
    build_timeline,
    classify_pattern,
)
from adinsight.infrastructure.error_handling import ConfigurationError

WINDOW = {"start": "2024-01-01", "end": "2024-01-10"}


@pytest.fixture
def analyzer():
    return DeliveryPatternAnalyzer()


def test_intermittent_scenario(analyzer, make_row):
    rows = [make_row(date=d) for d in ("2024-01-01", "2024-01-03", "2024-01-05")]
    result = analyzer.analyze(rows, WINDOW)
    assert result.total_requested_days == 10
    assert result.actual_delivery_days == 3
    assert result.delivery_ratio == pytest.approx(0.3)
    assert result.pattern is DeliveryPattern.INTERMITTENT
    assert result.first_delivery_date == "2024-01-01"
    assert result.last_delivery_date == "2024-01-05"


def test_continuous_week(analyzer, series_rows):
    rows = series_rows("ad_1", "2024-01-01", "2024-01-07")
    result = analyzer.analyze(rows, ("2024-01-01", "2024-01-07"))
    assert result.pattern is DeliveryPattern.CONTINUOUS
    assert result.delivery_ratio == 1.0


def test_single_partial_none(analyzer, make_row, series_rows):
    assert analyzer.analyze([make_row(date="2024-01-04")], WINDOW).pattern is DeliveryPattern.SINGLE
    eight_days = series_rows("ad_1", "2024-01-01", "2024-01-08")
    assert analyzer.analyze(eight_days, WINDOW).pattern is DeliveryPattern.PARTIAL
    empty = analyzer.analyze([], WINDOW)
    assert empty.pattern is DeliveryPattern.NONE
    assert empty.first_delivery_date is None


def test_single_day_window_with_one_row_is_continuous(analyzer, make_row):
    result = analyzer.analyze([make_row(date="2024-01-01")], ("2024-01-01", "2024-01-01"))
    assert result.pattern is DeliveryPattern.CONTINUOUS


def test_ratio_clamped_when_rows_exceed_window(analyzer, series_rows):
    rows = series_rows("ad_1", "2024-01-01", "2024-01-05")
    result = analyzer.analyze(rows, ("2024-01-01", "2024-01-02"))
    assert result.delivery_ratio == 1.0
    assert result.pattern is DeliveryPattern.CONTINUOUS


def test_patterns_exhaustive_and_ratio_bounded():
    for total in range(1, 12):
        for actual in range(0, total + 1):
            ratio = actual / total
            assert 0.0 <= ratio <= 1.0
            assert classify_pattern(actual, total, ratio) in set(DeliveryPattern)


def test_invalid_window_rejected(analyzer):
    with pytest.raises(ValueError):
        analyzer.analyze([], ("2024-01-10", "2024-01-01"))


def test_invalid_partial_ratio():
    with pytest.raises(ConfigurationError):
        DeliveryPatternAnalyzer(partial_ratio=1.5)


def test_timeline_synthesizes_missing_days(make_row):
    rows = [
        make_row(date="2024-01-01", impressions=1000),
        make_row(date="2024-01-03", impressions=1000),
        make_row(date="2024-02-01", impressions=1000),
    ]
    timeline = build_timeline(rows, ("2024-01-01", "2024-01-03"), entity_id="ad_1")
    assert [s.date for s in timeline.daily_statuses] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert [s.has_delivery for s in timeline.daily_statuses] == [True, False, True]
    missing = timeline.daily_statuses[1]
    assert missing.metrics.impressions == 0
    assert missing.delivery_intensity is DeliveryIntensity.NONE
    assert timeline.summary() == {"total_days": 3, "delivery_days": 2, "gap_days": 1}


def test_timeline_sums_platform_rows_per_day(make_row):
    rows = [
        make_row(date="2024-01-01", publisher_platform="facebook", impressions=400),
        make_row(date="2024-01-01", publisher_platform="instagram", impressions=600),
    ]
    timeline = build_timeline(rows, ("2024-01-01", "2024-01-01"))
    assert timeline.daily_statuses[0].metrics.impressions == 1000


def test_zero_impression_day_is_not_delivery(make_row):
    timeline = build_timeline([make_row(impressions=0)], ("2024-01-01", "2024-01-01"))
    assert timeline.daily_statuses[0].has_delivery is False


def test_delivery_intensity_relative_to_mean(make_row):
    rows = [
        make_row(date="2024-01-01", impressions=2000),
        make_row(date="2024-01-02", impressions=1000),
        make_row(date="2024-01-03", impressions=100),
    ]
    timeline = build_timeline(rows, ("2024-01-01", "2024-01-03"))
    assert [s.delivery_intensity for s in timeline.daily_statuses] == [
        DeliveryIntensity.HIGH,
        DeliveryIntensity.MEDIUM,
        DeliveryIntensity.LOW,
    ]
