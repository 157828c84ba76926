"""
ADINSIGHT ANALYTICS
Per-entity analysis of insight rows

This package contains:
- metrics: summed base metrics and recomputed ratios
- aggregator: per-entity records with daily and platform breakdowns
- delivery: delivery-pattern classification and daily timelines
- gap_detection: delivery-gap extraction and classification
- fatigue: date-range-aware fatigue scoring
"""

from .metrics import BaseMetrics, CalculatedMetrics, MetricTotals, summarize_rows
from .aggregator import (
    Aggregator, AggregatorConfig, AggregationResult, AdPerformanceRecord, ConsistencyResult,
    aggregate, check_consistency,
)
from .delivery import DeliveryPattern, DeliveryAnalysis, DailyDeliveryStatus, Timeline, DeliveryPatternAnalyzer
from .gap_detection import (
    GapDetectionConfig, GapThresholds, GapPatterns, GapDetectionEngine, GapDetectionResult, DeliveryGap,
    create_default_config,
)
from .fatigue import FatigueConfig, FatigueThresholds, TimeSeriesConfig, DateRangeAwareFatigueEngine, FatigueAnalysisResult

__all__ = [
    'BaseMetrics', 'CalculatedMetrics', 'MetricTotals', 'summarize_rows',
    'Aggregator', 'AggregatorConfig', 'AggregationResult', 'AdPerformanceRecord', 'ConsistencyResult',
    'aggregate', 'check_consistency',
    'DeliveryPattern', 'DeliveryAnalysis', 'DailyDeliveryStatus', 'Timeline', 'DeliveryPatternAnalyzer',
    'GapDetectionConfig', 'GapThresholds', 'GapPatterns', 'GapDetectionEngine', 'GapDetectionResult', 'DeliveryGap',
    'create_default_config',
    'FatigueConfig', 'FatigueThresholds', 'TimeSeriesConfig', 'DateRangeAwareFatigueEngine', 'FatigueAnalysisResult',
]
