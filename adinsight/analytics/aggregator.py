"""
Per-entity aggregation of raw insight rows.

Groups day/platform rows by ad, ad set or campaign and produces one
AdPerformanceRecord per entity with summary, daily and platform metrics.
Ratios are always recomputed from summed numerators and denominators.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from prometheus_client import Counter, Histogram

from adinsight import config as C
from adinsight.analytics.metrics import CalculatedMetrics, MetricTotals, summarize_rows
from adinsight.config import section
from adinsight.infrastructure.data_validation import (
    GROUP_KEYS,
    QUALITY_FIELDS,
    InsightRow,
    deduplicate_rows,
    group_key,
    normalize_rows,
)
from adinsight.infrastructure.error_handling import (
    AggregationError,
    ConfigurationError,
    ErrorCollector,
    MissingDataError,
    capture,
)
from adinsight.utils import DateWindow, safe_div

logger = logging.getLogger(__name__)

ROWS_INGESTED = Counter("adinsight_rows_ingested_total", "Insight rows received by the aggregator")
ROWS_DROPPED = Counter("adinsight_rows_dropped_total", "Insight rows dropped before grouping", ["reason"])
ENTITIES = Counter("adinsight_entities_total", "Entities aggregated", ["outcome"])
AGG_LAT = Histogram("adinsight_aggregation_seconds", "Aggregation batch latency")


@dataclass(frozen=True)
class AggregatorConfig:
    group_by: str = "ad"
    include_daily: bool = True
    include_platform: bool = True
    deduplicate: bool = False
    sort_output: bool = False
    max_workers: int = 1
    missing_ratio_threshold: float = C.MISSING_RATIO_THRESHOLD
    high_ctr_warning: float = C.HIGH_CTR_WARNING_PCT
    limited_range_min_dates: int = C.LIMITED_RANGE_MIN_DATES
    limited_range_min_rows: int = C.LIMITED_RANGE_MIN_ROWS

    def __post_init__(self) -> None:
        if self.group_by not in GROUP_KEYS:
            raise ConfigurationError(
                f"group_by must be one of {sorted(GROUP_KEYS)}", field="group_by", value=self.group_by
            )
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1", field="max_workers", value=self.max_workers)
        if not 0 <= self.missing_ratio_threshold <= 1:
            raise ConfigurationError("missing_ratio_threshold must be within [0, 1]", field="missing_ratio_threshold")

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "AggregatorConfig":
        values = section(settings, "aggregation")
        values.update({k: v for k, v in overrides.items() if v is not None})
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass(frozen=True)
class DayMetrics:
    date: str
    metrics: CalculatedMetrics


@dataclass(frozen=True)
class CreativeInfo:
    id: str
    name: str = ""
    type: str = ""
    thumbnail_url: str = ""
    video_url: str = ""
    image_url: str = ""
    object_type: str = ""


@dataclass(frozen=True)
class AdPerformanceRecord:
    entity_id: str
    group_by: str
    ad_id: str
    ad_name: str
    adset_id: str
    adset_name: str
    campaign_id: str
    campaign_name: str
    account_id: str
    date_range: DateWindow
    metrics: CalculatedMetrics
    row_count: int
    data_quality: str = "complete"
    warnings: Tuple[str, ...] = ()
    daily_breakdown: Optional[Tuple[DayMetrics, ...]] = None
    platform_breakdown: Optional[Mapping[str, CalculatedMetrics]] = None
    creative: Optional[CreativeInfo] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "group_by": self.group_by,
            "ad_id": self.ad_id,
            "ad_name": self.ad_name,
            "adset_id": self.adset_id,
            "adset_name": self.adset_name,
            "campaign_id": self.campaign_id,
            "campaign_name": self.campaign_name,
            "account_id": self.account_id,
            "summary": {
                "date_range": self.date_range.as_dict(),
                "metrics": self.metrics.as_dict(),
            },
            "daily_breakdown": (
                [{"date": d.date, **d.metrics.as_dict()} for d in self.daily_breakdown]
                if self.daily_breakdown is not None else None
            ),
            "platform_breakdown": (
                {p: m.as_dict() for p, m in self.platform_breakdown.items()}
                if self.platform_breakdown is not None else None
            ),
            "creative": asdict(self.creative) if self.creative else None,
            "data_quality": self.data_quality,
            "warnings": list(self.warnings),
            "row_count": self.row_count,
        }


@dataclass(frozen=True)
class Discrepancy:
    platform: str
    metric: str
    expected: float
    actual: float
    variance: float
    severity: str


@dataclass(frozen=True)
class ConsistencyResult:
    entity_id: str
    total_checks: int
    passed_checks: int
    discrepancies: Tuple[Discrepancy, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies


@dataclass(frozen=True)
class BatchSummary:
    total_entities: int = 0
    total_spend: float = 0.0
    total_impressions: float = 0.0
    total_clicks: float = 0.0
    total_conversions: float = 0.0
    total_revenue: float = 0.0
    average_ctr: float = 0.0
    average_roas: float = 0.0


@dataclass
class AggregationResult:
    records: List[AdPerformanceRecord]
    errors: List[AggregationError]
    summary: BatchSummary
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "records": [r.as_dict() for r in self.records],
            "errors": [e.as_dict() for e in self.errors],
            "summary": asdict(self.summary),
            "metadata": dict(self.metadata),
        }


def group_rows(rows: Iterable[InsightRow], group_by: str = "ad") -> Tuple["OrderedDict[str, List[InsightRow]]", int]:
    """Group rows by entity id in first-seen order. Returns (groups, rows_without_id)."""
    group_key(group_by)
    groups: "OrderedDict[str, List[InsightRow]]" = OrderedDict()
    dropped = 0
    for row in rows:
        entity_id = row.entity_id(group_by)
        if not entity_id:
            dropped += 1
            continue
        groups.setdefault(entity_id, []).append(row)
    return groups, dropped


class Aggregator:
    """Turns raw insight rows into per-entity AdPerformanceRecords."""

    def __init__(self, config: Optional[AggregatorConfig] = None):
        self.config = config or AggregatorConfig()

    def aggregate(
        self,
        rows: Iterable[Any],
        group_by: Optional[str] = None,
        include_daily: Optional[bool] = None,
        include_platform: Optional[bool] = None,
    ) -> AggregationResult:
        cfg = self.config
        group_by = group_by or cfg.group_by
        include_daily = cfg.include_daily if include_daily is None else include_daily
        include_platform = cfg.include_platform if include_platform is None else include_platform
        t0 = time.perf_counter()

        normalized = normalize_rows(rows)
        ROWS_INGESTED.inc(len(normalized))

        duplicates = 0
        if cfg.deduplicate:
            normalized, duplicates = deduplicate_rows(normalized)
            if duplicates:
                ROWS_DROPPED.labels("duplicate").inc(duplicates)

        groups, dropped = group_rows(normalized, group_by)
        if dropped:
            ROWS_DROPPED.labels("missing_id").inc(dropped)
            logger.warning(f"Dropped {dropped} rows without {group_key(group_by)}")
        undated = sum(1 for entity_rows in groups.values() for r in entity_rows if not r.date_start)
        if undated:
            ROWS_DROPPED.labels("undated").inc(undated)
            logger.warning(f"Excluding {undated} rows without a valid date_start")
        logger.info(f"Grouped {len(normalized)} rows into {len(groups)} {group_by} entities")

        items = list(groups.items())
        collector = self._run(items, group_by, include_daily, include_platform)

        order = {entity_id: i for i, (entity_id, _) in enumerate(items)}
        records = sorted(collector.successes, key=lambda r: order[r.entity_id])
        errors = sorted(collector.failures, key=lambda e: order.get(e.entity_id, len(order)))
        if cfg.sort_output:
            records.sort(key=lambda r: r.entity_id)
            errors.sort(key=lambda e: e.entity_id)

        ENTITIES.labels("ok").inc(len(records))
        ENTITIES.labels("failed").inc(len(errors))
        elapsed = time.perf_counter() - t0
        AGG_LAT.observe(elapsed)
        logger.info(
            f"Aggregated {len(records)} entities ({len(errors)} failed) from {len(normalized)} rows "
            f"in {elapsed * 1000:.1f}ms"
        )

        return AggregationResult(
            records=records,
            errors=errors,
            summary=self._summarize(records),
            metadata=self._metadata(normalized, records, errors, dropped, undated, duplicates, group_by),
        )

    def _run(self, items: Sequence[Tuple[str, List[InsightRow]]], group_by: str,
             include_daily: bool, include_platform: bool) -> ErrorCollector:
        def work(shard: Sequence[Tuple[str, List[InsightRow]]]) -> ErrorCollector:
            local = ErrorCollector()
            for entity_id, entity_rows in shard:
                local.add(capture(
                    entity_id, self.aggregate_entity,
                    entity_id, entity_rows, group_by, include_daily, include_platform,
                ))
            return local

        workers = min(self.config.max_workers, len(items))
        if workers <= 1:
            return work(items)
        shards = [items[i::workers] for i in range(workers)]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(work, shard) for shard in shards]
            return ErrorCollector.merge(f.result() for f in futures)

    def aggregate_entity(
        self,
        entity_id: str,
        rows: Sequence[InsightRow],
        group_by: str = "ad",
        include_daily: bool = True,
        include_platform: bool = True,
    ) -> AdPerformanceRecord:
        if not rows:
            raise MissingDataError(f"No rows for entity {entity_id}")
        first = rows[0]
        # Undated rows stay out of every total.
        dated = [r for r in rows if r.date_start]
        undated = len(rows) - len(dated)
        date_range = self._date_range(entity_id, dated)

        daily = self.daily_breakdown(dated) if include_daily else None
        platforms = self.platform_breakdown(dated) if include_platform else None
        warnings = self._warnings(dated)
        if undated:
            warnings.append(f"Excluded {undated} rows without a valid date")
        invalid = sum(1 for r in rows if r.errors)
        if invalid:
            warnings.append(f"Invalid field values in {invalid} rows")
        missing_ratio = self._missing_ratio(rows)
        if missing_ratio > self.config.missing_ratio_threshold:
            warnings.append(f"High missing-field ratio: {missing_ratio * 100:.1f}%")
        has_row_problems = undated or invalid or any(r.warnings for r in rows)
        quality = "partial" if has_row_problems or missing_ratio > self.config.missing_ratio_threshold else "complete"

        logger.debug(f"Entity {entity_id}: {len(rows)} rows, {date_range.start}..{date_range.end}, {quality}")
        return AdPerformanceRecord(
            entity_id=entity_id,
            group_by=group_by,
            ad_id=first.ad_id,
            ad_name=first.ad_name or ("Untitled Ad" if group_by == "ad" else ""),
            adset_id=first.adset_id,
            adset_name=first.adset_name,
            campaign_id=first.campaign_id,
            campaign_name=first.campaign_name,
            account_id=first.account_id,
            date_range=date_range,
            metrics=summarize_rows(dated),
            row_count=len(dated),
            data_quality=quality,
            warnings=tuple(warnings),
            daily_breakdown=daily,
            platform_breakdown=platforms,
            creative=self._creative(first),
        )

    @staticmethod
    def daily_breakdown(rows: Iterable[InsightRow]) -> Tuple[DayMetrics, ...]:
        by_day: Dict[str, MetricTotals] = {}
        for r in rows:
            if not r.date_start:
                continue
            by_day.setdefault(r.date_start, MetricTotals()).add(r)
        return tuple(DayMetrics(day, by_day[day].finalize()) for day in sorted(by_day))

    @staticmethod
    def platform_breakdown(rows: Iterable[InsightRow]) -> Mapping[str, CalculatedMetrics]:
        by_platform: Dict[str, MetricTotals] = {}
        for r in rows:
            by_platform.setdefault(r.platform, MetricTotals()).add(r)
        return MappingProxyType({p: t.finalize() for p, t in by_platform.items()})

    @staticmethod
    def _date_range(entity_id: str, rows: Sequence[InsightRow]) -> DateWindow:
        starts = [r.date_start for r in rows if r.date_start]
        stops = [r.date_stop or r.date_start for r in rows if r.date_stop or r.date_start]
        if not starts:
            raise MissingDataError(f"Entity {entity_id} has no dated rows")
        return DateWindow(min(starts), max(max(stops), min(starts)))

    @staticmethod
    def _missing_ratio(rows: Sequence[InsightRow]) -> float:
        if not rows:
            return 1.0
        missing = sum(len(r.missing_fields) for r in rows)
        return missing / (len(rows) * len(QUALITY_FIELDS))

    def _warnings(self, rows: Sequence[InsightRow]) -> List[str]:
        warnings: List[str] = []
        for r in rows:
            ctr = r.ctr if r.ctr else safe_div(r.clicks, r.impressions) * 100.0
            if ctr > self.config.high_ctr_warning:
                warnings.append(f"Unusually high CTR detected: {ctr:g}%")
                break
        dates = {r.date_start for r in rows}
        if len(dates) < self.config.limited_range_min_dates and len(rows) > self.config.limited_range_min_rows:
            warnings.append("Limited date range in dataset")
        return warnings

    @staticmethod
    def _creative(row: InsightRow) -> Optional[CreativeInfo]:
        if not row.creative_id:
            return None
        return CreativeInfo(
            id=row.creative_id,
            name=row.creative_name,
            type=row.creative_type,
            thumbnail_url=row.thumbnail_url,
            video_url=row.video_url,
            image_url=row.image_url,
            object_type=row.object_type,
        )

    @staticmethod
    def _summarize(records: Sequence[AdPerformanceRecord]) -> BatchSummary:
        spend = sum(r.metrics.spend for r in records)
        impressions = sum(r.metrics.impressions for r in records)
        clicks = sum(r.metrics.clicks for r in records)
        conversions = sum(r.metrics.conversions for r in records)
        revenue = sum(r.metrics.conversion_value for r in records)
        return BatchSummary(
            total_entities=len(records),
            total_spend=spend,
            total_impressions=impressions,
            total_clicks=clicks,
            total_conversions=conversions,
            total_revenue=revenue,
            average_ctr=safe_div(clicks, impressions) * 100.0,
            average_roas=safe_div(revenue, spend),
        )

    @staticmethod
    def _metadata(rows: Sequence[InsightRow], records: Sequence[AdPerformanceRecord],
                  errors: Sequence[AggregationError], dropped: int, undated: int, duplicates: int,
                  group_by: str) -> Dict[str, Any]:
        starts = [r.date_range.start for r in records]
        ends = [r.date_range.end for r in records]
        platforms = sorted({r.platform for r in rows})
        reduction = (1 - len(records) / len(rows)) * 100 if rows else 0.0
        return {
            "group_by": group_by,
            "total_input_rows": len(rows),
            "dropped_rows": dropped,
            "undated_rows": undated,
            "duplicates_removed": duplicates,
            "total_output_records": len(records),
            "failed_entities": len(errors),
            "data_reduction": f"{reduction:.1f}%",
            "platforms": platforms,
            "date_range": {"start": min(starts), "end": max(ends)} if records else None,
        }


def check_consistency(record: AdPerformanceRecord,
                      tolerance_pct: float = C.CONSISTENCY_TOLERANCE_PCT) -> ConsistencyResult:
    """Compare platform-breakdown totals against the entity summary."""
    if record.platform_breakdown is None:
        return ConsistencyResult(entity_id=record.entity_id, total_checks=0, passed_checks=0)

    discrepancies: List[Discrepancy] = []
    checks = ("impressions", "clicks", "spend", "conversions")
    for metric in checks:
        actual = sum(getattr(m, metric) for m in record.platform_breakdown.values())
        expected = getattr(record.metrics, metric)
        if expected == 0:
            variance = 0.0 if actual == 0 else 100.0
        else:
            variance = abs((actual - expected) / expected * 100)
        if variance <= tolerance_pct:
            continue
        if variance > C.HIGH_VARIANCE_PCT:
            severity = "high"
        elif variance > C.MEDIUM_VARIANCE_PCT:
            severity = "medium"
        else:
            severity = "low"
        discrepancies.append(Discrepancy("all", metric, expected, actual, variance, severity))

    return ConsistencyResult(
        entity_id=record.entity_id,
        total_checks=len(checks),
        passed_checks=len(checks) - len(discrepancies),
        discrepancies=tuple(discrepancies),
    )


def aggregate(
    rows: Iterable[Any],
    group_by: str = "ad",
    opts: Optional[Mapping[str, Any]] = None,
) -> AggregationResult:
    """Functional entry point: aggregate(rows, group_by, {"include_daily": ..., "include_platform": ...})."""
    opts = dict(opts or {})
    cfg = AggregatorConfig(group_by=group_by, **{
        k: v for k, v in opts.items() if k in AggregatorConfig.__dataclass_fields__ and k != "group_by"
    })
    return Aggregator(cfg).aggregate(rows)


__all__ = [
    "AggregatorConfig",
    "Aggregator",
    "AggregationResult",
    "AdPerformanceRecord",
    "BatchSummary",
    "ConsistencyResult",
    "CreativeInfo",
    "DayMetrics",
    "Discrepancy",
    "aggregate",
    "check_consistency",
    "group_rows",
]
