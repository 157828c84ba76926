from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable

from adinsight.utils import safe_div


@dataclass(frozen=True)
class BaseMetrics:
    impressions: float = 0.0
    clicks: float = 0.0
    spend: float = 0.0
    reach: float = 0.0
    frequency: float = 0.0
    conversions: float = 0.0
    first_conversions: float = 0.0
    unique_clicks: float = 0.0
    conversion_value: float = 0.0


@dataclass(frozen=True)
class CalculatedMetrics(BaseMetrics):
    """Base metrics plus ratios derived from the summed numerators/denominators."""
    ctr: float = 0.0
    cpc: float = 0.0
    cpm: float = 0.0
    cpa: float = 0.0
    roas: float = 0.0
    cvr: float = 0.0
    unique_ctr: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


EMPTY_METRICS = CalculatedMetrics()


class MetricTotals:
    """
    Running sums for one group of rows.

    Additive fields are summed. ``reach`` is a distinct count and is NOT additive:
    the max across rows is kept, which is only an approximation of true unique
    reach (it undercounts when different days reach different people).
    ``frequency`` is the arithmetic mean of the non-zero per-row values.
    """

    __slots__ = (
        "impressions", "clicks", "spend", "reach", "conversions", "first_conversions",
        "unique_clicks", "conversion_value", "_freq_sum", "_freq_n",
    )

    def __init__(self) -> None:
        self.impressions = 0.0
        self.clicks = 0.0
        self.spend = 0.0
        self.reach = 0.0
        self.conversions = 0.0
        self.first_conversions = 0.0
        self.unique_clicks = 0.0
        self.conversion_value = 0.0
        self._freq_sum = 0.0
        self._freq_n = 0

    def add(self, row: Any) -> "MetricTotals":
        self.impressions += row.impressions
        self.clicks += row.clicks
        self.spend += row.spend
        self.reach = max(self.reach, row.reach)
        self.conversions += row.conversions
        self.first_conversions += row.first_conversions
        self.unique_clicks += row.unique_clicks
        self.conversion_value += row.conversion_values
        if row.frequency > 0:
            self._freq_sum += row.frequency
            self._freq_n += 1
        return self

    @property
    def frequency(self) -> float:
        return safe_div(self._freq_sum, self._freq_n)

    def finalize(self) -> CalculatedMetrics:
        return CalculatedMetrics(
            impressions=self.impressions,
            clicks=self.clicks,
            spend=self.spend,
            reach=self.reach,
            frequency=self.frequency,
            conversions=self.conversions,
            first_conversions=self.first_conversions,
            unique_clicks=self.unique_clicks,
            conversion_value=self.conversion_value,
            ctr=safe_div(self.clicks, self.impressions) * 100.0,
            cpc=safe_div(self.spend, self.clicks),
            cpm=safe_div(self.spend, self.impressions) * 1000.0,
            cpa=safe_div(self.spend, self.conversions),
            roas=safe_div(self.conversion_value, self.spend),
            cvr=safe_div(self.conversions, self.clicks),
            unique_ctr=safe_div(self.unique_clicks, self.reach) * 100.0,
        )


def summarize_rows(rows: Iterable[Any]) -> CalculatedMetrics:
    """Sum a group of normalized rows and recompute every ratio from the totals."""
    totals = MetricTotals()
    for r in rows:
        totals.add(r)
    return totals.finalize()


__all__ = [
    "BaseMetrics",
    "CalculatedMetrics",
    "EMPTY_METRICS",
    "MetricTotals",
    "summarize_rows",
]
