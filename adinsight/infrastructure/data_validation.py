from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from adinsight.infrastructure.date_validation import coerce_ymd
from adinsight.utils import safe_f

logger = logging.getLogger(__name__)

GROUP_KEYS: Dict[str, str] = {
    "ad": "ad_id",
    "adset": "adset_id",
    "campaign": "campaign_id",
}

PLATFORMS: Tuple[str, ...] = ("facebook", "instagram", "audience_network", "messenger")
OTHER_PLATFORM = "other"

# Fields whose absence counts towards the missing-field ratio.
QUALITY_FIELDS: Tuple[str, ...] = ("impressions", "clicks", "spend", "reach", "frequency")

NUMERIC_FIELDS: Tuple[str, ...] = (
    "impressions", "clicks", "spend", "reach", "frequency", "unique_clicks",
    "ctr", "cpm", "cpc", "conversions", "conversion_values", "first_conversions",
)

ID_FIELDS: Tuple[str, ...] = (
    "ad_id", "ad_name", "adset_id", "adset_name", "campaign_id", "campaign_name", "account_id",
)

CREATIVE_FIELDS: Tuple[str, ...] = (
    "creative_id", "creative_name", "creative_type", "thumbnail_url", "video_url", "image_url", "object_type",
)


class ValidationSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    sanitized_data: Dict[str, Any]


class FieldValidator:
    def __init__(self, field_name: str, severity: ValidationSeverity = ValidationSeverity.ERROR,
                 default: Any = None):
        self.field_name = field_name
        self.severity = severity
        self.default = default

    def validate(self, value: Any) -> List[str]:
        if value is None or value == '':
            return []
        return self._validate_field(value)

    def _validate_field(self, value: Any) -> List[str]:
        return []

    def sanitize(self, value: Any) -> Any:
        if (value is None or value == '') and self.default is not None:
            return self.default
        return value


class StringValidator(FieldValidator):
    def __init__(self, field_name: str, max_length: Optional[int] = None, **kwargs):
        super().__init__(field_name, **kwargs)
        self.max_length = max_length

    def _validate_field(self, value: Any) -> List[str]:
        if self.max_length and len(str(value)) > self.max_length:
            return [f"Field '{self.field_name}' must be at most {self.max_length} characters"]
        return []

    def sanitize(self, value: Any) -> str:
        if value is None or value == '':
            return "" if self.default is None else str(self.default)
        return str(value).strip()


class FloatValidator(FieldValidator):
    """Numeric metric. Non-numeric input is reported as a warning and parsed as 0."""

    def __init__(self, field_name: str, min_value: Optional[float] = None, **kwargs):
        kwargs.setdefault("severity", ValidationSeverity.WARNING)
        kwargs.setdefault("default", 0.0)
        super().__init__(field_name, **kwargs)
        self.min_value = min_value

    def _validate_field(self, value: Any) -> List[str]:
        if isinstance(value, bool):
            return [f"Field '{self.field_name}' must be a valid number"]
        try:
            float_value = float(str(value).strip().replace(",", ""))
        except (TypeError, ValueError):
            return [f"Field '{self.field_name}' must be a valid number"]
        if float_value != float_value or float_value in (float('inf'), float('-inf')):
            return [f"Field '{self.field_name}' must be finite"]
        if self.min_value is not None and float_value < self.min_value:
            return [f"Field '{self.field_name}' must be at least {self.min_value}"]
        return []

    def sanitize(self, value: Any) -> float:
        return safe_f(value, self.default)


class DateValidator(FieldValidator):
    def _validate_field(self, value: Any) -> List[str]:
        if coerce_ymd(value, self.field_name) is None:
            return [f"Field '{self.field_name}' must be a valid date in format %Y-%m-%d"]
        return []

    def sanitize(self, value: Any) -> Optional[str]:
        return coerce_ymd(value, self.field_name)


class RowValidator:
    def __init__(self, validators: Dict[str, FieldValidator]):
        self.validators = validators

    def validate(self, data: Mapping[str, Any]) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        sanitized: Dict[str, Any] = {}
        for name, validator in self.validators.items():
            value = data.get(name)
            for problem in validator.validate(value):
                if validator.severity == ValidationSeverity.ERROR:
                    errors.append(problem)
                else:
                    warnings.append(problem)
            sanitized[name] = validator.sanitize(value)
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, sanitized_data=sanitized)


def _insight_validators() -> Dict[str, FieldValidator]:
    validators: Dict[str, FieldValidator] = {}
    for name in ID_FIELDS:
        validators[name] = StringValidator(name, max_length=255)
    validators["date_start"] = DateValidator("date_start", severity=ValidationSeverity.WARNING)
    validators["date_stop"] = DateValidator("date_stop", severity=ValidationSeverity.WARNING)
    validators["publisher_platform"] = StringValidator("publisher_platform", max_length=100)
    for name in NUMERIC_FIELDS:
        validators[name] = FloatValidator(name, min_value=0)
    for name in CREATIVE_FIELDS:
        validators[name] = StringValidator(name)
    return validators


INSIGHT_ROW_VALIDATOR = RowValidator(_insight_validators())


@dataclass(frozen=True)
class InsightRow:
    """One day (optionally one platform) of metrics for one entity, numerics already parsed."""
    ad_id: str = ""
    ad_name: str = ""
    adset_id: str = ""
    adset_name: str = ""
    campaign_id: str = ""
    campaign_name: str = ""
    account_id: str = ""
    date_start: Optional[str] = None
    date_stop: Optional[str] = None
    publisher_platform: str = ""
    impressions: float = 0.0
    clicks: float = 0.0
    spend: float = 0.0
    reach: float = 0.0
    frequency: float = 0.0
    unique_clicks: float = 0.0
    ctr: float = 0.0
    cpm: float = 0.0
    cpc: float = 0.0
    conversions: float = 0.0
    conversion_values: float = 0.0
    first_conversions: float = 0.0
    creative_id: str = ""
    creative_name: str = ""
    creative_type: str = ""
    thumbnail_url: str = ""
    video_url: str = ""
    image_url: str = ""
    object_type: str = ""
    missing_fields: Tuple[str, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    errors: Tuple[str, ...] = field(default_factory=tuple)

    def entity_id(self, group_by: str = "ad") -> str:
        return getattr(self, group_key(group_by))

    @property
    def platform(self) -> str:
        return normalize_platform(self.publisher_platform)


_ROW_FIELDS = frozenset(f.name for f in fields(InsightRow))


def group_key(group_by: str) -> str:
    try:
        return GROUP_KEYS[group_by]
    except KeyError:
        raise ValueError(f"group_by must be one of {sorted(GROUP_KEYS)}, got {group_by!r}") from None


def normalize_platform(platform: Optional[str]) -> str:
    if not platform:
        return OTHER_PLATFORM
    p = str(platform).lower()
    if "facebook" in p:
        return "facebook"
    if "instagram" in p:
        return "instagram"
    if "audience_network" in p or "audience" in p:
        return "audience_network"
    if "messenger" in p:
        return "messenger"
    return OTHER_PLATFORM


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def normalize_row(raw: Any) -> InsightRow:
    """Single ingestion step: parse numeric strings once and coerce dates to yyyy-mm-dd."""
    if isinstance(raw, InsightRow):
        return raw
    if not isinstance(raw, Mapping):
        raise TypeError(f"Insight row must be a mapping, got {type(raw).__name__}")

    result = INSIGHT_ROW_VALIDATOR.validate(raw)
    if not result.is_valid:
        logger.debug(f"Insight row failed validation: {result.errors}")
    data = result.sanitized_data
    if not data.get("date_stop"):
        data["date_stop"] = data.get("date_start")
    missing = tuple(name for name in QUALITY_FIELDS if _is_blank(raw.get(name)))
    return InsightRow(
        **{k: v for k, v in data.items() if k in _ROW_FIELDS},
        missing_fields=missing,
        warnings=tuple(result.warnings),
        errors=tuple(result.errors),
    )


def normalize_rows(raws: Iterable[Any]) -> List[InsightRow]:
    rows: List[InsightRow] = []
    for raw in raws:
        rows.append(normalize_row(raw))
    return rows


def deduplicate_rows(rows: Sequence[InsightRow]) -> Tuple[List[InsightRow], int]:
    """
    Collapse rows sharing (ad, adset, campaign, day, platform). Last row wins;
    first-seen order of the surviving keys is preserved.
    """
    kept: Dict[Tuple[str, ...], InsightRow] = {}
    for row in rows:
        key = (row.ad_id, row.adset_id, row.campaign_id, row.date_start or "", row.platform)
        kept[key] = row
    removed = len(rows) - len(kept)
    if removed:
        logger.info(f"Removed {removed} duplicate insight rows")
    return list(kept.values()), removed

