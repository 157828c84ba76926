"""
ADINSIGHT INFRASTRUCTURE
Ingestion and error-handling primitives

This package contains:
- data_validation: InsightRow schema and row normalization
- date_validation: date-range labels and analysis windows
- error_handling: error taxonomy, Result and ErrorCollector
"""

from .error_handling import (
    AnalyticsError, ConfigurationError, MissingDataError, AggregationError, AggregationErrorType,
    Ok, Err, ErrorCollector, capture,
)
from .data_validation import InsightRow, normalize_row, normalize_rows, deduplicate_rows, normalize_platform
from .date_validation import DateRangeValidator, is_short_term_range, resolve_window

__all__ = [
    'AnalyticsError', 'ConfigurationError', 'MissingDataError', 'AggregationError', 'AggregationErrorType',
    'Ok', 'Err', 'ErrorCollector', 'capture',
    'InsightRow', 'normalize_row', 'normalize_rows', 'deduplicate_rows', 'normalize_platform',
    'DateRangeValidator', 'is_short_term_range', 'resolve_window',
]
