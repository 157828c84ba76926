"""
ADINSIGHT
Analytics core for advertising insight rows

This package contains:
- analytics: aggregation, delivery patterns, gap detection, fatigue scoring
- infrastructure: row validation, date ranges, error handling
"""

__version__ = "1.0.0"
