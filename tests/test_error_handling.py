import pytest

from adinsight.infrastructure.error_handling import (
    AggregationError,
    AggregationErrorType,
    AnalyticsError,
    ConfigurationError,
    Err,
    ErrorCollector,
    MissingDataError,
    Ok,
    capture,
)


def test_capture_wraps_success_and_failure():
    ok = capture("a", lambda x: x * 2, 21)
    assert ok.is_ok and ok.unwrap() == 42

    def boom():
        raise ValueError("bad number")

    err = capture("b", boom)
    assert not err.is_ok
    assert err.unwrap_or("fallback") == "fallback"
    assert err.error.entity_id == "b"
    assert err.error.error_type is AggregationErrorType.INVALID_FORMAT
    with pytest.raises(AnalyticsError):
        err.unwrap()


@pytest.mark.parametrize("exc,expected", [
    (MissingDataError("no dates"), AggregationErrorType.MISSING_DATA),
    (KeyError("ad_id"), AggregationErrorType.MISSING_DATA),
    (TypeError("nope"), AggregationErrorType.INVALID_FORMAT),
    (ZeroDivisionError("x"), AggregationErrorType.CALCULATION_ERROR),
])
def test_error_type_mapping(exc, expected):
    assert AggregationError.from_exception("e1", exc).error_type is expected


def test_collectors_merge_after_join():
    first, second = ErrorCollector(), ErrorCollector()
    first.extend([Ok(1), Err(AggregationError("x", "failed"))])
    second.add(Ok(2))
    merged = ErrorCollector.merge([first, second])
    assert merged.successes == [1, 2]
    assert [e.entity_id for e in merged.failures] == ["x"]
    assert len(merged) == 3


def test_configuration_error_is_value_error():
    err = ConfigurationError("bad", field="min_gap_days", value=0)
    assert isinstance(err, ValueError)
    assert err.field == "min_gap_days"


def test_aggregation_error_as_dict():
    d = AggregationError("ad_1", "missing dates", AggregationErrorType.MISSING_DATA).as_dict()
    assert d == {"entity_id": "ad_1", "message": "missing dates", "error_type": "MISSING_DATA", "severity": "error"}
