from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar('T')
E = TypeVar('E')


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics core."""


class ConfigurationError(AnalyticsError, ValueError):
    """Invalid or out-of-order thresholds. Raised at construction, never recovered."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        self.message = message
        self.field = field
        self.value = value
        super().__init__(message)


class MissingDataError(AnalyticsError):
    """An entity lacks the fields needed to compute its record."""


class ErrorSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


class AggregationErrorType(Enum):
    MISSING_DATA = "MISSING_DATA"
    INVALID_FORMAT = "INVALID_FORMAT"
    CALCULATION_ERROR = "CALCULATION_ERROR"


@dataclass(frozen=True)
class AggregationError:
    """One entity's failure, recorded in the batch error list instead of raised."""
    entity_id: str
    message: str
    error_type: AggregationErrorType = AggregationErrorType.CALCULATION_ERROR
    severity: ErrorSeverity = ErrorSeverity.ERROR

    @classmethod
    def from_exception(cls, entity_id: str, exc: BaseException) -> "AggregationError":
        if isinstance(exc, (MissingDataError, KeyError, AttributeError)):
            error_type = AggregationErrorType.MISSING_DATA
        elif isinstance(exc, (TypeError, ValueError)):
            error_type = AggregationErrorType.INVALID_FORMAT
        else:
            error_type = AggregationErrorType.CALCULATION_ERROR
        return cls(entity_id=entity_id, message=str(exc) or type(exc).__name__, error_type=error_type)

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["error_type"] = self.error_type.value
        d["severity"] = self.severity.value
        return d


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise AnalyticsError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default):
        return default


Result = Union[Ok[T], Err[E]]


def capture(entity_id: str, func: Callable[..., T], *args, **kwargs) -> "Result[T, AggregationError]":
    """Run one entity's computation and fold any exception into an Err."""
    try:
        return Ok(func(*args, **kwargs))
    except Exception as e:
        logger.warning(f"Entity {entity_id} failed: {e}")
        return Err(AggregationError.from_exception(entity_id, e))


class ErrorCollector:
    """Collects per-entity outcomes for one worker; collectors are merged after join."""

    def __init__(self) -> None:
        self.successes: List[Any] = []
        self.failures: List[AggregationError] = []

    def add(self, result: Result) -> None:
        if result.is_ok:
            self.successes.append(result.value)
        else:
            self.failures.append(result.error)

    def extend(self, results: Iterable[Result]) -> None:
        for r in results:
            self.add(r)

    @classmethod
    def merge(cls, collectors: Iterable["ErrorCollector"]) -> "ErrorCollector":
        merged = cls()
        for c in collectors:
            merged.successes.extend(c.successes)
            merged.failures.extend(c.failures)
        return merged

    def __len__(self) -> int:
        return len(self.successes) + len(self.failures)
