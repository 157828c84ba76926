import logging
import os
from pathlib import Path
from typing import Any, Dict, Final, Mapping, Optional

import jsonschema
import yaml

from adinsight.infrastructure.error_handling import ConfigurationError

logger: Final = logging.getLogger(__name__)

_REPO_ROOT: Final[Path] = Path(__file__).resolve().parent.parent

SETTINGS_PATH_DEFAULT: Final[str] = str(_REPO_ROOT / "config" / "settings.yaml")
SCHEMA_PATH_DEFAULT: Final[str] = str(_REPO_ROOT / "config" / "schema.settings.yaml")

# Aggregation data-quality rules
MISSING_RATIO_THRESHOLD: Final[float] = 0.1
HIGH_CTR_WARNING_PCT: Final[float] = 50.0
LIMITED_RANGE_MIN_DATES: Final[int] = 7
LIMITED_RANGE_MIN_ROWS: Final[int] = 100
CONSISTENCY_TOLERANCE_PCT: Final[float] = 2.0
HIGH_VARIANCE_PCT: Final[float] = 10.0
MEDIUM_VARIANCE_PCT: Final[float] = 5.0

# Delivery pattern cutoff
PARTIAL_PATTERN_RATIO: Final[float] = 0.7

# Gap heuristics. Calibration basis unknown; kept overridable, not "corrected".
BUDGET_EXHAUSTION_SPEND: Final[float] = 1000.0
PERFORMANCE_PAUSE_CTR: Final[float] = 1.0
MAX_RECOVERY_DAYS: Final[int] = 7
REVENUE_LOSS_FACTOR: Final[float] = 0.8
GAP_CONTEXT_WINDOW_DAYS: Final[int] = 7

# Fatigue heuristics
SHORT_TERM_MULTIPLIER: Final[float] = 0.8
SEVERITY_ESCALATION: Final[float] = 1.5
FREQUENCY_HIGH_MULTIPLIER: Final[float] = 1.3
FREQUENCY_DEAD_BAND: Final[float] = 0.2
SEASONALITY_MIN_POINTS: Final[int] = 30
SEASONALITY_AUTOCORR: Final[float] = 0.3


def load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.debug(f"Settings file {path} not found, using defaults")
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e


def validate_settings(settings: Mapping[str, Any], schema: Mapping[str, Any]) -> None:
    if not isinstance(settings, Mapping):
        raise ConfigurationError("Settings payload must be a mapping.")
    if not schema:
        return
    try:
        jsonschema.validate(instance=dict(settings), schema=dict(schema))
    except jsonschema.ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid settings at {where}: {e.message}", field=where) from e


def load_settings(
    settings_path: Optional[str] = None,
    schema_path: Optional[str] = SCHEMA_PATH_DEFAULT,
) -> Dict[str, Any]:
    """
    Load analytics settings from YAML and validate them against the JSON schema.

    The path falls back to $ADINSIGHT_SETTINGS, then config/settings.yaml.
    The default config/ directory sits beside the package in a source checkout
    or editable install; it is not part of a wheel, so installed copies should
    point $ADINSIGHT_SETTINGS at their own file.
    A missing file yields {} so every engine runs on its defaults.
    """
    path = settings_path or os.getenv("ADINSIGHT_SETTINGS") or SETTINGS_PATH_DEFAULT
    if not os.path.exists(path):
        logger.warning(f"Settings file {path} not found, running on built-in defaults")
    if schema_path and not os.path.exists(schema_path):
        logger.warning(f"Settings schema {schema_path} not found, skipping schema validation")
    settings = load_yaml(path)
    schema = load_yaml(schema_path)
    validate_settings(settings, schema)
    logger.debug(f"Loaded settings from {path} ({len(settings)} sections)")
    return settings


def section(settings: Optional[Mapping[str, Any]], name: str) -> Dict[str, Any]:
    if not settings:
        return {}
    value = settings.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"Settings section `{name}` must be a mapping.", field=name)
    return dict(value)
