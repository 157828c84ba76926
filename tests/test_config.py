import logging

import pytest

from adinsight.analytics.aggregator import AggregatorConfig
from adinsight.analytics.fatigue import FatigueConfig
from adinsight.analytics.gap_detection import GapDetectionConfig
from adinsight.config import SETTINGS_PATH_DEFAULT, load_settings, load_yaml, section
from adinsight.infrastructure.error_handling import ConfigurationError


def test_shipped_settings_validate_and_match_defaults():
    settings = load_settings(SETTINGS_PATH_DEFAULT)
    assert set(settings) == {"aggregation", "gap_detection", "fatigue"}
    assert AggregatorConfig.from_settings(settings) == AggregatorConfig()
    assert GapDetectionConfig.from_settings(settings) == GapDetectionConfig()
    assert FatigueConfig.from_settings(settings) == FatigueConfig()


def test_missing_settings_file_means_defaults(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="adinsight.config"):
        assert load_settings(str(tmp_path / "absent.yaml")) == {}
    assert "absent.yaml not found" in caplog.text
    assert FatigueConfig.from_settings({}) == FatigueConfig()


def test_env_var_selects_settings(tmp_path, monkeypatch):
    path = tmp_path / "settings.yaml"
    path.write_text("aggregation:\n  max_workers: 4\n")
    monkeypatch.setenv("ADINSIGHT_SETTINGS", str(path))
    settings = load_settings()
    assert AggregatorConfig.from_settings(settings).max_workers == 4


def test_schema_violation_raises(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("gap_detection:\n  min_gap_days: 0\n")
    with pytest.raises(ConfigurationError) as exc:
        load_settings(str(path))
    assert exc.value.field == "gap_detection.min_gap_days"


def test_unknown_section_rejected(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("reporting:\n  enabled: true\n")
    with pytest.raises(ConfigurationError):
        load_settings(str(path))


def test_malformed_yaml_raises(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("aggregation: [1, 2\n")
    with pytest.raises(ConfigurationError):
        load_yaml(str(path))


def test_section_requires_mapping():
    assert section(None, "fatigue") == {}
    with pytest.raises(ConfigurationError):
        section({"fatigue": [1, 2]}, "fatigue")


def test_missing_schema_is_reported(tmp_path, caplog):
    path = tmp_path / "settings.yaml"
    path.write_text("aggregation:\n  max_workers: 2\n")
    with caplog.at_level(logging.WARNING, logger="adinsight.config"):
        settings = load_settings(str(path), str(tmp_path / "no-schema.yaml"))
    assert settings["aggregation"]["max_workers"] == 2
    assert "skipping schema validation" in caplog.text
