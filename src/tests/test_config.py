"""Tests for config.py module."""

import pytest
from pathlib import Path

import config
from stats import Granularity, StatisticKind


VALID_CONFIG = """
spanner:
  project_id: "my-project"
  instance_id: "my-instance"
  database_id: "my-database"
  credential_file: "/etc/spanner/key.json"
  staleness_seconds: 30

collector:
  granularity: "10minute"
  kinds: ["query", "lock"]
  interval_seconds: 120

output:
  mode: "metrics"
  metrics_endpoint: "http://otel-collector:4317"
  export_interval_seconds: 15
"""


def write_config(tmp_path: Path, content: str) -> Path:
    """Helper to write a config file and return its path."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(content)
    return config_file


def test_valid_config_loads_successfully(tmp_path):
    """Test that a valid config file loads and all fields are accessible."""
    cfg = config.load_config(str(write_config(tmp_path, VALID_CONFIG)))

    assert cfg.spanner.project_id == "my-project"
    assert cfg.spanner.instance_id == "my-instance"
    assert cfg.spanner.database_id == "my-database"
    assert cfg.spanner.credential_file == "/etc/spanner/key.json"
    assert cfg.spanner.staleness_seconds == 30
    assert cfg.collector.granularity is Granularity.TEN_MINUTE
    assert cfg.collector.kinds == [StatisticKind.QUERY, StatisticKind.LOCK]
    assert cfg.collector.interval_seconds == 120
    assert cfg.output.mode == "metrics"
    assert cfg.output.metrics_endpoint == "http://otel-collector:4317"
    assert cfg.output.export_interval_seconds == 15
    assert cfg.database_path == (
        "projects/my-project/instances/my-instance/databases/my-database"
    )


def test_minimal_config_uses_defaults(config_file):
    """Test that only the database identifiers are required."""
    cfg = config.load_config(str(config_file))

    assert cfg.spanner.credential_file is None
    assert cfg.spanner.staleness_seconds == 60
    assert cfg.collector.granularity is Granularity.MINUTE
    assert cfg.collector.kinds == [
        StatisticKind.QUERY,
        StatisticKind.TRANSACTION,
        StatisticKind.LOCK,
    ]
    assert cfg.collector.interval_seconds == 60
    assert cfg.output.mode == "log"
    assert cfg.output.metrics_endpoint is None


@pytest.mark.parametrize("field", ["project_id", "instance_id", "database_id"])
def test_missing_identifier_raises_config_error(tmp_path, field):
    """Test that each missing database identifier raises ConfigError with field name."""
    lines = [
        "spanner:",
        '  project_id: "p"',
        '  instance_id: "i"',
        '  database_id: "d"',
    ]
    content = "\n".join(line for line in lines if field not in line)

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert f"spanner.{field}" in str(exc_info.value)


def test_missing_spanner_section_raises_config_error(tmp_path):
    """Test that a config without the spanner section is rejected."""
    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, "output:\n  mode: log\n")))

    assert "spanner" in str(exc_info.value)


def test_empty_identifier_raises_config_error(tmp_path):
    """Test that a blank identifier is rejected."""
    content = """
spanner:
  project_id: "  "
  instance_id: "i"
  database_id: "d"
"""
    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "project_id" in str(exc_info.value)


def test_invalid_type_raises_config_error(tmp_path):
    """Test that incorrect type for a field raises ConfigError."""
    content = """
spanner:
  project_id: 123
  instance_id: "i"
  database_id: "d"
"""
    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "project_id" in str(exc_info.value)
    assert "string" in str(exc_info.value)


def test_unknown_granularity_raises_config_error(tmp_path):
    """Test that an unknown granularity is rejected with the valid choices."""
    content = VALID_CONFIG.replace('"10minute"', '"day"')

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "collector.granularity" in str(exc_info.value)
    assert "10minute" in str(exc_info.value)


def test_unknown_kind_raises_config_error(tmp_path):
    """Test that an unknown statistic kind is rejected."""
    content = VALID_CONFIG.replace('["query", "lock"]', '["query", "reads"]')

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "collector.kinds[1]" in str(exc_info.value)


def test_duplicate_kind_raises_config_error(tmp_path):
    """Test that a kind listed twice is rejected."""
    content = VALID_CONFIG.replace('["query", "lock"]', '["lock", "lock"]')

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "duplicate" in str(exc_info.value)


def test_empty_kinds_raises_config_error(tmp_path):
    """Test that an empty kinds list is rejected."""
    content = VALID_CONFIG.replace('["query", "lock"]', "[]")

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "collector.kinds" in str(exc_info.value)


def test_interval_longer_than_granularity_raises_config_error(tmp_path):
    """Test that polling slower than the bucket width is rejected."""
    content = VALID_CONFIG.replace("interval_seconds: 120", "interval_seconds: 900")

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "collector.interval_seconds" in str(exc_info.value)


def test_default_interval_valid_for_every_granularity(tmp_path):
    """Test that the default 60s interval is valid for every granularity."""
    for label in ("minute", "10minute", "hour"):
        content = f"""
spanner:
  project_id: "p"
  instance_id: "i"
  database_id: "d"
collector:
  granularity: "{label}"
"""
        cfg = config.load_config(str(write_config(tmp_path, content)))
        assert cfg.collector.interval_seconds == 60


def test_non_positive_interval_raises_config_error(tmp_path):
    """Test that a zero interval is rejected."""
    content = VALID_CONFIG.replace("interval_seconds: 120", "interval_seconds: 0")

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "interval_seconds must be > 0" in str(exc_info.value)


def test_unknown_output_mode_raises_config_error(tmp_path):
    """Test that an unknown output mode is rejected."""
    content = VALID_CONFIG.replace('mode: "metrics"', 'mode: "stdout"')

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "output.mode" in str(exc_info.value)


def test_metrics_endpoint_must_be_url(tmp_path):
    """Test that a metrics endpoint without a scheme is rejected."""
    content = VALID_CONFIG.replace(
        '"http://otel-collector:4317"', '"otel-collector:4317"'
    )

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "output.metrics_endpoint" in str(exc_info.value)


def test_negative_staleness_raises_config_error(tmp_path):
    """Test that a negative staleness is rejected."""
    content = VALID_CONFIG.replace("staleness_seconds: 30", "staleness_seconds: -1")

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, content)))

    assert "staleness_seconds" in str(exc_info.value)


def test_file_not_found_raises_config_error():
    """Test that a non-existent config file raises ConfigError."""
    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config("/nonexistent/path/config.yaml")

    assert "not found" in str(exc_info.value)


def test_invalid_yaml_raises_config_error(tmp_path):
    """Test that invalid YAML raises ConfigError."""
    config_file = write_config(tmp_path, "spanner: [unclosed\n")

    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(config_file))

    assert "Invalid YAML" in str(exc_info.value)


def test_empty_file_raises_config_error(tmp_path):
    """Test that an empty config file raises ConfigError."""
    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, "")))

    assert "empty" in str(exc_info.value)


def test_non_dict_yaml_raises_config_error(tmp_path):
    """Test that a YAML list at the top level raises ConfigError."""
    with pytest.raises(config.ConfigError) as exc_info:
        config.load_config(str(write_config(tmp_path, "- a\n- b\n")))

    assert "dictionary" in str(exc_info.value)
