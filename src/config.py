"""Configuration loading and validation module.

This module handles all YAML configuration loading and provides a typed
Config dataclass consumed by all other modules.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

import yaml

from stats import Granularity, StatisticKind, parse_granularity, parse_kind


OUTPUT_MODES = ("log", "metrics")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass
class SpannerConfig:
    """Target database configuration."""
    project_id: str
    instance_id: str
    database_id: str
    credential_file: Optional[str] = None
    staleness_seconds: int = 60


@dataclass
class CollectorConfig:
    """Collection behavior configuration."""
    granularity: Granularity = Granularity.MINUTE
    kinds: List[StatisticKind] = field(
        default_factory=lambda: [
            StatisticKind.QUERY,
            StatisticKind.TRANSACTION,
            StatisticKind.LOCK,
        ]
    )
    interval_seconds: int = 60


@dataclass
class OutputConfig:
    """Output (writer) configuration."""
    mode: str = "log"
    metrics_endpoint: Optional[str] = None
    export_interval_seconds: int = 60


@dataclass
class Config:
    """Root configuration dataclass."""
    spanner: SpannerConfig
    collector: CollectorConfig
    output: OutputConfig

    @property
    def database_path(self) -> str:
        """Fully qualified database name."""
        return (
            f"projects/{self.spanner.project_id}"
            f"/instances/{self.spanner.instance_id}"
            f"/databases/{self.spanner.database_id}"
        )


def _get_nested(data: dict, path: str, required: bool = True, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "spanner.project_id")
        required: If True, raises ConfigError when value is missing
        default: Default value if not required and missing

    Returns:
        The value at the path, or default if not required and missing

    Raises:
        ConfigError: If required value is missing
    """
    keys = path.split(".")
    current = data

    for key in keys:
        if not isinstance(current, dict):
            if required:
                raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
            return default
        if key not in current or current[key] is None:
            if required:
                raise ConfigError(f"Missing required configuration field: {path}")
            return default
        current = current[key]

    return current


def _validate_type(value: Any, expected_type: type, field_name: str) -> None:
    """Validate that a value is of the expected type.

    Args:
        value: The value to validate
        expected_type: The expected type
        field_name: Name of the field for error messages

    Raises:
        ConfigError: If value is not of the expected type
    """
    if expected_type is list:
        if not isinstance(value, list):
            raise ConfigError(
                f"Field '{field_name}' must be a list, got {type(value).__name__}"
            )
    elif expected_type is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be an integer, got {type(value).__name__}"
            )
    elif expected_type is str:
        if not isinstance(value, str):
            raise ConfigError(
                f"Field '{field_name}' must be a string, got {type(value).__name__}"
            )
    elif expected_type is dict:
        if not isinstance(value, dict):
            raise ConfigError(
                f"Field '{field_name}' must be a mapping, got {type(value).__name__}"
            )
    else:
        if not isinstance(value, expected_type):
            raise ConfigError(
                f"Field '{field_name}' must be of type {expected_type.__name__}, got {type(value).__name__}"
            )


def _load_spanner(data: dict) -> SpannerConfig:
    spanner_data = _get_nested(data, "spanner")
    _validate_type(spanner_data, dict, "spanner")

    identifiers = {}
    for name in ("project_id", "instance_id", "database_id"):
        value = _get_nested(data, f"spanner.{name}")
        _validate_type(value, str, f"spanner.{name}")
        if not value.strip():
            raise ConfigError(f"spanner.{name} must not be empty")
        identifiers[name] = value

    credential_file = _get_nested(
        data, "spanner.credential_file", required=False, default=None
    )
    if credential_file is not None:
        _validate_type(credential_file, str, "spanner.credential_file")

    staleness_seconds = _get_nested(
        data, "spanner.staleness_seconds", required=False, default=60
    )
    _validate_type(staleness_seconds, int, "spanner.staleness_seconds")
    if staleness_seconds < 0:
        raise ConfigError("spanner.staleness_seconds must be >= 0")

    return SpannerConfig(
        credential_file=credential_file,
        staleness_seconds=staleness_seconds,
        **identifiers,
    )


def _load_collector(data: dict) -> CollectorConfig:
    collector_data = _get_nested(data, "collector", required=False, default={})
    _validate_type(collector_data, dict, "collector")

    granularity_value = _get_nested(
        collector_data, "granularity", required=False, default="minute"
    )
    _validate_type(granularity_value, str, "collector.granularity")
    granularity = parse_granularity(granularity_value)
    if granularity is None:
        choices = ", ".join(g.label for g in Granularity)
        raise ConfigError(
            f"collector.granularity must be one of {choices}, got {granularity_value!r}"
        )

    kind_values = _get_nested(
        collector_data,
        "kinds",
        required=False,
        default=[k.value for k in StatisticKind],
    )
    _validate_type(kind_values, list, "collector.kinds")
    if not kind_values:
        raise ConfigError("collector.kinds must not be empty")

    kinds: List[StatisticKind] = []
    for i, value in enumerate(kind_values):
        _validate_type(value, str, f"collector.kinds[{i}]")
        kind = parse_kind(value)
        if kind is None:
            choices = ", ".join(k.value for k in StatisticKind)
            raise ConfigError(
                f"collector.kinds[{i}] must be one of {choices}, got {value!r}"
            )
        if kind in kinds:
            raise ConfigError(f"collector.kinds contains duplicate kind {value!r}")
        kinds.append(kind)

    interval_seconds = _get_nested(
        collector_data,
        "interval_seconds",
        required=False,
        default=int(Granularity.MINUTE.period.total_seconds()),
    )
    _validate_type(interval_seconds, int, "collector.interval_seconds")
    if interval_seconds <= 0:
        raise ConfigError("collector.interval_seconds must be > 0")
    if interval_seconds > granularity.period.total_seconds():
        raise ConfigError(
            f"collector.interval_seconds must be <= the {granularity.label} "
            f"granularity period ({int(granularity.period.total_seconds())}s)"
        )

    return CollectorConfig(
        granularity=granularity,
        kinds=kinds,
        interval_seconds=interval_seconds,
    )


def _load_output(data: dict) -> OutputConfig:
    output_data = _get_nested(data, "output", required=False, default={})
    _validate_type(output_data, dict, "output")

    mode = _get_nested(output_data, "mode", required=False, default="log")
    _validate_type(mode, str, "output.mode")
    if mode not in OUTPUT_MODES:
        raise ConfigError(
            f"output.mode must be one of {', '.join(OUTPUT_MODES)}, got {mode!r}"
        )

    metrics_endpoint = _get_nested(
        output_data, "metrics_endpoint", required=False, default=None
    )
    if metrics_endpoint is not None:
        _validate_type(metrics_endpoint, str, "output.metrics_endpoint")
        if not metrics_endpoint.startswith(("http://", "https://")):
            raise ConfigError(
                "output.metrics_endpoint must be an http:// or https:// URL"
            )

    export_interval_seconds = _get_nested(
        output_data, "export_interval_seconds", required=False, default=60
    )
    _validate_type(export_interval_seconds, int, "output.export_interval_seconds")
    if export_interval_seconds <= 0:
        raise ConfigError("output.export_interval_seconds must be > 0")

    return OutputConfig(
        mode=mode,
        metrics_endpoint=metrics_endpoint,
        export_interval_seconds=export_interval_seconds,
    )


def load_config(path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    return Config(
        spanner=_load_spanner(data),
        collector=_load_collector(data),
        output=_load_output(data),
    )
