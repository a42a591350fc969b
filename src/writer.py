"""Stat writer module.

Writers receive each kind's newly observed rows from the collector and
forward them to a log stream or a metrics backend. Writers may be called
concurrently from different kinds' units and must not share unguarded state
between calls.
"""

import abc
import dataclasses
import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import Meter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from config import ConfigError, OutputConfig
from stats import LockStat, QueryStat, StatisticKind, StatRow, TransactionStat


logger = logging.getLogger(__name__)

STATS_LOGGER_NAME = "spanner_stats"
SERVICE_NAME = "spanner-stats-collector"

METER_NAMES = {
    StatisticKind.QUERY: "spanner.stats.query",
    StatisticKind.TRANSACTION: "spanner.stats.transaction",
    StatisticKind.LOCK: "spanner.stats.lock",
}

_STAT_TYPES = {
    StatisticKind.QUERY: "QueryStat",
    StatisticKind.TRANSACTION: "TransactionStat",
    StatisticKind.LOCK: "LockStat",
}

_WHITESPACE = re.compile(r"[\r\n\t]")

_QUERY_COUNTERS = ("execution_count",)
_QUERY_HISTOGRAMS = (
    "avg_latency_seconds",
    "avg_rows",
    "avg_bytes",
    "avg_rows_scanned",
    "avg_cpu_seconds",
)
_TRANSACTION_COUNTERS = (
    "commit_attempt_count",
    "commit_failed_precondition_count",
    "commit_abort_count",
)
_TRANSACTION_HISTOGRAMS = (
    "avg_participants",
    "avg_total_latency_seconds",
    "avg_commit_latency_seconds",
    "avg_bytes",
)
_LOCK_HISTOGRAMS = ("lock_wait_seconds",)


class SinkError(Exception):
    """Raised when a writer fails to record a batch."""
    pass


class StatWriter(abc.ABC):
    """Destination for newly observed stat rows."""

    @abc.abstractmethod
    def write(self, kind: StatisticKind, rows: Sequence[StatRow]) -> None:
        """Record a non-empty batch of rows of one kind.

        Raises:
            SinkError: If the batch could not be recorded
        """

    def close(self) -> None:
        """Flush and release any backend resources."""


def _render(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="backslashreplace")
    if isinstance(value, (list, tuple)):
        return [_render(item) for item in value]
    if isinstance(value, dict):
        return {k: _render(v) for k, v in value.items()}
    return value


def stat_fields(row: StatRow) -> Dict[str, Any]:
    """Flatten a row into JSON-friendly log fields tagged with its type."""
    fields: Dict[str, Any] = {"stat_type": _STAT_TYPES[row.kind]}
    for name, value in dataclasses.asdict(row).items():
        fields[name] = _render(value)
    return fields


def _unit(name: str) -> str:
    if name == "interval_end" or name.endswith("_seconds"):
        return "s"
    if name == "avg_bytes":
        return "By"
    return ""


def _create_instruments(
    meter: Meter, prefix: str, counters: Sequence[str], histograms: Sequence[str]
) -> Dict[str, Any]:
    """Create the interval-end gauge plus the named counters and histograms."""
    instruments: Dict[str, Any] = {
        "interval_end": meter.create_gauge(f"{prefix}.interval_end", unit="s"),
    }
    for name in counters:
        instruments[name] = meter.create_counter(f"{prefix}.{name}", unit=_unit(name))
    for name in histograms:
        instruments[name] = meter.create_histogram(f"{prefix}.{name}", unit=_unit(name))
    return instruments


class LogWriter(StatWriter):
    """Emit one structured log record per row."""

    def __init__(self, stats_logger: Optional[logging.Logger] = None) -> None:
        self._logger = stats_logger or logging.getLogger(STATS_LOGGER_NAME)

    def write(self, kind: StatisticKind, rows: Sequence[StatRow]) -> None:
        for row in rows:
            self._logger.info("spanner stats", extra={"stats": stat_fields(row)})


class OpenTelemetryWriter(StatWriter):
    """Record rows as OpenTelemetry measurements.

    Averages are recorded as histograms, counts as counters and the interval
    end as a gauge in unix seconds. Each measurement is tagged with the row's
    identifying dimensions (fingerprint, columns, row-range key).
    """

    def __init__(self, meter_provider: MeterProvider) -> None:
        """Create one meter and its instruments per kind.

        Args:
            meter_provider: Provider owning the readers/exporters. It is used
                directly and never registered as the global provider.
        """
        self._provider = meter_provider
        self._query = _create_instruments(
            meter_provider.get_meter(METER_NAMES[StatisticKind.QUERY]),
            METER_NAMES[StatisticKind.QUERY],
            _QUERY_COUNTERS,
            _QUERY_HISTOGRAMS,
        )
        self._transaction = _create_instruments(
            meter_provider.get_meter(METER_NAMES[StatisticKind.TRANSACTION]),
            METER_NAMES[StatisticKind.TRANSACTION],
            _TRANSACTION_COUNTERS,
            _TRANSACTION_HISTOGRAMS,
        )
        self._lock = _create_instruments(
            meter_provider.get_meter(METER_NAMES[StatisticKind.LOCK]),
            METER_NAMES[StatisticKind.LOCK],
            (),
            _LOCK_HISTOGRAMS,
        )

    def write(self, kind: StatisticKind, rows: Sequence[StatRow]) -> None:
        try:
            for row in rows:
                if isinstance(row, QueryStat):
                    self._record_query(row)
                elif isinstance(row, TransactionStat):
                    self._record_transaction(row)
                elif isinstance(row, LockStat):
                    self._record_lock(row)
        except Exception as e:
            raise SinkError(f"Failed to record {kind.value} stats: {e}") from e

    def _record_query(self, row: QueryStat) -> None:
        attributes = {
            "text": _WHITESPACE.sub(" ", row.text),
            "text_fingerprint": row.text_fingerprint,
        }
        instruments = self._query
        instruments["interval_end"].set(int(row.interval_end.timestamp()), attributes)
        for name in _QUERY_COUNTERS:
            instruments[name].add(getattr(row, name), attributes)
        for name in _QUERY_HISTOGRAMS:
            instruments[name].record(getattr(row, name), attributes)

    def _record_transaction(self, row: TransactionStat) -> None:
        attributes = {
            "fprint": row.fprint,
            "read_columns": ",".join(row.read_columns),
            "write_constructive_columns": ",".join(row.write_constructive_columns),
            "write_delete_tables": ",".join(row.write_delete_tables),
        }
        instruments = self._transaction
        instruments["interval_end"].set(int(row.interval_end.timestamp()), attributes)
        for name in _TRANSACTION_COUNTERS:
            instruments[name].add(getattr(row, name), attributes)
        for name in _TRANSACTION_HISTOGRAMS:
            instruments[name].record(getattr(row, name), attributes)

    def _record_lock(self, row: LockStat) -> None:
        attributes = {
            "row_range_start_key": _render(row.row_range_start_key),
            "sample_lock_requests": "".join(
                f"({request.column},{request.lock_mode})," for request in row.sample_lock_requests
            ),
        }
        instruments = self._lock
        instruments["interval_end"].set(int(row.interval_end.timestamp()), attributes)
        for name in _LOCK_HISTOGRAMS:
            instruments[name].record(getattr(row, name), attributes)

    def close(self) -> None:
        self._provider.shutdown()


def build_meter_provider(config: OutputConfig) -> MeterProvider:
    """Construct a MeterProvider exporting over OTLP/gRPC.

    Args:
        config: Output section of the configuration

    Returns:
        MeterProvider with a periodic exporting reader attached
    """
    if config.metrics_endpoint:
        exporter = OTLPMetricExporter(
            endpoint=config.metrics_endpoint,
            insecure=config.metrics_endpoint.startswith("http://"),
        )
    else:
        logger.info("No output.metrics_endpoint configured, using OTLP exporter defaults")
        exporter = OTLPMetricExporter()

    reader = PeriodicExportingMetricReader(
        exporter, export_interval_millis=config.export_interval_seconds * 1000
    )
    return MeterProvider(
        resource=Resource.create({"service.name": SERVICE_NAME}),
        metric_readers=[reader],
    )


def build_writer(config: OutputConfig) -> StatWriter:
    """Construct the configured writer.

    Raises:
        ConfigError: If the output mode is unknown
    """
    if config.mode == "log":
        return LogWriter()
    if config.mode == "metrics":
        return OpenTelemetryWriter(build_meter_provider(config))
    raise ConfigError(f"Unknown output mode: {config.mode!r}")
