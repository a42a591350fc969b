"""Statistic row model module.

Defines the statistic kinds, the aggregation granularities and one immutable
row type per kind, plus the decoding of raw view rows into those types.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, List, Mapping, Optional, Tuple, Union


class MalformedRowError(Exception):
    """Raised when a raw row cannot be decoded into its statistic type."""

    def __init__(self, kind: "StatisticKind", reason: str) -> None:
        super().__init__(f"Malformed {kind.value} stats row: {reason}")
        self.kind = kind
        self.reason = reason


class StatisticKind(Enum):
    """One introspected statistic family."""

    QUERY = "query"
    TRANSACTION = "transaction"
    LOCK = "lock"


class Granularity(Enum):
    """Aggregation bucket width of the underlying views.

    The value is the label used in the view name, e.g.
    ``query_stats_top_10minute``.
    """

    MINUTE = "minute"
    TEN_MINUTE = "10minute"
    HOUR = "hour"

    @property
    def label(self) -> str:
        return self.value

    @property
    def period(self) -> timedelta:
        return _GRANULARITY_PERIODS[self]


_GRANULARITY_PERIODS = {
    Granularity.MINUTE: timedelta(minutes=1),
    Granularity.TEN_MINUTE: timedelta(minutes=10),
    Granularity.HOUR: timedelta(hours=1),
}


@dataclass(frozen=True)
class QueryStat:
    """Top queries by CPU usage during one interval."""

    kind: ClassVar[StatisticKind] = StatisticKind.QUERY

    interval_end: datetime
    text: str
    text_truncated: bool
    text_fingerprint: int
    execution_count: int
    avg_latency_seconds: float
    avg_rows: float
    avg_bytes: float
    avg_rows_scanned: float
    avg_cpu_seconds: float


@dataclass(frozen=True)
class TransactionStat:
    """Top transactions by latency during one interval."""

    kind: ClassVar[StatisticKind] = StatisticKind.TRANSACTION

    interval_end: datetime
    fprint: int
    read_columns: Tuple[str, ...]
    write_constructive_columns: Tuple[str, ...]
    write_delete_tables: Tuple[str, ...]
    commit_attempt_count: int
    commit_failed_precondition_count: int
    commit_abort_count: int
    avg_participants: float
    avg_total_latency_seconds: float
    avg_commit_latency_seconds: float
    avg_bytes: float


@dataclass(frozen=True)
class LockRequest:
    """A sampled lock request recorded against a row range."""

    lock_mode: str
    column: str


@dataclass(frozen=True)
class LockStat:
    """Row ranges with the highest lock wait time during one interval."""

    kind: ClassVar[StatisticKind] = StatisticKind.LOCK

    interval_end: datetime
    row_range_start_key: bytes
    lock_wait_seconds: float
    sample_lock_requests: Tuple[LockRequest, ...]


StatRow = Union[QueryStat, TransactionStat, LockStat]


# Column order of each view as selected by the stat source.
QUERY_COLUMNS = (
    "interval_end",
    "text",
    "text_truncated",
    "text_fingerprint",
    "execution_count",
    "avg_latency_seconds",
    "avg_rows",
    "avg_bytes",
    "avg_rows_scanned",
    "avg_cpu_seconds",
)

TRANSACTION_COLUMNS = (
    "interval_end",
    "fprint",
    "read_columns",
    "write_constructive_columns",
    "write_delete_tables",
    "commit_attempt_count",
    "commit_failed_precondition_count",
    "commit_abort_count",
    "avg_participants",
    "avg_total_latency_seconds",
    "avg_commit_latency_seconds",
    "avg_bytes",
)

LOCK_COLUMNS = (
    "interval_end",
    "row_range_start_key",
    "lock_wait_seconds",
    "sample_lock_requests",
)

COLUMNS = {
    StatisticKind.QUERY: QUERY_COLUMNS,
    StatisticKind.TRANSACTION: TRANSACTION_COLUMNS,
    StatisticKind.LOCK: LOCK_COLUMNS,
}


def _require(kind: StatisticKind, values: Mapping[str, Any], column: str) -> Any:
    if column not in values:
        raise MalformedRowError(kind, f"missing column {column}")
    return values[column]


def _timestamp(kind: StatisticKind, values: Mapping[str, Any], column: str) -> datetime:
    value = _require(kind, values, column)
    if not isinstance(value, datetime):
        raise MalformedRowError(
            kind, f"{column} must be a timestamp, got {type(value).__name__}"
        )
    return value


def _int(
    kind: StatisticKind, values: Mapping[str, Any], column: str, nullable: bool = False
) -> int:
    value = _require(kind, values, column)
    if value is None and nullable:
        return 0
    if not isinstance(value, int) or isinstance(value, bool):
        raise MalformedRowError(
            kind, f"{column} must be an integer, got {type(value).__name__}"
        )
    return value


def _float(kind: StatisticKind, values: Mapping[str, Any], column: str) -> float:
    value = _require(kind, values, column)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRowError(
            kind, f"{column} must be a number, got {type(value).__name__}"
        )
    return float(value)


def _strings(
    kind: StatisticKind, values: Mapping[str, Any], column: str
) -> Tuple[str, ...]:
    value = _require(kind, values, column)
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)) or not all(
        isinstance(item, str) for item in value
    ):
        raise MalformedRowError(kind, f"{column} must be a list of strings")
    return tuple(value)


def _lock_requests(
    kind: StatisticKind, values: Mapping[str, Any], column: str
) -> Tuple[LockRequest, ...]:
    value = _require(kind, values, column)
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise MalformedRowError(kind, f"{column} must be a list of lock requests")

    requests: List[LockRequest] = []
    for item in value:
        # STRUCT<lock_mode STRING, column STRING> arrives as a two item list
        if isinstance(item, Mapping):
            lock_mode, lock_column = item.get("lock_mode"), item.get("column")
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            lock_mode, lock_column = item
        else:
            raise MalformedRowError(kind, f"unexpected lock request {item!r}")
        if not isinstance(lock_mode, str) or not isinstance(lock_column, str):
            raise MalformedRowError(kind, f"unexpected lock request {item!r}")
        requests.append(LockRequest(lock_mode=lock_mode, column=lock_column))
    return tuple(requests)


def _bytes(kind: StatisticKind, values: Mapping[str, Any], column: str) -> bytes:
    value = _require(kind, values, column)
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray)):
        raise MalformedRowError(
            kind, f"{column} must be bytes, got {type(value).__name__}"
        )
    return bytes(value)


def decode_row(kind: StatisticKind, values: Mapping[str, Any]) -> StatRow:
    """Decode one raw view row into the statistic type for its kind.

    Args:
        kind: Statistic kind the row was read for
        values: Mapping of lower-case column name to value

    Returns:
        The immutable StatRow variant for the kind

    Raises:
        MalformedRowError: If a column is missing or has the wrong type
    """
    if kind is StatisticKind.QUERY:
        text = _require(kind, values, "text")
        if not isinstance(text, str):
            raise MalformedRowError(kind, "text must be a string")
        truncated = _require(kind, values, "text_truncated")
        return QueryStat(
            interval_end=_timestamp(kind, values, "interval_end"),
            text=text.strip(),
            text_truncated=bool(truncated),
            text_fingerprint=_int(kind, values, "text_fingerprint"),
            execution_count=_int(kind, values, "execution_count"),
            avg_latency_seconds=_float(kind, values, "avg_latency_seconds"),
            avg_rows=_float(kind, values, "avg_rows"),
            avg_bytes=_float(kind, values, "avg_bytes"),
            avg_rows_scanned=_float(kind, values, "avg_rows_scanned"),
            avg_cpu_seconds=_float(kind, values, "avg_cpu_seconds"),
        )

    if kind is StatisticKind.TRANSACTION:
        return TransactionStat(
            interval_end=_timestamp(kind, values, "interval_end"),
            fprint=_int(kind, values, "fprint"),
            read_columns=_strings(kind, values, "read_columns"),
            write_constructive_columns=_strings(
                kind, values, "write_constructive_columns"
            ),
            write_delete_tables=_strings(kind, values, "write_delete_tables"),
            commit_attempt_count=_int(kind, values, "commit_attempt_count", True),
            commit_failed_precondition_count=_int(
                kind, values, "commit_failed_precondition_count", True
            ),
            commit_abort_count=_int(kind, values, "commit_abort_count", True),
            avg_participants=_float(kind, values, "avg_participants"),
            avg_total_latency_seconds=_float(kind, values, "avg_total_latency_seconds"),
            avg_commit_latency_seconds=_float(
                kind, values, "avg_commit_latency_seconds"
            ),
            avg_bytes=_float(kind, values, "avg_bytes"),
        )

    return LockStat(
        interval_end=_timestamp(kind, values, "interval_end"),
        row_range_start_key=_bytes(kind, values, "row_range_start_key"),
        lock_wait_seconds=_float(kind, values, "lock_wait_seconds"),
        sample_lock_requests=_lock_requests(kind, values, "sample_lock_requests"),
    )


def parse_kind(value: str) -> Optional[StatisticKind]:
    """Return the StatisticKind for a config string, or None if unknown."""
    try:
        return StatisticKind(value)
    except ValueError:
        return None


def parse_granularity(value: str) -> Optional[Granularity]:
    """Return the Granularity for a config string, or None if unknown."""
    try:
        return Granularity(value)
    except ValueError:
        return None
