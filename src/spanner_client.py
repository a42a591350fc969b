"""Cloud Spanner stat source module.

All google-cloud-spanner library usage is isolated here. No other module
imports from google.cloud.
"""

import base64
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import google.auth
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import spanner
from google.cloud.spanner_v1 import param_types

from config import SpannerConfig
from stats import (
    COLUMNS,
    Granularity,
    MalformedRowError,
    StatisticKind,
    StatRow,
    decode_row,
)


logger = logging.getLogger(__name__)


# View name prefix per kind; the granularity label completes the name.
_VIEW_PREFIXES = {
    StatisticKind.QUERY: "spanner_sys.query_stats_top_",
    StatisticKind.TRANSACTION: "spanner_sys.txn_stats_top_",
    StatisticKind.LOCK: "spanner_sys.lock_stats_top_",
}

# BYTES columns, which the client library returns base64 encoded.
_BYTES_COLUMNS = {
    StatisticKind.LOCK: ("row_range_start_key",),
}


class SourceUnavailableError(Exception):
    """Raised when a statistics view cannot be read."""

    def __init__(self, kind: StatisticKind, reason: str) -> None:
        super().__init__(f"Cannot read {kind.value} stats: {reason}")
        self.kind = kind
        self.reason = reason


def build_stats_query(kind: StatisticKind, granularity: Granularity) -> str:
    """Build the SQL reading one kind's view newer than the @since parameter.

    Args:
        kind: Statistic kind to read
        granularity: Aggregation bucket width selecting the view

    Returns:
        SQL text with a single TIMESTAMP parameter named ``since``
    """
    columns = ",\n    ".join(COLUMNS[kind])
    return (
        f"SELECT\n    {columns}\n"
        f"FROM {_VIEW_PREFIXES[kind]}{granularity.label}\n"
        f"WHERE interval_end > @since\n"
        f"ORDER BY interval_end DESC"
    )


def build_database(config: SpannerConfig) -> Any:
    """Construct a Spanner Database handle for the configured target.

    Args:
        config: Spanner section of the configuration

    Returns:
        google.cloud.spanner Database instance
    """
    credentials = None
    if config.credential_file:
        credentials, _ = google.auth.load_credentials_from_file(config.credential_file)
    else:
        logger.warning(
            "No spanner.credential_file configured, using application default credentials"
        )

    client = spanner.Client(project=config.project_id, credentials=credentials)
    instance = client.instance(config.instance_id)
    return instance.database(config.database_id)


class SpannerStatSource:
    """Reads aggregated statistics from the SPANNER_SYS introspection views."""

    def __init__(self, database: Any, staleness_seconds: int = 60) -> None:
        """Initialize the stat source.

        Args:
            database: google.cloud.spanner Database instance
            staleness_seconds: Exact staleness of each read, 0 for strong reads
        """
        self._database = database
        self._staleness_seconds = staleness_seconds

    def _snapshot(self) -> Any:
        if self._staleness_seconds > 0:
            return self._database.snapshot(
                exact_staleness=timedelta(seconds=self._staleness_seconds)
            )
        return self._database.snapshot()

    def ping(self) -> None:
        """Run a trivial query to prove the database is reachable.

        Raises:
            SourceUnavailableError: If the query fails
        """
        try:
            with self._database.snapshot() as snapshot:
                list(snapshot.execute_sql("SELECT 1"))
        except (GoogleAPIError, GoogleAuthError) as e:
            raise SourceUnavailableError(StatisticKind.QUERY, str(e)) from e

    def fetch(
        self, kind: StatisticKind, granularity: Granularity, since: datetime
    ) -> List[StatRow]:
        """Fetch rows of one kind newer than a watermark.

        Rows that fail to decode are dropped with a warning. If every row of a
        non-empty result is malformed the view is treated as unreadable.

        Args:
            kind: Statistic kind to read
            granularity: Aggregation bucket width selecting the view
            since: Exclusive lower bound on interval_end

        Returns:
            Rows sorted by interval_end descending

        Raises:
            SourceUnavailableError: On any transport, auth or query failure
        """
        sql = build_stats_query(kind, granularity)
        try:
            with self._snapshot() as snapshot:
                raw_rows = list(
                    snapshot.execute_sql(
                        sql,
                        params={"since": since},
                        param_types={"since": param_types.TIMESTAMP},
                    )
                )
        except (GoogleAPIError, GoogleAuthError) as e:
            raise SourceUnavailableError(kind, str(e)) from e

        return decode_rows(kind, raw_rows)


def decode_rows(kind: StatisticKind, raw_rows: Sequence[Sequence[Any]]) -> List[StatRow]:
    """Decode positional result rows, dropping the malformed ones.

    Args:
        kind: Statistic kind the rows belong to
        raw_rows: Result rows in the column order of stats.COLUMNS[kind]

    Returns:
        Decoded rows in their original order

    Raises:
        SourceUnavailableError: If rows were returned but none could be decoded
    """
    columns = COLUMNS[kind]
    rows: List[StatRow] = []
    last_error: Optional[MalformedRowError] = None

    for raw in raw_rows:
        try:
            if len(raw) != len(columns):
                raise MalformedRowError(
                    kind, f"expected {len(columns)} columns, got {len(raw)}"
                )
            values: Dict[str, Any] = dict(zip(columns, raw))
            for column in _BYTES_COLUMNS.get(kind, ()):
                values[column] = _decode_bytes(kind, column, values[column])
            rows.append(decode_row(kind, values))
        except MalformedRowError as e:
            last_error = e
            logger.warning(f"Dropping row: {e}")

    if raw_rows and not rows:
        raise SourceUnavailableError(
            kind, f"all {len(raw_rows)} rows were malformed ({last_error})"
        )

    return rows


def _decode_bytes(kind: StatisticKind, column: str, value: Any) -> Optional[bytes]:
    if value is None:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (TypeError, ValueError) as e:
        raise MalformedRowError(kind, f"{column} is not valid base64: {e}") from e
