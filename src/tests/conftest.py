"""Pytest configuration and shared fixtures."""

import os
import sys
import threading
from datetime import datetime, timedelta, timezone

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from stats import LockRequest, LockStat, QueryStat, TransactionStat


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def minutes(n: int) -> timedelta:
    return timedelta(minutes=n)


def make_query_stat(interval_end: datetime, fingerprint: int = 1, text: str = "SELECT 1") -> QueryStat:
    """Build a QueryStat with plausible values."""
    return QueryStat(
        interval_end=interval_end,
        text=text,
        text_truncated=False,
        text_fingerprint=fingerprint,
        execution_count=10,
        avg_latency_seconds=0.25,
        avg_rows=3.0,
        avg_bytes=128.0,
        avg_rows_scanned=30.0,
        avg_cpu_seconds=0.1,
    )


def make_transaction_stat(interval_end: datetime, fprint: int = 7) -> TransactionStat:
    """Build a TransactionStat with plausible values."""
    return TransactionStat(
        interval_end=interval_end,
        fprint=fprint,
        read_columns=("Singers._exists", "Singers.FirstName"),
        write_constructive_columns=("Singers.LastName",),
        write_delete_tables=(),
        commit_attempt_count=5,
        commit_failed_precondition_count=0,
        commit_abort_count=1,
        avg_participants=1.0,
        avg_total_latency_seconds=0.02,
        avg_commit_latency_seconds=0.01,
        avg_bytes=64.0,
    )


def make_lock_stat(interval_end: datetime, key: bytes = b"Singers(1)") -> LockStat:
    """Build a LockStat with plausible values."""
    return LockStat(
        interval_end=interval_end,
        row_range_start_key=key,
        lock_wait_seconds=1.5,
        sample_lock_requests=(
            LockRequest(lock_mode="WRITER", column="Singers.LastName"),
            LockRequest(lock_mode="READER", column="Singers._exists"),
        ),
    )


class MockStatSource:
    """Mock stat source returning queued snapshots per kind.

    Each entry in a kind's queue is either a list of rows or an exception to
    raise. When a queue is exhausted the last entry is repeated. Rows at or
    before the requested watermark are filtered out, as the real view query
    does with its WHERE clause.
    """

    def __init__(self, snapshots=None, apply_since=True):
        self._snapshots = {k: list(v) for k, v in (snapshots or {}).items()}
        self._apply_since = apply_since
        self._lock = threading.Lock()
        self.calls = []

    def fetch(self, kind, granularity, since):
        with self._lock:
            self.calls.append((kind, granularity, since))
            queue = self._snapshots.get(kind, [[]])
            entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, BaseException):
            raise entry
        if self._apply_since:
            return [row for row in entry if row.interval_end > since]
        return list(entry)


class RecordingWriter:
    """Writer that records every batch it is given."""

    def __init__(self, fail_kinds=()):
        self._fail_kinds = set(fail_kinds)
        self._lock = threading.Lock()
        self.batches = []
        self.closed = False

    def write(self, kind, rows):
        if kind in self._fail_kinds:
            raise RuntimeError(f"sink down for {kind.value}")
        with self._lock:
            self.batches.append((kind, list(rows)))

    def close(self):
        self.closed = True

    def rows_for(self, kind):
        return [row for k, rows in self.batches if k is kind for row in rows]


@pytest.fixture
def recording_writer():
    """Provide a fresh RecordingWriter."""
    return RecordingWriter()


@pytest.fixture
def config_file(tmp_path):
    """Provide a path to a valid configuration file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        """
spanner:
  project_id: "my-project"
  instance_id: "my-instance"
  database_id: "my-database"
"""
    )
    return path
