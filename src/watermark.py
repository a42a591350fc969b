"""Watermark tracker module.

Holds, per statistic kind, the interval_end of the latest batch delivered to
the writer. Watermarks live in memory only; a restart begins again from the
bounded catch-up window given at construction.

Concurrency Note:
    Each kind's watermark is written by exactly one per-kind unit per tick,
    so writers never contend on a kind. The lock guards the dict itself so
    that reads from the heartbeat and tests see a consistent snapshot.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable

from stats import StatisticKind


logger = logging.getLogger(__name__)


class WatermarkTracker:
    """Thread-safe store of monotonically non-decreasing watermarks."""

    def __init__(self, kinds: Iterable[StatisticKind], initial: datetime) -> None:
        """Initialize one watermark per kind.

        Args:
            kinds: Statistic kinds to track
            initial: Starting watermark for every kind
        """
        self._lock = threading.RLock()
        self._watermarks: Dict[StatisticKind, datetime] = {
            kind: initial for kind in kinds
        }

    def get(self, kind: StatisticKind) -> datetime:
        """Get the current watermark for a kind.

        Raises:
            KeyError: If the kind is not tracked
        """
        with self._lock:
            return self._watermarks[kind]

    def advance(self, kind: StatisticKind, value: datetime) -> bool:
        """Move a kind's watermark forward.

        A value that is not strictly after the current watermark is ignored.

        Args:
            kind: Statistic kind to advance
            value: Candidate watermark

        Returns:
            True if the watermark moved, False otherwise

        Raises:
            KeyError: If the kind is not tracked
        """
        with self._lock:
            current = self._watermarks[kind]
            if not value > current:
                logger.debug(
                    f"Ignoring non-advancing watermark for {kind.value}: "
                    f"{value.isoformat()} <= {current.isoformat()}"
                )
                return False
            self._watermarks[kind] = value
            return True

    def snapshot(self) -> Dict[StatisticKind, datetime]:
        """Get a copy of all watermarks keyed by kind."""
        with self._lock:
            return dict(self._watermarks)
