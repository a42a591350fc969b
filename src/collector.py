"""Collector module for periodic stat polling.

Each tick fetches every configured kind concurrently, keeps only rows newer
than the kind's watermark, hands them to the writer and then advances the
watermark. A failing kind is logged and retried on the next tick without
affecting its siblings.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from config import ConfigError
from dedup import filter_new_rows
from stats import Granularity, StatisticKind
from watermark import WatermarkTracker
from writer import StatWriter


logger = logging.getLogger(__name__)


class CollectorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class KindOutcome:
    """Result of one kind's unit of work within a tick."""
    kind: StatisticKind
    fetched: int = 0
    delivered: int = 0
    watermark: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Collector:
    """Polls stat views on a fixed tick and forwards new rows to a writer.

    Lifecycle is IDLE -> RUNNING -> STOPPING -> STOPPED. run() blocks until
    its shutdown event is set, either by the caller or through stop(). Ticks never
    overlap: a slow tick delays the next one instead of being doubled up.
    """

    def __init__(
        self,
        source: Any,
        writer: StatWriter,
        kinds: Sequence[StatisticKind],
        granularity: Granularity = Granularity.MINUTE,
        interval_seconds: float = 60,
        now: Optional[datetime] = None,
    ) -> None:
        """Initialize the collector and its watermarks.

        Args:
            source: Stat source exposing fetch(kind, granularity, since)
            writer: Destination for new rows
            kinds: Statistic kinds to poll each tick
            granularity: Aggregation bucket width of the views read
            interval_seconds: Seconds between tick starts
            now: Construction time used for the initial watermarks

        Raises:
            ConfigError: If kinds is empty or has duplicates, or the interval
                is not positive
        """
        if not kinds:
            raise ConfigError("At least one statistic kind is required")
        if len(set(kinds)) != len(kinds):
            raise ConfigError("Statistic kinds must be unique")
        if interval_seconds <= 0:
            raise ConfigError("interval_seconds must be > 0")

        self._source = source
        self._writer = writer
        self._kinds: List[StatisticKind] = list(kinds)
        self._granularity = granularity
        self._interval_seconds = interval_seconds

        # Catch the interval just before startup without replaying history
        start = now or datetime.now(timezone.utc)
        self._tracker = WatermarkTracker(self._kinds, start - 2 * granularity.period)

        self._shutdown_event: Optional[threading.Event] = None
        self._state_lock = threading.Lock()
        self._state = CollectorState.IDLE
        self._last_tick_at: Optional[float] = None

    @property
    def state(self) -> CollectorState:
        with self._state_lock:
            return self._state

    @property
    def last_tick_at(self) -> Optional[float]:
        """Unix time the most recent tick completed, or None."""
        return self._last_tick_at

    def watermarks(self) -> Dict[StatisticKind, datetime]:
        """Get a copy of the current watermarks."""
        return self._tracker.snapshot()

    def run(self, shutdown_event: threading.Event) -> None:
        """Run the collection loop until shutdown.

        The first tick runs immediately. Afterwards a tick starts every
        interval_seconds, measured from the previous tick's start.

        Args:
            shutdown_event: Event ending the loop, set by the caller or by stop()

        Raises:
            RuntimeError: If the collector has already been started
        """
        with self._state_lock:
            if self._state is not CollectorState.IDLE:
                raise RuntimeError(
                    f"Collector can only be started once (state: {self._state.value})"
                )
            self._state = CollectorState.RUNNING
            self._shutdown_event = shutdown_event

        logger.info(
            f"Collector started: kinds={[k.value for k in self._kinds]}, "
            f"granularity={self._granularity.label}, interval={self._interval_seconds}s"
        )

        try:
            while not shutdown_event.is_set():
                cycle_start = time.monotonic()
                self.tick()

                elapsed = time.monotonic() - cycle_start
                if elapsed > self._interval_seconds:
                    logger.warning(
                        f"Tick took {elapsed:.2f}s, longer than the "
                        f"{self._interval_seconds}s interval"
                    )
                shutdown_event.wait(timeout=max(self._interval_seconds - elapsed, 0))
        finally:
            with self._state_lock:
                self._state = CollectorState.STOPPED
            logger.info("Collector stopped")

    def stop(self) -> None:
        """Request the loop to end at its next suspension point.

        Sets the shutdown event passed to run(), so the caller observes the
        stop as well. Does not block. Calling it before run() or after the
        collector has stopped does nothing.
        """
        with self._state_lock:
            if self._state is not CollectorState.RUNNING:
                logger.debug(f"Ignoring stop() in state {self._state.value}")
                return
            self._state = CollectorState.STOPPING
        self._shutdown_event.set()

    def tick(self) -> Dict[StatisticKind, KindOutcome]:
        """Run one fetch-filter-write cycle across all kinds.

        Kinds run concurrently, one worker each, and the call returns once
        all of them have finished.

        Returns:
            Outcome per kind
        """
        tick_start = time.monotonic()

        with ThreadPoolExecutor(
            max_workers=len(self._kinds), thread_name_prefix="collector"
        ) as pool:
            futures = {kind: pool.submit(self._collect_kind, kind) for kind in self._kinds}
            outcomes = {kind: future.result() for kind, future in futures.items()}

        self._last_tick_at = time.time()

        elapsed = time.monotonic() - tick_start
        summary = ", ".join(
            f"{kind.value}={outcome.delivered}" if outcome.ok else f"{kind.value}=failed"
            for kind, outcome in outcomes.items()
        )
        logger.info(f"Tick complete: {summary}, elapsed: {elapsed:.2f}s")

        return outcomes

    def _collect_kind(self, kind: StatisticKind) -> KindOutcome:
        """Fetch, filter and deliver one kind.

        Never raises. The watermark only moves after the writer accepted the
        batch, so a failed fetch or write leaves the interval to be retried
        on the next tick.
        """
        try:
            return self._deliver_new_rows(kind)
        except Exception as e:
            logger.exception(f"Unexpected error collecting {kind.value} stats")
            return KindOutcome(kind=kind, watermark=self._tracker.get(kind), error=str(e))

    def _deliver_new_rows(self, kind: StatisticKind) -> KindOutcome:
        since = self._tracker.get(kind)

        try:
            snapshot = self._source.fetch(kind, self._granularity, since)
        except Exception as e:
            logger.warning(f"Failed to fetch {kind.value} stats: {e}")
            return KindOutcome(kind=kind, watermark=since, error=f"fetch: {e}")

        new_rows, candidate = filter_new_rows(snapshot, since)
        if not new_rows:
            logger.debug(
                f"No new {kind.value} stats after {since.isoformat()} "
                f"({len(snapshot)} rows fetched)"
            )
            return KindOutcome(kind=kind, fetched=len(snapshot), watermark=since)

        try:
            self._writer.write(kind, new_rows)
        except Exception as e:
            logger.warning(f"Failed to write {len(new_rows)} {kind.value} stats: {e}")
            return KindOutcome(
                kind=kind, fetched=len(snapshot), watermark=since, error=f"write: {e}"
            )

        self._tracker.advance(kind, candidate)
        return KindOutcome(
            kind=kind,
            fetched=len(snapshot),
            delivered=len(new_rows),
            watermark=self._tracker.get(kind),
        )
