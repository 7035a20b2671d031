#!/usr/bin/env python3
"""
Periodic QoS Statistics Reporter

Every stats interval, takes a session snapshot and the interval counters
from the SequenceTracker and emits one summary line:

    [2024-01-01 12:00:00] Rcvd (session):   100 BySQ:   100 Lost:     0 ( 0.000 %) | Rcvd (s):   50 BySQ:    50 Lost:    0 ( 0.000 %) | Speed: 0.061 MB/s ( 0.512 Mbps)

The interval part (after the first '|') is left out when no packet
arrived during the interval. Lines are printed to stdout and, when
enabled, appended to the statistics file through the write-behind logger.
"""

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple

from .async_log_writer import WriteBehindLogger
from .rtp_header import format_utc_timestamp
from .sequence_tracker import IntervalReport, SequenceTracker, SessionReport

logger = logging.getLogger(__name__)


def format_percent(value: Optional[float]) -> str:
    """Loss percentage to 3 decimals, 'n/a' when undefined."""
    if value is None:
        return f"{'n/a':>6}"
    return f"{value:6.3f}"


def throughput(bytes_received: int, interval_sec: float) -> Tuple[float, float]:
    """
    Convert an interval byte count into throughput.

    Returns:
        (MB/s with 1 MB = 1024*1024 bytes, Mb/s with 1 Mb = 1e6 bits)
    """
    if interval_sec <= 0:
        raise ValueError(f"Interval must be positive, got {interval_sec}")
    mb_per_sec = bytes_received / 1024 / 1024 / interval_sec
    mbit_per_sec = bytes_received * 8 / 1e6 / interval_sec
    return mb_per_sec, mbit_per_sec


def format_stats_line(session: SessionReport,
                      interval: IntervalReport,
                      interval_sec: float,
                      now: Optional[datetime] = None) -> str:
    """Build the human-readable statistics line for one tick."""
    message = (
        f"[{format_utc_timestamp(now)}] "
        f"Rcvd (session): {session.received:>5} "
        f"BySQ: {session.expected:>5} "
        f"Lost: {session.lost:>5} "
        f"({format_percent(session.loss_percent)} %) | "
    )

    if interval.received > 0:
        mb_per_sec, mbit_per_sec = throughput(interval.bytes_received, interval_sec)
        message += (
            f"Rcvd (s): {interval.received:>4} "
            f"BySQ: {interval.expected:>5} "
            f"Lost: {interval.lost:>4} "
            f"({format_percent(interval.loss_percent)} %) | "
            f"Speed: {mb_per_sec:.3f} MB/s "
            f"({mbit_per_sec:6.3f} Mbps)"
        )

    return message


class StatsReporter:
    """
    Fixed-period reporter running on its own thread.

    Only one tick is ever in flight: ticks run on the reporter thread, and
    a tick() call that overlaps a running one is skipped.
    """

    def __init__(self,
                 tracker: SequenceTracker,
                 interval_ms: int = 1000,
                 is_listening: Callable[[], bool] = lambda: True,
                 log_writer: Optional[WriteBehindLogger] = None,
                 stats_path: Optional[Path] = None,
                 dump_to_file: bool = True,
                 output: Callable[[str], None] = print):
        """
        Args:
            tracker: Shared sequence tracker
            interval_ms: Reporting period in milliseconds
            is_listening: Returns False while capture is not active
            log_writer: Write-behind sink for the statistics file
            stats_path: Statistics file path
            dump_to_file: Also persist each line via log_writer
            output: Console sink for each line
        """
        if interval_ms <= 0:
            raise ValueError(f"Interval must be positive, got {interval_ms} ms")

        self.tracker = tracker
        self.interval_ms = interval_ms
        self.is_listening = is_listening
        self.log_writer = log_writer
        self.stats_path = stats_path
        self.dump_to_file = dump_to_file
        self.output = output

        self.ticks = 0
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def interval_sec(self) -> float:
        return self.interval_ms / 1e3

    @property
    def armed(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Arm the periodic timer."""
        if self.armed:
            logger.warning("Stats reporter already running")
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop_event,),
                                        name="StatsReporter", daemon=True)
        self._thread.start()
        logger.debug(f"Stats reporter armed ({self.interval_ms} ms)")

    def stop(self, timeout: float = 2.0):
        """Disarm the timer and wait for an in-flight tick to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Stats reporter thread did not stop in time")
        self._thread = None
        logger.debug("Stats reporter disarmed")

    def _run(self, stop_event: threading.Event):
        """Timer loop with a drift-free schedule."""
        next_tick = time.monotonic() + self.interval_sec
        while not stop_event.wait(timeout=max(0.0, next_tick - time.monotonic())):
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Stats tick failed: {e}", exc_info=True)
            next_tick += self.interval_sec
            now = time.monotonic()
            if next_tick < now:
                # Fell behind by whole periods: skip them rather than burst
                skipped = int((now - next_tick) // self.interval_sec) + 1
                next_tick += skipped * self.interval_sec

    def tick(self, now: Optional[datetime] = None) -> Optional[str]:
        """
        Produce one report.

        Returns:
            The emitted line, or None if nothing was reported
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous stats tick still running, skipping")
            return None
        try:
            if not self.is_listening() or self.tracker.received_in_session <= 0:
                return None

            session = self.tracker.snapshot_session()
            interval = self.tracker.snapshot_and_reset_interval()
            line = format_stats_line(session, interval, self.interval_sec, now)

            self.output(line)
            if self.dump_to_file and self.log_writer is not None and self.stats_path is not None:
                self.log_writer.write_line(self.stats_path, line)

            self.ticks += 1
            return line
        finally:
            self._tick_lock.release()
