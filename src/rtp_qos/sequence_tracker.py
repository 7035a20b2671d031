#!/usr/bin/env python3
"""
RTP Sequence Tracker - Wraparound-Aware Loss Accounting

Accumulates packet counts for the whole capture session and for the
current reporting interval, and estimates how many packets *should* have
arrived from the spread of RTP sequence numbers.

Sequence numbers are 16-bit and wrap from 65535 back to 0, while codec
timestamps keep increasing. A packet whose sequence is below the window's
first sequence but whose timestamp is ahead of the window's first
timestamp is therefore taken as a wrap, not as reordering or loss:

    session:  the finished window (last - first + 1) is folded into
              expected_prior and a new window opens at the new packet
    interval: the sequence is stored as seq + 65536 * wrap_count so that
              max - min + 1 stays a valid expected count across the wrap

Threading:
    The capture thread is the only writer (observe). The reporter thread
    reads the session and snapshots-and-resets the interval. Session and
    interval state sit behind two independent locks.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

SEQUENCE_MODULUS = 1 << 16


def loss_percent(received: int, expected: int) -> Optional[float]:
    """(1 - received/expected) * 100, or None when nothing is expected yet."""
    if expected <= 0:
        return None
    return (1.0 - received / expected) * 100.0


@dataclass(frozen=True)
class SessionReport:
    """Read-only view of the session counters."""
    received: int
    expected: int
    wraps: int = 0

    @property
    def lost(self) -> int:
        return self.expected - self.received

    @property
    def loss_percent(self) -> Optional[float]:
        return loss_percent(self.received, self.expected)


@dataclass(frozen=True)
class IntervalReport:
    """Counters of one reporting interval, taken at reset time."""
    received: int
    expected: int
    bytes_received: int
    first_sequence: Optional[int] = None
    first_timestamp: Optional[int] = None
    wraps: int = 0

    @property
    def lost(self) -> int:
        return self.expected - self.received

    @property
    def loss_percent(self) -> Optional[float]:
        return loss_percent(self.received, self.expected)


class SequenceTracker:
    """
    Session and interval packet accounting with 16-bit wrap correction.

    Usage:
        tracker = SequenceTracker()
        tracker.observe(header.sequence, header.timestamp, len(datagram))
        ...
        session = tracker.snapshot_session()
        interval = tracker.snapshot_and_reset_interval()
    """

    def __init__(self):
        self._session_lock = threading.Lock()
        self._interval_lock = threading.Lock()

        # Session scope (guarded by _session_lock)
        self._session_received = 0
        self._session_first_seq = 0
        self._session_first_ts = 0
        self._session_last_seq = 0
        self._expected_prior = 0  # carried over from closed wrap windows
        self._session_wraps = 0

        # Interval scope (guarded by _interval_lock)
        self._samples: List[int] = []
        self._interval_received = 0
        self._interval_bytes = 0
        self._interval_first_seq = 0
        self._interval_first_ts = 0
        self._wrap_count = 0

    def reset(self):
        """Start a new session: clear session and interval state."""
        with self._session_lock:
            self._session_received = 0
            self._session_first_seq = 0
            self._session_first_ts = 0
            self._session_last_seq = 0
            self._expected_prior = 0
            self._session_wraps = 0
        with self._interval_lock:
            self._reset_interval_locked()

    def observe(self, sequence: int, timestamp: int, byte_len: int):
        """
        Account for one received packet.

        Args:
            sequence: RTP sequence number (0..65535)
            timestamp: RTP timestamp (0..2**32-1)
            byte_len: Datagram size in bytes
        """
        with self._session_lock:
            self._observe_session(sequence, timestamp)
        with self._interval_lock:
            self._observe_interval(sequence, timestamp, byte_len)

    def _observe_session(self, sequence: int, timestamp: int):
        if self._session_received == 0:
            self._session_first_seq = sequence
            self._session_first_ts = timestamp
            self._session_last_seq = sequence
        elif sequence < self._session_first_seq and timestamp <= self._session_first_ts:
            # An earlier packet of the stream arrived late: move the start of the
            # window back, the newest sequence seen stays the end. An equal
            # timestamp is the same frame, so it can never be a wrap.
            self._session_first_seq = sequence
            self._session_first_ts = timestamp
        elif sequence < self._session_first_seq:
            window = self._session_last_seq - self._session_first_seq + 1
            self._expected_prior += window
            self._session_wraps += 1
            logger.debug(f"Sequence wrap: closed window {self._session_first_seq}.."
                         f"{self._session_last_seq} ({window} packets), "
                         f"new window at seq={sequence}")
            self._session_first_seq = sequence
            self._session_first_ts = timestamp
            self._session_last_seq = sequence
        else:
            self._session_last_seq = sequence

        self._session_received += 1

    def _observe_interval(self, sequence: int, timestamp: int, byte_len: int):
        if self._interval_received == 0:
            self._interval_first_seq = sequence
            self._interval_first_ts = timestamp

        if sequence < self._interval_first_seq and timestamp > self._interval_first_ts:
            # At most one wrap fits in an interval shorter than 65536 packets
            if self._wrap_count == 0:
                self._wrap_count += 1
            self._samples.append(sequence + SEQUENCE_MODULUS * self._wrap_count)
        else:
            self._samples.append(sequence)

        self._interval_bytes += byte_len
        self._interval_received += 1

    def _reset_interval_locked(self):
        self._samples = []
        self._interval_received = 0
        self._interval_bytes = 0
        self._interval_first_seq = 0
        self._interval_first_ts = 0
        self._wrap_count = 0

    @property
    def received_in_session(self) -> int:
        with self._session_lock:
            return self._session_received

    def snapshot_session(self) -> SessionReport:
        """Read session counters without resetting them."""
        with self._session_lock:
            if self._session_received == 0:
                return SessionReport(received=0, expected=0)
            window = self._session_last_seq - self._session_first_seq + 1
            return SessionReport(
                received=self._session_received,
                expected=self._expected_prior + window,
                wraps=self._session_wraps,
            )

    def snapshot_and_reset_interval(self) -> IntervalReport:
        """Take the interval counters and start a fresh interval atomically."""
        with self._interval_lock:
            samples = self._samples
            received = self._interval_received
            byte_count = self._interval_bytes
            first_seq = self._interval_first_seq
            first_ts = self._interval_first_ts
            wraps = self._wrap_count
            self._reset_interval_locked()

        if received == 0:
            return IntervalReport(received=0, expected=0, bytes_received=0)

        # Range of the (wrap-corrected) samples, computed outside the lock
        arr = np.asarray(samples, dtype=np.int64)
        expected = int(arr.max() - arr.min() + 1)

        return IntervalReport(
            received=received,
            expected=expected,
            bytes_received=byte_count,
            first_sequence=first_seq,
            first_timestamp=first_ts,
            wraps=wraps,
        )
