#!/usr/bin/env python3
"""
Multicast RTP QoS Receiver

Joins a multicast group, receives RTP datagrams and feeds every fixed
header through the SequenceTracker. Per-packet dump lines and periodic
statistics lines are persisted through the WriteBehindLogger so file I/O
never stalls the receive loop.

Lifecycle:
    setup(config)  bind + join + start logger worker and receive thread
                   (raises SetupError and releases everything on failure)
    start()        reset the session, set listening, arm the reporter
    stop()         clear listening -> disarm reporter -> unblock recvfrom
                   (socket shutdown) -> poison-pill the logger

Example:
    receiver = MulticastReceiver()
    receiver.setup(ReceiverConfig('239.1.1.1', port=5004))
    receiver.start()
    # ... later ...
    receiver.stop()
"""

import logging
import signal
import socket
import struct
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .async_log_writer import WriteBehindLogger
from .config import ReceiverConfig
from .paths import SessionLogPaths
from .rtp_header import DecodeError, decode_rtp_header, format_packet_line
from .sequence_tracker import SequenceTracker
from .stats_reporter import StatsReporter

logger = logging.getLogger(__name__)

MAX_DATAGRAM_SIZE = 65535
RECEIVE_ERROR_BACKOFF = 0.1  # seconds between retries after a failed recvfrom


class SetupError(Exception):
    """Receiver could not be set up; nothing was left running."""

    def __init__(self, message: str, stage: str):
        super().__init__(message)
        self.stage = stage  # 'state', 'socket', 'bind', 'join', 'logs', 'threads'


class ReceiverState(str, Enum):
    """Receiver operational states."""
    IDLE = "idle"
    SETTING_UP = "setting_up"
    READY = "ready"
    LISTENING = "listening"
    STOPPING = "stopping"


class MulticastReceiver:
    """
    Owns the multicast socket and the receive loop.

    The tracker and log writer are shared with the StatsReporter; pass
    them in to observe the counters from outside (tests, embedding).
    """

    def __init__(self,
                 tracker: Optional[SequenceTracker] = None,
                 log_writer: Optional[WriteBehindLogger] = None,
                 output: Callable[[str], None] = print):
        self.tracker = tracker or SequenceTracker()
        self.log_writer = log_writer or WriteBehindLogger()
        self.output = output

        self.config: Optional[ReceiverConfig] = None  # last successfully applied
        self.paths: Optional[SessionLogPaths] = None
        self.state = ReceiverState.IDLE
        self.listening = False
        self.socket: Optional[socket.socket] = None
        self.thread: Optional[threading.Thread] = None
        self.reporter: Optional[StatsReporter] = None

        self._lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._stop_requested = threading.Event()

        # Statistics
        self.packets_received = 0
        self.bytes_received = 0
        self.decode_errors = 0
        self.receive_errors = 0
        self._ssrc_seen = set()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self, config: ReceiverConfig, started_at: Optional[datetime] = None):
        """
        Bind, join the multicast group and start the worker threads.

        Args:
            config: Receiver configuration
            started_at: Run start time used in log file names (default now)

        Raises:
            SetupError: Socket, bind, join, log directory or thread failure.
                No socket stays open and no thread is left running.
        """
        with self._lock:
            if self.state in (ReceiverState.READY, ReceiverState.LISTENING):
                logger.warning("Receiver already set up")
                return
            if self.state != ReceiverState.IDLE:
                raise SetupError(f"Cannot set up in state {self.state.value}", stage='state')
            self.state = ReceiverState.SETTING_UP

        try:
            self._setup(config, started_at)
        except SetupError as e:
            logger.error(f"Setup failed ({e.stage}): {e}")
            with self._lock:
                self.state = ReceiverState.IDLE
            raise

        with self._lock:
            self.config = config
            self.state = ReceiverState.READY
        logger.info(f"Setup has been completed: {config.multicast_address}:{config.port}")

    def _setup(self, config: ReceiverConfig, started_at: Optional[datetime]):
        paths = self.paths
        if paths is None or paths.packets.parent != config.log_dir:
            paths = SessionLogPaths.for_start_time(config.log_dir, started_at)

        sock = self._open_socket(config)
        joined = False
        try:
            self._join_group(sock, config)
            joined = True

            try:
                paths.ensure_dir()
            except OSError as e:
                raise SetupError(f"Cannot create log directory {config.log_dir}: {e}",
                                 stage='logs') from e

            try:
                self.log_writer.start()
            except RuntimeError as e:
                raise SetupError(f"Cannot start log writer: {e}", stage='threads') from e
            shutdown_event = threading.Event()
            thread = threading.Thread(target=self._receive_loop, args=(sock, shutdown_event),
                                      name="RTPReceive", daemon=True)
            try:
                thread.start()
            except RuntimeError as e:
                self.log_writer.stop()
                raise SetupError(f"Cannot start receive thread: {e}", stage='threads') from e
        except SetupError:
            self._close_socket(sock, config if joined else None)
            raise

        self.socket = sock
        self.thread = thread
        self.paths = paths
        self._shutdown_event = shutdown_event

    def _open_socket(self, config: ReceiverConfig) -> socket.socket:
        """Create a UDP socket with address reuse and bind the wildcard address."""
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as e:
            raise SetupError(f"Cannot create UDP socket: {e}", stage='socket') from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

            if config.receive_buffer_bytes:
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, config.receive_buffer_bytes)
                    actual_size = sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)
                    logger.info(f"UDP receive buffer: requested {config.receive_buffer_bytes} bytes, "
                                f"got {actual_size}")
                except OSError as e:
                    logger.warning(f"Could not set UDP buffer size: {e}")

            sock.bind(('', config.port))
        except OSError as e:
            sock.close()
            raise SetupError(f"Cannot bind UDP port {config.port}: {e}", stage='bind') from e

        return sock

    def _join_group(self, sock: socket.socket, config: ReceiverConfig):
        """IGMP join of the configured group on the configured interface."""
        mreq = self._membership_request(config)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        except OSError as e:
            raise SetupError(f"Cannot join multicast group {config.multicast_address} "
                             f"on {config.interface_address}: {e}", stage='join') from e
        logger.info(f"Joined multicast {config.multicast_address} on {config.interface_address}")

    def _leave_group(self, sock: socket.socket, config: ReceiverConfig):
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP,
                            self._membership_request(config))
            logger.info(f"Left multicast {config.multicast_address}")
        except OSError as e:
            logger.debug(f"Leaving multicast group failed: {e}")

    @staticmethod
    def _membership_request(config: ReceiverConfig) -> bytes:
        return struct.pack("4s4s",
                           socket.inet_aton(config.multicast_address),
                           socket.inet_aton(config.interface_address))

    def _close_socket(self, sock: socket.socket, joined_config: Optional[ReceiverConfig]):
        """Leave the group (if joined), wake a blocked recvfrom and close."""
        if joined_config is not None:
            self._leave_group(sock, joined_config)
        try:
            # Unconnected UDP reports ENOTCONN but still wakes blocked readers
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start(self):
        """
        Begin a capture session.

        Raises:
            RuntimeError: If setup() never succeeded
            SetupError: If re-running setup() after a stop() fails
        """
        with self._lock:
            if self.state == ReceiverState.LISTENING:
                logger.warning("Receiver already listening")
                return
            needs_setup = self.state != ReceiverState.READY
            config = self.config

        if needs_setup:
            if config is None:
                raise RuntimeError("start() called before a successful setup()")
            logger.info("Receiver not set up, re-running setup with last applied configuration")
            self.setup(config)

        self.tracker.reset()
        self.reporter = StatsReporter(
            tracker=self.tracker,
            interval_ms=config.stats_interval_ms,
            is_listening=lambda: self.listening,
            log_writer=self.log_writer,
            stats_path=self.paths.statistics,
            dump_to_file=config.dump_stats_to_file,
            output=self.output,
        )

        with self._lock:
            self.listening = True
            self.state = ReceiverState.LISTENING
        self.reporter.start()

        logger.info(f"Listening for packets at {config.multicast_address} on port {config.port}...")

    def stop(self, timeout: float = 2.0):
        """
        Stop capture: clear flag, disarm reporter, unblock receive, stop logger.

        Args:
            timeout: Maximum wait for each worker thread
        """
        with self._lock:
            if self.state not in (ReceiverState.READY, ReceiverState.LISTENING):
                return
            self.state = ReceiverState.STOPPING
            self.listening = False

        if self.reporter is not None:
            self.reporter.stop(timeout=timeout)

        self._shutdown_event.set()
        if self.socket is not None:
            self._close_socket(self.socket, self.config)
        if self.thread is not None:
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning("Receive thread did not exit in time")

        # Receive thread has exited, so nothing can be queued after the pill
        self.log_writer.stop()

        with self._lock:
            self.socket = None
            self.thread = None
            self.reporter = None
            self.state = ReceiverState.IDLE

        if self.config is not None:
            logger.info(f"Stopped listening for packets at {self.config.multicast_address} "
                        f"on port {self.config.port}")

    def run(self):
        """Start and block until SIGINT/SIGTERM, then stop gracefully."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self._stop_requested.clear()
        self.start()

        logger.info("Receiver running. Press Ctrl+C to stop.")
        try:
            while not self._stop_requested.is_set():
                self._stop_requested.wait(timeout=1.0)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def request_stop(self):
        """Ask a blocking run() to return."""
        self._stop_requested.set()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop_requested.set()

    # ------------------------------------------------------------------
    # Receive path
    # ------------------------------------------------------------------

    def _receive_loop(self, sock: socket.socket, shutdown_event: threading.Event):
        """Main packet reception loop"""
        while not shutdown_event.is_set():
            try:
                data, addr = sock.recvfrom(MAX_DATAGRAM_SIZE)
            except OSError as e:
                if shutdown_event.is_set():
                    break
                self.receive_errors += 1
                logger.error(f"Error receiving datagram: {e}")
                shutdown_event.wait(RECEIVE_ERROR_BACKOFF)
                continue

            if shutdown_event.is_set():
                break
            if not self.listening:
                continue

            self.handle_datagram(data)

        logger.debug("Receive loop exited")

    def handle_datagram(self, data: bytes):
        """Decode one datagram, account for it and queue its dump line."""
        try:
            header = decode_rtp_header(data)
        except DecodeError as e:
            self.decode_errors += 1
            logger.warning(f"Skipping datagram: {e}")
            return

        self.packets_received += 1
        self.bytes_received += len(data)

        if header.ssrc not in self._ssrc_seen:
            self._ssrc_seen.add(header.ssrc)
            logger.debug(f"First packet from SSRC {header.ssrc}: "
                         f"seq={header.sequence}, ts={header.timestamp}, pt={header.payload_type}")

        if self.packets_received % 10000 == 0:
            logger.info(f"RTP receiver: {self.packets_received} packets, "
                        f"{len(self._ssrc_seen)} SSRCs, {self.decode_errors} undecodable")

        self.tracker.observe(header.sequence, header.timestamp, len(data))

        line = format_packet_line(header)
        self.log_writer.write_line(self.paths.packets, line)
        if self.config.dump_packets_to_console:
            self.output(line)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def local_port(self) -> Optional[int]:
        """Port actually bound (useful with port 0)."""
        if self.socket is None:
            return None
        return self.socket.getsockname()[1]

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            'state': self.state.value,
            'listening': self.listening,
            'packets_received': self.packets_received,
            'bytes_received': self.bytes_received,
            'decode_errors': self.decode_errors,
            'receive_errors': self.receive_errors,
            'ssrcs_seen': len(self._ssrc_seen),
            'log_writer': self.log_writer.get_stats(),
        }
