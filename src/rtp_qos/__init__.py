"""
RTP QoS Tester - packet loss and throughput of a multicast RTP stream

Joins a multicast group, decodes the fixed RTP header of every datagram
and reports session and per-interval loss (wraparound aware) and
throughput. Packet and statistics lines are written to log files by a
write-behind worker thread.

Quick Start:
    from rtp_qos import MulticastReceiver, ReceiverConfig

    receiver = MulticastReceiver()
    receiver.setup(ReceiverConfig('239.1.1.1', port=5004))
    receiver.run()  # until Ctrl+C
"""

__version__ = "1.0.0"

from .rtp_header import RTPHeader, DecodeError, decode_rtp_header, get_header_value
from .sequence_tracker import SequenceTracker, SessionReport, IntervalReport
from .async_log_writer import WriteBehindLogger, LogTask, LogTaskKind, LogIOError
from .stats_reporter import StatsReporter, format_stats_line
from .multicast_receiver import MulticastReceiver, ReceiverState, SetupError
from .config import ReceiverConfig, load_config
from .paths import SessionLogPaths

__all__ = [
    "RTPHeader",
    "DecodeError",
    "decode_rtp_header",
    "get_header_value",
    "SequenceTracker",
    "SessionReport",
    "IntervalReport",
    "WriteBehindLogger",
    "LogTask",
    "LogTaskKind",
    "LogIOError",
    "StatsReporter",
    "format_stats_line",
    "MulticastReceiver",
    "ReceiverState",
    "SetupError",
    "ReceiverConfig",
    "load_config",
    "SessionLogPaths",
]
