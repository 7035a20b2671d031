"""
Log file paths for a capture run.

Each run writes two append-only text files, named after the UTC start
time of the process:

    log_dir/
    ├── Packets_2024-01-01_120000.log       # one line per received packet
    └── Statistics_2024-01-01_120000.txt    # one line per reporting tick
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

RUN_STAMP_FORMAT = '%Y-%m-%d_%H%M%S'


def run_stamp(started_at: Optional[datetime] = None) -> str:
    """UTC run stamp used in log file names.

    Examples:
        >>> run_stamp(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
        '2024-01-01_120000'
    """
    if started_at is None:
        started_at = datetime.now(timezone.utc)
    elif started_at.tzinfo is not None:
        started_at = started_at.astimezone(timezone.utc)
    return started_at.strftime(RUN_STAMP_FORMAT)


@dataclass(frozen=True)
class SessionLogPaths:
    """Packet dump and statistics file of one run."""
    packets: Path
    statistics: Path

    @classmethod
    def for_start_time(cls, log_dir: Path, started_at: Optional[datetime] = None) -> 'SessionLogPaths':
        stamp = run_stamp(started_at)
        log_dir = Path(log_dir)
        return cls(
            packets=log_dir / f"Packets_{stamp}.log",
            statistics=log_dir / f"Statistics_{stamp}.txt",
        )

    def ensure_dir(self):
        """Create the log directory if it does not exist."""
        self.packets.parent.mkdir(parents=True, exist_ok=True)
        self.statistics.parent.mkdir(parents=True, exist_ok=True)
