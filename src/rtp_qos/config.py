"""
Receiver configuration

Loads the TOML configuration file and validates the values the receiver
needs: multicast group, port, statistics interval and output switches.

Example config.toml:

    [multicast]
    address = "239.1.1.1"
    port = 5004
    interface = "0.0.0.0"
    receive_buffer_bytes = 4194304

    [statistics]
    interval_ms = 1000
    dump_to_file = true

    [packets]
    dump_to_console = false

    [output]
    log_dir = "./logs"
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5004
DEFAULT_STATS_INTERVAL_MS = 1000


@dataclass
class ReceiverConfig:
    """Configuration for one multicast QoS capture."""
    multicast_address: str
    port: int = DEFAULT_PORT
    stats_interval_ms: int = DEFAULT_STATS_INTERVAL_MS
    dump_stats_to_file: bool = True
    dump_packets_to_console: bool = True
    log_dir: Path = field(default_factory=lambda: Path('.'))
    interface_address: str = '0.0.0.0'
    receive_buffer_bytes: int = 0  # 0 = kernel default

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)

        try:
            group = ipaddress.IPv4Address(self.multicast_address)
        except ipaddress.AddressValueError as e:
            raise ValueError(f"Invalid multicast address {self.multicast_address!r}: {e}") from e
        if not group.is_multicast:
            raise ValueError(f"{self.multicast_address} is not an IPv4 multicast address")

        try:
            ipaddress.IPv4Address(self.interface_address)
        except ipaddress.AddressValueError as e:
            raise ValueError(f"Invalid interface address {self.interface_address!r}: {e}") from e

        if not 0 <= self.port <= 65535:
            raise ValueError(f"Port {self.port} out of range 0-65535")
        if self.stats_interval_ms <= 0:
            raise ValueError(f"Statistics interval must be positive, got {self.stats_interval_ms} ms")
        if self.receive_buffer_bytes < 0:
            raise ValueError(f"Receive buffer size must be >= 0, got {self.receive_buffer_bytes}")

    @property
    def stats_interval_sec(self) -> float:
        return self.stats_interval_ms / 1e3


def config_from_dict(config: Dict[str, Any],
                     overrides: Optional[Dict[str, Any]] = None) -> ReceiverConfig:
    """
    Build a ReceiverConfig from parsed TOML.

    Args:
        config: Parsed TOML document
        overrides: ReceiverConfig field values that win over the file
                   (None values are ignored)

    Returns:
        Validated ReceiverConfig
    """
    multicast = config.get('multicast', {})
    statistics = config.get('statistics', {})
    packets = config.get('packets', {})
    output = config.get('output', {})

    values: Dict[str, Any] = {
        'multicast_address': multicast.get('address'),
        'port': multicast.get('port', DEFAULT_PORT),
        'interface_address': multicast.get('interface', '0.0.0.0'),
        'receive_buffer_bytes': multicast.get('receive_buffer_bytes', 0),
        'stats_interval_ms': statistics.get('interval_ms', DEFAULT_STATS_INTERVAL_MS),
        'dump_stats_to_file': statistics.get('dump_to_file', True),
        'dump_packets_to_console': packets.get('dump_to_console', True),
        'log_dir': output.get('log_dir', '.'),
    }

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    if not values['multicast_address']:
        raise ValueError("No multicast address configured ([multicast] address)")

    return ReceiverConfig(**values)


def load_config(path: Path, overrides: Optional[Dict[str, Any]] = None) -> ReceiverConfig:
    """Load and validate a TOML configuration file."""
    with open(path, 'r') as f:
        config = toml.load(f)
    logger.debug(f"Loaded configuration from {path}")
    return config_from_dict(config, overrides)
