#!/usr/bin/env python3
"""
Command Line Interface for the RTP QoS tester
"""

import sys
import logging
import argparse
from pathlib import Path

from .config import ReceiverConfig, config_from_dict, load_config
from .multicast_receiver import MulticastReceiver, SetupError


def configure_logging(debug: bool = False):
    """Configure the root logger (INFO, or DEBUG with --debug)"""
    level = logging.DEBUG if debug else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Add handler if none exists
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(levelname)s:%(name)s:%(message)s'))
        root_logger.addHandler(handler)
    else:
        for handler in root_logger.handlers:
            handler.setLevel(level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Multicast RTP QoS tester: packet loss and throughput of a multicast stream',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Settings from a config file
    rtp-qos-tester --config /etc/rtp-qos/config.toml

    # Everything on the command line, no per-packet console dump
    rtp-qos-tester --address 239.1.1.1 --port 5004 --no-packet-dump
        """
    )
    parser.add_argument('--config', '-c', type=Path, help='Configuration file path (TOML)')
    parser.add_argument('--address', '-a', help='Multicast group address')
    parser.add_argument('--port', '-p', type=int, help='UDP port (default 5004)')
    parser.add_argument('--interface', help='Local interface address for the group join')
    parser.add_argument('--interval', '-i', type=int, dest='stats_interval_ms',
                        help='Statistics interval in milliseconds (default 1000)')
    parser.add_argument('--log-dir', type=Path, help='Directory for packet and statistics logs')
    parser.add_argument('--no-stats-file', dest='dump_stats_to_file', action='store_false',
                        default=None, help='Do not write statistics to file')
    parser.add_argument('--no-packet-dump', dest='dump_packets_to_console', action='store_false',
                        default=None, help='Do not echo every packet header to the console')
    parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')
    return parser


def resolve_config(args: argparse.Namespace) -> ReceiverConfig:
    """Merge config file (if any) with command line overrides."""
    overrides = {
        'multicast_address': args.address,
        'port': args.port,
        'interface_address': args.interface,
        'stats_interval_ms': args.stats_interval_ms,
        'log_dir': args.log_dir,
        'dump_stats_to_file': args.dump_stats_to_file,
        'dump_packets_to_console': args.dump_packets_to_console,
    }
    if args.config:
        return load_config(args.config, overrides)
    return config_from_dict({}, overrides)


def main(argv=None):
    """Main entry point for rtp-qos-tester command"""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.debug)
    if args.debug:
        logging.info("DEBUG logging enabled")

    try:
        config = resolve_config(args)
    except FileNotFoundError:
        print(f"❌ Configuration file not found: {args.config}")
        print("   Use --config to specify a different file")
        sys.exit(1)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error loading configuration: {e}")
        sys.exit(1)

    receiver = MulticastReceiver()
    try:
        receiver.setup(config)
    except SetupError as e:
        print(f"❌ Setup failed: {e}")
        sys.exit(1)

    receiver.run()

    stats = receiver.get_stats()
    logging.info(f"Session ended: {stats['packets_received']} packets, "
                 f"{stats['decode_errors']} undecodable")


if __name__ == '__main__':
    main()
