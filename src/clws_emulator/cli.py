#!/usr/bin/env python3
"""
Command Line Interface for the CLWS Emulator
"""

import sys
import logging
import argparse
from pathlib import Path

from .config_utils import SOURCE_CONSTRUCTED, SOURCE_RECORDED, EmulatorConfig, load_config
from .packet_cache import CacheError, GripPacketType, PacketCacheReader, PacketCacheWriter
from .recorded_source import CaptureFileError

logger = logging.getLogger(__name__)


def setup_logging(level: int):
    """Configure the root logger for console output"""
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
        description='CLWS data server emulator for the GRIP ground station',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Serve command
    serve_parser = subparsers.add_parser('serve', help='Run the emulated data server')
    serve_parser.add_argument('--config', '-c', help='Configuration file path')
    mode_group = serve_parser.add_mutually_exclusive_group()
    mode_group.add_argument('--recorded', dest='mode', action='store_const', const=SOURCE_RECORDED,
                            help='Replay packets from the capture file')
    mode_group.add_argument('--constructed', dest='mode', action='store_const', const=SOURCE_CONSTRUCTED,
                            help='Synthesize packets')
    serve_parser.add_argument('--port', '-p', type=int, help='TCP port to listen on')
    serve_parser.add_argument('--capture-file', '-f', help='Capture file for recorded playback')
    serve_parser.add_argument('--once', action='store_true',
                              help='Serve a single client (and a single pass of the capture file)')
    serve_parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')

    # Read-cache command
    read_parser = subparsers.add_parser('read-cache', help='Show the last packet in a cache')
    read_parser.add_argument('--config', '-c', help='Configuration file path')
    read_parser.add_argument('--root', '-r', help='Cache root name (e.g. cache/GripPackets)')
    read_parser.add_argument('--kind', '-k', choices=['hk', 'rt'], default='hk',
                             help='Cache to read (default: hk)')
    read_parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')

    # Capture command
    capture_parser = subparsers.add_parser('capture', help='Connect as a client and fill the caches')
    capture_parser.add_argument('--config', '-c', help='Configuration file path')
    capture_parser.add_argument('--host', default='localhost', help='Server address')
    capture_parser.add_argument('--port', '-p', type=int, help='Server port')
    capture_parser.add_argument('--root', '-r', help='Cache root name')
    capture_parser.add_argument('--count', '-n', type=int, help='Stop after this many packets')
    capture_parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')

    return parser


def run_serve(config: EmulatorConfig, args) -> None:
    from .packet_source import create_source_factory
    from .session_server import SessionServer

    if args.mode:
        config.source.mode = args.mode
    if args.port is not None:
        config.server.port = args.port
    if args.capture_file:
        config.source.capture_file = Path(args.capture_file)
    if args.once:
        config.source.loop = False

    server = SessionServer(config.server.host, config.server.port, create_source_factory(config))
    server.bind()
    try:
        if args.once:
            server.serve_once()
        else:
            server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logger.info(f"Session metrics: {server.get_metrics()}")
        server.close()


def run_read_cache(config: EmulatorConfig, args) -> None:
    root = args.root or config.cache.root
    reader = PacketCacheReader(root, config.cache.max_open_retries, config.cache.retry_pause_sec)

    if args.kind == GripPacketType.HK_BULK.value:
        header, hk, changed = reader.get_last_housekeeping()
        print(f"Last HK packet: TM counter {header.tm_counter}, changed: {changed}")
        for name, value in vars(hk).items():
            print(f"  {name}: {value}")
    else:
        header, rt, changed = reader.get_last_realtime()
        print(f"Last RT packet: TM counter {header.tm_counter}, changed: {changed}")
        print(f"  acquisition_id: {rt.acquisition_id}")
        print(f"  rt_packet_count: {rt.rt_packet_count}")
        print(f"  packet_timestamp: {rt.packet_timestamp:.3f}")
        for index, data_slice in enumerate(rt.slices):
            print(f"  slice {index}: t={data_slice.best_guess_pose_timestamp:.3f} position={data_slice.position} "
                  f"visible={data_slice.manipulandum_visibility}")


def run_capture(config: EmulatorConfig, args) -> None:
    from .ground_client import GroundClient

    root = args.root or config.cache.root
    port = args.port if args.port is not None else config.server.port

    with GroundClient(args.host, port) as client, PacketCacheWriter(root) as writer:
        received = client.capture(writer, max_packets=args.count)
    counts = {kind.value: count for kind, count in writer.counts.items()}
    print(f"Received {received} packets, cached: {counts}")


def main():
    """Main entry point for clws-emulator command"""
    parser = build_parser()
    args = parser.parse_args()

    # If no command specified, show help
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except FileNotFoundError:
        print(f"❌ Configuration file not found: {args.config}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(logging.DEBUG if args.debug else getattr(logging, config.log_level, logging.INFO))
    if args.debug:
        logging.info("DEBUG logging enabled")

    try:
        if args.command == 'serve':
            run_serve(config, args)
        elif args.command == 'read-cache':
            run_read_cache(config, args)
        elif args.command == 'capture':
            run_capture(config, args)
    except (CacheError, CaptureFileError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"❌ Network error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
