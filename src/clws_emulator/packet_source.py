#!/usr/bin/env python3
"""
Packet Source Interface

A packet source produces the outgoing packet stream for one client session.
The session server builds a fresh source per session from a factory chosen at
startup, so counters restart with each client.
"""

import logging
import socket
from typing import Callable, Protocol

from .config_utils import SOURCE_CONSTRUCTED, SOURCE_RECORDED, EmulatorConfig

logger = logging.getLogger(__name__)


class PacketSource(Protocol):
    """
    Protocol for packet sources - recorded playback and constructed synthesis.
    """

    def run(self, connection: socket.socket) -> int:
        """
        Stream packets on the connection until a send fails (or the source
        runs out, if it is not looping).

        Returns:
            Total number of packets sent
        """
        ...


SourceFactory = Callable[[], PacketSource]


def send_packet(connection: socket.socket, packet: bytes, label: str) -> bool:
    """
    Send one whole packet.

    A send failure almost always means the client closed the connection, so
    it is logged and reported rather than raised.

    Returns:
        True if the packet was sent
    """
    try:
        connection.sendall(packet)
    except OSError as e:
        logger.warning(f"{label} packet send failed: {e}")
        return False
    return True


def create_source_factory(config: EmulatorConfig) -> SourceFactory:
    """
    Build the factory for the packet source selected in the configuration.
    """
    mode = config.source.mode
    if mode == SOURCE_RECORDED:
        from .recorded_source import RecordedPacketSource

        def factory() -> PacketSource:
            return RecordedPacketSource(
                capture_file=config.source.capture_file,
                loop=config.source.loop,
                leap_seconds=config.leap_seconds,
            )
        logger.info(f"Sending pre-recorded packets from {config.source.capture_file}")
    elif mode == SOURCE_CONSTRUCTED:
        from .constructed_source import ConstructedPacketSource

        def factory() -> PacketSource:
            return ConstructedPacketSource(
                seed=config.source.seed,
                leap_seconds=config.leap_seconds,
            )
        logger.info("Constructing simulated packets")
    else:
        raise ValueError(f"Unknown packet source mode: {mode}")
    return factory
