#!/usr/bin/env python3
"""
CLWS Session Server

TCP server that behaves like the CLWS data server for one ground station
client at a time:

    LISTENING -> ACCEPTED -> AWAITING_CONNECT -> STREAMING -> LISTENING

The client must send a Connect transfer frame before any telemetry is sent.
Streaming is delegated to a packet source built fresh for each session; when
it returns (normally because the client went away) the send direction is
shut down and the server goes back to listening.
"""

import logging
import socket
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .constants import CONNECT_PACKET_LENGTH, EPM_BUFFER_LENGTH, TRANSFER_FRAME_CONNECT
from .epm_packets import decode_transfer_frame_header, describe_software_unit
from .packet_source import SourceFactory

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session server states"""
    LISTENING = "listening"                # Waiting for a client
    ACCEPTED = "accepted"                  # Client socket open
    AWAITING_CONNECT = "awaiting_connect"  # Waiting for the Connect frame
    STREAMING = "streaming"                # Packet source running


@dataclass
class SessionMetrics:
    """Cumulative server metrics"""
    sessions_accepted: int = 0
    sessions_streamed: int = 0
    handshakes_abandoned: int = 0
    frames_ignored: int = 0
    packets_sent: int = 0
    last_software_unit_id: Optional[int] = None
    server_start_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessions_accepted': self.sessions_accepted,
            'sessions_streamed': self.sessions_streamed,
            'handshakes_abandoned': self.handshakes_abandoned,
            'frames_ignored': self.frames_ignored,
            'packets_sent': self.packets_sent,
            'last_software_unit_id': self.last_software_unit_id,
            'uptime_seconds': time.time() - self.server_start_time,
        }


class SessionServer:
    """
    Serves packet streams to one client at a time.

    Example:
        server = SessionServer('0.0.0.0', 2128, create_source_factory(config))
        server.bind()
        server.serve_forever()
    """

    def __init__(self, host: str, port: int, source_factory: SourceFactory):
        """
        Args:
            host: Address to listen on
            port: TCP port (0 picks a free port)
            source_factory: Builds the packet source for each session
        """
        self.host = host
        self.port = port
        self.source_factory = source_factory
        self.state = SessionState.LISTENING
        self.metrics = SessionMetrics()
        self.listen_socket: Optional[socket.socket] = None

    @property
    def address(self) -> Tuple[str, int]:
        if not self.listen_socket:
            raise RuntimeError("Server not bound")
        return self.listen_socket.getsockname()[:2]

    def bind(self) -> Tuple[str, int]:
        """Create the listening socket. Returns the bound (host, port)."""
        self.listen_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listen_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listen_socket.bind((self.host, self.port))
        self.listen_socket.listen(1)
        logger.info(f"CLWS emulator listening on {self.address[0]}:{self.address[1]}")
        return self.address

    def close(self):
        if self.listen_socket:
            self.listen_socket.close()
            self.listen_socket = None
        logger.info("CLWS emulator stopped")

    def serve_forever(self):
        """Serve sessions one after another until interrupted."""
        if not self.listen_socket:
            self.bind()
        while True:
            self.serve_once()

    def serve_once(self) -> Optional[int]:
        """
        Accept one client and serve it until the session ends.

        Returns:
            Packets sent during the session, or None if the client left
            before completing the handshake
        """
        if not self.listen_socket:
            self.bind()

        self.state = SessionState.LISTENING
        logger.info("Listening for a connection ...")
        connection, peer = self.listen_socket.accept()
        self.state = SessionState.ACCEPTED
        self.metrics.sessions_accepted += 1
        logger.info(f"Client connected from {peer[0]}:{peer[1]}")

        try:
            software_unit_id = self.wait_for_connect(connection)
            if software_unit_id is None:
                self.metrics.handshakes_abandoned += 1
                logger.info("Client disconnected before sending Connect")
                return None

            self.state = SessionState.STREAMING
            self.metrics.last_software_unit_id = software_unit_id
            source = self.source_factory()
            packet_count = source.run(connection)

            self.metrics.sessions_streamed += 1
            self.metrics.packets_sent += packet_count
            self._shutdown_send(connection)
            logger.info(f"Total packets sent: {packet_count}")
            return packet_count
        finally:
            connection.close()
            self.state = SessionState.LISTENING

    def wait_for_connect(self, connection: socket.socket) -> Optional[int]:
        """
        Read frames until a Connect transfer frame arrives.

        Frames of unexpected size or type are logged and ignored.

        Returns:
            Software unit ID of the client, or None if the connection closed
            or failed first
        """
        self.state = SessionState.AWAITING_CONNECT
        logger.info("Waiting for a Connect command ...")

        while True:
            try:
                frame = connection.recv(EPM_BUFFER_LENGTH)
            except OSError as e:
                logger.warning(f"Receive failed while waiting for Connect: {e}")
                return None
            if not frame:
                return None

            if len(frame) == EPM_BUFFER_LENGTH:
                # No client frame uses the full buffer; we have fallen behind
                self.metrics.frames_ignored += 1
                logger.info(f"Bytes received: {len(frame)} - flushing (overrun)")
                continue

            if len(frame) != CONNECT_PACKET_LENGTH:
                self.metrics.frames_ignored += 1
                logger.info(f"Unexpected packet size ({len(frame)}), ignored")
                continue

            header = decode_transfer_frame_header(frame)
            if header.packet_type != TRANSFER_FRAME_CONNECT:
                self.metrics.frames_ignored += 1
                logger.info(f"Unexpected packet type (0x{header.packet_type:x}), ignored")
                continue

            logger.info(
                f"Connect received from {describe_software_unit(header.software_unit_id)} "
                f"({header.software_unit_id}) software unit ID"
            )
            return header.software_unit_id

    @staticmethod
    def _shutdown_send(connection: socket.socket):
        try:
            connection.shutdown(socket.SHUT_WR)
        except OSError as e:
            # Client already reset the connection
            logger.debug(f"shutdown() failed: {e}")

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.to_dict()

    def get_state(self) -> SessionState:
        return self.state
