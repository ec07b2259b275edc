"""
Ground station side of the CLWS link.

Connects to the data server, sends the Connect frame and reads back the
fixed-size packet stream, optionally storing it in the packet caches.
"""

import logging
import socket
from typing import Optional

from .constants import EPM_BUFFER_LENGTH, EPM_DEFAULT_PORT, GRIP_MMI_SOFTWARE_UNIT_ID
from .epm_packets import connect_frame
from .packet_cache import PacketCacheWriter

logger = logging.getLogger(__name__)


def recv_exact(connection: socket.socket, length: int) -> Optional[bytes]:
    """
    Read exactly length bytes.

    Returns:
        The bytes read, or None if the peer closed the connection first
    """
    chunks = []
    remaining = length
    while remaining > 0:
        chunk = connection.recv(remaining)
        if not chunk:
            if chunks:
                logger.warning(f"Connection closed mid-packet ({length - remaining} of {length} bytes)")
            return None
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


class GroundClient:
    """
    Minimal ground station client.

    Example:
        with GroundClient('localhost', 2128) as client:
            packet = client.receive_packet()
    """

    def __init__(self, host: str = 'localhost', port: int = EPM_DEFAULT_PORT,
                 software_unit_id: int = GRIP_MMI_SOFTWARE_UNIT_ID,
                 timeout: Optional[float] = None):
        self.host = host
        self.port = port
        self.software_unit_id = software_unit_id
        self.timeout = timeout
        self.sock: Optional[socket.socket] = None
        self.packets_received = 0

    def connect(self):
        """Open the connection and send the Connect frame."""
        self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        self.sock.sendall(connect_frame(self.software_unit_id))
        logger.info(f"Connected to {self.host}:{self.port} as software unit {self.software_unit_id}")

    def close(self):
        if self.sock:
            self.sock.close()
            self.sock = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def receive_packet(self) -> Optional[bytes]:
        """Next packet from the server, or None once the server closed the stream."""
        if not self.sock:
            raise RuntimeError("Client not connected")
        packet = recv_exact(self.sock, EPM_BUFFER_LENGTH)
        if packet is not None:
            self.packets_received += 1
        return packet

    def capture(self, writer: PacketCacheWriter, max_packets: Optional[int] = None) -> int:
        """
        Store received packets until the stream ends or max_packets arrive.

        Returns:
            Number of packets received
        """
        received = 0
        while max_packets is None or received < max_packets:
            packet = self.receive_packet()
            if packet is None:
                logger.info("Server closed the connection")
                break
            received += 1
            kind = writer.write_packet(packet)
            logger.debug(f"Packet {received} stored ({kind.value if kind else 'dropped'})")
        return received
