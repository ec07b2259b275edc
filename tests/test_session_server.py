#!/usr/bin/env python3
"""
Tests for the session server and ground client

End-to-end tests run a real server on a loopback port in a background
thread, with sources that do not sleep.
"""

import socket
import tempfile
import threading
from pathlib import Path

from conftest import FakeConnection, build_hk_packet, build_rt_packet
from clws_emulator.constants import (
    EPM_BUFFER_LENGTH,
    GRIP_MMI_SOFTWARE_ALT_UNIT_ID,
    GRIP_MMI_SOFTWARE_UNIT_ID,
)
from clws_emulator.constructed_source import ConstructedPacketSource
from clws_emulator.epm_packets import (
    TransferFrameHeader,
    connect_frame,
    decode_telemetry_header,
    encode_transfer_frame_header,
    is_grip_hk_packet,
    is_grip_rt_packet,
)
from clws_emulator.ground_client import GroundClient
from clws_emulator.packet_cache import GripPacketType, PacketCacheReader, PacketCacheWriter
from clws_emulator.recorded_source import RecordedPacketSource
from clws_emulator.session_server import SessionServer, SessionState


def no_sleep(seconds):
    pass


def start_server(source_factory):
    """Bind on a free loopback port and serve one session in a thread"""
    server = SessionServer('127.0.0.1', 0, source_factory)
    server.bind()
    result = {}

    def serve():
        result['count'] = server.serve_once()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return server, thread, result


class TestHandshake:
    """Tests for the Connect handshake"""

    def _server(self):
        return SessionServer('127.0.0.1', 0, lambda: None)

    def test_noise_is_ignored(self):
        """Wrong sizes, overruns and other frame types do not end the wait"""
        telemetry_frame = bytes(encode_transfer_frame_header(
            TransferFrameHeader(), bytearray(12)))
        connection = FakeConnection(frames=[
            b'\x00' * 5,
            b'\xff' * EPM_BUFFER_LENGTH,
            telemetry_frame,
            connect_frame(GRIP_MMI_SOFTWARE_ALT_UNIT_ID),
        ])
        server = self._server()

        assert server.wait_for_connect(connection) == GRIP_MMI_SOFTWARE_ALT_UNIT_ID
        assert server.metrics.frames_ignored == 3
        assert connection.frames == []

    def test_close_before_connect(self):
        server = self._server()
        connection = FakeConnection(frames=[b'\x00' * 5])

        assert server.wait_for_connect(connection) is None

    def test_receive_error_before_connect(self):
        server = self._server()
        connection = FakeConnection(frames=[ConnectionResetError(104, 'reset')])

        assert server.wait_for_connect(connection) is None

    def test_client_leaves_without_connect(self):
        """No source is built when the handshake never completes"""
        built = []
        server, thread, result = start_server(lambda: built.append(1))
        try:
            with socket.create_connection(server.address, timeout=5) as sock:
                sock.sendall(b'\x01\x02\x03')
            thread.join(timeout=5)
        finally:
            server.close()

        assert not thread.is_alive()
        assert result['count'] is None
        assert built == []
        assert server.metrics.handshakes_abandoned == 1
        assert server.get_state() == SessionState.LISTENING


class TestConstructedSession:
    """End-to-end session with synthesized packets"""

    def test_stream_after_connect(self):
        server, thread, result = start_server(
            lambda: ConstructedPacketSource(seed=1, sleep=no_sleep))
        try:
            with GroundClient('127.0.0.1', server.address[1], timeout=5) as client:
                packets = [client.receive_packet() for _ in range(6)]
            thread.join(timeout=10)
        finally:
            server.close()

        assert all(len(p) == EPM_BUFFER_LENGTH for p in packets)
        headers = [decode_telemetry_header(p) for p in packets]
        assert sum(is_grip_rt_packet(h) for h in headers[:3]) >= 2
        assert sum(is_grip_hk_packet(h) for h in headers[:3]) >= 1
        counters = [h.tm_counter for h in headers]
        assert counters == sorted(set(counters))

        assert not thread.is_alive()
        assert result['count'] >= 6
        metrics = server.get_metrics()
        assert metrics['sessions_streamed'] == 1
        assert metrics['last_software_unit_id'] == GRIP_MMI_SOFTWARE_UNIT_ID


class TestRecordedSession:
    """End-to-end session replaying a capture file into the caches"""

    def test_capture_to_cache(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            capture = Path(tmpdir) / 'capture.gpk'
            capture.write_bytes(
                build_hk_packet(50) + build_rt_packet(51) + build_hk_packet(52))
            root = Path(tmpdir) / 'cache' / 'GripPackets'

            server, thread, result = start_server(
                lambda: RecordedPacketSource(capture, loop=False, sleep=no_sleep))
            try:
                with PacketCacheWriter(root) as writer, \
                        GroundClient('127.0.0.1', server.address[1], timeout=5) as client:
                    # Source stops after one pass, so the stream ends on its own
                    received = client.capture(writer)
                thread.join(timeout=5)
            finally:
                server.close()

            assert received == 3
            assert result['count'] == 3
            assert writer.counts[GripPacketType.ANY] == 3
            assert writer.counts[GripPacketType.HK_BULK] == 2

            header, _, changed = PacketCacheReader(root).get_last_housekeeping()
            assert header.tm_counter == 2
            assert changed
