#!/usr/bin/env python3
"""
Tests for recorded packet playback
"""

import tempfile
from pathlib import Path

import pytest

from conftest import FakeConnection, build_hk_packet, build_rt_packet
from clws_emulator.constants import GPS_EPOCH_UNIX_OFFSET, OTHER_PLAYBACK_PAUSE, RT_PLAYBACK_PAUSE
from clws_emulator.epm_packets import (
    decode_telemetry_header,
    encode_telemetry_header,
    housekeeping_header_template,
    is_grip_hk_packet,
    is_grip_rt_packet,
    new_packet,
)
from clws_emulator.recorded_source import CaptureFileError, RecordedPacketSource

NOW = 1_700_000_000.25


def non_grip_packet() -> bytes:
    header = housekeeping_header_template()
    header.subsystem_id = 0x22
    return bytes(encode_telemetry_header(header))


def write_capture(path: Path, trailing: bytes = b''):
    """Capture with a non-EPM record, one HK, one non-GRIP and two RT packets"""
    records = [
        bytes(new_packet()),
        build_hk_packet(900, coarse_time=1000),
        non_grip_packet(),
        build_rt_packet(901, coarse_time=1001),
        build_rt_packet(902, coarse_time=1002),
    ]
    path.write_bytes(b''.join(records) + trailing)


class TestRecordedPlayback:
    """Tests for RecordedPacketSource"""

    def test_single_pass(self, sleep_recorder):
        """Only GRIP packets are sent, restamped and renumbered from 0"""
        with tempfile.TemporaryDirectory() as tmpdir:
            capture = Path(tmpdir) / 'capture.gpk'
            write_capture(capture, trailing=b'\x00' * 100)
            connection = FakeConnection()
            source = RecordedPacketSource(capture, loop=False, sleep=sleep_recorder, clock=lambda: NOW)

            total = source.run(connection)

        assert total == 3
        assert len(connection.sent) == 3
        headers = [decode_telemetry_header(packet) for packet in connection.sent]
        assert [h.tm_counter for h in headers] == [0, 1, 2]
        assert is_grip_hk_packet(headers[0])
        assert is_grip_rt_packet(headers[1]) and is_grip_rt_packet(headers[2])

        expected_coarse = int(NOW) - GPS_EPOCH_UNIX_OFFSET + 18
        for header in headers:
            assert header.coarse_time == expected_coarse
            assert header.fine_time == 2500

        assert sleep_recorder.delays == [OTHER_PLAYBACK_PAUSE, RT_PLAYBACK_PAUSE, RT_PLAYBACK_PAUSE]
        assert source.last_pass.non_epm_skipped == 1
        assert source.last_pass.non_grip_skipped == 1
        assert source.last_pass.packets_sent == 3

    def test_timestamps_rewritten_past_recording(self, sleep_recorder):
        """Playback timestamps are later than the stored ones"""
        with tempfile.TemporaryDirectory() as tmpdir:
            capture = Path(tmpdir) / 'capture.gpk'
            write_capture(capture)
            stored = [decode_telemetry_header(capture.read_bytes()[i * 1024:(i + 1) * 1024])
                      for i in (1, 3, 4)]
            connection = FakeConnection()
            RecordedPacketSource(capture, loop=False, sleep=sleep_recorder).run(connection)

        for original, packet in zip(stored, connection.sent):
            assert decode_telemetry_header(packet).coarse_time > original.coarse_time

    def test_payload_unchanged(self, sleep_recorder):
        with tempfile.TemporaryDirectory() as tmpdir:
            capture = Path(tmpdir) / 'capture.gpk'
            write_capture(capture)
            original_rt = capture.read_bytes()[3 * 1024:4 * 1024]
            connection = FakeConnection()
            RecordedPacketSource(capture, loop=False, sleep=sleep_recorder).run(connection)

        assert len(connection.sent[1]) == 1024
        assert connection.sent[1][42:] == original_rt[42:]

    def test_send_failure_stops(self, sleep_recorder):
        """Count covers only packets that were actually sent"""
        with tempfile.TemporaryDirectory() as tmpdir:
            capture = Path(tmpdir) / 'capture.gpk'
            write_capture(capture)
            connection = FakeConnection(fail_after=2)

            total = RecordedPacketSource(capture, sleep=sleep_recorder).run(connection)

        assert total == 2
        assert len(connection.sent) == 2

    def test_loop_restarts_after_pause(self, sleep_recorder):
        """End of file pauses 10 s and replays with continuing counters"""
        with tempfile.TemporaryDirectory() as tmpdir:
            capture = Path(tmpdir) / 'capture.gpk'
            write_capture(capture)
            connection = FakeConnection(fail_after=5)
            source = RecordedPacketSource(capture, loop=True, sleep=sleep_recorder)

            total = source.run(connection)

        assert total == 5
        assert source.passes_completed == 1
        assert sleep_recorder.delays.count(10.0) == 1
        assert [decode_telemetry_header(p).tm_counter for p in connection.sent] == [0, 1, 2, 3, 4]

    def test_missing_capture_file(self, sleep_recorder):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = RecordedPacketSource(Path(tmpdir) / 'nope.gpk', sleep=sleep_recorder)

            with pytest.raises(CaptureFileError):
                source.run(FakeConnection())
