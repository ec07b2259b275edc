#!/usr/bin/env python3
"""
Tests for constructed packet synthesis
"""

import pytest

from conftest import FakeConnection
from clws_emulator.constants import (
    OCCLUDED_MARKER_MASK,
    STATUS_ACQUIRING,
    STATUS_IDLE,
    SYNTH_INTER_TRIAL_PAUSE,
)
from clws_emulator.constructed_source import (
    PATTERN_VISIBILITY,
    ConstructedPacketSource,
    housekeeping_for_epoch,
)
from clws_emulator.epm_packets import (
    X,
    decode_health_and_status,
    decode_realtime_data,
    decode_telemetry_header,
    is_grip_hk_packet,
    is_grip_rt_packet,
)
from clws_emulator.epm_time import header_seconds

NOW = 1_700_000_000.0


class AlwaysDropout:
    """Random source that starts an occlusion on every draw"""

    def random(self):
        return 0.0


def make_source(sleep, seed=1, clock=lambda: NOW) -> ConstructedPacketSource:
    return ConstructedPacketSource(seed=seed, sleep=sleep, clock=clock)


def kinds(packets):
    result = []
    for packet in packets:
        header = decode_telemetry_header(packet)
        result.append('RT' if is_grip_rt_packet(header) else 'HK' if is_grip_hk_packet(header) else '?')
    return result


class TestHousekeepingEpochs:
    """Tests for per-epoch housekeeping values"""

    def test_epoch_zero(self):
        hk = housekeeping_for_epoch(0)

        assert hk.vertical_target_feedback == 1
        assert hk.horizontal_target_feedback == 1
        assert hk.tone_feedback == 0
        assert hk.cradle_detectors == 0 + (1 << 2) + (2 << 4)
        assert hk.motion_tracker_status_enum == STATUS_IDLE
        assert hk.crew_camera_status_enum == STATUS_IDLE

    def test_epoch_one(self):
        hk = housekeeping_for_epoch(1)

        assert hk.vertical_target_feedback == 2
        assert hk.horizontal_target_feedback == 2
        assert hk.tone_feedback == 1
        assert hk.cradle_detectors == 1 + (2 << 2) + (3 << 4)
        assert hk.motion_tracker_status_enum == STATUS_ACQUIRING
        assert hk.crew_camera_status_enum == STATUS_ACQUIRING

    def test_targets_wrap(self):
        hk = housekeeping_for_epoch(13)

        assert hk.vertical_target_feedback == 1
        assert hk.horizontal_target_feedback == 1 << 3
        assert hk.tone_feedback == 5

    def test_script_state_constant(self):
        for epoch in range(8):
            hk = housekeeping_for_epoch(epoch)
            assert (hk.user, hk.protocol, hk.task, hk.step) == (11, 201, 210, 10)


class TestConstructedStream:
    """Tests for the RT / HK stream"""

    def test_alternating_cadence(self, sleep_recorder):
        """HK follows every other RT and one TM counter spans both"""
        connection = FakeConnection(fail_after=6)
        total = make_source(sleep_recorder).run(connection)

        assert total == 6
        assert kinds(connection.sent) == ['RT', 'HK', 'RT', 'RT', 'HK', 'RT']
        assert [decode_telemetry_header(p).tm_counter for p in connection.sent] == list(range(6))

    def test_wait_for_cadence(self, sleep_recorder):
        """Each cycle pauses 50 ms then sleeps to the next 500 ms boundary"""
        connection = FakeConnection(fail_after=1)
        make_source(sleep_recorder, clock=lambda: 100.125).run(connection)

        assert sleep_recorder.delays[:2] == [0.05, pytest.approx(0.375)]

    def test_realtime_payload(self, sleep_recorder):
        connection = FakeConnection(fail_after=3)
        make_source(sleep_recorder).run(connection)

        first = decode_realtime_data(connection.sent[0])
        second = decode_realtime_data(connection.sent[2])
        assert first.rt_packet_count == 0
        assert second.rt_packet_count == 1
        assert first.packet_timestamp == pytest.approx(header_seconds(decode_telemetry_header(connection.sent[0])))
        assert [s.pose_tick for s in first.slices] == [10] * 10
        assert [s.analog_tick for s in second.slices] == [20] * 10
        for data_slice in first.slices:
            # Epoch 0 is the left-right pattern
            assert 0.0 <= data_slice.position[X] <= 600.0

    def test_initial_housekeeping(self, sleep_recorder):
        connection = FakeConnection(fail_after=2)
        make_source(sleep_recorder).run(connection)
        hk = decode_health_and_status(connection.sent[1])

        assert hk.motion_tracker_status_enum == STATUS_ACQUIRING
        assert hk.crew_camera_status_enum == STATUS_ACQUIRING
        assert hk.vertical_target_feedback == 0
        assert hk.user == 11

    def test_epoch_advance(self, sleep_recorder):
        """After 20 packets the source pauses and switches housekeeping values"""
        connection = FakeConnection(fail_after=23)
        source = make_source(sleep_recorder)

        total = source.run(connection)

        assert total == 23
        assert sleep_recorder.delays.count(SYNTH_INTER_TRIAL_PAUSE) == 1
        assert source.epoch == 1
        assert source.housekeeping == housekeeping_for_epoch(0)

        hk_packets = [p for p in connection.sent if is_grip_hk_packet(decode_telemetry_header(p))]
        assert decode_health_and_status(hk_packets[-1]) == housekeeping_for_epoch(0)
        assert decode_health_and_status(hk_packets[0]).motion_tracker_status_enum == STATUS_ACQUIRING

    def test_send_failure_on_housekeeping(self, sleep_recorder):
        connection = FakeConnection(fail_after=1)

        assert make_source(sleep_recorder).run(connection) == 1
        assert kinds(connection.sent) == ['RT']


class TestOcclusion:
    """Tests for simulated manipulandum occlusion"""

    def test_seeded_stream_is_reproducible(self, sleep_recorder):
        a = make_source(sleep_recorder, seed=7)
        b = make_source(sleep_recorder, seed=7)

        for _ in range(5):
            assert a.build_realtime_packet() == b.build_realtime_packet()

    def test_dropout_masks_visibility(self, sleep_recorder):
        """A dropout hides the manipulandum for the next 10 slices"""
        source = make_source(sleep_recorder)
        source.rng = AlwaysDropout()

        record = decode_realtime_data(source.build_realtime_packet())
        frame_mask, wrist_mask = PATTERN_VISIBILITY[0]

        assert record.slices[0].manipulandum_visibility == 1
        assert record.slices[0].marker_visibility == [frame_mask, wrist_mask]
        for data_slice in record.slices[1:]:
            assert data_slice.manipulandum_visibility == 0
            assert data_slice.marker_visibility == [
                frame_mask & OCCLUDED_MARKER_MASK, wrist_mask & OCCLUDED_MARKER_MASK]
        assert source.dropout_count == 1

    def test_no_dropout(self, sleep_recorder):
        class NeverDropout:
            def random(self):
                return 0.99

        source = make_source(sleep_recorder)
        source.rng = NeverDropout()
        record = decode_realtime_data(source.build_realtime_packet())

        assert all(s.manipulandum_visibility == 1 for s in record.slices)
