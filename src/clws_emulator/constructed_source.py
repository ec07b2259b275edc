#!/usr/bin/env python3
"""
Constructed Packet Synthesis

Generates realtime (RT) and housekeeping (HK) packets that look like those
sent during a GRIP session, without a capture file:

- one RT packet every 500 ms, aligned to the wall clock
- one HK packet on every other RT cycle
- motion, force and visibility patterns that change every epoch (20 packets)
  and repeat every 6 epochs, built from a 1 Hz sinusoid
- random manipulandum occlusions
- a 5 s pause between epochs, simulating breaks between trials

Position, orientation, acceleration and force are not physically coherent
with each other; they only need to give the ground station something
plausible to plot.
"""

import logging
import socket
import time
from typing import Callable, Optional

import numpy as np

from .constants import (
    DROPOUT_PROBABILITY,
    DROPOUT_SLICES,
    GPS_LEAP_SECONDS,
    N_HORIZONTAL_TARGETS,
    N_VERTICAL_TARGETS,
    OCCLUDED_MARKER_MASK,
    RT_DEFAULT_SECONDS_PER_SLICE,
    RT_SLICES_PER_PACKET,
    STATUS_ACQUIRING,
    STATUS_IDLE,
    SYNTH_INTER_TRIAL_PAUSE,
    SYNTH_PACKETS_PER_EPOCH,
    SYNTH_PRE_PACKET_PAUSE,
)
from .epm_packets import (
    DataSlice,
    HealthAndStatusRecord,
    RealtimeDataRecord,
    X, Y, Z, M,
    encode_health_and_status,
    encode_realtime_data,
    encode_telemetry_header,
    housekeeping_header_template,
    realtime_header_template,
)
from .epm_time import delay_to_half_second_boundary, header_seconds, set_packet_time
from .packet_source import send_packet

logger = logging.getLogger(__name__)

EPOCH_PATTERNS = 6

# Marker visibility masks per pattern: (frame markers, wrist markers)
PATTERN_VISIBILITY = {
    0: (0x000FF, 0xF0FFF),   # wrist and frame visible
    1: (0x000FF, 0x0F0FF),   # wrist visible, frame occluded
    2: (0x00FFF, 0x000FF),   # frame visible, wrist occluded
    3: (0xF0F0F, 0xFFFFF),
    4: (0x0F0F0, 0xFFFFF),
    5: (0xFFFFF, 0xFFFFF),
}

# Script engine state; constant because valid values depend on loaded scripts
SCRIPT_USER = 11
SCRIPT_PROTOCOL = 201
SCRIPT_TASK = 210
SCRIPT_STEP = 10


def housekeeping_for_epoch(epoch: int) -> HealthAndStatusRecord:
    """
    Housekeeping values held constant over one epoch.

    Targets and tones cycle with the epoch, each cradle cycles through its
    states with a different phase, tracking is on 2 epochs out of 3 and
    filming 1 out of 2.
    """
    return HealthAndStatusRecord(
        vertical_target_feedback=0x01 << (epoch % N_VERTICAL_TARGETS),
        horizontal_target_feedback=0x01 << (epoch % N_HORIZONTAL_TARGETS),
        tone_feedback=epoch % 8,
        cradle_detectors=(epoch % 4) + (((epoch + 1) % 4) << 2) + (((epoch + 2) % 4) << 4),
        motion_tracker_status_enum=STATUS_ACQUIRING if epoch % 3 else STATUS_IDLE,
        crew_camera_status_enum=STATUS_ACQUIRING if epoch % 2 else STATUS_IDLE,
        user=SCRIPT_USER,
        protocol=SCRIPT_PROTOCOL,
        task=SCRIPT_TASK,
        step=SCRIPT_STEP,
    )


def apply_epoch_pattern(data_slice: DataSlice, pattern: int, s: float, c: float) -> None:
    """Fill one slice with the motion and force pattern for an epoch."""
    dt2 = RT_DEFAULT_SECONDS_PER_SLICE * RT_DEFAULT_SECONDS_PER_SLICE
    ft0, ft1 = data_slice.ft

    if pattern == 0:
        # Left-right oscillation
        data_slice.position[X] = 300.0 + 300.0 * c
        data_slice.acceleration[X] = -300.0 * c * dt2
        ft0.force[X] = -14.0 + 8.5 * s
        ft1.force[X] = -ft0.force[X]
    elif pattern == 1:
        # Up-down oscillation
        data_slice.position[Y] = 300.0 + 300.0 * c
        data_slice.acceleration[Y] = -300.0 * c * dt2
        ft0.force[Y] = 2.0 * s
        ft1.force[Y] = 1.8 * s
    elif pattern == 2:
        # In-out oscillation
        data_slice.position[Z] = -300.0 + 200.0 * c
        data_slice.acceleration[Z] = -200.0 * c * dt2
        ft0.force[Z] = 3.0 * s
        ft1.force[Z] = 3.2 * s
    else:
        # Rotations: pitch (3), yaw (4), roll (5), with a sliding center of pressure
        axis = {3: X, 4: Y, 5: Z}[pattern]
        data_slice.quaternion[axis] = s / 2.0
        data_slice.quaternion[M] = c / 2.0
        ft0.force[X] = -14.0 + 8.5 * s
        ft1.force[X] = -ft0.force[X]
        torque_axes = {3: (Y,), 4: (Z,), 5: (Y, Z)}[pattern]
        for torque_axis in torque_axes:
            ft0.torque[torque_axis] = ft0.force[X] * 0.01 * s
            ft1.torque[torque_axis] = ft1.force[X] * 0.011 * s

    data_slice.marker_visibility = list(PATTERN_VISIBILITY[pattern])


class ConstructedPacketSource:
    """
    Synthesizes RT and HK packets until the client goes away.

    Example:
        source = ConstructedPacketSource(seed=1)
        total = source.run(client_socket)
    """

    def __init__(self,
                 seed: Optional[int] = None,
                 leap_seconds: int = GPS_LEAP_SECONDS,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            seed: Seed for the occlusion generator (None: unpredictable)
            leap_seconds: GPS-UTC offset for packet timestamps
            sleep: Sleep function (injectable for tests)
            clock: Wall-clock function returning Unix seconds
        """
        self.leap_seconds = leap_seconds
        self.sleep = sleep
        self.clock = clock
        self.rng = np.random.default_rng(seed)

        self.rt_header = realtime_header_template()
        self.hk_header = housekeeping_header_template()

        self.packet_count = 0      # TM counter shared by RT and HK
        self.rt_packet_count = 0
        self.packets_sent = 0
        self.send_hk = True
        self.epoch = 0
        self.next_epoch_at = SYNTH_PACKETS_PER_EPOCH
        self.dropout_count = 0
        # Until the first pause: no targets, tone or cradles, both acquiring
        self.housekeeping = HealthAndStatusRecord(
            motion_tracker_status_enum=STATUS_ACQUIRING,
            crew_camera_status_enum=STATUS_ACQUIRING,
            user=SCRIPT_USER,
            protocol=SCRIPT_PROTOCOL,
            task=SCRIPT_TASK,
            step=SCRIPT_STEP,
        )

    def run(self, connection: socket.socket) -> int:
        """
        Send packets until a send fails.

        Returns:
            Total number of packets sent
        """
        while True:
            self._wait_for_cadence()

            if not send_packet(connection, self.build_realtime_packet(), "RT"):
                return self.packets_sent
            self.packets_sent += 1
            logger.debug(f"RT packet {self.packet_count} sent")

            if self.send_hk:
                if not send_packet(connection, self.build_housekeeping_packet(), "HK"):
                    return self.packets_sent
                self.packets_sent += 1
                logger.debug(f"HK packet {self.packet_count} sent")
            self.send_hk = not self.send_hk

            if self.packet_count >= self.next_epoch_at:
                self._next_epoch()

    def _wait_for_cadence(self) -> None:
        # Sleep first so a packet is never repeated within one boundary,
        # then sleep up to the next 500 ms boundary
        self.sleep(SYNTH_PRE_PACKET_PAUSE)
        self.sleep(delay_to_half_second_boundary(self.clock()))

    def _next_epoch(self) -> None:
        logger.info(f"Simulating inter-trial pause after packet {self.packet_count}")
        self.sleep(SYNTH_INTER_TRIAL_PAUSE)
        self.housekeeping = housekeeping_for_epoch(self.epoch)
        self.epoch += 1
        self.next_epoch_at += SYNTH_PACKETS_PER_EPOCH

    def build_realtime_packet(self) -> bytes:
        """Stamp the RT header and fabricate the slices of the next RT packet."""
        self.rt_header.tm_counter = self.packet_count
        self.packet_count += 1
        set_packet_time(self.rt_header, self.clock(), self.leap_seconds)
        packet = encode_telemetry_header(self.rt_header)

        record = RealtimeDataRecord(
            acquisition_id=0,
            rt_packet_count=self.rt_packet_count,
            packet_timestamp=header_seconds(self.rt_header),
        )
        self.rt_packet_count += 1
        logger.debug(f"RT timestamp: {record.packet_timestamp:.3f}")

        # 1 Hz sinusoid sampled at each slice's nominal time
        t = record.packet_timestamp + np.arange(RT_SLICES_PER_PACKET) * RT_DEFAULT_SECONDS_PER_SLICE
        sines = np.sin(2.0 * np.pi * t)
        cosines = np.cos(2.0 * np.pi * t)
        pattern = self.epoch % EPOCH_PATTERNS

        for index, data_slice in enumerate(record.slices):
            data_slice.pose_tick = self.rt_packet_count * RT_SLICES_PER_PACKET
            data_slice.analog_tick = self.rt_packet_count * RT_SLICES_PER_PACKET
            apply_epoch_pattern(data_slice, pattern, float(sines[index]), float(cosines[index]))
            self._apply_occlusion(data_slice)

        return bytes(encode_realtime_data(record, packet))

    def _apply_occlusion(self, data_slice: DataSlice) -> None:
        if self.dropout_count == 0:
            data_slice.manipulandum_visibility = 1
            if self.rng.random() < DROPOUT_PROBABILITY:
                self.dropout_count = DROPOUT_SLICES
        else:
            data_slice.manipulandum_visibility = 0
            data_slice.marker_visibility = [
                mask & OCCLUDED_MARKER_MASK for mask in data_slice.marker_visibility
            ]
            self.dropout_count -= 1

    def build_housekeeping_packet(self) -> bytes:
        """Stamp the HK header and insert the current epoch's housekeeping values."""
        self.hk_header.tm_counter = self.packet_count
        self.packet_count += 1
        set_packet_time(self.hk_header, self.clock(), self.leap_seconds)
        packet = encode_telemetry_header(self.hk_header)
        return bytes(encode_health_and_status(self.housekeeping, packet))
