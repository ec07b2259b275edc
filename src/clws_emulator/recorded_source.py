#!/usr/bin/env python3
"""
Recorded Packet Playback

Replays packets stored during a real GRIP session as if they were being
generated now. Each GRIP packet gets the current time and a fresh TM counter
before it is sent. Non-EPM and non-GRIP records in the capture file are
skipped.

Pacing does not follow the recorded inter-packet times: the source sleeps
500 ms after each RT packet (about the 2 Hz RT rate, which the real hardware
does not hold strictly either) and 20 ms after anything else.
"""

import logging
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .constants import (
    EPM_BUFFER_LENGTH,
    GPS_LEAP_SECONDS,
    OTHER_PLAYBACK_PAUSE,
    PLAYBACK_RESTART_PAUSE,
    RT_PLAYBACK_PAUSE,
)
from .epm_packets import (
    decode_telemetry_header,
    encode_telemetry_header,
    is_epm_packet,
    is_grip_packet,
    is_grip_rt_packet,
)
from .epm_time import set_packet_time
from .packet_cache import iter_records
from .packet_source import send_packet

logger = logging.getLogger(__name__)


class CaptureFileError(RuntimeError):
    """The capture file could not be opened or read."""


@dataclass
class PlaybackStats:
    """Counts for one pass through the capture file"""
    records_read: int = 0
    non_epm_skipped: int = 0
    non_grip_skipped: int = 0
    packets_sent: int = 0


class RecordedPacketSource:
    """
    Streams the contents of a capture file, restarting at the end.

    Example:
        source = RecordedPacketSource('GripPacketsForSimulator.gpk')
        total = source.run(client_socket)
    """

    def __init__(self,
                 capture_file: Union[str, Path],
                 loop: bool = True,
                 leap_seconds: int = GPS_LEAP_SECONDS,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            capture_file: Flat file of EPM_BUFFER_LENGTH packet records
            loop: Restart after a pause at end of file (False: one pass)
            leap_seconds: GPS-UTC offset used for the rewritten timestamps
            sleep: Sleep function (injectable for tests)
            clock: Wall-clock function returning Unix seconds
        """
        self.capture_file = Path(capture_file)
        self.loop = loop
        self.leap_seconds = leap_seconds
        self.sleep = sleep
        self.clock = clock

        self.packet_count = 0
        self.passes_completed = 0
        self.last_pass: Optional[PlaybackStats] = None

    def run(self, connection: socket.socket) -> int:
        """
        Send recorded packets until a send fails.

        Returns:
            Total number of packets sent

        Raises:
            CaptureFileError: If the capture file cannot be opened or read
        """
        while True:
            logger.info(f"Sending out recorded packets from {self.capture_file}")
            stats = PlaybackStats()
            self.last_pass = stats

            if not self._play_file(connection, stats):
                return self.packet_count

            self.passes_completed += 1
            logger.info(
                f"Playback completed: {stats.packets_sent} GRIP packets sent, "
                f"{stats.non_grip_skipped} non-GRIP and {stats.non_epm_skipped} non-EPM skipped"
            )
            if not self.loop:
                return self.packet_count

            logger.info(f"Will restart in {PLAYBACK_RESTART_PAUSE:.0f} seconds")
            self.sleep(PLAYBACK_RESTART_PAUSE)

    def _play_file(self, connection: socket.socket, stats: PlaybackStats) -> bool:
        """One pass through the file. Returns False when a send failed."""
        try:
            stream = open(self.capture_file, 'rb')
        except OSError as e:
            raise CaptureFileError(f"Error opening {self.capture_file} for binary read: {e}") from e

        try:
            with stream:
                for record in iter_records(stream, EPM_BUFFER_LENGTH):
                    stats.records_read += 1
                    if not self._play_record(connection, bytearray(record), stats):
                        return False
        except OSError as e:
            raise CaptureFileError(f"Error reading from {self.capture_file}: {e}") from e
        return True

    def _play_record(self, connection: socket.socket, packet: bytearray,
                     stats: PlaybackStats) -> bool:
        header = decode_telemetry_header(packet)

        if not is_epm_packet(header):
            stats.non_epm_skipped += 1
            logger.debug(f"Record {stats.records_read}: non EPM, skipped")
            return True

        if not is_grip_packet(header):
            stats.non_grip_skipped += 1
            logger.debug(f"Record {stats.records_read}: EPM subsystem 0x{header.subsystem_id:02x}, skipped")
            return True

        # Make the recorded packet look like it was generated just now
        set_packet_time(header, self.clock(), self.leap_seconds)
        header.tm_counter = self.packet_count
        encode_telemetry_header(header, packet)

        if not send_packet(connection, bytes(packet), "Recorded"):
            return False
        self.packet_count += 1
        stats.packets_sent += 1
        logger.debug(f"Sent GRIP packet {self.packet_count} (TM 0x{header.tm_identifier:04x})")

        if is_grip_rt_packet(header):
            self.sleep(RT_PLAYBACK_PAUSE)
        else:
            self.sleep(OTHER_PLAYBACK_PAUSE)
        return True
