"""
Shared fixtures for the CLWS emulator tests
"""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add src to path for development
src_path = str(Path(__file__).parent.parent / 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from clws_emulator.epm_packets import (
    HealthAndStatusRecord,
    RealtimeDataRecord,
    encode_health_and_status,
    encode_realtime_data,
    encode_telemetry_header,
    housekeeping_header_template,
    realtime_header_template,
)


class FakeConnection:
    """
    Stands in for a client socket.

    Records every packet sent and starts failing once fail_after packets
    have gone through. recv() returns scripted frames, then b''.
    """

    def __init__(self, fail_after: Optional[int] = None, frames: Optional[List[bytes]] = None):
        self.fail_after = fail_after
        self.frames = list(frames or [])
        self.sent: List[bytes] = []

    def sendall(self, data: bytes):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise BrokenPipeError(32, 'Broken pipe')
        self.sent.append(bytes(data))

    def recv(self, bufsize: int) -> bytes:
        if not self.frames:
            return b''
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame


class SleepRecorder:
    """Sleep replacement that records requested delays without waiting"""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float):
        self.delays.append(seconds)


def build_hk_packet(tm_counter: int, hk: Optional[HealthAndStatusRecord] = None,
                    coarse_time: int = 1000) -> bytes:
    header = housekeeping_header_template()
    header.tm_counter = tm_counter
    header.coarse_time = coarse_time
    packet = encode_telemetry_header(header)
    return bytes(encode_health_and_status(hk or HealthAndStatusRecord(), packet))


def build_rt_packet(tm_counter: int, record: Optional[RealtimeDataRecord] = None,
                    coarse_time: int = 1000) -> bytes:
    header = realtime_header_template()
    header.tm_counter = tm_counter
    header.coarse_time = coarse_time
    packet = encode_telemetry_header(header)
    return bytes(encode_realtime_data(record or RealtimeDataRecord(), packet))


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def hk_packet():
    return build_hk_packet


@pytest.fixture
def rt_packet():
    return build_rt_packet
