#!/usr/bin/env python3
"""
EPM Time Conversion

EPM coarse time counts seconds since the GPS epoch (midnight 5-6 January
1980) and fine time counts tenths of a millisecond. GPS time ignores leap
seconds, so converting from Unix time adds the current GPS-UTC offset.
"""

import time
from typing import Optional, Tuple

from .constants import (
    FINE_TIME_PER_SECOND,
    GPS_EPOCH_UNIX_OFFSET,
    GPS_LEAP_SECONDS,
    SYNTH_CADENCE_MS,
)


def to_seconds(coarse_time: int, fine_time: int) -> float:
    """Convert an EPM (coarse, fine) pair to floating point seconds."""
    return coarse_time + fine_time / FINE_TIME_PER_SECOND


def header_seconds(header) -> float:
    """Timestamp of a TelemetryHeader in seconds since the GPS epoch."""
    return to_seconds(header.coarse_time, header.fine_time)


def epm_time_from_unix(unix_seconds: float,
                       leap_seconds: int = GPS_LEAP_SECONDS) -> Tuple[int, int]:
    """
    Convert Unix time to an EPM (coarse, fine) pair.

    Fine time carries millisecond resolution only, scaled to tenths of a
    millisecond.

    Args:
        unix_seconds: Seconds since 1970-01-01 UTC
        leap_seconds: GPS-UTC offset to apply

    Returns:
        (coarse_time, fine_time)
    """
    whole = int(unix_seconds)
    millis = int((unix_seconds - whole) * 1000)
    coarse = whole - GPS_EPOCH_UNIX_OFFSET + leap_seconds
    return coarse, millis * 10


def set_packet_time(header, now: Optional[float] = None,
                    leap_seconds: int = GPS_LEAP_SECONDS) -> None:
    """Stamp a TelemetryHeader in place with the given (or current) time."""
    if now is None:
        now = time.time()
    header.coarse_time, header.fine_time = epm_time_from_unix(now, leap_seconds)


def delay_to_half_second_boundary(unix_seconds: float) -> float:
    """
    Seconds to sleep to reach the next 500 ms wall-clock boundary.

    Aligning each realtime packet to the boundary keeps the 2 Hz cadence from
    drifting the way a fixed sleep would. Exactly on a boundary gives 0.
    """
    millis = int((unix_seconds - int(unix_seconds)) * 1000)
    return ((1000 - millis) % SYNTH_CADENCE_MS) / 1000.0
