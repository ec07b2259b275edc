#!/usr/bin/env python3
"""
GRIP Packet Cache Files

The ground station stores received packets in three append-only cache files
sharing a root name:

    {root}.rt.gpk   GRIP realtime science packets only
    {root}.hk.gpk   GRIP housekeeping packets only
    {root}.any.gpk  every valid EPM packet

Each file is a flat concatenation of EPM_BUFFER_LENGTH records with no index,
so readers scan sequentially to the last complete record.
"""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, Optional, Tuple, Union

from .constants import EPM_BUFFER_LENGTH, MAX_OPEN_CACHE_RETRIES, RETRY_PAUSE
from .epm_packets import (
    HealthAndStatusRecord,
    RealtimeDataRecord,
    TelemetryHeader,
    decode_health_and_status,
    decode_realtime_data,
    decode_telemetry_header,
    is_epm_packet,
    is_grip_hk_packet,
    is_grip_rt_packet,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CacheError(RuntimeError):
    """A cache file could not be opened, read, or contains an invalid record."""


class GripPacketType(Enum):
    """Packet kinds with their own cache file"""
    RT_SCIENCE = "rt"
    HK_BULK = "hk"
    ANY = "any"


def cache_filename(root: PathLike, kind: GripPacketType) -> Path:
    """Cache file path for a packet kind, e.g. 'cache/Grip' -> 'cache/Grip.hk.gpk'"""
    return Path(f"{root}.{kind.value}.gpk")


def open_with_retry(path: PathLike,
                    max_attempts: int = MAX_OPEN_CACHE_RETRIES,
                    delay: float = RETRY_PAUSE,
                    sleep: Callable[[float], None] = time.sleep) -> BinaryIO:
    """
    Open a file for binary reading, retrying while it does not exist yet.

    The writer side may still be creating the cache when a reader first
    looks for it.

    Raises:
        CacheError: If the file could not be opened after max_attempts
    """
    last_error: Optional[OSError] = None
    for attempt in range(max_attempts):
        try:
            return open(path, 'rb')
        except OSError as e:
            last_error = e
            logger.debug(f"Open attempt {attempt + 1}/{max_attempts} for {path} failed: {e}")
            if attempt < max_attempts - 1:
                sleep(delay)
    raise CacheError(f"Error opening {path} after {max_attempts} attempts: {last_error}")


def iter_records(stream: BinaryIO, record_length: int = EPM_BUFFER_LENGTH) -> Iterator[bytes]:
    """Yield complete fixed-size records until a short read."""
    while True:
        record = stream.read(record_length)
        if len(record) < record_length:
            if record:
                logger.debug(f"Ignoring {len(record)} trailing bytes (partial record)")
            return
        yield record


class PacketCacheReader:
    """
    Reads back the most recent packet from a set of cache files.

    Each call rescans the whole file and reports whether the last packet's
    TM counter changed since the previous call on this reader.

    Example:
        reader = PacketCacheReader('cache/GripPackets')
        header, hk, changed = reader.get_last_housekeeping()
    """

    def __init__(self, root: PathLike,
                 max_open_retries: int = MAX_OPEN_CACHE_RETRIES,
                 retry_pause: float = RETRY_PAUSE,
                 sleep: Callable[[float], None] = time.sleep):
        self.root = root
        self.max_open_retries = max_open_retries
        self.retry_pause = retry_pause
        self.sleep = sleep
        self.previous_tm_counter: Dict[GripPacketType, int] = {
            GripPacketType.HK_BULK: 0,
            GripPacketType.RT_SCIENCE: 0,
        }

    def _open(self, kind: GripPacketType) -> Tuple[Path, BinaryIO]:
        path = cache_filename(self.root, kind)
        stream = open_with_retry(path, self.max_open_retries, self.retry_pause, self.sleep)
        return path, stream

    def _changed(self, kind: GripPacketType, header: TelemetryHeader) -> bool:
        if self.previous_tm_counter[kind] != header.tm_counter:
            self.previous_tm_counter[kind] = header.tm_counter
            return True
        return False

    def get_last_housekeeping(self) -> Tuple[TelemetryHeader, HealthAndStatusRecord, bool]:
        """
        Most recent housekeeping record in the HK cache.

        Returns:
            (header, housekeeping, changed) where changed is True if the TM
            counter differs from the one seen on the previous call

        Raises:
            CacheError: If the cache cannot be opened or read, is empty, or
                holds a record that is not a GRIP HK packet
        """
        path, stream = self._open(GripPacketType.HK_BULK)
        header = None
        last_record = None
        packets_read = 0
        try:
            with stream:
                for record in iter_records(stream):
                    packets_read += 1
                    header = decode_telemetry_header(record)
                    if not is_grip_hk_packet(header):
                        raise CacheError(f"Unrecognized packet #{packets_read} in {path}")
                    last_record = record
        except OSError as e:
            raise CacheError(f"Error reading from {path}: {e}") from e

        if last_record is None:
            raise CacheError(f"No complete packets in {path}")

        logger.debug(f"Read {packets_read} HK packets from {path}, last TM counter {header.tm_counter}")
        return header, decode_health_and_status(last_record), self._changed(GripPacketType.HK_BULK, header)

    def get_last_realtime(self) -> Tuple[TelemetryHeader, RealtimeDataRecord, bool]:
        """
        Most recent realtime record in the RT cache.

        Sessions are appended to the same file and each one restarts the TM
        counter, which also wraps at 16 bits, so a counter that does not
        increase is logged as a session boundary and scanning continues.

        Raises:
            CacheError: If the cache cannot be read, is empty, or holds a
                non-RT record
        """
        path, stream = self._open(GripPacketType.RT_SCIENCE)
        header = None
        last_record = None
        packets_read = 0
        try:
            with stream:
                for record in iter_records(stream):
                    packets_read += 1
                    current = decode_telemetry_header(record)
                    if not is_grip_rt_packet(current):
                        raise CacheError(f"Unrecognized packet #{packets_read} in {path}")
                    if header is not None and current.tm_counter <= header.tm_counter:
                        logger.warning(
                            f"TM counter restarted in {path} at packet #{packets_read}: "
                            f"{current.tm_counter} after {header.tm_counter}")
                    header = current
                    last_record = record
        except OSError as e:
            raise CacheError(f"Error reading from {path}: {e}") from e

        if last_record is None:
            raise CacheError(f"No complete packets in {path}")

        return header, decode_realtime_data(last_record), self._changed(GripPacketType.RT_SCIENCE, header)


class PacketCacheWriter:
    """
    Appends received packets to the cache files.

    Valid EPM packets go to the 'any' cache; GRIP RT and HK packets are also
    appended to their own cache. Anything else is dropped.
    """

    def __init__(self, root: PathLike):
        self.root = root
        self.counts = {kind: 0 for kind in GripPacketType}
        self._files: Dict[GripPacketType, BinaryIO] = {}

    def open(self):
        Path(cache_filename(self.root, GripPacketType.ANY)).parent.mkdir(parents=True, exist_ok=True)
        for kind in GripPacketType:
            self._files[kind] = open(cache_filename(self.root, kind), 'ab')
        logger.info(f"Packet caches open at {self.root}.*.gpk")

    def close(self):
        for stream in self._files.values():
            stream.close()
        self._files = {}

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _append(self, kind: GripPacketType, packet: bytes):
        stream = self._files[kind]
        stream.write(packet)
        stream.flush()
        self.counts[kind] += 1

    def write_packet(self, packet: bytes) -> Optional[GripPacketType]:
        """
        Store one packet.

        Returns:
            The specific cache the packet went to (RT_SCIENCE, HK_BULK, ANY),
            or None if it was not an EPM packet
        """
        if len(packet) != EPM_BUFFER_LENGTH:
            raise ValueError(f"Packet must be {EPM_BUFFER_LENGTH} bytes, got {len(packet)}")
        header = decode_telemetry_header(packet)
        if not is_epm_packet(header):
            logger.debug("Dropping non-EPM packet")
            return None

        self._append(GripPacketType.ANY, packet)
        if is_grip_rt_packet(header):
            self._append(GripPacketType.RT_SCIENCE, packet)
            return GripPacketType.RT_SCIENCE
        if is_grip_hk_packet(header):
            self._append(GripPacketType.HK_BULK, packet)
            return GripPacketType.HK_BULK
        return GripPacketType.ANY
