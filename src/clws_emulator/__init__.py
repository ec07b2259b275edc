"""
CLWS Emulator - GRIP telemetry source for ground station testing

Emulates the CLWS data server that relays EPM telemetry from the GRIP
experiment: a ground station client connects over TCP, sends a Connect
frame, and receives a stream of fixed-size EPM packets that are either
replayed from a capture file or synthesized on the fly.

Quick Start:
    from clws_emulator import SessionServer, load_config, create_source_factory

    config = load_config()
    server = SessionServer(config.server.host, config.server.port,
                           create_source_factory(config))
    server.serve_forever()

The packet codec (epm_packets) and the packet cache reader (packet_cache)
are shared with the ground station side.
"""

__version__ = "1.0.0"
__author__ = "GRIP Ground Segment"

# Wire codec
from .epm_packets import (
    TransferFrameHeader, TelemetryHeader, ForceTorque, DataSlice,
    RealtimeDataRecord, HealthAndStatusRecord, PacketEncodeError,
    decode_transfer_frame_header, encode_transfer_frame_header,
    decode_telemetry_header, encode_telemetry_header,
    decode_realtime_data, encode_realtime_data,
    decode_health_and_status, encode_health_and_status,
    is_epm_packet, is_grip_packet, is_grip_hk_packet, is_grip_rt_packet,
    connect_frame,
)
from .epm_time import to_seconds, epm_time_from_unix, delay_to_half_second_boundary

# Packet caches
from .packet_cache import (
    CacheError, GripPacketType, PacketCacheReader, PacketCacheWriter, cache_filename,
)

# Server and packet sources
from .config_utils import EmulatorConfig, load_config
from .packet_source import PacketSource, create_source_factory
from .recorded_source import RecordedPacketSource, CaptureFileError
from .constructed_source import ConstructedPacketSource
from .session_server import SessionServer, SessionState, SessionMetrics
from .ground_client import GroundClient

__all__ = [
    # Wire codec
    'TransferFrameHeader',
    'TelemetryHeader',
    'ForceTorque',
    'DataSlice',
    'RealtimeDataRecord',
    'HealthAndStatusRecord',
    'PacketEncodeError',
    'decode_transfer_frame_header',
    'encode_transfer_frame_header',
    'decode_telemetry_header',
    'encode_telemetry_header',
    'decode_realtime_data',
    'encode_realtime_data',
    'decode_health_and_status',
    'encode_health_and_status',
    'is_epm_packet',
    'is_grip_packet',
    'is_grip_hk_packet',
    'is_grip_rt_packet',
    'connect_frame',
    'to_seconds',
    'epm_time_from_unix',
    'delay_to_half_second_boundary',

    # Packet caches
    'CacheError',
    'GripPacketType',
    'PacketCacheReader',
    'PacketCacheWriter',
    'cache_filename',

    # Server and packet sources
    'EmulatorConfig',
    'load_config',
    'PacketSource',
    'create_source_factory',
    'RecordedPacketSource',
    'CaptureFileError',
    'ConstructedPacketSource',
    'SessionServer',
    'SessionState',
    'SessionMetrics',
    'GroundClient',
]
