#!/usr/bin/env python3
"""
EPM / GRIP Packet Codec

Converts between fixed-size EPM packets (RawPacket, EPM_BUFFER_LENGTH bytes)
and structured records:

    TransferFrameHeader   bytes 0..11
    TelemetryHeader       bytes 0..41 (embeds the transfer frame header)
    RealtimeDataRecord    payload from byte 42, walked sequentially
    HealthAndStatusRecord payload byte 76 onward

Every multi-byte field is big-endian (ESA order) on the wire. Realtime values
are fixed point on the wire, so encoding truncates toward zero and a
decode(encode(x)) round trip only reproduces x within one quantization step.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .constants import (
    ACCELERATION_SCALE,
    CONNECT_PACKET_LENGTH,
    EPM_BUFFER_LENGTH,
    EPM_LAN_SYNC_MARKER,
    EPM_TELEMETRY_SYNC_VALUE,
    FORCE_SCALE,
    GRAVITY,
    GRIP_HK_ID,
    GRIP_MMI_SOFTWARE_ALT_UNIT_ID,
    GRIP_MMI_SOFTWARE_UNIT_ID,
    GRIP_RT_ID,
    GRIP_SUBSYSTEM_ID,
    HK_PACKET_LENGTH,
    HK_PAYLOAD_OFFSET,
    POSITION_SCALE,
    RT_DEFAULT_SECONDS_PER_SLICE,
    RT_PACKET_LENGTH,
    RT_SLICES_PER_PACKET,
    TELEMETRY_HEADER_LENGTH,
    TORQUE_SCALE,
    TRANSFER_FRAME_CONNECT,
    TRANSFER_FRAME_HEADER_LENGTH,
    TRANSFER_FRAME_TELEMETRY,
)
from .epm_time import header_seconds
from .packet_cursor import BufferLike, PacketReader, PacketWriter

X, Y, Z, M = 0, 1, 2, 3

_I16_RANGE = (-0x8000, 0x7FFF)
_I32_RANGE = (-0x80000000, 0x7FFFFFFF)


class PacketEncodeError(ValueError):
    """A value does not fit the fixed-point field it is encoded into."""


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class TransferFrameHeader:
    """Outer EPM LAN transfer frame header"""
    sync_marker: int = EPM_LAN_SYNC_MARKER
    spare1: int = 0
    software_unit_id: int = 0
    packet_type: int = TRANSFER_FRAME_TELEMETRY
    spare2: int = 0
    number_of_words: int = 0


@dataclass
class TelemetryHeader:
    """EPM telemetry header, including the transfer frame header"""
    transfer_frame: TransferFrameHeader = field(default_factory=TransferFrameHeader)
    epm_sync_marker: int = EPM_TELEMETRY_SYNC_VALUE
    subsystem_mode: int = 0
    subsystem_id: int = 0
    destination: int = 0
    subsystem_unit_id: int = 0
    tm_identifier: int = 0
    tm_counter: int = 0            # Per-identifier sequence counter (16-bit)
    model: int = 0
    task_id: int = 0
    subsystem_unit_version: int = 0
    coarse_time: int = 0           # Seconds since GPS epoch
    fine_time: int = 0             # Tenths of a millisecond
    timer_status: int = 0
    experiment_mode: int = 0
    checksum_indicator: int = 0
    receiver_subsystem_id: int = 0
    receiver_subsystem_unit_id: int = 0
    number_of_words: int = 0


@dataclass
class ForceTorque:
    """One force/torque sensor reading"""
    force: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])    # N
    torque: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])   # Nm


@dataclass
class DataSlice:
    """One time sample of manipulandum pose and analog data"""
    pose_tick: int = 0
    position: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])  # mm
    quaternion: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 1.0])
    marker_visibility: List[int] = field(default_factory=lambda: [0, 0])
    manipulandum_visibility: int = 0
    analog_tick: int = 0
    ft: List[ForceTorque] = field(default_factory=lambda: [ForceTorque(), ForceTorque()])
    acceleration: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])  # m/s^2
    best_guess_pose_timestamp: float = 0.0
    best_guess_analog_timestamp: float = 0.0


@dataclass
class RealtimeDataRecord:
    """GRIP realtime science data payload"""
    acquisition_id: int = 0
    rt_packet_count: int = 0
    packet_timestamp: float = 0.0
    slices: List[DataSlice] = field(
        default_factory=lambda: [DataSlice() for _ in range(RT_SLICES_PER_PACKET)]
    )


@dataclass
class HealthAndStatusRecord:
    """
    GRIP housekeeping values of interest.

    Only the subset of the HK block that the ground station displays;
    the rest of the block is left as-is on encode and ignored on decode.
    """
    horizontal_target_feedback: int = 0
    vertical_target_feedback: int = 0
    tone_feedback: int = 0
    cradle_detectors: int = 0
    user: int = 0
    protocol: int = 0
    task: int = 0
    step: int = 0
    script_engine_status_enum: int = 0
    iochannel_status_enum: int = 0
    motion_tracker_status_enum: int = 0
    crew_camera_status_enum: int = 0
    crew_camera_rate: int = 0
    running_bits: int = 0
    cpu_usage: int = 0
    memory_usage: int = 0
    free_disk_space_c: int = 0
    free_disk_space_d: int = 0
    free_disk_space_e: int = 0
    crc: int = 0


def new_packet() -> bytearray:
    """Zeroed RawPacket buffer"""
    return bytearray(EPM_BUFFER_LENGTH)


def _target(packet: Optional[bytearray]) -> bytearray:
    return new_packet() if packet is None else packet


# =============================================================================
# HEADERS
# =============================================================================

def _read_transfer_frame(reader: PacketReader) -> TransferFrameHeader:
    return TransferFrameHeader(
        sync_marker=reader.read_u32(),
        spare1=reader.read_u8(),
        software_unit_id=reader.read_u8(),
        packet_type=reader.read_u16(),
        spare2=reader.read_u16(),
        number_of_words=reader.read_u16(),
    )


def _write_transfer_frame(writer: PacketWriter, header: TransferFrameHeader) -> None:
    writer.write_u32(header.sync_marker)
    writer.write_u8(header.spare1)
    writer.write_u8(header.software_unit_id)
    writer.write_u16(header.packet_type)
    writer.write_u16(header.spare2)
    writer.write_u16(header.number_of_words)


def decode_transfer_frame_header(raw: BufferLike) -> TransferFrameHeader:
    """Extract the transfer frame header. No validation is done."""
    return _read_transfer_frame(PacketReader(raw))


def encode_transfer_frame_header(header: TransferFrameHeader,
                                 packet: Optional[bytearray] = None) -> bytearray:
    """Overwrite the transfer frame header bytes of a packet."""
    packet = _target(packet)
    _write_transfer_frame(PacketWriter(packet), header)
    return packet


def decode_telemetry_header(raw: BufferLike) -> TelemetryHeader:
    """Extract the full telemetry header. No validation is done."""
    reader = PacketReader(raw)
    transfer_frame = _read_transfer_frame(reader)
    return TelemetryHeader(
        transfer_frame=transfer_frame,
        epm_sync_marker=reader.read_u32(),
        subsystem_mode=reader.read_u8(),
        subsystem_id=reader.read_u8(),
        destination=reader.read_u8(),
        subsystem_unit_id=reader.read_u8(),
        tm_identifier=reader.read_u16(),
        tm_counter=reader.read_u16(),
        model=reader.read_u8(),
        task_id=reader.read_u8(),
        subsystem_unit_version=reader.read_u16(),
        coarse_time=reader.read_u32(),
        fine_time=reader.read_u16(),
        timer_status=reader.read_u8(),
        experiment_mode=reader.read_u8(),
        checksum_indicator=reader.read_u16(),
        receiver_subsystem_id=reader.read_u8(),
        receiver_subsystem_unit_id=reader.read_u8(),
        number_of_words=reader.read_u16(),
    )


def encode_telemetry_header(header: TelemetryHeader,
                            packet: Optional[bytearray] = None) -> bytearray:
    """Overwrite the telemetry header bytes (transfer frame included) of a packet."""
    packet = _target(packet)
    writer = PacketWriter(packet)
    _write_transfer_frame(writer, header.transfer_frame)
    writer.write_u32(header.epm_sync_marker)
    writer.write_u8(header.subsystem_mode)
    writer.write_u8(header.subsystem_id)
    writer.write_u8(header.destination)
    writer.write_u8(header.subsystem_unit_id)
    writer.write_u16(header.tm_identifier)
    writer.write_u16(header.tm_counter & 0xFFFF)
    writer.write_u8(header.model)
    writer.write_u8(header.task_id)
    writer.write_u16(header.subsystem_unit_version)
    writer.write_u32(header.coarse_time)
    writer.write_u16(header.fine_time)
    writer.write_u8(header.timer_status)
    writer.write_u8(header.experiment_mode)
    writer.write_u16(header.checksum_indicator)
    writer.write_u8(header.receiver_subsystem_id)
    writer.write_u8(header.receiver_subsystem_unit_id)
    writer.write_u16(header.number_of_words)
    return packet


# =============================================================================
# VALIDITY
# =============================================================================

def is_epm_packet(header: TelemetryHeader) -> bool:
    return header.epm_sync_marker == EPM_TELEMETRY_SYNC_VALUE


def is_grip_packet(header: TelemetryHeader) -> bool:
    return is_epm_packet(header) and header.subsystem_id == GRIP_SUBSYSTEM_ID


def is_grip_hk_packet(header: TelemetryHeader) -> bool:
    return is_grip_packet(header) and header.tm_identifier == GRIP_HK_ID


def is_grip_rt_packet(header: TelemetryHeader) -> bool:
    return is_grip_packet(header) and header.tm_identifier == GRIP_RT_ID


# =============================================================================
# REALTIME SCIENCE DATA
# =============================================================================

def _to_fixed(value: float, scale: float, limits, name: str) -> int:
    # int() truncates toward zero, matching a C integer cast
    raw = int(value * scale)
    if not limits[0] <= raw <= limits[1]:
        raise PacketEncodeError(f"{name}={value} out of range for wire format (raw {raw})")
    return raw


def decode_realtime_data(raw: BufferLike) -> RealtimeDataRecord:
    """
    Extract realtime science data from an RT packet.

    The header timestamp is taken as the time of the last slice. True
    per-slice times cannot be recovered from the tick fields, so earlier
    slices are assumed to be evenly spaced RT_DEFAULT_SECONDS_PER_SLICE apart.
    """
    reader = PacketReader(raw, TELEMETRY_HEADER_LENGTH)
    record = RealtimeDataRecord(
        acquisition_id=reader.read_u32(),
        rt_packet_count=reader.read_u32(),
        slices=[],
    )
    for _ in range(RT_SLICES_PER_PACKET):
        data_slice = DataSlice()
        data_slice.pose_tick = reader.read_u32()
        data_slice.position = [reader.read_i16() / POSITION_SCALE for _ in range(3)]
        data_slice.quaternion = [reader.read_f32() for _ in range(4)]
        data_slice.marker_visibility = [reader.read_u32(), reader.read_u32()]
        data_slice.manipulandum_visibility = reader.read_u8()
        data_slice.analog_tick = reader.read_u32()
        data_slice.ft = []
        for _sensor in range(2):
            force = [reader.read_i16() / FORCE_SCALE for _ in range(3)]
            torque = [reader.read_i16() / TORQUE_SCALE for _ in range(3)]
            data_slice.ft.append(ForceTorque(force=force, torque=torque))
        data_slice.acceleration = [
            reader.read_i32() / ACCELERATION_SCALE / GRAVITY for _ in range(3)
        ]
        record.slices.append(data_slice)

    timestamp = header_seconds(decode_telemetry_header(raw))
    record.packet_timestamp = timestamp
    last = record.slices[-1]
    last.best_guess_pose_timestamp = timestamp
    last.best_guess_analog_timestamp = timestamp
    for index in range(RT_SLICES_PER_PACKET - 2, -1, -1):
        later = record.slices[index + 1]
        record.slices[index].best_guess_pose_timestamp = (
            later.best_guess_pose_timestamp - RT_DEFAULT_SECONDS_PER_SLICE)
        record.slices[index].best_guess_analog_timestamp = (
            later.best_guess_analog_timestamp - RT_DEFAULT_SECONDS_PER_SLICE)
    return record


def encode_realtime_data(record: RealtimeDataRecord,
                         packet: Optional[bytearray] = None) -> bytearray:
    """
    Insert realtime science data into the payload of a packet.

    Raises:
        PacketEncodeError: If a scaled value does not fit its wire integer
    """
    if len(record.slices) != RT_SLICES_PER_PACKET:
        raise PacketEncodeError(
            f"realtime record has {len(record.slices)} slices, expected {RT_SLICES_PER_PACKET}")
    packet = _target(packet)
    writer = PacketWriter(packet, TELEMETRY_HEADER_LENGTH)
    writer.write_u32(record.acquisition_id)
    writer.write_u32(record.rt_packet_count)
    for data_slice in record.slices:
        writer.write_u32(data_slice.pose_tick)
        for value in data_slice.position:
            writer.write_i16(_to_fixed(value, POSITION_SCALE, _I16_RANGE, 'position'))
        for value in data_slice.quaternion:
            writer.write_f32(value)
        for mask in data_slice.marker_visibility:
            writer.write_u32(mask)
        writer.write_u8(int(data_slice.manipulandum_visibility))
        writer.write_u32(data_slice.analog_tick)
        for sensor in data_slice.ft:
            for value in sensor.force:
                writer.write_i16(_to_fixed(value, FORCE_SCALE, _I16_RANGE, 'force'))
            for value in sensor.torque:
                writer.write_i16(_to_fixed(value, TORQUE_SCALE, _I16_RANGE, 'torque'))
        for value in data_slice.acceleration:
            writer.write_i32(_to_fixed(value, ACCELERATION_SCALE * GRAVITY,
                                       _I32_RANGE, 'acceleration'))
    return packet


# =============================================================================
# HOUSEKEEPING
# =============================================================================

def decode_health_and_status(raw: BufferLike) -> HealthAndStatusRecord:
    """
    Extract the housekeeping values of interest from an HK packet.

    The caller is expected to have validated the telemetry header.
    """
    reader = PacketReader(raw, TELEMETRY_HEADER_LENGTH + HK_PAYLOAD_OFFSET)
    return HealthAndStatusRecord(
        horizontal_target_feedback=reader.read_u16(),
        vertical_target_feedback=reader.read_u16(),
        tone_feedback=reader.read_u8(),
        cradle_detectors=reader.read_u8(),
        user=reader.read_u16(),
        protocol=reader.read_u16(),
        task=reader.read_u16(),
        step=reader.read_u16(),
        script_engine_status_enum=reader.read_u16(),
        iochannel_status_enum=reader.read_u16(),
        motion_tracker_status_enum=reader.read_u16(),
        crew_camera_status_enum=reader.read_u16(),
        crew_camera_rate=reader.read_u16(),
        running_bits=reader.read_u16(),
        cpu_usage=reader.read_u16(),
        memory_usage=reader.read_u16(),
        free_disk_space_c=reader.read_u32(),
        free_disk_space_d=reader.read_u32(),
        free_disk_space_e=reader.read_u32(),
        crc=reader.read_u16(),
    )


def encode_health_and_status(record: HealthAndStatusRecord,
                             packet: Optional[bytearray] = None) -> bytearray:
    """Insert housekeeping values into the payload of a packet."""
    packet = _target(packet)
    writer = PacketWriter(packet, TELEMETRY_HEADER_LENGTH + HK_PAYLOAD_OFFSET)
    writer.write_u16(record.horizontal_target_feedback)
    writer.write_u16(record.vertical_target_feedback)
    writer.write_u8(record.tone_feedback)
    writer.write_u8(record.cradle_detectors)
    writer.write_u16(record.user)
    writer.write_u16(record.protocol)
    writer.write_u16(record.task)
    writer.write_u16(record.step)
    writer.write_u16(record.script_engine_status_enum)
    writer.write_u16(record.iochannel_status_enum)
    writer.write_u16(record.motion_tracker_status_enum)
    writer.write_u16(record.crew_camera_status_enum)
    writer.write_u16(record.crew_camera_rate)
    writer.write_u16(record.running_bits)
    writer.write_u16(record.cpu_usage)
    writer.write_u16(record.memory_usage)
    writer.write_u32(record.free_disk_space_c)
    writer.write_u32(record.free_disk_space_d)
    writer.write_u32(record.free_disk_space_e)
    writer.write_u16(record.crc)
    return packet


# =============================================================================
# TEMPLATES
# =============================================================================

def _grip_header(tm_identifier: int, packet_length: int) -> TelemetryHeader:
    return TelemetryHeader(
        transfer_frame=TransferFrameHeader(
            packet_type=TRANSFER_FRAME_TELEMETRY,
            number_of_words=(packet_length - TRANSFER_FRAME_HEADER_LENGTH) // 2,
        ),
        subsystem_id=GRIP_SUBSYSTEM_ID,
        tm_identifier=tm_identifier,
        number_of_words=(packet_length - TELEMETRY_HEADER_LENGTH) // 2,
    )


def realtime_header_template() -> TelemetryHeader:
    """Header used for synthesized RT packets"""
    return _grip_header(GRIP_RT_ID, RT_PACKET_LENGTH)


def housekeeping_header_template() -> TelemetryHeader:
    """Header used for synthesized HK packets"""
    return _grip_header(GRIP_HK_ID, HK_PACKET_LENGTH)


def connect_frame(software_unit_id: int = GRIP_MMI_SOFTWARE_UNIT_ID) -> bytes:
    """Handshake frame a client sends to start the packet stream"""
    header = TransferFrameHeader(
        software_unit_id=software_unit_id,
        packet_type=TRANSFER_FRAME_CONNECT,
    )
    packet = encode_transfer_frame_header(header, bytearray(CONNECT_PACKET_LENGTH))
    return bytes(packet)


def describe_software_unit(software_unit_id: int) -> str:
    if software_unit_id == GRIP_MMI_SOFTWARE_UNIT_ID:
        return "PRIMARY"
    if software_unit_id == GRIP_MMI_SOFTWARE_ALT_UNIT_ID:
        return "ALTERNATE"
    return "UNRECOGNIZED"
