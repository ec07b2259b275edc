#!/usr/bin/env python3
"""
EPM / GRIP Shared Constants

Centralizes the framing, identification and timing constants used by the
packet codec, the packet sources and the session server.

Layout reference: EPM-OHB-LI-0039 (EPM telemetry framing) and
DEX-ICD-00383-QS (GRIP realtime and housekeeping payloads).
"""

# =============================================================================
# BUFFER AND NETWORK
# =============================================================================

EPM_BUFFER_LENGTH = 1024  # bytes - every RawPacket on the wire and on disk
EPM_DEFAULT_PORT = 2128

# =============================================================================
# SYNC MARKERS AND IDENTIFIERS
# =============================================================================

EPM_LAN_SYNC_MARKER = 0xEB90EB90       # Transfer frame sync
EPM_TELEMETRY_SYNC_VALUE = 0x1ACFFC1D  # Telemetry header sync

# Transfer frame packet types
TRANSFER_FRAME_CONNECT = 0x0001
TRANSFER_FRAME_TELEMETRY = 0x0003

# Subsystem and telemetry identifiers
GRIP_SUBSYSTEM_ID = 0x21
GRIP_HK_ID = 0x0301
GRIP_RT_ID = 0x1001

# Software units allowed to issue a Connect
GRIP_MMI_SOFTWARE_UNIT_ID = 0x2A
GRIP_MMI_SOFTWARE_ALT_UNIT_ID = 0x2B

# =============================================================================
# PACKET LAYOUT
# =============================================================================

TRANSFER_FRAME_HEADER_LENGTH = 12
TELEMETRY_HEADER_LENGTH = 42  # transfer frame + telemetry extension

RT_SLICES_PER_PACKET = 10
# pose tick, position, quaternion, 2 masks, visibility, analog tick,
# 2 x (force + torque), acceleration
RT_SLICE_LENGTH = 4 + 3 * 2 + 4 * 4 + 2 * 4 + 1 + 4 + 2 * (3 * 2 + 3 * 2) + 3 * 4
RT_PAYLOAD_LENGTH = 8 + RT_SLICES_PER_PACKET * RT_SLICE_LENGTH

# Housekeeping values start 68 bytes into the HK block (DEX-ICD-00383-QS
# 5.2.4.58) plus 8 bytes of value count / check status list location.
HK_PAYLOAD_OFFSET = 76
HK_FIELDS_LENGTH = 2 * 2 + 2 + 2 * 4 + 2 * 4 + 2 + 2 * 3 + 4 * 3 + 2

RT_PACKET_LENGTH = TELEMETRY_HEADER_LENGTH + RT_PAYLOAD_LENGTH
HK_PACKET_LENGTH = TELEMETRY_HEADER_LENGTH + HK_PAYLOAD_OFFSET + HK_FIELDS_LENGTH
CONNECT_PACKET_LENGTH = TRANSFER_FRAME_HEADER_LENGTH

# =============================================================================
# ENGINEERING UNIT SCALING
# =============================================================================

POSITION_SCALE = 10.0       # wire = mm * 10
FORCE_SCALE = 100.0         # wire = N * 100
TORQUE_SCALE = 1000.0       # wire = Nm * 1000
ACCELERATION_SCALE = 1000.0
GRAVITY = 9.8

# =============================================================================
# TIMING
# =============================================================================

RT_DEFAULT_SECONDS_PER_SLICE = 0.05
FINE_TIME_PER_SECOND = 10000  # fine time is in tenths of a millisecond

GPS_EPOCH_UNIX_OFFSET = 315964800  # seconds between 1970-01-01 and 1980-01-06
GPS_LEAP_SECONDS = 18              # GPS - UTC since 2017-01-01

RT_PLAYBACK_PAUSE = 0.5       # seconds after a recorded RT packet
OTHER_PLAYBACK_PAUSE = 0.02   # seconds after any other recorded packet
PLAYBACK_RESTART_PAUSE = 10.0

SYNTH_PRE_PACKET_PAUSE = 0.05
SYNTH_CADENCE_MS = 500
SYNTH_PACKETS_PER_EPOCH = 20
SYNTH_INTER_TRIAL_PAUSE = 5.0

# =============================================================================
# SIMULATED EXPERIMENT HARDWARE
# =============================================================================

N_VERTICAL_TARGETS = 13
N_HORIZONTAL_TARGETS = 10

STATUS_ACQUIRING = 2
STATUS_IDLE = 0

DROPOUT_PROBABILITY = 1000 / 32768
DROPOUT_SLICES = 10
OCCLUDED_MARKER_MASK = 0xFFF00

# =============================================================================
# PACKET CACHE
# =============================================================================

MAX_OPEN_CACHE_RETRIES = 5
RETRY_PAUSE = 1.0  # seconds
