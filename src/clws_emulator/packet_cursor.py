#!/usr/bin/env python3
"""
Sequential Byte Cursors for EPM Packets

EPM fields can only be located by walking them in order, so every field read
or write goes through a cursor that converts one big-endian value and
advances past it. Field order is therefore explicit at each call site.
"""

import struct
from typing import Union

BufferLike = Union[bytes, bytearray, memoryview]

_U8 = struct.Struct('>B')
_U16 = struct.Struct('>H')
_I16 = struct.Struct('>h')
_U32 = struct.Struct('>I')
_I32 = struct.Struct('>i')
_F32 = struct.Struct('>f')


class PacketReader:
    """Reads big-endian values from a buffer, advancing an offset."""

    def __init__(self, buffer: BufferLike, offset: int = 0):
        self.buffer = buffer
        self.offset = offset

    def _read(self, codec: struct.Struct):
        value, = codec.unpack_from(self.buffer, self.offset)
        self.offset += codec.size
        return value

    def skip(self, count: int) -> None:
        self.offset += count

    def read_u8(self) -> int:
        return self._read(_U8)

    def read_u16(self) -> int:
        return self._read(_U16)

    def read_i16(self) -> int:
        return self._read(_I16)

    def read_u32(self) -> int:
        return self._read(_U32)

    def read_i32(self) -> int:
        return self._read(_I32)

    def read_f32(self) -> float:
        return self._read(_F32)


class PacketWriter:
    """Writes big-endian values into a bytearray, advancing an offset."""

    def __init__(self, buffer: bytearray, offset: int = 0):
        self.buffer = buffer
        self.offset = offset

    def _write(self, codec: struct.Struct, value) -> None:
        codec.pack_into(self.buffer, self.offset, value)
        self.offset += codec.size

    def skip(self, count: int) -> None:
        self.offset += count

    def write_u8(self, value: int) -> None:
        self._write(_U8, value)

    def write_u16(self, value: int) -> None:
        self._write(_U16, value)

    def write_i16(self, value: int) -> None:
        self._write(_I16, value)

    def write_u32(self, value: int) -> None:
        self._write(_U32, value)

    def write_i32(self, value: int) -> None:
        self._write(_I32, value)

    def write_f32(self, value: float) -> None:
        self._write(_F32, value)
