# decode/fields.py
"""
Small typed readers over a raw byte buffer.

Every reader checks that the whole field fits before touching it and raises
BoundsError otherwise, so record decoders never index past the data.
"""
from __future__ import annotations

import struct

from ..errors import BoundsError


def _need(data: bytes, offset: int, width: int) -> None:
    if offset < 0 or offset + width > len(data):
        raise BoundsError(f"field of {width} bytes at {offset} is outside buffer of {len(data)} bytes")


def u8(data: bytes, offset: int) -> int:
    _need(data, offset, 1)
    return data[offset]


def i8(data: bytes, offset: int) -> int:
    _need(data, offset, 1)
    return struct.unpack_from("<b", data, offset)[0]


def u16be(data: bytes, offset: int) -> int:
    _need(data, offset, 2)
    return struct.unpack_from(">H", data, offset)[0]


def u16le(data: bytes, offset: int) -> int:
    _need(data, offset, 2)
    return struct.unpack_from("<H", data, offset)[0]


def i16le(data: bytes, offset: int) -> int:
    _need(data, offset, 2)
    return struct.unpack_from("<h", data, offset)[0]


def u32le(data: bytes, offset: int) -> int:
    _need(data, offset, 4)
    return struct.unpack_from("<I", data, offset)[0]


def i32le(data: bytes, offset: int) -> int:
    _need(data, offset, 4)
    return struct.unpack_from("<i", data, offset)[0]


def u64le(data: bytes, offset: int) -> int:
    _need(data, offset, 8)
    return struct.unpack_from("<Q", data, offset)[0]


def i64le(data: bytes, offset: int) -> int:
    _need(data, offset, 8)
    return struct.unpack_from("<q", data, offset)[0]


def raw(data: bytes, offset: int, width: int) -> bytes:
    _need(data, offset, width)
    return bytes(data[offset:offset + width])


def cstring(data: bytes, offset: int, width: int) -> str:
    """Text up to the first NUL inside a fixed field (or the whole field)."""
    field = raw(data, offset, width)
    end = field.find(b"\x00")
    if end >= 0:
        field = field[:end]
    return field.decode("latin-1")
