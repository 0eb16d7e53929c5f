# decode/nvs.py
"""
NVS (non-volatile storage) partition reader.

The partition is a run of 4 KiB pages. A page starts with a 32-byte header whose
first word is the page state; erased (0xFFFFFFFF) and uninitialised (0x00000000)
pages hold nothing. After the header come 32-byte slots:

    +0  namespace index u8   (0xFF = free slot)
    +1  type            u8
    +2  span            u8
    +3  chunk index     u8
    +4  crc32           u32 LE   (kept, not checked)
    +8  key             16 bytes, NUL terminated
    +24 value           8 bytes

Only the 8 value bytes of a slot are decoded. Strings/blobs that continue in the
following slots are reported slot by slot, not stitched together.
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Union

from ..errors import BoundsError, FormatError
from . import fields

logger = logging.getLogger(__name__)

PAGE_SIZE = 0x1000
PAGE_HEADER_SIZE = 32
SLOT_SIZE = 32
KEY_LEN = 16
VALUE_OFFSET = 24
VALUE_LEN = 8

PAGE_ERASED = 0xFFFFFFFF
PAGE_UNINITIALIZED = 0x00000000
FREE_SLOT = 0xFF


class NVSType(IntEnum):
    U8 = 0x01
    I8 = 0x11
    U16 = 0x02
    I16 = 0x12
    U32 = 0x04
    I32 = 0x14
    U64 = 0x08
    I64 = 0x18
    String = 0x21
    Blob = 0x42


_NUMERIC_READERS = {
    NVSType.U8: fields.u8,
    NVSType.I8: fields.i8,
    NVSType.U16: fields.u16le,
    NVSType.I16: fields.i16le,
    NVSType.U32: fields.u32le,
    NVSType.I32: fields.i32le,
    NVSType.U64: fields.u64le,
    NVSType.I64: fields.i64le,
}

_NUMERIC_FORMATS = {
    NVSType.U8: "<B",
    NVSType.I8: "<b",
    NVSType.U16: "<H",
    NVSType.I16: "<h",
    NVSType.U32: "<I",
    NVSType.I32: "<i",
    NVSType.U64: "<Q",
    NVSType.I64: "<q",
}

_KNOWN_CODES = frozenset(t.value for t in NVSType)

NVSValue = Union[int, str, bytes]


def type_name(code: int) -> str:
    try:
        return NVSType(code).name
    except ValueError:
        return f"0x{code:x}"


def hex_bytes(data: bytes) -> str:
    return " ".join(f"{b:02x}" for b in data)


@dataclass(frozen=True)
class NVSEntry:
    namespace_index: int
    type: int
    key: str
    value: NVSValue
    span: int
    chunk_index: int
    crc32: int

    @property
    def type_name(self) -> str:
        return type_name(self.type)

    @property
    def known_type(self) -> bool:
        return self.type in _KNOWN_CODES

    @property
    def value_text(self) -> str:
        """Value as shown to people: numbers in decimal, blobs/unknown as hex."""
        if isinstance(self.value, bytes):
            return hex_bytes(self.value)
        return str(self.value)


def _decode_value(data: bytes, pos: int, code: int) -> NVSValue:
    reader = _NUMERIC_READERS.get(code)
    if reader is not None:
        return reader(data, pos)
    if code == NVSType.String:
        return fields.cstring(data, pos, VALUE_LEN)
    # Blob and unknown types keep the raw bytes
    return fields.raw(data, pos, VALUE_LEN)


def decode_slot(data: bytes, pos: int) -> Optional[NVSEntry]:
    """One 32-byte slot at pos; None for free slots and keyless noise."""
    ns = fields.u8(data, pos)
    if ns == FREE_SLOT:
        return None
    key = fields.cstring(data, pos + 8, KEY_LEN)
    if not key:
        return None
    code = fields.u8(data, pos + 1)
    return NVSEntry(
        namespace_index=ns,
        type=code,
        key=key,
        value=_decode_value(data, pos + VALUE_OFFSET, code),
        span=fields.u8(data, pos + 2),
        chunk_index=fields.u8(data, pos + 3),
        crc32=fields.u32le(data, pos + 4),
    )


def decode(data: bytes) -> List[NVSEntry]:
    """Decode every live slot of every written page, in flash order."""
    entries: List[NVSEntry] = []
    pages = 0
    for page in range(0, len(data), PAGE_SIZE):
        try:
            state = fields.u32le(data, page)
        except BoundsError as e:
            raise FormatError(f"truncated NVS page header at 0x{page:X}") from e
        if state in (PAGE_ERASED, PAGE_UNINITIALIZED):
            continue
        pages += 1
        page_end = min(page + PAGE_SIZE, len(data))
        for pos in range(page + PAGE_HEADER_SIZE, page_end, SLOT_SIZE):
            try:
                entry = decode_slot(data, pos)
            except BoundsError as e:
                raise FormatError(f"truncated NVS slot at 0x{pos:X}") from e
            if entry is not None:
                entries.append(entry)

    logger.debug("nvs: %d entries in %d written pages", len(entries), pages)
    return entries


def namespace_names(entries: Iterable[NVSEntry]) -> Dict[int, str]:
    """
    Namespace index -> name. NVS keeps namespaces as U8 entries in namespace 0
    whose key is the name and whose value is the index.
    """
    names: Dict[int, str] = {}
    for e in entries:
        if e.namespace_index == 0 and e.type == NVSType.U8:
            names.setdefault(int(e.value), e.key)
    return names


# ---- encoder (simulator + tests) ----
def encode_slot(namespace_index: int, code: int, key: str, value: NVSValue,
                span: int = 1, chunk_index: int = 0xFF, crc32: int = 0) -> bytes:
    raw_key = key.encode("latin-1")
    if len(raw_key) >= KEY_LEN:
        raise FormatError(f"NVS key longer than {KEY_LEN - 1} bytes: {key!r}")
    fmt = _NUMERIC_FORMATS.get(code)
    if fmt is not None:
        payload = struct.pack(fmt, value)
    elif isinstance(value, str):
        payload = value.encode("latin-1")[:VALUE_LEN]
    else:
        payload = bytes(value)[:VALUE_LEN]
    fill = b"\x00" if code == NVSType.String else b"\xFF"
    return (
        struct.pack("<BBBBI", namespace_index, code, span, chunk_index, crc32)
        + raw_key.ljust(KEY_LEN, b"\x00")
        + payload.ljust(VALUE_LEN, fill)
    )


def encode_page(slots: Iterable[bytes], state: int = 0xFFFFFFFE, seq: int = 0) -> bytes:
    """A full 4 KiB page: header with the given state, then slots, rest erased."""
    header = struct.pack("<II", state, seq).ljust(PAGE_HEADER_SIZE, b"\xFF")
    body = b"".join(slots)
    if len(header) + len(body) > PAGE_SIZE:
        raise FormatError("too many slots for one NVS page")
    return (header + body).ljust(PAGE_SIZE, b"\xFF")
