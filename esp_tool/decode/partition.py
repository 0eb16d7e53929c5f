# decode/partition.py
"""
Partition table at 0x8000.

Each entry is 32 bytes:

    +0  magic   u16 BE   0xAA50
    +2  type    u8       0x00 app / 0x01 data
    +3  subtype u8
    +4  offset  u32 LE
    +8  size    u32 LE
    +12 name    16 bytes, NUL padded
    +28 flags   u32 LE

The table ends at the first stride whose magic is 0xFFFF or 0x0000. Strides with
any other foreign magic are skipped (old/odd tables have stray bytes in between,
e.g. the MD5 record 0xEBEB).
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..errors import BoundsError, FormatError
from . import fields

logger = logging.getLogger(__name__)

ENTRY_SIZE = 32
NAME_LEN = 16
PARTITION_MAGIC = 0xAA50
END_MARKERS = (0xFFFF, 0x0000)

TYPE_APP = 0x00
TYPE_DATA = 0x01

TYPE_NAMES = {
    TYPE_APP: "app",
    TYPE_DATA: "data",
}

APP_SUBTYPES = {
    0x00: "factory",
    0x10: "ota_0",
    0x11: "ota_1",
    0x12: "ota_2",
    0x13: "ota_3",
    0x20: "test",
}

DATA_SUBTYPES = {
    0x00: "ota",
    0x01: "phy",
    0x02: "nvs",
    0x03: "coredump",
    0x04: "nvs_keys",
    0x05: "efuse",
    0x80: "esphttpd",
    0x81: "fat",
    0x82: "spiffs",
}

FILESYSTEM_SUBTYPES = ("spiffs", "fat")


def type_name(ptype: int) -> str:
    return TYPE_NAMES.get(ptype, f"0x{ptype:x}")


def subtype_name(ptype: int, subtype: int) -> str:
    if ptype == TYPE_APP:
        table = APP_SUBTYPES
    elif ptype == TYPE_DATA:
        table = DATA_SUBTYPES
    else:
        table = {}
    return table.get(subtype, f"0x{subtype:x}")


@dataclass(frozen=True)
class PartitionEntry:
    magic: int
    type: int
    subtype: int
    offset: int
    size: int
    name: str
    flags: int

    @property
    def type_name(self) -> str:
        return type_name(self.type)

    @property
    def subtype_name(self) -> str:
        return subtype_name(self.type, self.subtype)

    @property
    def end(self) -> int:
        return self.offset + self.size

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & 0x01)


def _decode_entry(data: bytes, pos: int) -> PartitionEntry:
    return PartitionEntry(
        magic=fields.u16be(data, pos),
        type=fields.u8(data, pos + 2),
        subtype=fields.u8(data, pos + 3),
        offset=fields.u32le(data, pos + 4),
        size=fields.u32le(data, pos + 8),
        name=fields.cstring(data, pos + 12, NAME_LEN),
        flags=fields.u32le(data, pos + 28),
    )


def decode(data: bytes) -> List[PartitionEntry]:
    """
    Decode a raw partition table dump into entries in on-flash order.

    Raises FormatError when the first entry's magic is not 0xAA50 or an entry is
    cut off by the end of the buffer. Overlapping entries are returned as they are.
    """
    try:
        first = fields.u16be(data, 0)
    except BoundsError as e:
        raise FormatError(f"partition table too short: {e}") from e
    if first != PARTITION_MAGIC:
        raise FormatError(f"bad magic 0x{first:04X} (expected 0x{PARTITION_MAGIC:04X})")

    entries: List[PartitionEntry] = []
    for pos in range(0, len(data), ENTRY_SIZE):
        try:
            magic = fields.u16be(data, pos)
            if magic in END_MARKERS:
                break
            if magic != PARTITION_MAGIC:
                continue
            entries.append(_decode_entry(data, pos))
        except BoundsError as e:
            raise FormatError(f"truncated partition entry at 0x{pos:X}: {e}") from e

    logger.debug("partition table: %d entries", len(entries))
    return entries


def encode_entry(entry: PartitionEntry) -> bytes:
    name = entry.name.encode("latin-1")
    if len(name) > NAME_LEN:
        raise FormatError(f"partition name longer than {NAME_LEN} bytes: {entry.name!r}")
    return (
        struct.pack(">H", entry.magic)
        + struct.pack("<BBII", entry.type, entry.subtype, entry.offset, entry.size)
        + name.ljust(NAME_LEN, b"\x00")
        + struct.pack("<I", entry.flags)
    )


def encode(entries: Iterable[PartitionEntry], size: int = 0xC00) -> bytes:
    """Build a table image padded with 0xFF (erased flash) up to size bytes."""
    blob = b"".join(encode_entry(e) for e in entries)
    if len(blob) > size:
        raise FormatError(f"{len(blob)} bytes of entries do not fit into {size}")
    return blob + b"\xFF" * (size - len(blob))


def make_entry(name: str, ptype: int, subtype: int, offset: int, size: int, flags: int = 0) -> PartitionEntry:
    return PartitionEntry(PARTITION_MAGIC, ptype, subtype, offset, size, name, flags)


# ---- lookups used by NVS / filesystem readers ----
def find_partition(table: Sequence[PartitionEntry], type_: str, subtypes: Iterable[str]) -> Optional[PartitionEntry]:
    wanted = set(subtypes)
    for p in table:
        if p.type_name == type_ and p.subtype_name in wanted:
            return p
    return None


def nvs_partition(table: Sequence[PartitionEntry]) -> Optional[PartitionEntry]:
    return find_partition(table, "data", ("nvs",))


def filesystem_partition(table: Sequence[PartitionEntry]) -> Optional[PartitionEntry]:
    return find_partition(table, "data", FILESYSTEM_SUBTYPES)
