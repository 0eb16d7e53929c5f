# flash/layout.py
from __future__ import annotations

from dataclasses import dataclass

from ..errors import BoundsError

U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class FlashRegion:
    """Half-open byte range [offset, offset + size) of the flash address space."""
    offset: int
    size: int

    def __post_init__(self):
        if not (0 <= self.offset <= U32_MAX and 0 <= self.size <= U32_MAX):
            raise BoundsError(f"region 0x{self.offset:X}+0x{self.size:X} is not a u32 range")
        if self.offset + self.size > U32_MAX + 1:
            raise BoundsError(f"region 0x{self.offset:X}+0x{self.size:X} wraps the address space")

    @property
    def end(self) -> int:
        return self.offset + self.size

    def contains(self, offset: int, length: int) -> bool:
        return length >= 0 and self.offset <= offset and offset + length <= self.end

    def check(self, offset: int, length: int) -> None:
        if not self.contains(offset, length):
            raise BoundsError(
                f"access 0x{offset:X}+0x{length:X} is outside region 0x{self.offset:X}..0x{self.end:X}"
            )

    def sub(self, relative: int, length: int) -> "FlashRegion":
        self.check(self.offset + relative, length)
        return FlashRegion(self.offset + relative, length)


# JEDEC capacity byte (bits 16..23 of the flash id) -> bytes
FLASH_SIZES = {
    0x12: 256 * 1024,
    0x13: 512 * 1024,
    0x14: 1024 * 1024,
    0x15: 2048 * 1024,
    0x16: 4096 * 1024,
    0x17: 8192 * 1024,
    0x18: 16384 * 1024,
}
DEFAULT_FLASH_SIZE = 4 * 1024 * 1024


def flash_size_from_id(flash_id: int) -> int:
    return FLASH_SIZES.get((flash_id >> 16) & 0xFF, DEFAULT_FLASH_SIZE)
