# flash/simulate.py
import struct
import zlib
from pathlib import Path

from ..decode import nvs, partition
from ..errors import BoundsError
from .layout import FlashRegion

SIM_FLASH_SIZE = 2 * 1024 * 1024
SIM_CHIP = "ESP32 (simulated)"

# nvs / phy_init / factory / spiffs, the stock single-app layout plus a filesystem
DEMO_PARTITIONS = [
    partition.make_entry("nvs", partition.TYPE_DATA, 0x02, 0x9000, 0x6000),
    partition.make_entry("phy_init", partition.TYPE_DATA, 0x01, 0xF000, 0x1000),
    partition.make_entry("factory", partition.TYPE_APP, 0x00, 0x10000, 0x100000),
    partition.make_entry("spiffs", partition.TYPE_DATA, 0x82, 0x110000, 0xF0000),
]

DEMO_FILES = [
    ("/index.html", 1024),
    ("/css/style.css", 2048),
    ("/js/app.js", 5120),
    ("/config.json", 312),
    ("/favicon.ico", 4286),
]


def _demo_nvs() -> bytes:
    T = nvs.NVSType
    slots = [
        nvs.encode_slot(0, T.U8, "storage", 1),
        nvs.encode_slot(0, T.U8, "wifi", 2),
        nvs.encode_slot(1, T.U32, "boot_count", 42),
        nvs.encode_slot(1, T.I16, "temp_offset", -3),
        nvs.encode_slot(1, T.String, "device_name", "esp-demo"),
        nvs.encode_slot(2, T.String, "ssid", "HomeNet"),
        nvs.encode_slot(2, T.Blob, "cal", b"\xde\xad\xbe\xef\x01\x02\x03\x04"),
    ]
    return nvs.encode_page(slots)


def _demo_spiffs() -> bytes:
    out = bytearray()
    for name, size in DEMO_FILES:
        record = name.encode("ascii").ljust(32, b"\x00") + struct.pack("<I", size)
        out += record.ljust(256, b"\xFF")
    return bytes(out)


def build_demo_image(size: int = SIM_FLASH_SIZE) -> bytes:
    """0xFF-filled image with a partition table, one NVS page and a few file records."""
    image = bytearray(b"\xFF" * size)

    def put(offset: int, blob: bytes):
        if offset + len(blob) > size:
            raise BoundsError(f"demo blob at 0x{offset:X} does not fit into 0x{size:X}")
        image[offset:offset + len(blob)] = blob

    put(0x8000, partition.encode(DEMO_PARTITIONS))
    put(DEMO_PARTITIONS[0].offset, _demo_nvs())
    put(DEMO_PARTITIONS[3].offset, _demo_spiffs())
    return bytes(image)


class SimFlash:
    """
    File-backed stand-in for a real chip:
    - the image lives in a .bin file (created with demo content on first use)
    - byte-addressed reads/writes with bounds checks
    - erase_all fills with 0xFF
    """
    def __init__(self, store: Path, size: int = SIM_FLASH_SIZE):
        self.store = Path(store)
        self.store.parent.mkdir(parents=True, exist_ok=True)
        if not self.store.exists():
            self.store.write_bytes(build_demo_image(size))
        self.region = FlashRegion(0, self.store.stat().st_size)

    def read(self, addr: int, size: int) -> bytes:
        self.region.check(addr, size)
        with open(self.store, "rb") as f:
            f.seek(addr)
            return f.read(size)

    def write(self, addr: int, chunk: bytes):
        self.region.check(addr, len(chunk))
        with open(self.store, "r+b") as f:
            f.seek(addr)
            f.write(chunk)

    def erase_all(self):
        self.store.write_bytes(b"\xFF" * self.region.size)

    def crc32(self) -> int:
        return zlib.crc32(self.store.read_bytes()) & 0xFFFFFFFF

    def info(self) -> dict:
        return {
            "chip": SIM_CHIP,
            "flash_size": self.region.size,
            "crc32": f"0x{self.crc32():08X}",
            "store": str(self.store),
        }
