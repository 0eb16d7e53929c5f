# flash/io.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Tuple

from ..config import DEFAULT_BLOCK_SIZE, FS_SCAN_LIMIT, PARTITION_TABLE_OFFSET, PARTITION_TABLE_SIZE
from ..decode import filesystem, nvs, partition
from ..errors import FormatError, TransportError
from .layout import FlashRegion
from .simulate import SimFlash

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[int, bytes], None]
ProgressCallback = Callable[[int], None]


# ---- Transport protocol ----
class MemoryBackend(Protocol):
    def read_block(self, address: int, size: int) -> bytes: ...
    def write_block(self, address: int, data: bytes) -> None: ...
    def erase_all(self) -> None: ...
    def info(self) -> dict: ...


# ---- Simulated chip ----
@dataclass
class SimBackend:
    path: Path

    def __post_init__(self):
        self.flash = SimFlash(self.path)

    def read_block(self, address: int, size: int) -> bytes:
        return self.flash.read(address, size)

    def write_block(self, address: int, data: bytes) -> None:
        self.flash.write(address, data)

    def erase_all(self) -> None:
        self.flash.erase_all()

    def info(self) -> dict:
        return self.flash.info()

    def close(self):
        pass


# ---- Real chip over the ROM loader ----
@dataclass
class RealBackend:
    """
    A connected ESPLoaderLink. Writing and erasing are refused unless
    allow_write is set, so read-only commands can never touch the chip.
    """
    link: object
    allow_write: bool = False

    def read_block(self, address: int, size: int) -> bytes:
        return self.link.read_bytes(address, size)

    def write_block(self, address: int, data: bytes) -> None:
        if not self.allow_write:
            raise PermissionError("writing to the chip is disabled; pass --force to allow it")
        self.link.write_bytes(address, data)

    def erase_all(self) -> None:
        if not self.allow_write:
            raise PermissionError("erasing the chip is disabled; pass --force to allow it")
        self.link.erase_all()

    def info(self) -> dict:
        return {
            "chip": self.link.chip_description(),
            "flash_size": self.link.flash_size(),
            "port": self.link.port,
        }

    def close(self):
        self.link.close()


# ---- Chunked copy ----
def iter_chunks(size: int, block_size: int) -> Iterable[Tuple[int, int]]:
    """(relative offset, length) of each block covering size bytes."""
    if block_size <= 0:
        raise ValueError("block size must be positive")
    for rel in range(0, size, block_size):
        yield rel, min(block_size, size - rel)


def percent(done: int, total: int) -> int:
    """round(100 * done / total), halves rounded up."""
    if total <= 0:
        return 100
    return (200 * done + total) // (2 * total)


class ChunkedFlashCopier:
    """
    Moves a flash region in fixed blocks, strictly one after another in
    increasing address order. A failed block aborts the whole copy; the error
    goes to the caller unchanged and no partial buffer is handed out.
    """

    def __init__(self, backend: MemoryBackend, block_size: int = DEFAULT_BLOCK_SIZE):
        if block_size <= 0:
            raise ValueError("block size must be positive")
        self.backend = backend
        self.block_size = block_size

    def copy_range(
        self,
        region: FlashRegion,
        on_chunk: Optional[ChunkCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        buf = bytearray()
        for rel, length in iter_chunks(region.size, self.block_size):
            try:
                block = self.backend.read_block(region.offset + rel, length)
            except Exception:
                logger.error("read failed at 0x%X (+%d), %d of %d bytes done",
                             region.offset + rel, length, rel, region.size)
                raise
            if len(block) != length:
                raise TransportError(f"short read at 0x{region.offset + rel:X}: {len(block)} of {length} bytes")
            buf.extend(block)
            if on_chunk:
                on_chunk(rel, block)
            if on_progress:
                on_progress(percent(rel + length, region.size))
        if region.size == 0 and on_progress:
            on_progress(100)
        return bytes(buf)

    def write_range(
        self,
        region: FlashRegion,
        data: bytes,
        on_chunk: Optional[ChunkCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        if len(data) != region.size:
            raise ValueError(f"{len(data)} bytes of data for a region of {region.size} bytes")
        for rel, length in iter_chunks(region.size, self.block_size):
            part = data[rel:rel + length]
            try:
                self.backend.write_block(region.offset + rel, part)
            except Exception:
                logger.error("write failed at 0x%X (+%d), %d of %d bytes done",
                             region.offset + rel, length, rel, region.size)
                raise
            if on_chunk:
                on_chunk(rel, part)
            if on_progress:
                on_progress(percent(rel + length, region.size))
        if region.size == 0 and on_progress:
            on_progress(100)
        return region.size


def copy_range(
    backend: MemoryBackend,
    region: FlashRegion,
    block_size: int = DEFAULT_BLOCK_SIZE,
    on_chunk: Optional[ChunkCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> bytes:
    return ChunkedFlashCopier(backend, block_size).copy_range(region, on_chunk, on_progress)


# ---- Structures read from the chip ----
def read_partition_table(
    backend: MemoryBackend,
    offset: int = PARTITION_TABLE_OFFSET,
    size: int = PARTITION_TABLE_SIZE,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> List[partition.PartitionEntry]:
    raw = copy_range(backend, FlashRegion(offset, size), block_size)
    return partition.decode(raw)


def read_nvs(
    backend: MemoryBackend,
    table: List[partition.PartitionEntry],
    block_size: int = DEFAULT_BLOCK_SIZE,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[partition.PartitionEntry, List[nvs.NVSEntry]]:
    part = partition.nvs_partition(table)
    if part is None:
        raise FormatError("no nvs partition in the partition table")
    raw = copy_range(backend, FlashRegion(part.offset, part.size), block_size, on_progress=on_progress)
    return part, nvs.decode(raw)


def scan_filesystem(
    backend: MemoryBackend,
    table: List[partition.PartitionEntry],
    limit: int = FS_SCAN_LIMIT,
    block_size: int = DEFAULT_BLOCK_SIZE,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[partition.PartitionEntry, List[filesystem.FileCandidate]]:
    """Scan only the first limit bytes of the spiffs/fat partition (file headers live up front)."""
    part = partition.filesystem_partition(table)
    if part is None:
        raise FormatError("no spiffs/fat partition in the partition table")
    size = min(limit, part.size) if limit else part.size
    raw = copy_range(backend, FlashRegion(part.offset, size), block_size, on_progress=on_progress)
    return part, filesystem.scan(raw)


# ---- Backup / restore ----
def backup_name(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"esp_backup_{when.strftime('%Y-%m-%d')}.bin"


def backup_flash(
    backend: MemoryBackend,
    out_path: Path,
    offset: int = 0,
    size: Optional[int] = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
    on_progress: Optional[ProgressCallback] = None,
) -> dict:
    """
    Dump [offset, offset + size) into out_path and write the metadata sidecar
    next to it (same name, .json). Without size the whole chip is read.
    """
    out_path = Path(out_path)
    info = backend.info()
    flash_size = int(info.get("flash_size", 0))
    if size is None:
        size = flash_size - offset
    region = FlashRegion(offset, size)

    data = copy_range(backend, region, block_size, on_progress=on_progress)

    meta = {
        "chipType": str(info.get("chip", "unknown")),
        "flashSize": flash_size,
        "backupDate": datetime.now(timezone.utc).isoformat(),
        "flashAddress": f"0x{offset:06X}",
        "size": size,
        "partial": not (offset == 0 and size == flash_size),
    }
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(data)
    meta_path = out_path.with_suffix(".json")
    meta_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")
    logger.info("backup of 0x%X+0x%X written to %s", offset, size, out_path)
    return {"bytes": len(data), "out": str(out_path), "meta": str(meta_path), "metadata": meta}


def load_backup_metadata(bin_path: Path) -> Optional[dict]:
    """Sidecar of a backup, or None when it is missing or unreadable."""
    meta_path = Path(bin_path).with_suffix(".json")
    if not meta_path.exists():
        return None
    try:
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
    except (ValueError, OSError) as e:
        logger.warning("ignoring unreadable backup metadata %s: %s", meta_path, e)
        return None
    return meta if isinstance(meta, dict) else None


def backup_offset(bin_path: Path) -> int:
    """Flash address recorded in the sidecar, 0 when there is none."""
    meta = load_backup_metadata(bin_path) or {}
    try:
        return int(str(meta.get("flashAddress", "0x0")), 16)
    except ValueError:
        return 0


def restore_flash(
    backend: MemoryBackend,
    in_path: Path,
    offset: int = 0,
    erase: bool = True,
    block_size: int = DEFAULT_BLOCK_SIZE,
    on_progress: Optional[ProgressCallback] = None,
) -> dict:
    """
    Write a raw image back at offset. The whole chip is erased first only when
    erase is set and the image covers the entire flash; a partial image replaces
    its own range and leaves the rest of the chip alone.
    """
    in_path = Path(in_path)
    data = in_path.read_bytes()
    region = FlashRegion(offset, len(data))
    full = offset == 0 and len(data) == int(backend.info().get("flash_size", -1))
    erased = erase and full
    if erased:
        logger.info("erasing flash before restore")
        backend.erase_all()
    elif erase:
        logger.info("partial image at 0x%X+0x%X, chip erase skipped", offset, len(data))
    written = ChunkedFlashCopier(backend, block_size).write_range(region, data, on_progress=on_progress)
    logger.info("restored %d bytes from %s at 0x%X", written, in_path, offset)
    return {"bytes": written, "source": str(in_path), "offset": offset, "erased": erased}
