# decode/export.py
from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable, List, Sequence

from .filesystem import FileCandidate
from .nvs import NVSEntry
from .partition import PartitionEntry

PARTITION_FIELDS = ["magic", "type", "subtype", "offset", "size", "name", "flags"]
NVS_FIELDS = ["namespaceIndex", "type", "key", "value", "span", "chunkIndex", "crc32"]
FILE_FIELDS = ["name", "size", "confidence", "type", "sizeHuman"]


def format_hex(value: int) -> str:
    return f"0x{value:06X}"


def format_bytes(n: int, decimals: int = 2) -> str:
    """1536 -> '1.5 KB'; 0 -> '0 Bytes'."""
    if n == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    while i < len(units) - 1 and n >= 1024 ** (i + 1):
        i += 1
    value = round(n / 1024 ** i, max(0, decimals))
    return f"{value:g} {units[i]}"


def partition_rows(entries: Iterable[PartitionEntry]) -> List[list]:
    return [
        [f"0x{p.magic:04X}", p.type_name, p.subtype_name, format_hex(p.offset),
         format_hex(p.size), p.name, f"0x{p.flags:x}"]
        for p in entries
    ]


def nvs_rows(entries: Iterable[NVSEntry]) -> List[list]:
    return [
        [e.namespace_index, e.type_name, e.key, e.value_text, e.span, e.chunk_index, f"0x{e.crc32:08X}"]
        for e in entries
    ]


def file_rows(files: Iterable[FileCandidate]) -> List[list]:
    return [[f.name, f.size, f.confidence.value, f.type, format_bytes(f.size)] for f in files]


def to_csv(header: Sequence[str], rows: Iterable[Sequence]) -> str:
    # csv quotes only the cells holding a delimiter, quote or newline
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(header)
    w.writerows(rows)
    return buf.getvalue()


def partitions_csv(entries: Iterable[PartitionEntry]) -> str:
    return to_csv(PARTITION_FIELDS, partition_rows(entries))


def nvs_csv(entries: Iterable[NVSEntry]) -> str:
    return to_csv(NVS_FIELDS, nvs_rows(entries))


def files_csv(files: Iterable[FileCandidate]) -> str:
    return to_csv(FILE_FIELDS, file_rows(files))


def write_text(path: Path, text: str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
