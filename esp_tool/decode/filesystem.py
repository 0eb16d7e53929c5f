# decode/filesystem.py
"""
Heuristic file finder for SPIFFS/LittleFS-like data partitions.

No index is parsed. Every offset is tried as the start of an object header laid
out as a 32-byte NUL padded path followed by a u32 LE size; whatever looks like a
plausible path with a plausible size becomes a candidate with a confidence grade.
Results are a display listing, not on-flash order.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

NAME_FIELD = 32
TRAILER = 8
LOOKAHEAD = NAME_FIELD + TRAILER
MIN_NAME_LEN = 3
MAX_FILE_SIZE = 10 * 1024 * 1024

_EXT_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_BAD_CHARS_RE = re.compile(r'[<>:"|?*\x00-\x1F]')

COMMON_EXTENSIONS = (".html", ".css", ".js", ".json", ".txt", ".ico", ".png", ".jpg", ".gif", ".svg")

FILE_TYPES = {
    "html": "HTML",
    "htm": "HTML",
    "css": "CSS",
    "js": "JavaScript",
    "json": "JSON",
    "txt": "Text",
    "ico": "Icon",
    "png": "Image",
    "jpg": "Image",
    "jpeg": "Image",
    "gif": "Image",
    "svg": "SVG",
    "xml": "XML",
    "pdf": "PDF",
    "zip": "Archive",
}
UNKNOWN_TYPE = "Unknown"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {Confidence.HIGH: 0, Confidence.MEDIUM: 1, Confidence.LOW: 2}


@dataclass(frozen=True)
class FileCandidate:
    name: str
    size: int
    confidence: Confidence
    type: str


def file_type(name: str) -> str:
    ext = name.rsplit(".", 1)[-1].lower()
    return FILE_TYPES.get(ext, UNKNOWN_TYPE)


def grade(name: str, size: int) -> Confidence:
    score = 0
    if name.endswith(COMMON_EXTENSIONS):
        score += 3
    if 10 <= size <= 1024 * 1024:
        score += 2
    if name.count("/") >= 2:
        score += 1
    if score >= 5:
        return Confidence.HIGH
    if score >= 3:
        return Confidence.MEDIUM
    return Confidence.LOW


def _read_name(data: bytes, offset: int) -> Optional[str]:
    chars = []
    for b in data[offset:offset + NAME_FIELD]:
        if b == 0:
            break
        if not 0x20 <= b <= 0x7E:
            return None
        chars.append(chr(b))
    return "".join(chars) or None


def looks_like_path(name: str) -> bool:
    if len(name) < MIN_NAME_LEN or not name.startswith("/"):
        return False
    if not _EXT_RE.search(name) and name.count("/") < 2:
        return False
    return not _BAD_CHARS_RE.search(name)


def try_extract_candidate(data: bytes, offset: int) -> Optional[FileCandidate]:
    """Candidate whose name field starts at offset, or None."""
    if offset < 0 or offset + NAME_FIELD + 4 > len(data):
        return None
    name = _read_name(data, offset)
    if name is None or not looks_like_path(name):
        return None
    size = int.from_bytes(data[offset + NAME_FIELD:offset + NAME_FIELD + 4], "little")
    if not 0 < size < MAX_FILE_SIZE:
        return None
    return FileCandidate(name=name, size=size, confidence=grade(name, size), type=file_type(name))


def iter_candidates(data: bytes) -> Iterator[Tuple[int, FileCandidate]]:
    """
    Lazily yield (offset, candidate) for every matching offset, duplicates
    included. Stopping the iteration aborts the scan.
    """
    for i in range(0, len(data) - LOOKAHEAD):
        found = try_extract_candidate(data, i)
        if found is not None:
            yield i, found


def scan(data: bytes) -> List[FileCandidate]:
    """Deduplicated candidates (lowest offset wins), best confidence first, then by name."""
    seen: Dict[str, FileCandidate] = {}
    for _, cand in iter_candidates(data):
        seen.setdefault(cand.name, cand)
    result = sorted(seen.values(), key=lambda c: (c.confidence.rank, c.name))
    logger.debug("filesystem scan: %d candidates in %d bytes", len(result), len(data))
    return result
