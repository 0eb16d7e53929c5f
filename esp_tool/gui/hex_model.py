# gui/hex_model.py
from __future__ import annotations
from PySide6.QtCore import QAbstractTableModel, Qt, QModelIndex
from typing import List, Sequence

BYTES_PER_ROW = 16


class HexTableModel(QAbstractTableModel):
    """
    Read-only view of a flash dump: 16 bytes per row + ASCII column.
    Row headers show absolute flash addresses (base + offset); bytes that
    belong to a marked region get a soft background.
    """
    def __init__(self, data: bytes | bytearray = b"", base: int = 0):
        super().__init__()
        self._buf = bytes(data)
        self._base = base
        self._marks: List[tuple] = []   # (start, end) relative to the buffer

    # ---------- public API ----------
    def load_bytes(self, data: bytes, base: int = 0):
        self.beginResetModel()
        self._buf = bytes(data)
        self._base = base
        self._marks = []
        self.endResetModel()

    def bytes(self) -> bytes:
        return self._buf

    @property
    def base(self) -> int:
        return self._base

    def mark_regions(self, regions: Sequence[tuple]):
        """regions: (absolute offset, size) pairs, e.g. partitions."""
        self._marks = [(off - self._base, off - self._base + size) for off, size in regions]
        if self.rowCount():
            self.dataChanged.emit(self.index(0, 0),
                                  self.index(self.rowCount() - 1, BYTES_PER_ROW - 1),
                                  [Qt.BackgroundRole])

    # search: ascii_mode=True matches against the printable projection
    def find_next(self, pattern: bytes, start: int = 0, ascii_mode: bool = False) -> int:
        if not pattern:
            return -1
        data = self._buf
        if ascii_mode:
            trans = bytes(ch if 32 <= ch <= 126 else ord('.') for ch in data)
            pat = bytes(ch if 32 <= ch <= 126 else ord('.') for ch in pattern)
            return trans.find(pat, start)
        return data.find(pattern, start)

    def offset_of_address(self, address: int) -> int:
        return address - self._base

    # ---------- Qt model ----------
    def rowCount(self, parent=QModelIndex()) -> int:
        if parent.isValid(): return 0
        return (len(self._buf) + BYTES_PER_ROW - 1) // BYTES_PER_ROW

    def columnCount(self, parent=QModelIndex()) -> int:
        return BYTES_PER_ROW + 1  # + ASCII column

    def index_to_offset(self, row: int, col: int) -> int:
        return row * BYTES_PER_ROW + col

    def data(self, index, role=Qt.DisplayRole):
        if not index.isValid(): return None
        r, c = index.row(), index.column()

        if c == BYTES_PER_ROW:
            if role == Qt.DisplayRole:
                start = r * BYTES_PER_ROW
                chunk = self._buf[start:start + BYTES_PER_ROW]
                return "".join(chr(b) if 32 <= b <= 126 else "." for b in chunk)
            return None

        i = self.index_to_offset(r, c)
        if i >= len(self._buf):
            return None

        if role == Qt.DisplayRole:
            return f"{self._buf[i]:02X}"

        if role == Qt.TextAlignmentRole:
            return Qt.AlignCenter

        if role == Qt.BackgroundRole and any(s <= i < e for s, e in self._marks):
            from PySide6.QtGui import QBrush, QColor
            return QBrush(QColor(40, 70, 110))

        return None

    def headerData(self, section, orientation, role=Qt.DisplayRole):
        if role != Qt.DisplayRole: return None
        if orientation == Qt.Horizontal:
            if section < BYTES_PER_ROW: return f"+{section:02X}"
            return "ASCII"
        return f"{self._base + section * BYTES_PER_ROW:08X}"

    def flags(self, index):
        if not index.isValid(): return Qt.NoItemFlags
        return Qt.ItemIsEnabled | Qt.ItemIsSelectable
