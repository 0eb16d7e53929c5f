# gui/record_model.py
from __future__ import annotations
from PySide6.QtCore import QAbstractTableModel, Qt, QModelIndex
from typing import List, Sequence


class RecordTableModel(QAbstractTableModel):
    """Rows of already formatted cells under fixed headers (partitions, NVS, files)."""

    def __init__(self, headers: Sequence[str], rows: Sequence[Sequence] = ()):
        super().__init__()
        self._headers = list(headers)
        self._rows: List[list] = [list(r) for r in rows]

    def set_rows(self, rows: Sequence[Sequence]):
        self.beginResetModel()
        self._rows = [list(r) for r in rows]
        self.endResetModel()

    def rows(self) -> List[list]:
        return [list(r) for r in self._rows]

    def rowCount(self, parent=QModelIndex()) -> int:
        if parent.isValid(): return 0
        return len(self._rows)

    def columnCount(self, parent=QModelIndex()) -> int:
        if parent.isValid(): return 0
        return len(self._headers)

    def data(self, index, role=Qt.DisplayRole):
        if not index.isValid() or role != Qt.DisplayRole:
            return None
        row = self._rows[index.row()]
        if index.column() >= len(row):
            return None
        return str(row[index.column()])

    def headerData(self, section, orientation, role=Qt.DisplayRole):
        if role != Qt.DisplayRole: return None
        if orientation == Qt.Horizontal:
            return self._headers[section] if section < len(self._headers) else None
        return str(section + 1)
