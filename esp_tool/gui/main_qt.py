# gui/main_qt.py
from __future__ import annotations
import json, zlib, sys
from pathlib import Path

from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QTabWidget, QVBoxLayout, QHBoxLayout,
    QPushButton, QLabel, QFileDialog, QComboBox, QCheckBox, QMessageBox,
    QSpinBox, QLineEdit, QStatusBar, QGroupBox, QTextEdit, QTableView, QProgressDialog,
    QHeaderView,
)
from PySide6.QtCore import Qt
from PySide6.QtGui import QFontDatabase, QPalette, QColor

# ---- package imports (work both frozen and from sources)
try:
    from ..config import SIM_IMAGE, DEFAULT_BAUD, DEFAULT_BLOCK_SIZE, FS_SCAN_LIMIT
    from ..decode import export, nvs as nvs_mod
    from ..errors import FlashToolError
    from ..esp_transport.esp_loader import ESPLoaderLink, list_ports
    from ..flash.io import (SimBackend, RealBackend, backup_flash, backup_name, backup_offset, load_backup_metadata,
                            restore_flash, read_partition_table, read_nvs, scan_filesystem)
    from .hex_model import HexTableModel, BYTES_PER_ROW
    from .record_model import RecordTableModel
except ImportError:
    from config import SIM_IMAGE, DEFAULT_BAUD, DEFAULT_BLOCK_SIZE, FS_SCAN_LIMIT
    from decode import export, nvs as nvs_mod
    from errors import FlashToolError
    from esp_transport.esp_loader import ESPLoaderLink, list_ports
    from flash.io import (SimBackend, RealBackend, backup_flash, backup_name, backup_offset, load_backup_metadata,
                          restore_flash, read_partition_table, read_nvs, scan_filesystem)
    from gui.hex_model import HexTableModel, BYTES_PER_ROW
    from gui.record_model import RecordTableModel


# ---------- theme ----------
def setup_theme(app):
    app.setStyle("Fusion")
    pal = QPalette()
    pal.setColor(QPalette.Window, QColor(30, 32, 36))
    pal.setColor(QPalette.WindowText, QColor(220, 220, 220))
    pal.setColor(QPalette.Base, QColor(30, 30, 30))
    pal.setColor(QPalette.AlternateBase, QColor(45, 45, 45))
    pal.setColor(QPalette.Text, QColor(220, 220, 220))
    pal.setColor(QPalette.Button, QColor(45, 45, 45))
    pal.setColor(QPalette.ButtonText, QColor(220, 220, 220))
    pal.setColor(QPalette.Highlight, QColor(77, 163, 255))
    pal.setColor(QPalette.HighlightedText, QColor(255, 255, 255))
    app.setPalette(pal)

    app.setStyleSheet("""
        QWidget{font-size:13px; color:#dcdcdc;}
        QGroupBox{margin-top:1ex;}
        QGroupBox::title{color:#9aa3ad;}
        QPushButton{background-color:#2d2f33; color:#ffffff; border:1px solid #3c3f43; border-radius:4px; padding:4px;}
        QPushButton:hover{background-color:#3c3f43;}
        QPushButton:disabled{color:#6b6f75;}
        QTextEdit,QLineEdit{background:#1e2024; color:#ffffff;}
        QTableView { selection-background-color:#4DA3FF; selection-color:#ffffff; }
    """)


def _table(model) -> QTableView:
    view = QTableView()
    view.setModel(model)
    view.setAlternatingRowColors(True)
    view.setSelectionBehavior(QTableView.SelectionBehavior.SelectRows)
    view.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
    return view


# ---------- MainWindow ----------
class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("ESP Flash Tool")
        self.resize(1200, 780)
        self.setStatusBar(QStatusBar())

        # results live here and are handed to the next step explicitly
        self.partitions = []
        self.nvs_entries = []
        self.file_list = []

        central = QWidget(); root = QVBoxLayout(central)
        root.addWidget(self._build_connection())
        self.tabs = QTabWidget(); root.addWidget(self.tabs, 1)
        self.setCentralWidget(central)

        self._build_partitions_tab()
        self._build_nvs_tab()
        self._build_files_tab()
        self._build_backup_tab()
        self._build_hex_tab()

        self.log = QTextEdit(); self.log.setReadOnly(True); self.log.setMaximumHeight(140)
        root.addWidget(self.log)

    # ----------- connection bar -----------
    def _build_connection(self):
        grp = QGroupBox("Connection")
        lay = QHBoxLayout(grp)
        self.cb_ports = QComboBox()
        btn_refresh = QPushButton("Refresh ports")
        self.chk_demo = QCheckBox("Demo"); self.chk_demo.setChecked(True)
        self.sp_baud = QSpinBox(); self.sp_baud.setRange(9600, 2000000); self.sp_baud.setValue(DEFAULT_BAUD)
        self.sp_block = QSpinBox(); self.sp_block.setRange(256, 0x10000); self.sp_block.setSingleStep(0x400)
        self.sp_block.setValue(DEFAULT_BLOCK_SIZE)
        btn_info = QPushButton("Chip info")
        lay.addWidget(QLabel("Port:")); lay.addWidget(self.cb_ports, 1); lay.addWidget(btn_refresh)
        lay.addWidget(QLabel("Baud:")); lay.addWidget(self.sp_baud)
        lay.addWidget(QLabel("Block, bytes:")); lay.addWidget(self.sp_block)
        lay.addWidget(self.chk_demo); lay.addWidget(btn_info)
        btn_refresh.clicked.connect(self._refresh_ports)
        btn_info.clicked.connect(self._do_chip_info)
        self.chk_demo.toggled.connect(self._forget_device)
        self.cb_ports.currentIndexChanged.connect(self._forget_device)
        self._refresh_ports()
        return grp

    # ----------- partitions -----------
    def _build_partitions_tab(self):
        w = QWidget(); lay = QVBoxLayout(w)
        row = QHBoxLayout()
        btn_read = QPushButton("Read partition table")
        self.btn_part_csv = QPushButton("Export CSV…"); self.btn_part_csv.setEnabled(False)
        row.addWidget(btn_read); row.addWidget(self.btn_part_csv); row.addStretch(1)
        lay.addLayout(row)
        self.part_model = RecordTableModel(["Name", "Type", "SubType", "Offset", "Size", "Flags"])
        lay.addWidget(_table(self.part_model), 1)
        btn_read.clicked.connect(self._do_read_partitions)
        self.btn_part_csv.clicked.connect(
            lambda: self._export_csv("partition_table.csv", export.partitions_csv(self.partitions)))
        self.tabs.addTab(w, "Partition Table")

    # ----------- NVS -----------
    def _build_nvs_tab(self):
        w = QWidget(); lay = QVBoxLayout(w)
        row = QHBoxLayout()
        btn_read = QPushButton("Read NVS")
        self.btn_nvs_csv = QPushButton("Export CSV…"); self.btn_nvs_csv.setEnabled(False)
        row.addWidget(btn_read); row.addWidget(self.btn_nvs_csv); row.addStretch(1)
        lay.addLayout(row)
        self.nvs_model = RecordTableModel(["Namespace", "Key", "Type", "Value"])
        lay.addWidget(_table(self.nvs_model), 1)
        btn_read.clicked.connect(self._do_read_nvs)
        self.btn_nvs_csv.clicked.connect(
            lambda: self._export_csv("nvs_data.csv", export.nvs_csv(self.nvs_entries)))
        self.tabs.addTab(w, "NVS")

    # ----------- files -----------
    def _build_files_tab(self):
        w = QWidget(); lay = QVBoxLayout(w)
        row = QHBoxLayout()
        btn_scan = QPushButton("Scan file system")
        self.btn_fs_csv = QPushButton("Export CSV…"); self.btn_fs_csv.setEnabled(False)
        self.sp_limit = QSpinBox(); self.sp_limit.setRange(0, 16 * 1024 * 1024)
        self.sp_limit.setSingleStep(4096); self.sp_limit.setValue(FS_SCAN_LIMIT)
        self.lbl_fs = QLabel("0 files, 0 Bytes")
        row.addWidget(btn_scan); row.addWidget(QLabel("Scan bytes (0 = all):")); row.addWidget(self.sp_limit)
        row.addWidget(self.btn_fs_csv); row.addStretch(1); row.addWidget(self.lbl_fs)
        lay.addLayout(row)
        self.fs_model = RecordTableModel(["Name", "Size", "Type", "Confidence"])
        lay.addWidget(_table(self.fs_model), 1)
        btn_scan.clicked.connect(self._do_scan_files)
        self.btn_fs_csv.clicked.connect(
            lambda: self._export_csv("filesystem.csv", export.files_csv(self.file_list)))
        self.tabs.addTab(w, "File System")

    # ----------- backup / restore -----------
    def _build_backup_tab(self):
        w = QWidget(); lay = QVBoxLayout(w)

        grp_b = QGroupBox("Backup")
        lb = QHBoxLayout(grp_b)
        self.chk_partial = QCheckBox("Partial")
        self.ed_offset = QLineEdit("0x0"); self.ed_size = QLineEdit("0x100000")
        self.ed_offset.setEnabled(False); self.ed_size.setEnabled(False)
        self.chk_partial.toggled.connect(self.ed_offset.setEnabled)
        self.chk_partial.toggled.connect(self.ed_size.setEnabled)
        btn_backup = QPushButton("Backup flash…")
        for wdg in (self.chk_partial, QLabel("Offset:"), self.ed_offset, QLabel("Size:"), self.ed_size, btn_backup):
            lb.addWidget(wdg)

        grp_r = QGroupBox("Restore")
        lr = QVBoxLayout(grp_r)
        row = QHBoxLayout()
        btn_pick = QPushButton("Choose .bin…")
        self.chk_erase = QCheckBox("Erase chip first (full images)"); self.chk_erase.setChecked(True)
        self.btn_restore = QPushButton("Restore flash"); self.btn_restore.setEnabled(False)
        row.addWidget(btn_pick); row.addWidget(self.chk_erase); row.addWidget(self.btn_restore); row.addStretch(1)
        self.lbl_meta = QLabel("No file selected")
        lr.addLayout(row); lr.addWidget(self.lbl_meta)

        lay.addWidget(grp_b); lay.addWidget(grp_r); lay.addStretch(1)
        btn_backup.clicked.connect(self._do_backup)
        btn_pick.clicked.connect(self._pick_restore_file)
        self.btn_restore.clicked.connect(self._do_restore)
        self.restore_path: Path | None = None
        self.tabs.addTab(w, "Backup / Restore")

    # ----------- hex view -----------
    def _build_hex_tab(self):
        w = QWidget(); root = QVBoxLayout(w)
        controls = QHBoxLayout()
        btn_open = QPushButton("Open .bin")
        self.lbl_crc = QLabel("CRC32: -")
        self.ed_find = QLineEdit(); self.ed_find.setPlaceholderText("Find HEX ('AA 50') or ASCII")
        self.chk_ascii = QCheckBox("ASCII")
        btn_find = QPushButton("Find")
        self.ed_goto = QLineEdit(); self.ed_goto.setPlaceholderText("Go to flash address (hex)")
        btn_goto = QPushButton("Go")
        for wdg in (btn_open, self.lbl_crc, self.ed_find, self.chk_ascii, btn_find, self.ed_goto, btn_goto):
            controls.addWidget(wdg)
        root.addLayout(controls)

        self.table = QTableView()
        self.model = HexTableModel(b"")
        self.table.setModel(self.model)
        fixed = QFontDatabase.systemFont(QFontDatabase.FixedFont); fixed.setPointSize(12)
        self.table.setFont(fixed)
        self.table.verticalHeader().setDefaultSectionSize(22)
        self.table.setAlternatingRowColors(True)
        root.addWidget(self.table, 1)

        btn_open.clicked.connect(self._hex_open)
        btn_find.clicked.connect(self._hex_find)
        btn_goto.clicked.connect(self._hex_goto)
        self.page_hex = w
        self.tabs.addTab(w, "Hex View")

    # ---------- utils ----------
    def _log(self, html: str):
        if hasattr(self, "log"):
            self.log.append(html)
        self.statusBar().showMessage(self._strip(html), 3000)

    @staticmethod
    def _strip(html: str) -> str:
        import re
        return re.sub("<[^<]+?>", "", html)

    def _backend(self, allow_write: bool = False):
        if self.chk_demo.isChecked():
            return SimBackend(SIM_IMAGE)
        port = self.cb_ports.currentData() if self.cb_ports.count() else None
        if not port:
            raise FlashToolError("no serial port selected")
        link = ESPLoaderLink(port, self.sp_baud.value()).connect()
        return RealBackend(link=link, allow_write=allow_write)

    def _progress(self, label: str):
        prog = QProgressDialog(label, "Cancel", 0, 100, self)
        prog.setCancelButton(None)  # a started copy runs to the end
        prog.setWindowModality(Qt.WindowModal); prog.setMinimumDuration(0); prog.show()

        def step(pct: int):
            prog.setValue(pct)
            QApplication.processEvents()
        return prog, step

    def _run(self, title: str, fn, allow_write: bool = False):
        """Open a backend, run fn(backend), report errors in a dialog."""
        try:
            backend = self._backend(allow_write)
        except FlashToolError as e:
            QMessageBox.critical(self, title, str(e)); return None
        try:
            return fn(backend)
        except (FlashToolError, PermissionError, OSError) as e:
            self._log(f"<span style='color:#e06c75'>{title} failed: {e}</span>")
            QMessageBox.critical(self, title, str(e))
            return None
        finally:
            backend.close()

    def _export_csv(self, default_name: str, text: str):
        p, _ = QFileDialog.getSaveFileName(self, "Export CSV", default_name, "CSV (*.csv)")
        if not p: return
        export.write_text(Path(p), text)
        self._log(f"Saved <b>{p}</b>")

    # ---------- actions ----------
    def _refresh_ports(self):
        self.cb_ports.clear()
        for p in list_ports():
            self.cb_ports.addItem(f"{p.device} - {p.description}", p.device)
        self._log("<span style='color:#9aa3ad'>Ports refreshed.</span>")

    def _do_chip_info(self):
        info = self._run("Chip info", lambda b: b.info())
        if info:
            self._log("<b>Chip:</b><pre>" + json.dumps(info, ensure_ascii=False, indent=2) + "</pre>")

    def _forget_device(self, *_):
        # a cached partition table belongs to the chip it was read from
        self.partitions = []

    def _ensure_partitions(self, backend) -> list:
        if not self.partitions:
            self._show_partitions(read_partition_table(backend, block_size=self.sp_block.value()))
        return self.partitions

    def _show_partitions(self, table):
        self.partitions = table
        self.part_model.set_rows([
            [p.name or "unnamed", p.type_name, p.subtype_name, export.format_hex(p.offset),
             export.format_bytes(p.size), f"0x{p.flags:x}"] for p in table
        ])
        self.btn_part_csv.setEnabled(bool(table))

    def _do_read_partitions(self):
        table = self._run("Partition table", lambda b: read_partition_table(b, block_size=self.sp_block.value()))
        if table is None: return
        self._show_partitions(table)
        self._log(f"Found <b>{len(table)}</b> partitions")

    def _do_read_nvs(self):
        def job(backend):
            table = self._ensure_partitions(backend)
            prog, step = self._progress("Reading NVS…")
            try:
                return read_nvs(backend, table, self.sp_block.value(), on_progress=step)
            finally:
                prog.close()

        result = self._run("NVS", job)
        if result is None: return
        part, entries = result
        self.nvs_entries = entries
        names = nvs_mod.namespace_names(entries)
        self.nvs_model.set_rows([
            [names.get(e.namespace_index, str(e.namespace_index)), e.key, e.type_name, e.value_text]
            for e in entries
        ])
        self.btn_nvs_csv.setEnabled(bool(entries))
        self._log(f"NVS <b>{part.name}</b>: {len(entries)} entries")

    def _do_scan_files(self):
        def job(backend):
            table = self._ensure_partitions(backend)
            prog, step = self._progress("Scanning file system…")
            try:
                return scan_filesystem(backend, table, self.sp_limit.value(), self.sp_block.value(), on_progress=step)
            finally:
                prog.close()

        result = self._run("File system", job)
        if result is None: return
        part, found = result
        self.file_list = found
        self.fs_model.set_rows([[f.name, export.format_bytes(f.size), f.type, f.confidence.value] for f in found])
        self.lbl_fs.setText(f"{len(found)} files, {export.format_bytes(sum(f.size for f in found))}")
        self.btn_fs_csv.setEnabled(bool(found))
        if found:
            self._log(f"<b>{part.name}</b>: {len(found)} files")
        else:
            self._log("<b style='color:#d7ba7d'>No files found. The partition may be empty or use another format.</b>")

    def _do_backup(self):
        out, _ = QFileDialog.getSaveFileName(self, "Save backup", str(Path("logs") / backup_name()), "BIN (*.bin)")
        if not out: return
        offset, size = 0, None
        if self.chk_partial.isChecked():
            try:
                offset, size = int(self.ed_offset.text(), 16), int(self.ed_size.text(), 16)
            except ValueError:
                QMessageBox.warning(self, "Backup", "Offset and size must be hex."); return

        def job(backend):
            prog, step = self._progress("Reading flash…")
            try:
                return backup_flash(backend, Path(out), offset, size, self.sp_block.value(), on_progress=step)
            finally:
                prog.close()

        result = self._run("Backup", job)
        if result is None: return
        self._log(f"<b>Backup saved:</b> {result['out']} ({result['bytes']} bytes) + {result['meta']}")
        self._load_into_hex(Path(out))

    def _pick_restore_file(self):
        p, _ = QFileDialog.getOpenFileName(self, "Choose backup", "logs", "BIN (*.bin)")
        if not p: return
        self.restore_path = Path(p)
        meta = load_backup_metadata(self.restore_path)
        if meta:
            flash = meta.get("flashSize")
            flash = export.format_bytes(flash) if isinstance(flash, int) else "?"
            self.lbl_meta.setText(f"{meta.get('chipType')} | flash {flash} | "
                                  f"{meta.get('backupDate')} | at {meta.get('flashAddress')}")
        else:
            self.lbl_meta.setText("No metadata next to this file")
        self.btn_restore.setEnabled(True)

    def _do_restore(self):
        if not self.restore_path or not self.restore_path.exists():
            QMessageBox.warning(self, "Restore", "Choose a backup file first."); return
        if QMessageBox.question(self, "Restore", "Restore overwrites the flash. Continue?") != QMessageBox.Yes:
            return
        offset = backup_offset(self.restore_path)

        def job(backend):
            prog, step = self._progress("Writing flash…")
            try:
                return restore_flash(backend, self.restore_path, offset, self.chk_erase.isChecked(),
                                     self.sp_block.value(), on_progress=step)
            finally:
                prog.close()

        result = self._run("Restore", job, allow_write=True)
        if result is None: return
        self.partitions = []
        self._log(f"<b>Restored</b> {result['bytes']} bytes from {result['source']}")

    # ---------- hex handlers ----------
    def _hex_open(self):
        p, _ = QFileDialog.getOpenFileName(self, "Open dump", "logs", "BIN (*.bin)")
        if not p: return
        self._load_into_hex(Path(p))

    def _load_into_hex(self, path: Path):
        data = Path(path).read_bytes()
        base = backup_offset(path)
        self.model.load_bytes(data, base)
        if self.partitions:
            self.model.mark_regions([(p.offset, p.size) for p in self.partitions])
        crc = zlib.crc32(data) & 0xFFFFFFFF
        self.lbl_crc.setText(f"CRC32: 0x{crc:08X} | size: {len(data)} bytes")
        self._log(f"Opened in hex view: <b>{path}</b>")
        self.tabs.setCurrentWidget(self.page_hex)

    def _hex_find(self):
        text = self.ed_find.text().strip()
        if not text: return
        if self.chk_ascii.isChecked():
            pat = text.encode("utf-8", "ignore")
        else:
            try: pat = bytes.fromhex(text.replace(" ", "").replace("0x", "").replace("0X", ""))
            except ValueError:
                QMessageBox.warning(self, "HEX", "Not a valid HEX string."); return
        idx = self.model.find_next(pat, start=0, ascii_mode=self.chk_ascii.isChecked())
        if idx < 0: QMessageBox.information(self, "Find", "Not found."); return
        self._select_offset(idx)

    def _hex_goto(self):
        s = self.ed_goto.text().strip().lower().replace("0x", "")
        if not s: return
        try: addr = int(s, 16)
        except ValueError: QMessageBox.warning(self, "Address", "Enter the address in HEX."); return
        self._select_offset(self.model.offset_of_address(addr))

    def _select_offset(self, off: int):
        if off < 0: return
        row, col = divmod(off, BYTES_PER_ROW)
        idx = self.model.index(row, col)
        self.table.setCurrentIndex(idx)
        self.table.scrollTo(idx, QTableView.ScrollHint.PositionAtCenter)


# ---------- entry ----------
def main():
    app = QApplication(sys.argv)
    setup_theme(app)
    win = MainWindow()
    win.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
