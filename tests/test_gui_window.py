import os

import pytest

pytest.importorskip("PySide6")
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtWidgets import QApplication  # noqa: E402

import esp_tool.gui.main_qt as main_qt  # noqa: E402
from esp_tool.decode import partition  # noqa: E402


@pytest.fixture
def window(monkeypatch, sim_image):
    monkeypatch.setattr(main_qt, "SIM_IMAGE", sim_image)
    monkeypatch.setattr(main_qt, "list_ports", lambda: [])
    app = QApplication.instance() or QApplication([])
    win = main_qt.MainWindow()
    yield win
    win.close()
    app.processEvents()


def test_partition_cache_follows_the_device(window):
    backend = window._backend()
    try:
        table = window._ensure_partitions(backend)
    finally:
        backend.close()
    assert [p.name for p in table] == ["nvs", "phy_init", "factory", "spiffs"]

    window.chk_demo.setChecked(False)
    assert window.partitions == []


def test_port_change_drops_cached_table(window):
    window.partitions = [partition.make_entry("nvs", partition.TYPE_DATA, 0x02, 0x9000, 0x6000)]
    window.cb_ports.addItem("COM7 - USB Serial", "COM7")
    assert window.partitions == []
