from esp_tool.decode import filesystem, nvs, partition
from esp_tool.flash.io import SimBackend, read_nvs, read_partition_table, scan_filesystem
from esp_tool.flash.simulate import SIM_CHIP, SIM_FLASH_SIZE, SimFlash, build_demo_image


def test_demo_image_layout():
    image = build_demo_image()
    assert len(image) == SIM_FLASH_SIZE
    table = partition.decode(image[0x8000:0x8C00])
    assert [p.name for p in table] == ["nvs", "phy_init", "factory", "spiffs"]
    assert partition.nvs_partition(table).offset == 0x9000
    assert partition.filesystem_partition(table).subtype_name == "spiffs"


def test_store_is_created_once(sim_image):
    flash = SimFlash(sim_image)
    assert sim_image.stat().st_size == SIM_FLASH_SIZE
    flash.write(0x1000, b"\x01\x02")
    # a second instance keeps the existing file
    assert SimFlash(sim_image).read(0x1000, 2) == b"\x01\x02"


def test_info_and_erase(sim_image):
    flash = SimFlash(sim_image)
    info = flash.info()
    assert info["chip"] == SIM_CHIP
    assert info["flash_size"] == SIM_FLASH_SIZE
    assert info["crc32"].startswith("0x")
    flash.erase_all()
    assert flash.read(0x8000, 4) == b"\xFF" * 4


def test_out_of_range_access(sim_image):
    import pytest
    from esp_tool.errors import BoundsError

    flash = SimFlash(sim_image)
    with pytest.raises(BoundsError):
        flash.read(SIM_FLASH_SIZE - 1, 2)
    with pytest.raises(BoundsError):
        flash.write(SIM_FLASH_SIZE, b"\x00")


def test_demo_nvs_through_backend(sim_image):
    backend = SimBackend(sim_image)
    table = read_partition_table(backend)
    part, entries = read_nvs(backend, table)
    assert part.name == "nvs"
    assert [e.key for e in entries] == [
        "storage", "wifi", "boot_count", "temp_offset", "device_name", "ssid", "cal"
    ]
    by_key = {e.key: e for e in entries}
    assert by_key["boot_count"].value == 42
    assert by_key["temp_offset"].value == -3
    assert by_key["device_name"].value == "esp-demo"
    assert by_key["cal"].type == nvs.NVSType.Blob
    assert by_key["cal"].value_text == "de ad be ef 01 02 03 04"
    assert nvs.namespace_names(entries) == {1: "storage", 2: "wifi"}


def test_demo_files_through_backend(sim_image):
    backend = SimBackend(sim_image)
    table = read_partition_table(backend)
    part, found = scan_filesystem(backend, table)
    assert part.name == "spiffs"
    assert [f.name for f in found] == [
        "/config.json", "/css/style.css", "/favicon.ico", "/index.html", "/js/app.js"
    ]
    assert all(f.confidence is filesystem.Confidence.HIGH for f in found)
    assert {f.name: f.size for f in found}["/js/app.js"] == 5120
