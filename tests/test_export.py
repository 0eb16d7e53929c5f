import pytest

from esp_tool.decode import export, nvs, partition
from esp_tool.decode.filesystem import Confidence, FileCandidate


@pytest.mark.parametrize("n, text", [
    (0, "0 Bytes"),
    (512, "512 Bytes"),
    (1024, "1 KB"),
    (1536, "1.5 KB"),
    (4286, "4.19 KB"),
    (0x100000, "1 MB"),
    (3 * 1024 ** 3, "3 GB"),
])
def test_format_bytes(n, text):
    assert export.format_bytes(n) == text


def test_format_hex_pads_to_six_digits():
    assert export.format_hex(0x9000) == "0x009000"
    assert export.format_hex(0x1000000) == "0x1000000"


def test_partitions_csv():
    table = [
        partition.make_entry("nvs", partition.TYPE_DATA, 0x02, 0x9000, 0x6000),
        partition.make_entry("factory", partition.TYPE_APP, 0x00, 0x10000, 0x100000, flags=1),
    ]
    lines = export.partitions_csv(table).splitlines()
    assert lines[0] == "magic,type,subtype,offset,size,name,flags"
    assert lines[1] == "0xAA50,data,nvs,0x009000,0x006000,nvs,0x0"
    assert lines[2] == "0xAA50,app,factory,0x010000,0x100000,factory,0x1"


def test_nvs_csv():
    entry = nvs.NVSEntry(1, nvs.NVSType.String, "ssid", "Home, sweet", 1, 0xFF, 0x1234)
    lines = export.nvs_csv([entry]).splitlines()
    assert lines[0] == "namespaceIndex,type,key,value,span,chunkIndex,crc32"
    # the comma inside the value forces quoting
    assert lines[1] == '1,String,ssid,"Home, sweet",1,255,0x00001234'


def test_files_csv():
    found = [FileCandidate("/index.html", 1024, Confidence.HIGH, "HTML")]
    assert export.files_csv(found) == (
        "name,size,confidence,type,sizeHuman\n"
        "/index.html,1024,HIGH,HTML,1 KB\n"
    )


def test_empty_export_has_header_only():
    assert export.files_csv([]) == "name,size,confidence,type,sizeHuman\n"


def test_write_text_creates_parent(tmp_path):
    target = tmp_path / "out" / "p.csv"
    export.write_text(target, "a,b\n")
    assert target.read_text(encoding="utf-8") == "a,b\n"
