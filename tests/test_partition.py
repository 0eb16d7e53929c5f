import struct

import pytest

from esp_tool.decode import partition
from esp_tool.decode.partition import PartitionEntry, make_entry
from esp_tool.errors import FormatError

TABLE = [
    make_entry("nvs", 0x01, 0x02, 0x9000, 0x6000),
    make_entry("otadata", 0x01, 0x00, 0xF000, 0x2000),
    make_entry("phy_init", 0x01, 0x01, 0x11000, 0x1000),
    make_entry("ota_0", 0x00, 0x10, 0x20000, 0x180000, flags=1),
    make_entry("exactly16chars!!", 0x00, 0x11, 0x1A0000, 0x180000),
    make_entry("storage", 0x01, 0x82, 0x320000, 0xE0000),
]


def test_encode_then_decode_gives_same_entries():
    assert partition.decode(partition.encode(TABLE)) == TABLE


def test_symbolic_names():
    got = partition.decode(partition.encode(TABLE))
    assert [(p.type_name, p.subtype_name) for p in got] == [
        ("data", "nvs"), ("data", "ota"), ("data", "phy"),
        ("app", "ota_0"), ("app", "ota_1"), ("data", "spiffs"),
    ]
    assert got[3].encrypted
    assert got[0].end == 0xF000


def test_unmapped_values_render_as_hex():
    assert partition.subtype_name(0x00, 0x30) == "0x30"
    assert partition.subtype_name(0x01, 0x99) == "0x99"
    assert partition.type_name(0x40) == "0x40"
    assert partition.subtype_name(0x40, 0x01) == "0x1"


def test_name_without_nul_is_cut_at_field_end():
    got = partition.decode(partition.encode(TABLE))
    assert got[4].name == "exactly16chars!!"


@pytest.mark.parametrize("head", [b"\x50\xAA", b"\xFF\xFF", b"\x00\x00", b"\xEB\xEB"])
def test_bad_first_magic_fails(head):
    blob = bytearray(partition.encode(TABLE))
    blob[0:2] = head
    with pytest.raises(FormatError):
        partition.decode(bytes(blob))


def test_empty_buffer_fails():
    with pytest.raises(FormatError):
        partition.decode(b"")


def test_terminates_on_erased_or_zeroed_entry():
    head = b"".join(partition.encode_entry(e) for e in TABLE[:2])
    tail = partition.encode_entry(TABLE[2])
    for marker in (b"\xFF" * 32, b"\x00" * 32):
        got = partition.decode(head + marker + tail)
        assert [p.name for p in got] == ["nvs", "otadata"]


def test_foreign_magic_stride_is_skipped():
    md5_record = b"\xEB\xEB" + b"\xFF" * 14 + bytes(range(16))
    blob = partition.encode_entry(TABLE[0]) + md5_record + partition.encode_entry(TABLE[1])
    got = partition.decode(blob)
    assert [p.name for p in got] == ["nvs", "otadata"]


def test_overlapping_entries_are_not_an_error():
    a = make_entry("a", 0x01, 0x02, 0x9000, 0x4000)
    b = make_entry("b", 0x01, 0x81, 0xA000, 0x4000)
    assert partition.decode(partition.encode([a, b])) == [a, b]


def test_truncated_entry_is_format_error():
    blob = partition.encode_entry(TABLE[0]) + partition.encode_entry(TABLE[1])[:20]
    with pytest.raises(FormatError):
        partition.decode(blob)


def test_field_layout():
    raw = partition.encode_entry(TABLE[0])
    assert len(raw) == 32
    assert raw[:2] == b"\xAA\x50"
    assert struct.unpack_from("<II", raw, 4) == (0x9000, 0x6000)


def test_lookups():
    assert partition.nvs_partition(TABLE).name == "nvs"
    assert partition.filesystem_partition(TABLE).name == "storage"
    fat = make_entry("ffat", 0x01, 0x81, 0x400000, 0x100000)
    assert partition.filesystem_partition(TABLE[:3] + [fat]) == fat
    assert partition.filesystem_partition(TABLE[:3]) is None
    assert partition.nvs_partition([]) is None


def test_name_too_long_cannot_be_encoded():
    with pytest.raises(FormatError):
        partition.encode_entry(PartitionEntry(0xAA50, 0, 0, 0, 0, "x" * 17, 0))
