import json

import pytest
from typer.testing import CliRunner

from esp_tool.flash.simulate import SIM_FLASH_SIZE, build_demo_image
from esp_tool.main import app

runner = CliRunner()


@pytest.fixture
def demo(sim_image):
    return ["--demo", "--image", str(sim_image)]


def session(tmp_path):
    lines = (tmp_path / "session.jsonl").read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_chip_info(demo):
    result = runner.invoke(app, ["chip-info", *demo])
    assert result.exit_code == 0, result.output
    assert "ESP32 (simulated)" in result.output


def test_partitions_with_csv(demo, tmp_path):
    out = tmp_path / "parts.csv"
    result = runner.invoke(app, ["partitions", *demo, "--csv", str(out)])
    assert result.exit_code == 0, result.output
    assert "spiffs" in result.output
    lines = out.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 5
    assert lines[1].endswith(",nvs,0x0")
    assert session(tmp_path)[-1]["kind"] == "partitions"


def test_nvs(demo, tmp_path):
    out = tmp_path / "nvs.csv"
    result = runner.invoke(app, ["nvs", *demo, "--csv", str(out)])
    assert result.exit_code == 0, result.output
    assert "boot_count" in result.output
    assert "1,String,device_name,esp-demo,1,255,0x00000000" in out.read_text(encoding="utf-8")


def test_files(demo, tmp_path):
    out = tmp_path / "files.csv"
    result = runner.invoke(app, ["files", *demo, "--csv", str(out)])
    assert result.exit_code == 0, result.output
    assert "/index.html" in result.output
    assert len(out.read_text(encoding="utf-8").splitlines()) == 6


def test_missing_port_is_usage_error():
    result = runner.invoke(app, ["partitions"])
    assert result.exit_code == 2


def test_backup_and_restore(demo, sim_image, tmp_path):
    out = tmp_path / "dump.bin"
    result = runner.invoke(app, ["backup", str(out), *demo, "--offset", "0x8000", "--size", "0xC00"])
    assert result.exit_code == 0, result.output
    assert out.read_bytes() == build_demo_image()[0x8000:0x8C00]
    meta = json.loads(out.with_suffix(".json").read_text(encoding="utf-8"))
    assert meta["partial"] is True

    result = runner.invoke(app, ["restore", str(out), *demo, "--offset", "0x8000"])
    assert result.exit_code == 0, result.output
    data = sim_image.read_bytes()
    assert len(data) == SIM_FLASH_SIZE
    assert data == build_demo_image()
    assert "not erased" in result.output


def test_restore_missing_file(demo, tmp_path):
    result = runner.invoke(app, ["restore", str(tmp_path / "nope.bin"), *demo])
    assert result.exit_code == 2


def test_restore_to_chip_needs_force(tmp_path):
    src = tmp_path / "in.bin"
    src.write_bytes(b"\x00" * 16)
    result = runner.invoke(app, ["restore", str(src), "--port", "/dev/ttyUSB9"])
    assert result.exit_code == 3


def test_flash_error_exits_1(demo, tmp_path):
    src = tmp_path / "in.bin"
    src.write_bytes(b"\x00" * 32)
    result = runner.invoke(app, ["restore", str(src), *demo, "--offset", hex(SIM_FLASH_SIZE - 16), "--no-erase"])
    assert result.exit_code == 1
    assert session(tmp_path)[-1]["kind"] == "error"


def test_partial_restore_leaves_the_rest_of_the_chip(demo, sim_image, tmp_path):
    src = tmp_path / "patch.bin"
    src.write_bytes(b"\x5A" * 0x100)
    result = runner.invoke(app, ["restore", str(src), *demo, "--offset", "0x110000"])
    assert result.exit_code == 0, result.output
    data = sim_image.read_bytes()
    expected = build_demo_image()
    assert data[0x110000:0x110100] == b"\x5A" * 0x100
    assert data[:0x110000] == expected[:0x110000]
    assert data[0x110100:] == expected[0x110100:]


@pytest.mark.parametrize("args", [
    ["partitions", "--offset", "0xZZ"],
    ["backup", "--size", "lots"],
])
def test_bad_number_is_usage_error(demo, tmp_path, args):
    result = runner.invoke(app, [*args, *demo])
    assert result.exit_code == 2
    assert not isinstance(result.exception, ValueError)
