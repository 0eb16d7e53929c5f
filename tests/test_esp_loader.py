import pytest
from esptool.util import FatalError
from serial import SerialException

from esp_tool.errors import TransportError
from esp_tool.esp_transport.esp_loader import ESPLoaderLink


class FakePort:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeLoader:
    """Records the loader calls ESPLoaderLink makes."""

    FLASH_WRITE_SIZE = 0x400

    def __init__(self, flash=b"", fail=None):
        self.flash = flash
        self.fail = fail
        self.calls = []
        self._port = FakePort()

    def _maybe_fail(self):
        if self.fail is not None:
            raise self.fail

    def read_flash(self, offset, length):
        self.calls.append(("read_flash", offset, length))
        self._maybe_fail()
        return self.flash[offset:offset + length]

    def flash_begin(self, size, offset):
        self.calls.append(("flash_begin", size, offset))

    def flash_block(self, data, seq):
        self.calls.append(("flash_block", data, seq))
        self._maybe_fail()

    def flash_finish(self, reboot):
        self.calls.append(("flash_finish", reboot))

    def erase_flash(self):
        self.calls.append(("erase_flash",))
        self._maybe_fail()

    def flash_id(self):
        return 0x1640EF

    def get_chip_description(self):
        return "ESP32-D0WD (revision 3)"

    def hard_reset(self):
        self.calls.append(("hard_reset",))
        self._maybe_fail()


def connected(loader):
    link = ESPLoaderLink("/dev/ttyUSB0")
    link.esp = loader
    return link


def test_read_bytes():
    link = connected(FakeLoader(bytes(range(256))))
    assert link.read_bytes(0x10, 4) == b"\x10\x11\x12\x13"


def test_short_read_is_transport_error():
    link = connected(FakeLoader(b"\x00" * 100))
    with pytest.raises(TransportError, match="short read at 0x50"):
        link.read_bytes(0x50, 0x20)


@pytest.mark.parametrize("error", [
    FatalError("Invalid head of packet"),
    SerialException("device disconnected"),
    OSError(5, "Input/output error"),
])
def test_loader_failures_become_transport_errors(error):
    link = connected(FakeLoader(b"\x00" * 100, fail=error))
    with pytest.raises(TransportError) as info:
        link.read_bytes(0, 16)
    assert info.value.__cause__ is error
    with pytest.raises(TransportError):
        link.erase_all()


def test_write_pads_blocks_and_numbers_them():
    loader = FakeLoader()
    data = bytes(range(256)) * 5  # 0x500 bytes: one full block and one short one
    connected(loader).write_bytes(0x9000, data)

    assert loader.calls[0] == ("flash_begin", 0x500, 0x9000)
    blocks = [c for c in loader.calls if c[0] == "flash_block"]
    assert [seq for _, _, seq in blocks] == [0, 1]
    assert [len(b) for _, b, _ in blocks] == [0x400, 0x400]
    assert blocks[0][1] == data[:0x400]
    assert blocks[1][1] == data[0x400:] + b"\xFF" * 0x300
    assert loader.calls[-1] == ("flash_finish", False)


def test_failed_block_aborts_write():
    loader = FakeLoader(fail=SerialException("gone"))
    with pytest.raises(TransportError, match="write block 0 at 0x1000"):
        connected(loader).write_bytes(0x1000, b"\x00" * 0x800)
    assert ("flash_finish", False) not in loader.calls


def test_chip_details():
    link = connected(FakeLoader())
    assert link.chip_description() == "ESP32-D0WD (revision 3)"
    assert link.flash_size() == 4 * 1024 * 1024


def test_not_connected():
    with pytest.raises(TransportError, match="not connected"):
        ESPLoaderLink("/dev/ttyUSB0").read_bytes(0, 1)


def test_close_survives_failed_reset():
    loader = FakeLoader(fail=FatalError("Timed out waiting for packet header"))
    link = connected(loader)
    link.close()
    assert loader._port.closed
    assert link.esp is None
    link.close()
