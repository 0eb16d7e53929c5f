import pytest

from esp_tool.errors import TransportError


class MemBackend:
    """In-memory chip that records every transfer."""

    def __init__(self, data: bytes, fail_at=None):
        self.data = bytearray(data)
        self.fail_at = fail_at
        self.reads = []
        self.writes = []
        self.erased = False

    def read_block(self, address, size):
        if self.fail_at is not None and address >= self.fail_at:
            raise TransportError(f"link lost at 0x{address:X}")
        self.reads.append((address, size))
        return bytes(self.data[address:address + size])

    def write_block(self, address, data):
        if self.fail_at is not None and address >= self.fail_at:
            raise TransportError(f"link lost at 0x{address:X}")
        self.writes.append((address, len(data)))
        self.data[address:address + len(data)] = data

    def erase_all(self):
        self.erased = True
        self.data[:] = b"\xFF" * len(self.data)

    def info(self):
        return {"chip": "ESP32-D0WD (revision 3)", "flash_size": len(self.data)}

    def close(self):
        pass


@pytest.fixture
def mem_backend():
    return MemBackend


@pytest.fixture
def sim_image(tmp_path):
    return tmp_path / "sim_flash.bin"


@pytest.fixture(autouse=True)
def _session_log(tmp_path, monkeypatch):
    import esp_tool.main as cli
    monkeypatch.setattr(cli, "LOG_FILE", tmp_path / "session.jsonl")
