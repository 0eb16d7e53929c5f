from __future__ import annotations

import logging

from serial import SerialException
from serial.tools import list_ports as _list_ports

from ..errors import TransportError
from ..flash.layout import flash_size_from_id

logger = logging.getLogger(__name__)


def list_ports() -> list:
    return list(_list_ports.comports())


class ESPLoaderLink:
    """
    Thin layer over esptool's loader for the ROM bootloader / flasher stub.
    One request at a time: the serial link cannot carry overlapping transfers.
    Every esptool/pyserial failure leaves this class as TransportError.
    """

    def __init__(self, port: str, baudrate: int = 460800):
        self.port = port
        self.baudrate = baudrate
        self.esp = None

    def connect(self) -> "ESPLoaderLink":
        from esptool.cmds import detect_chip
        from esptool.util import FatalError

        try:
            esp = detect_chip(self.port)
            esp = esp.run_stub()
            if self.baudrate != esp.ESP_ROM_BAUD:
                esp.change_baud(self.baudrate)
        except (FatalError, SerialException, OSError) as e:
            raise TransportError(f"cannot talk to chip on {self.port}: {e}") from e
        self.esp = esp
        logger.info("connected to %s on %s", esp.CHIP_NAME, self.port)
        return self

    def _loader(self):
        if self.esp is None:
            raise TransportError("not connected")
        return self.esp

    def _call(self, what: str, fn, *args):
        from esptool.util import FatalError

        try:
            return fn(*args)
        except (FatalError, SerialException, OSError) as e:
            raise TransportError(f"{what} failed: {e}") from e

    def read_bytes(self, offset: int, length: int) -> bytes:
        esp = self._loader()
        data = self._call(f"read 0x{offset:X}+{length}", esp.read_flash, offset, length)
        if len(data) != length:
            raise TransportError(f"short read at 0x{offset:X}: {len(data)} of {length} bytes")
        return bytes(data)

    def write_bytes(self, offset: int, data: bytes) -> None:
        """Program data at offset (the target range must already be erased)."""
        esp = self._loader()
        block = esp.FLASH_WRITE_SIZE
        self._call("flash_begin", esp.flash_begin, len(data), offset)
        for seq, i in enumerate(range(0, len(data), block)):
            part = data[i:i + block]
            part = part + b"\xFF" * (block - len(part))
            self._call(f"write block {seq} at 0x{offset + i:X}", esp.flash_block, part, seq)
        self._call("flash_finish", esp.flash_finish, False)

    def erase_all(self) -> None:
        esp = self._loader()
        self._call("erase", esp.erase_flash)

    def chip_description(self) -> str:
        esp = self._loader()
        return self._call("chip description", esp.get_chip_description)

    def flash_size(self) -> int:
        esp = self._loader()
        return flash_size_from_id(self._call("flash id", esp.flash_id))

    def close(self):
        if self.esp is None:
            return
        try:
            self._call("hard reset", self.esp.hard_reset)
        except TransportError as e:
            logger.warning("%s", e)
        finally:
            self.esp._port.close()
            self.esp = None
