# loader_tools.py
from rich import print

from .errors import TransportError
from .esp_transport.esp_loader import ESPLoaderLink


def chip_probe(port: str, baudrate: int = 115200, verbose: bool = True) -> bool:
    """
    Safe connectivity check:
    - syncs with the ROM bootloader and loads the stub
    - asks for the chip description and flash id
    - resets the chip back into its firmware
    Nothing is written. Returns True when the chip answered.
    """
    link = ESPLoaderLink(port, baudrate)
    try:
        link.connect()
        desc = link.chip_description()
        size = link.flash_size()
        if verbose:
            print(f"[cyan]chip:[/] {desc}")
            print(f"[cyan]flash:[/] {size // 1024} KB")
        return True
    except TransportError as e:
        if verbose: print(f"[red]Probe failed:[/] {e}")
        return False
    finally:
        link.close()
