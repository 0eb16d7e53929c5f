from __future__ import annotations
import json, logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich import print
from rich.logging import RichHandler
from rich.progress import Progress
from rich.table import Table

# --- package imports first (module loaded as esp_tool.main),
#     then the fallback for running the file straight from the esp_tool folder ---
try:
    from .config import (LOG_FILE, SIM_IMAGE, APP_NAME, DEFAULT_BAUD, DEFAULT_BLOCK_SIZE,
                         FS_SCAN_LIMIT, PARTITION_TABLE_OFFSET, PARTITION_TABLE_SIZE)
    from .decode import export, nvs
    from .errors import FlashToolError
    from .esp_transport.esp_loader import ESPLoaderLink, list_ports
    from .flash.io import (SimBackend, RealBackend, backup_flash, backup_name, restore_flash,
                           read_partition_table, read_nvs, scan_filesystem)
    from .loader_tools import chip_probe
except ImportError:
    from config import (LOG_FILE, SIM_IMAGE, APP_NAME, DEFAULT_BAUD, DEFAULT_BLOCK_SIZE,
                        FS_SCAN_LIMIT, PARTITION_TABLE_OFFSET, PARTITION_TABLE_SIZE)
    from decode import export, nvs
    from errors import FlashToolError
    from esp_transport.esp_loader import ESPLoaderLink, list_ports
    from flash.io import (SimBackend, RealBackend, backup_flash, backup_name, restore_flash,
                          read_partition_table, read_nvs, scan_filesystem)
    from loader_tools import chip_probe

app = typer.Typer(add_completion=False, help=f"{APP_NAME}: partitions, NVS, files, backup/restore.")


def _log_event(kind: str, payload: dict):
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    record = {
        "ts": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
        "kind": kind,
        "payload": payload,
    }
    with open(LOG_FILE, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")


def _int(text: str, option: str) -> int:
    """0x8000-style hex or plain decimal."""
    try:
        return int(text, 0)
    except ValueError:
        raise typer.BadParameter(f"not a number: {text!r}", param_hint=option)


@app.callback()
def _setup(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


@contextmanager
def _backend(port: str | None, baud: int, demo: bool, image: Path, allow_write: bool = False):
    if not demo and not port:
        print("[red]Give a serial port (--port COM3 or /dev/ttyUSB0) or use --demo.[/]")
        raise typer.Exit(code=2)
    backend = None
    try:
        if demo:
            backend = SimBackend(image)
        else:
            backend = RealBackend(link=ESPLoaderLink(port, baud).connect(), allow_write=allow_write)
        yield backend
    except (FlashToolError, PermissionError) as e:
        print(f"[red]Error:[/] {e}")
        _log_event("error", {"error": str(e)})
        raise typer.Exit(code=1)
    finally:
        if backend is not None:
            backend.close()


@contextmanager
def _progress(label: str):
    with Progress(transient=True) as prog:
        task = prog.add_task(label, total=100)
        yield lambda pct: prog.update(task, completed=pct)


def _save_csv(path: Path | None, text: str):
    if path:
        export.write_text(path, text)
        print(f"[green]CSV saved:[/] {path}")


DEMO = typer.Option(False, help="Use the simulated flash instead of a chip")
PORT = typer.Option(None, help="Serial port, e.g. COM3 or /dev/ttyUSB0")
BAUD = typer.Option(DEFAULT_BAUD, help="Baud rate after the stub is loaded")
IMAGE = typer.Option(SIM_IMAGE, help="Image file backing the simulated flash")


@app.command()
def ports():
    """List serial ports."""
    found = list_ports()
    if not found:
        print("[yellow]No ports found.[/]")
        return
    for p in found:
        print(f"[cyan]{p.device}[/] - {p.description}")


@app.command()
def probe(port: str = typer.Argument(..., help="Serial port"),
          baud: int = typer.Option(115200, help="Baud rate")):
    """
    Safe check: sync with the bootloader, read chip description and flash id. Writes nothing.
    """
    ok = chip_probe(port, baud, verbose=True)
    _log_event("probe", {"port": port, "ok": ok})
    if ok:
        print("[bold green]Chip answered.[/]")
    else:
        print("[bold yellow]No answer. Check the cable, BOOT button and port.[/]")
        raise typer.Exit(code=1)


@app.command("chip-info")
def chip_info(port: str = PORT, baud: int = BAUD, demo: bool = DEMO, image: Path = IMAGE):
    """Chip description and flash size."""
    with _backend(port, baud, demo, image) as backend:
        info = backend.info()
        print(json.dumps(info, ensure_ascii=False, indent=2))
        _log_event("chip_info", info)


@app.command()
def partitions(
    port: str = PORT, baud: int = BAUD, demo: bool = DEMO, image: Path = IMAGE,
    offset: str = typer.Option(hex(PARTITION_TABLE_OFFSET), help="Table offset"),
    size: str = typer.Option(hex(PARTITION_TABLE_SIZE), help="Bytes to read"),
    csv: Path = typer.Option(None, help="Also export to this CSV file"),
):
    """Read and decode the partition table."""
    start, length = _int(offset, "--offset"), _int(size, "--size")
    with _backend(port, baud, demo, image) as backend:
        table = read_partition_table(backend, start, length)

    t = Table(title=f"Partition table ({len(table)} entries)")
    for col in ("Name", "Type", "SubType", "Offset", "Size", "Flags"):
        t.add_column(col)
    for p in table:
        t.add_row(p.name or "unnamed", p.type_name, p.subtype_name, export.format_hex(p.offset),
                  export.format_bytes(p.size), f"0x{p.flags:x}")
    print(t)
    _save_csv(csv, export.partitions_csv(table))
    _log_event("partitions", {"count": len(table), "names": [p.name for p in table]})


@app.command("nvs")
def nvs_cmd(
    port: str = PORT, baud: int = BAUD, demo: bool = DEMO, image: Path = IMAGE,
    block: int = typer.Option(DEFAULT_BLOCK_SIZE, help="Read block size"),
    csv: Path = typer.Option(None, help="Also export to this CSV file"),
):
    """Decode the key/value pairs of the nvs partition."""
    with _backend(port, baud, demo, image) as backend:
        table = read_partition_table(backend)
        with _progress("Reading NVS") as step:
            part, entries = read_nvs(backend, table, block, on_progress=step)

    names = nvs.namespace_names(entries)
    t = Table(title=f"NVS '{part.name}' @ {export.format_hex(part.offset)} ({len(entries)} entries)")
    for col in ("Namespace", "Key", "Type", "Value"):
        t.add_column(col)
    for e in entries:
        ns = names.get(e.namespace_index, str(e.namespace_index))
        t.add_row(ns, e.key, e.type_name, e.value_text)
    print(t)
    _save_csv(csv, export.nvs_csv(entries))
    _log_event("nvs", {"partition": part.name, "count": len(entries)})


@app.command()
def files(
    port: str = PORT, baud: int = BAUD, demo: bool = DEMO, image: Path = IMAGE,
    limit: int = typer.Option(FS_SCAN_LIMIT, help="Scan only this many bytes (0 = whole partition)"),
    block: int = typer.Option(DEFAULT_BLOCK_SIZE, help="Read block size"),
    csv: Path = typer.Option(None, help="Also export to this CSV file"),
):
    """Guess files stored in the spiffs/fat partition."""
    with _backend(port, baud, demo, image) as backend:
        table = read_partition_table(backend)
        with _progress("Reading filesystem") as step:
            part, found = scan_filesystem(backend, table, limit, block, on_progress=step)

    if not found:
        print("[yellow]No files found. The partition may be empty or use another format.[/]")
    else:
        t = Table(title=f"Files in '{part.name}' ({len(found)})")
        for col in ("Name", "Size", "Type", "Confidence"):
            t.add_column(col)
        for f in found:
            t.add_row(f.name, export.format_bytes(f.size), f.type, f.confidence.value)
        print(t)
        total = sum(f.size for f in found)
        print(f"{len(found)} files, {export.format_bytes(total)}")
    _save_csv(csv, export.files_csv(found))
    _log_event("files", {"partition": part.name, "count": len(found)})


@app.command()
def backup(
    out_file: Path = typer.Argument(None, help="Output .bin (a .json sidecar is written next to it)"),
    port: str = PORT, baud: int = BAUD, demo: bool = DEMO, image: Path = IMAGE,
    offset: str = typer.Option("0x0", help="Start address"),
    size: str = typer.Option(None, help="Bytes to read (default: up to the end of flash)"),
    block: int = typer.Option(DEFAULT_BLOCK_SIZE, help="Read block size"),
):
    """Dump flash (whole or a range) into a .bin file."""
    out_file = out_file or Path("logs") / backup_name()
    start = _int(offset, "--offset")
    length = _int(size, "--size") if size else None
    with _backend(port, baud, demo, image) as backend:
        with _progress("Backup") as step:
            result = backup_flash(backend, out_file, start, length, block, on_progress=step)
    _log_event("backup", {k: v for k, v in result.items() if k != "metadata"})
    print(f"[green]Done:[/] {result['bytes']} bytes -> {result['out']} (+ {result['meta']})")


@app.command()
def restore(
    in_file: Path = typer.Argument(..., help="Raw .bin image"),
    port: str = PORT, baud: int = BAUD, demo: bool = DEMO, image: Path = IMAGE,
    offset: str = typer.Option("0x0", help="Address to write at"),
    erase: bool = typer.Option(True, help="Erase the whole chip first (only for a full-flash image)"),
    block: int = typer.Option(DEFAULT_BLOCK_SIZE, help="Write block size"),
    force: bool = typer.Option(False, help="Confirm that the chip may be overwritten"),
):
    """
    Write a backup back. Works freely on the simulated flash; a real chip needs --force.
    """
    if not in_file.exists():
        print(f"[red]File not found:[/] {in_file}")
        raise typer.Exit(code=2)
    start = _int(offset, "--offset")
    if not demo and not force:
        print("[red]Restore overwrites the chip. Re-run with --force if that is intended.[/]")
        raise typer.Exit(code=3)

    with _backend(port, baud, demo, image, allow_write=True) as backend:
        with _progress("Restore") as step:
            result = restore_flash(backend, in_file, start, erase, block, on_progress=step)
    _log_event("restore", result)
    if erase and not result["erased"]:
        print("[yellow]Partial image: the chip was not erased, only the written range changed.[/]")
    print(f"[green]Done:[/] wrote {result['bytes']} bytes from {result['source']}")


if __name__ == "__main__":
    app()
