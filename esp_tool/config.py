from pathlib import Path

LOG_DIR = Path(__file__).parent / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = LOG_DIR / "session.jsonl"
SIM_IMAGE = LOG_DIR / "sim_flash.bin"
APP_NAME = "ESP Flash Tool"

# Conventional layout, must match what the flashing tool wrote
PARTITION_TABLE_OFFSET = 0x8000
PARTITION_TABLE_SIZE = 0xC00
DEFAULT_BLOCK_SIZE = 0x1000
FS_SCAN_LIMIT = 64 * 1024

DEFAULT_BAUD = 460800
