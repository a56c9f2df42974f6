"""GPT operations for restore.

The partition table is captured with ``sgdisk --backup`` and written back
verbatim with ``sgdisk --load-backup``. That reproduces partition boundaries,
type codes, the disk GUID and every PARTUUID, so boot entries keyed on
PARTUUID keep working on the new disk.
"""
from __future__ import annotations

import shutil
import struct
from pathlib import Path
from typing import Optional

from restic_disk_restore.logging import LoggerFactory

from .devices import run_command
from .exceptions import CommandError

log = LoggerFactory.for_storage()

GPT_SIGNATURE = b"EFI PART"
SECTOR_SIZE = 512


def estimate_last_lba_from_sgdisk_backup(path: Path) -> Optional[int]:
    """Extract the last LBA referenced by an sgdisk backup file."""
    data = path.read_bytes()
    offset = data.find(GPT_SIGNATURE)
    if offset == -1 or len(data) < offset + 56:
        return None
    current_lba = struct.unpack_from("<Q", data, offset + 24)[0]
    backup_lba = struct.unpack_from("<Q", data, offset + 32)[0]
    last_usable = struct.unpack_from("<Q", data, offset + 48)[0]
    return max(current_lba, backup_lba, last_usable)


def estimate_required_size_bytes(path: Path) -> Optional[int]:
    """Estimate the disk size an sgdisk backup was taken from."""
    last_lba = estimate_last_lba_from_sgdisk_backup(path)
    if last_lba is None:
        return None
    return (last_lba + 1) * SECTOR_SIZE


def load_gpt_backup(table_path: Path, target_node: str) -> None:
    """Write an sgdisk backup file to a target device.

    Raises:
        CommandError: If sgdisk is missing or fails
    """
    sgdisk = shutil.which("sgdisk")
    if not sgdisk:
        raise CommandError(["sgdisk"], 127, stderr="sgdisk not found")
    log.info(f"Writing GPT layout from {table_path} to {target_node}")
    run_command([sgdisk, f"--load-backup={table_path}", target_node])
