"""Mount and archive helpers for the restored filesystem tree.

Security Notes:
    - All commands use argument lists, never a shell
    - Device paths must start with /dev/ and contain no shell metacharacters
"""

from __future__ import annotations

import os
from pathlib import Path

from restic_disk_restore.logging import LoggerFactory

from .devices import run_command


log = LoggerFactory.for_storage()

INVALID_PATH_CHARACTERS = (";", "&", "|", "$", "`", "\n", "\r", " ")


def _validate_device_path(device_path: str) -> None:
    if not isinstance(device_path, str) or not device_path.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device_path}")
    if any(char in device_path for char in INVALID_PATH_CHARACTERS):
        raise ValueError(f"Device path contains invalid characters: {device_path}")


def is_mountpoint_active(mountpoint: Path) -> bool:
    """Check if a mountpoint is currently active."""
    target = str(mountpoint)
    try:
        with open("/proc/mounts", "r", encoding="utf-8") as mounts_file:
            for line in mounts_file:
                parts = line.split()
                if len(parts) > 1 and parts[1] == target:
                    return True
    except FileNotFoundError:
        return os.path.ismount(target)
    return False


def mount_device(device_path: str, mountpoint: Path) -> None:
    """Create ``mountpoint`` and mount ``device_path`` on it.

    Raises:
        ValueError: If the device path is invalid
        CommandError: If mount fails
    """
    _validate_device_path(device_path)
    mountpoint.mkdir(parents=True, exist_ok=True)
    log.info(f"Mounting {device_path} on {mountpoint}")
    run_command(["mount", device_path, str(mountpoint)])


def extract_archive(archive: Path, destination: Path) -> None:
    """Extract a tar archive over ``destination`` preserving permissions.

    Archives were created from absolute paths (``/boot``, ``/boot/efi``), so
    members land under their original location relative to ``destination``.
    """
    log.info(f"Reapplying {archive.name} onto {destination}")
    run_command(["tar", "-xpf", str(archive), "-C", str(destination)])
