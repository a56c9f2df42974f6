"""Block device queries and command execution helpers.

This module wraps the small set of device tools the restore needs:

    - lsblk:     partition discovery on the target (JSON output)
    - blockdev:  exact device size in bytes, partition table reread fallback
    - partprobe: partition table reread
    - udevadm:   waiting for udev to create new device nodes

Partition Naming:
    NVMe, MMC and network block devices address partitions as
    ``<disk>p<n>``; all others as ``<disk><n>``::

        >>> partition_path("/dev/nvme0n1", 1)
        '/dev/nvme0n1p1'
        >>> partition_path("/dev/sda", 2)
        '/dev/sda2'

Operations:
    - run_command(): Run an external tool, raising CommandError on failure
    - is_block_device(): Check that a path is a block device node
    - get_blockdev_size_bytes(): Device size via blockdev --getsize64
    - list_partitions(): Partition children of a disk via lsblk
    - reread_partition_table(): partprobe, falling back to blockdev --rereadpt
    - settle_udev(): udevadm settle
    - wait_for_device_nodes(): Poll until device nodes appear or time out
"""

import json
import os
import shutil
import stat
import subprocess
import time
from typing import Iterable, Optional

from restic_disk_restore.logging import LoggerFactory

from .exceptions import CommandError


log = LoggerFactory.for_storage()

PARTITION_P_SEPARATOR_MARKERS = ("nvme", "mmcblk", "nbd")


def run_command(
    command: list[str],
    *,
    check: bool = True,
    capture: bool = True,
    input_text: Optional[str] = None,
    log_output: bool = True,
) -> subprocess.CompletedProcess:
    """Run an external command.

    Args:
        command: Argument list (never passed through a shell)
        check: Raise CommandError on a non-zero exit status
        capture: Capture stdout/stderr. Interactive tools (cryptsetup, restic
            password prompts) must run with ``capture=False`` so the operator
            sees their prompts.
        input_text: Text written to the command's stdin
        log_output: Log captured output at DEBUG level

    Returns:
        The completed process
    """
    log.debug(f"Running command: {' '.join(command)}")
    try:
        if capture:
            result = subprocess.run(
                command,
                input=input_text,
                text=True,
                capture_output=True,
            )
        else:
            result = subprocess.run(command, input=input_text, text=True)
    except FileNotFoundError as error:
        raise CommandError(command, 127, stderr=f"{command[0]} not found") from error
    if capture and log_output:
        if result.stdout:
            log.debug(f"stdout: {result.stdout.strip()}")
        if result.stderr:
            log.debug(f"stderr: {result.stderr.strip()}")
    if check and result.returncode != 0:
        raise CommandError(
            command,
            result.returncode,
            stdout=result.stdout if capture else "",
            stderr=result.stderr if capture else "",
        )
    return result


def human_size(size_bytes: Optional[int]) -> str:
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def uses_p_separator(disk_path: str) -> bool:
    name = os.path.basename(disk_path)
    return any(marker in name for marker in PARTITION_P_SEPARATOR_MARKERS)


def partition_path(disk_path: str, number: int) -> str:
    """Return the device path of partition ``number`` on ``disk_path``."""
    if number < 1:
        raise ValueError(f"Partition numbers start at 1, got {number}")
    if uses_p_separator(disk_path):
        return f"{disk_path}p{number}"
    return f"{disk_path}{number}"


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def get_blockdev_size_bytes(device_path: str) -> Optional[int]:
    """Get device size using blockdev command."""
    blockdev = shutil.which("blockdev")
    if not blockdev:
        return None
    result = run_command([blockdev, "--getsize64", device_path], check=False)
    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.strip())
    except ValueError:
        return None


def get_block_device(device_path: str) -> Optional[dict]:
    """Return the lsblk JSON entry for a single device, children included."""
    result = run_command(
        ["lsblk", "-J", "-b", "-o", "NAME,PATH,TYPE,SIZE,FSTYPE,PTTYPE", device_path],
        check=False,
        log_output=False,
    )
    if result.returncode != 0:
        log.debug(f"lsblk failed for {device_path}: {result.stderr.strip()}")
        return None
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as error:
        log.debug(f"lsblk returned invalid JSON for {device_path}: {error}")
        return None
    devices = data.get("blockdevices", [])
    return devices[0] if devices else None


def get_children(device: dict) -> list[dict]:
    return device.get("children", []) or []


def list_partitions(device_path: str) -> list[dict]:
    """List the partitions of a disk, GPT or MBR.

    Raises:
        CommandError: If lsblk cannot describe the device
    """
    device = get_block_device(device_path)
    if device is None:
        raise CommandError(["lsblk", device_path], 1, stderr="device not listed")
    return [child for child in get_children(device) if child.get("type") == "part"]


def reread_partition_table(device_path: str) -> None:
    """Force kernel to re-read partition table."""
    partprobe = shutil.which("partprobe")
    if partprobe:
        run_command([partprobe, device_path], check=False)
        return
    blockdev = shutil.which("blockdev")
    if blockdev:
        run_command([blockdev, "--rereadpt", device_path], check=False)


def settle_udev() -> None:
    """Wait for udev to settle."""
    udevadm = shutil.which("udevadm")
    if udevadm:
        run_command([udevadm, "settle"], check=False)


def wait_for_device_nodes(
    paths: Iterable[str],
    *,
    timeout_seconds: float,
    poll_interval: float = 0.5,
) -> list[str]:
    """Wait for block device nodes to appear.

    Returns:
        The paths still missing when the window closed (empty on success)
    """
    paths = list(paths)
    deadline = time.monotonic() + timeout_seconds
    missing = [path for path in paths if not is_block_device(path)]
    while missing and time.monotonic() < deadline:
        time.sleep(poll_interval)
        missing = [path for path in paths if not is_block_device(path)]
    return missing
