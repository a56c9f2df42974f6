"""Safety gate for the restore target.

Every check runs before anything is written to the target device, in this
order, and each one is a hard stop:

    1. The target path is a block device
    2. The operator types the confirmation literal exactly (one chance)
    3. The target has no partitions (GPT or MBR); the tool never wipes
       existing structure itself
    4. The target is at least as large as the original disk (skipped with a
       warning when the capture has no size record)

Example:
    from restic_disk_restore.restore.safety import check_target

    target = check_target("/dev/sdb", snapshot, repository=url, snapshot_id="latest")
"""

from __future__ import annotations

from typing import Callable, Optional

from restic_disk_restore.domain.models import CapturedSnapshot, RestoreTarget
from restic_disk_restore.logging import LoggerFactory
from restic_disk_restore.storage import devices
from restic_disk_restore.storage.exceptions import CommandError, UnsafeTarget


log = LoggerFactory.for_restore()

CONFIRMATION_LITERAL = "YES"

ConfirmFunc = Callable[[str], str]


def validate_block_device(device_path: str) -> None:
    if not devices.is_block_device(device_path):
        raise UnsafeTarget(device_path, "not a block device")


def build_danger_banner(device_path: str, repository: str, snapshot_id: str) -> str:
    rule = "=" * 62
    return "\n".join(
        [
            rule,
            f"  DANGER: YOU ARE ABOUT TO WIPE DISK: {device_path}",
            "  All data on this disk will be destroyed and replaced with",
            "  a restored system from:",
            f"      {repository}",
            f"  Snapshot: {snapshot_id}",
            rule,
        ]
    )


def confirm_destruction(
    device_path: str,
    *,
    repository: str,
    snapshot_id: str,
    confirm: ConfirmFunc = input,
) -> None:
    """Ask the operator to type the confirmation literal. No retry.

    Raises:
        UnsafeTarget: On any other answer, including end of input
    """
    print(build_danger_banner(device_path, repository, snapshot_id))
    try:
        answer = confirm(f"Type EXACTLY '{CONFIRMATION_LITERAL}' to continue: ")
    except EOFError:
        answer = ""
    if answer != CONFIRMATION_LITERAL:
        raise UnsafeTarget(device_path, "operator did not confirm; restore aborted")


def validate_no_partitions(device_path: str) -> None:
    log.info(f"Checking that {device_path} has no partitions...")
    try:
        partitions = devices.list_partitions(device_path)
    except CommandError as error:
        raise UnsafeTarget(
            device_path, f"cannot list existing partitions: {error}"
        ) from error
    if partitions:
        names = ", ".join(str(part.get("name")) for part in partitions)
        raise UnsafeTarget(
            device_path,
            f"target disk has partitions ({names}). "
            "Use gparted or wipefs to clear them.",
        )
    log.info(f"No partitions detected on {device_path}. Proceeding.")


def validate_target_size(device_path: str, original_size: Optional[int]) -> Optional[int]:
    """Compare target and original sizes; return the target size in bytes.

    Returns None without querying the target when no original size was
    captured.
    """
    if original_size is None:
        log.warning("No disk-size-bytes.txt in metadata; skipping size check.")
        return None

    target_size = devices.get_blockdev_size_bytes(device_path)
    if target_size is None:
        raise UnsafeTarget(device_path, "could not read target disk size")

    log.info(f"Original disk size: {original_size} bytes")
    log.info(f"Target   disk size: {target_size} bytes")
    if target_size < original_size:
        raise UnsafeTarget(
            device_path,
            f"target disk is smaller than original "
            f"({target_size} < {original_size} bytes)",
        )
    return target_size


def check_target(
    device_path: str,
    snapshot: CapturedSnapshot,
    *,
    repository: str,
    snapshot_id: str,
    confirm: ConfirmFunc = input,
) -> RestoreTarget:
    """Run every safety check; the target is untouched if any one fails.

    Raises:
        UnsafeTarget: If any check fails
    """
    validate_block_device(device_path)
    confirm_destruction(
        device_path,
        repository=repository,
        snapshot_id=snapshot_id,
        confirm=confirm,
    )
    validate_no_partitions(device_path)
    size_bytes = validate_target_size(device_path, snapshot.original_size_bytes)
    return RestoreTarget(device_path=device_path, size_bytes=size_bytes)
