"""Content restore onto the recreated filesystems.

Mounts the new root and the nested ESP, restores the full snapshot on top,
then reapplies the boot archives captured next to the metadata. Archive
contents win over snapshot contents for the paths they cover.

On failure the mounts stay in place so the operator can inspect a partial
restore or retry by hand.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from restic_disk_restore.domain.models import (
    CapturedSnapshot,
    PartitionTopology,
    TargetMountPlan,
)
from restic_disk_restore.logging import LoggerFactory
from restic_disk_restore.services.restic import RemoteStore, StoreError
from restic_disk_restore.storage import mount
from restic_disk_restore.storage.exceptions import CommandError, ContentRestoreFailed


log = LoggerFactory.for_restore()


def mount_target_tree(topology: PartitionTopology, plan: TargetMountPlan) -> None:
    """Mount root, then the ESP under it."""
    for device, mountpoint in (
        (topology.root_filesystem_device, plan.root),
        (topology.efi_partition_path, plan.esp),
    ):
        if mount.is_mountpoint_active(mountpoint):
            raise ContentRestoreFailed(
                f"{mountpoint} is already a mount point; unmount it first",
                path=str(mountpoint),
            )
        try:
            mount.mount_device(device, mountpoint)
        except (CommandError, ValueError, OSError) as error:
            raise ContentRestoreFailed(
                f"Failed to mount {device} on {mountpoint}: {error}",
                path=str(mountpoint),
            ) from error


def overlay_archive(archive: Optional[Path], root: Path, missing_message: str) -> bool:
    if archive is None:
        log.info(missing_message)
        return False
    try:
        mount.extract_archive(archive, root)
    except CommandError as error:
        raise ContentRestoreFailed(
            f"Failed to reapply {archive.name} onto {root}: {error}",
            path=str(archive),
        ) from error
    return True


def restore_content(
    store: RemoteStore,
    snapshot_id: str,
    snapshot: CapturedSnapshot,
    topology: PartitionTopology,
    plan: TargetMountPlan,
) -> None:
    """Mount the new tree and populate it from the store and boot archives.

    Raises:
        ContentRestoreFailed: If mounting, the store restore or an overlay fails
    """
    mount_target_tree(topology, plan)

    try:
        store.restore(snapshot_id, plan.root)
    except StoreError as error:
        raise ContentRestoreFailed(
            f"Full restore of snapshot {snapshot_id} onto {plan.root} failed: {error}",
            path=str(plan.root),
        ) from error
    log.info(f"Filesystem restored onto {plan.root}")

    overlay_archive(
        snapshot.boot_archive,
        plan.root,
        "No boot.tar in metadata; assuming /boot was included in the snapshot.",
    )
    overlay_archive(
        snapshot.esp_archive,
        plan.root,
        "No boot-efi.tar in metadata; relying on boot.tar/snapshot for ESP contents.",
    )
