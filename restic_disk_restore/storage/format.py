"""Filesystem creation with identifier preservation.

Supported Root Filesystems:
    ext4:   UUID injected at creation time (mkfs.ext4 -U)
    btrfs:  UUID injected at creation time (mkfs.btrfs -U)
    xfs:    created, then relabelled with xfs_admin -U, since mkfs.xfs has
            no creation-time UUID option for the filesystem UUID

EFI System Partition:
    Always FAT32 (mkfs.vfat -F 32). The volume serial is not preserved; the
    ESP is located by PARTUUID, which comes from the GPT backup.

Operations:
    - make_efi_filesystem(): FAT32 on the ESP
    - create_filesystem(): Root filesystem, forcing the captured UUID
    - read_filesystem_uuid(): Read back the UUID with blkid

Example:
    >>> from restic_disk_restore.storage.format import create_filesystem
    >>> create_filesystem("/dev/mapper/cryptroot", "ext4", "3b8f...")
"""

from typing import Optional

from restic_disk_restore.logging import LoggerFactory

from .devices import run_command


log = LoggerFactory.for_storage()

SUPPORTED_FILESYSTEMS = ("ext4", "btrfs", "xfs")


def make_efi_filesystem(partition_path: str) -> None:
    """Create a FAT32 filesystem on the EFI system partition."""
    log.info(
        f"Creating EFI filesystem (vfat) on {partition_path} "
        "(PARTUUID restored by GPT)"
    )
    run_command(["mkfs.vfat", "-F", "32", partition_path])


def build_mkfs_commands(
    device_path: str, filesystem: str, fs_uuid: Optional[str]
) -> list[list[str]]:
    """Build the command sequence that creates ``filesystem`` with ``fs_uuid``.

    Raises:
        ValueError: If the filesystem type is not supported
    """
    filesystem = filesystem.lower()

    if filesystem == "ext4":
        command = ["mkfs.ext4", "-F"]
        if fs_uuid:
            command.extend(["-U", fs_uuid])
        command.append(device_path)
        return [command]

    if filesystem == "btrfs":
        command = ["mkfs.btrfs", "-f"]
        if fs_uuid:
            command.extend(["-U", fs_uuid])
        command.append(device_path)
        return [command]

    if filesystem == "xfs":
        commands = [["mkfs.xfs", "-f", device_path]]
        if fs_uuid:
            commands.append(["xfs_admin", "-U", fs_uuid, device_path])
        return commands

    raise ValueError(f"Unsupported filesystem type: {filesystem}")


def create_filesystem(
    device_path: str, filesystem: str, fs_uuid: Optional[str]
) -> None:
    """Create the root filesystem, forcing its UUID when one is known.

    Raises:
        ValueError: If the filesystem type is not supported
        CommandError: If a mkfs or relabel command fails
    """
    commands = build_mkfs_commands(device_path, filesystem, fs_uuid)
    if fs_uuid:
        log.info(
            f"Creating filesystem {filesystem} on {device_path} "
            f"with original UUID {fs_uuid}"
        )
    else:
        log.warning(
            f"No original UUID captured for {device_path}; creating {filesystem} "
            "with a new UUID. fstab entries keyed on UUID will need updating."
        )
    for command in commands:
        run_command(command)


def read_filesystem_uuid(device_path: str) -> Optional[str]:
    """Return the filesystem (or LUKS) UUID of a device, or None."""
    result = run_command(
        ["blkid", "-s", "UUID", "-o", "value", device_path],
        check=False,
    )
    if result.returncode != 0:
        return None
    value = result.stdout.strip()
    return value or None
