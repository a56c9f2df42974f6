"""Structure recreation on the validated target.

Steps run in strict order and none is retried:

    1. Load the captured GPT backup (boundaries, type codes, PARTUUIDs),
       reread the table and wait for both partition nodes
    2. FAT32 on the EFI system partition
    3. LUKS container with the original UUID, opened under the original
       mapper name (encrypted root only)
    4. Root filesystem with the original UUID, then read the UUID back

A failure leaves the device in whatever state the failed step produced;
nothing is rolled back.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from restic_disk_restore.domain.models import (
    PartitionTopology,
    RestoreTarget,
    StructureResult,
)
from restic_disk_restore.logging import LoggerFactory
from restic_disk_restore.storage import devices, encryption, format, partition_table
from restic_disk_restore.storage.exceptions import (
    CommandError,
    StructureCreationFailed,
)


log = LoggerFactory.for_restore()


def apply_partition_table(
    topology: PartitionTopology,
    target: RestoreTarget,
    table_path: Path,
    *,
    settle_timeout_seconds: float,
) -> None:
    required_size = partition_table.estimate_required_size_bytes(table_path)
    if required_size is not None:
        target_size = (
            devices.human_size(target.size_bytes) if target.size_bytes is not None else "unknown"
        )
        log.debug(
            f"GPT backup spans {devices.human_size(required_size)}; target is {target_size}"
        )
    try:
        partition_table.load_gpt_backup(table_path, target.device_path)
    except CommandError as error:
        raise StructureCreationFailed(
            f"Failed to write GPT to {target.device_path}: {error}",
            device=target.device_path,
        ) from error

    log.info("Reloading partition table")
    devices.reread_partition_table(target.device_path)
    devices.settle_udev()

    expected = [topology.efi_partition_path, topology.root_partition_path]
    missing = devices.wait_for_device_nodes(expected, timeout_seconds=settle_timeout_seconds)
    if missing:
        raise StructureCreationFailed(
            f"Partition(s) {', '.join(missing)} not found after GPT restore "
            f"(waited {settle_timeout_seconds:g}s)",
            device=target.device_path,
        )
    log.info(f"EFI partition (new):  {topology.efi_partition_path}")
    log.info(f"Root partition (new): {topology.root_partition_path}")


def create_encryption_container(topology: PartitionTopology) -> str:
    """Create and open the LUKS container; return the mapped device path."""
    if not topology.encryption_container_name:
        raise StructureCreationFailed(
            "Encryption container name is empty for encrypted root",
            device=topology.root_partition_path,
        )
    try:
        encryption.luks_format(
            topology.root_partition_path, topology.encryption_container_uuid
        )
        return encryption.luks_open(
            topology.root_partition_path, topology.encryption_container_name
        )
    except CommandError as error:
        raise StructureCreationFailed(
            f"Failed to create LUKS container on {topology.root_partition_path}: {error}",
            device=topology.root_partition_path,
        ) from error


def verify_filesystem_uuid(device_path: str, expected: Optional[str]) -> Optional[str]:
    try:
        actual = format.read_filesystem_uuid(device_path)
    except CommandError as error:
        raise StructureCreationFailed(
            f"Cannot read UUID of {device_path}: {error}", device=device_path
        ) from error
    if expected and (actual or "").lower() != expected.lower():
        raise StructureCreationFailed(
            f"UUID mismatch on {device_path}: expected {expected}, got {actual}",
            device=device_path,
        )
    return actual


def recreate_structure(
    topology: PartitionTopology,
    target: RestoreTarget,
    table_path: Path,
    *,
    settle_timeout_seconds: float,
) -> StructureResult:
    """Partition and format ``target`` so its identifiers match the original.

    Raises:
        StructureCreationFailed: If any step fails
    """
    apply_partition_table(
        topology,
        target,
        table_path,
        settle_timeout_seconds=settle_timeout_seconds,
    )

    try:
        format.make_efi_filesystem(topology.efi_partition_path)
    except CommandError as error:
        raise StructureCreationFailed(
            f"Failed to create EFI filesystem on {topology.efi_partition_path}: {error}",
            device=topology.efi_partition_path,
        ) from error

    container_uuid = None
    if topology.encrypted:
        root_device = create_encryption_container(topology)
        container_uuid = verify_filesystem_uuid(
            topology.root_partition_path, topology.encryption_container_uuid
        )
    else:
        root_device = topology.root_partition_path

    try:
        format.create_filesystem(
            root_device,
            topology.inner_filesystem_type,
            topology.inner_filesystem_uuid,
        )
    except (CommandError, ValueError) as error:
        raise StructureCreationFailed(
            f"Failed to create {topology.inner_filesystem_type} on {root_device}: {error}",
            device=root_device,
        ) from error

    fs_uuid = verify_filesystem_uuid(root_device, topology.inner_filesystem_uuid)
    log.info(f"Root filesystem {topology.inner_filesystem_type} on {root_device} has UUID {fs_uuid}")
    return StructureResult(
        root_filesystem_device=root_device,
        root_filesystem_uuid=fs_uuid,
        encryption_container_uuid=container_uuid,
    )
