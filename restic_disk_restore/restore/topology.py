"""Topology inference from captured identifier records.

The supported layout is fixed: partition 1 is the EFI system partition,
partition 2 is the root partition. The root partition holds either a
filesystem directly or a LUKS container whose mapped device holds it.
"""

from __future__ import annotations

from typing import Optional

from restic_disk_restore.domain.models import (
    CapturedSnapshot,
    DeviceIdentifierRecord,
    PartitionTopology,
)
from restic_disk_restore.logging import LoggerFactory
from restic_disk_restore.storage.devices import partition_path
from restic_disk_restore.storage.exceptions import (
    AmbiguousMapperName,
    MalformedMetadata,
    UnsupportedFilesystem,
    UnsupportedTopology,
)
from restic_disk_restore.storage.format import SUPPORTED_FILESYSTEMS

from .records import FSTAB_FILENAME, parse_mount_table


log = LoggerFactory.for_restore()

EFI_PARTITION_NUMBER = 1
ROOT_PARTITION_NUMBER = 2
LUKS_TYPE = "crypto_LUKS"
MAPPER_PREFIX = "/dev/mapper/"


def resolve_mapper_name(mount_table_text: Optional[str]) -> str:
    """Find the device-mapper name of the encrypted root in a captured fstab.

    Raises:
        MalformedMetadata: If no fstab was captured
        AmbiguousMapperName: If zero or several distinct names are mounted at /
    """
    if mount_table_text is None:
        raise MalformedMetadata(
            FSTAB_FILENAME, "fstab missing; needed to resolve root mapper name"
        )
    names: list[str] = []
    for entry in parse_mount_table(mount_table_text):
        if entry.mountpoint != "/" or not entry.source.startswith(MAPPER_PREFIX):
            continue
        name = entry.source[len(MAPPER_PREFIX):]
        if name and name not in names:
            names.append(name)
    if len(names) != 1:
        raise AmbiguousMapperName(names)
    return names[0]


def _require_record(
    snapshot: CapturedSnapshot, device_path: str, role: str
) -> DeviceIdentifierRecord:
    record = snapshot.find_record(device_path)
    if record is None:
        raise UnsupportedTopology(
            f"Cannot find {role} {device_path} in blkid metadata"
        )
    if not record.type:
        raise UnsupportedTopology(
            f"blkid metadata for {role} {device_path} has no TYPE"
        )
    return record


def validate_filesystem_type(fstype: str) -> str:
    normalized = fstype.lower()
    if normalized not in SUPPORTED_FILESYSTEMS:
        raise UnsupportedFilesystem(fstype, SUPPORTED_FILESYSTEMS)
    return normalized


def infer_topology(snapshot: CapturedSnapshot, target_disk: str) -> PartitionTopology:
    """Work out what to recreate on ``target_disk`` from ``snapshot``.

    Raises:
        UnsupportedTopology: Root partition record missing or unusable
        AmbiguousMapperName: Encrypted root mapper name not resolvable
        UnsupportedFilesystem: Root filesystem type not supported
    """
    original_root = partition_path(snapshot.original_disk_path, ROOT_PARTITION_NUMBER)
    original_efi = partition_path(snapshot.original_disk_path, EFI_PARTITION_NUMBER)

    root_record = _require_record(snapshot, original_root, "root partition")
    log.info(f"Original root partition TYPE: {root_record.type}")

    encrypted = root_record.type == LUKS_TYPE
    container_uuid: Optional[str] = None
    container_name: Optional[str] = None

    if encrypted:
        container_uuid = root_record.uuid
        log.info(f"Detected encrypted root (LUKS), original LUKS UUID={container_uuid}")
        container_name = resolve_mapper_name(snapshot.mount_table_text)
        mapper_device = f"{MAPPER_PREFIX}{container_name}"
        log.info(f"Original encrypted root mapper: {mapper_device} (name: {container_name})")
        inner_record = _require_record(snapshot, mapper_device, "mapped root")
    else:
        inner_record = root_record

    fstype = validate_filesystem_type(inner_record.type or "")

    topology = PartitionTopology(
        efi_partition_path=partition_path(target_disk, EFI_PARTITION_NUMBER),
        root_partition_path=partition_path(target_disk, ROOT_PARTITION_NUMBER),
        original_efi_partition_path=original_efi,
        original_root_partition_path=original_root,
        encrypted=encrypted,
        inner_filesystem_type=fstype,
        inner_filesystem_uuid=inner_record.uuid,
        encryption_container_uuid=container_uuid,
        encryption_container_name=container_name,
    )
    for line in topology.describe():
        log.info(line)
    return topology
