"""Domain model for UUID-preserving disk restore.

Type-safe objects for everything the restore pipeline reads from a captured
snapshot and everything it derives from it. All of them are immutable; the
pipeline builds new values instead of mutating shared state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from restic_disk_restore.config.settings import RestoreConfig


# ==============================================================================
# Captured Metadata
# ==============================================================================


@dataclass(frozen=True)
class DeviceIdentifierRecord:
    """One line of ``blkid`` output captured at backup time.

    Example line:
        /dev/nvme0n1p2: UUID="1c5e..." TYPE="crypto_LUKS" PARTUUID="9f1d..."
    """

    device_path: str  # e.g., "/dev/nvme0n1p2"
    type: Optional[str]  # e.g., "crypto_LUKS", "ext4", "vfat"
    uuid: Optional[str]
    label: Optional[str] = None
    fields: dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class MountTableEntry:
    """One non-comment line of the captured ``/etc/fstab``."""

    source: str  # e.g., "/dev/mapper/cryptroot" or "UUID=..."
    mountpoint: str
    fstype: str = ""
    options: str = ""


@dataclass(frozen=True)
class CapturedSnapshot:
    """Structural metadata of the original disk, as restored from the store."""

    metadata_dir: Path
    original_disk_path: str
    original_size_bytes: Optional[int]
    partition_table_path: Path
    identifier_records: tuple[DeviceIdentifierRecord, ...]
    mount_table_text: Optional[str] = None
    boot_archive: Optional[Path] = None
    esp_archive: Optional[Path] = None

    def find_record(self, device_path: str) -> Optional[DeviceIdentifierRecord]:
        """Return the first identifier record for ``device_path``."""
        for record in self.identifier_records:
            if record.device_path == device_path:
                return record
        return None


# ==============================================================================
# Derived Topology
# ==============================================================================


@dataclass(frozen=True)
class PartitionTopology:
    """Partition, encryption and filesystem layout to recreate."""

    efi_partition_path: str  # new, on the target device
    root_partition_path: str  # new, on the target device
    original_efi_partition_path: str
    original_root_partition_path: str
    encrypted: bool
    inner_filesystem_type: str
    inner_filesystem_uuid: Optional[str]
    encryption_container_uuid: Optional[str] = None
    encryption_container_name: Optional[str] = None

    @property
    def root_filesystem_device(self) -> str:
        """Device node that holds the root filesystem after creation."""
        if self.encrypted:
            return f"/dev/mapper/{self.encryption_container_name}"
        return self.root_partition_path

    def describe(self) -> list[str]:
        """Human-readable plan lines for logging."""
        lines = [
            f"EFI partition:  {self.original_efi_partition_path} -> {self.efi_partition_path}",
            f"Root partition: {self.original_root_partition_path} -> {self.root_partition_path}",
        ]
        if self.encrypted:
            lines.append(
                f"Encryption:     LUKS uuid={self.encryption_container_uuid or '(new)'} "
                f"name={self.encryption_container_name}"
            )
        else:
            lines.append("Encryption:     none")
        lines.append(
            f"Filesystem:     {self.inner_filesystem_type} "
            f"uuid={self.inner_filesystem_uuid or '(new)'}"
        )
        return lines


# ==============================================================================
# Target Device
# ==============================================================================


@dataclass(frozen=True)
class RestoreTarget:
    """A block device that passed every safety check."""

    device_path: str  # e.g., "/dev/sdb"
    size_bytes: Optional[int] = None  # None when the size check was skipped


@dataclass(frozen=True)
class TargetMountPlan:
    """Fixed two-level mount tree: root, with the ESP nested under it."""

    root: Path = Path("/mnt/target")

    @property
    def esp(self) -> Path:
        return self.root / "boot" / "efi"

    @property
    def esp_efi_dir(self) -> Path:
        return self.esp / "EFI"


@dataclass(frozen=True)
class StructureResult:
    """Identifiers actually written by the structure recreator."""

    root_filesystem_device: str
    root_filesystem_uuid: Optional[str]
    encryption_container_uuid: Optional[str] = None


@dataclass(frozen=True)
class FallbackLoaderResult:
    """Outcome of the fallback boot loader check."""

    status: str  # "present", "installed", "missing" or "failed"
    fallback_path: Path
    source_path: Optional[Path] = None


# ==============================================================================
# Pipeline Context
# ==============================================================================


@dataclass(frozen=True)
class RestoreContext:
    """Value threaded through the restore stages.

    Each stage receives a context and returns a new one with its own result
    filled in (``dataclasses.replace``); no stage mutates shared state.
    """

    config: RestoreConfig
    mount_plan: TargetMountPlan = field(default_factory=TargetMountPlan)
    snapshot: Optional[CapturedSnapshot] = None
    topology: Optional[PartitionTopology] = None
    target: Optional[RestoreTarget] = None
    structure: Optional[StructureResult] = None
    content_restored: bool = False
    fallback_loader: Optional[FallbackLoaderResult] = None
