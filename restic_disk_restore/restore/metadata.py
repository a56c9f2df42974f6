"""Metadata store reader.

Restores the metadata subtree captured at backup time into a clean staging
directory and loads it as a CapturedSnapshot.

Metadata Layout (``/var/backups/system-meta`` inside the snapshot):
    system_disk.txt       original disk path            (required)
    disk-size-bytes.txt   original size in bytes        (optional)
    disk.gpt              sgdisk --backup blob          (required)
    blkid.txt             blkid output                  (required)
    fstab                 copy of /etc/fstab            (required for LUKS root)
    boot.tar              archive of /boot              (optional)
    boot-efi.tar          archive of /boot/efi          (optional)
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

from restic_disk_restore.domain.models import CapturedSnapshot
from restic_disk_restore.logging import LoggerFactory
from restic_disk_restore.services.restic import RemoteStore, StoreError
from restic_disk_restore.storage.exceptions import (
    MalformedMetadata,
    MetadataUnavailable,
)

from .records import BLKID_FILENAME, FSTAB_FILENAME, parse_blkid_records


log = LoggerFactory.for_restore()

METADATA_DIR_REL = "/var/backups/system-meta"

SYSTEM_DISK_FILENAME = "system_disk.txt"
DISK_SIZE_FILENAME = "disk-size-bytes.txt"
GPT_FILENAME = "disk.gpt"
BOOT_ARCHIVE_FILENAME = "boot.tar"
ESP_ARCHIVE_FILENAME = "boot-efi.tar"


def metadata_dir_for(staging_root: Path) -> Path:
    return staging_root / METADATA_DIR_REL.lstrip("/")


def reset_staging_dir(staging_root: Path) -> None:
    """Wipe and recreate the staging directory so no state leaks between runs."""
    log.info(f"Cleaning restore root: {staging_root}")
    if staging_root.exists():
        shutil.rmtree(staging_root)
    staging_root.mkdir(parents=True)


def _read_required_text(metadata_dir: Path, filename: str) -> str:
    path = metadata_dir / filename
    if not path.is_file():
        raise MalformedMetadata(filename, "file missing; the backup must write it")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise MalformedMetadata(filename, f"unreadable: {error}") from error
    if not text.strip():
        raise MalformedMetadata(filename, "file is empty")
    return text


def _read_optional_text(metadata_dir: Path, filename: str) -> Optional[str]:
    path = metadata_dir / filename
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise MalformedMetadata(filename, f"unreadable: {error}") from error


def read_original_size(metadata_dir: Path) -> Optional[int]:
    """Read the captured disk size; None when older captures lack it."""
    text = _read_optional_text(metadata_dir, DISK_SIZE_FILENAME)
    if text is None:
        return None
    value = text.strip()
    if not (value.isascii() and value.isdigit()):
        raise MalformedMetadata(
            DISK_SIZE_FILENAME, f"invalid original size {value!r}"
        )
    return int(value)


def _optional_file(metadata_dir: Path, filename: str) -> Optional[Path]:
    path = metadata_dir / filename
    return path if path.is_file() else None


def load_captured_snapshot(metadata_dir: Path) -> CapturedSnapshot:
    """Load a CapturedSnapshot from an already restored metadata directory.

    Raises:
        MalformedMetadata: If a required file is missing or unparsable
    """
    original_disk = _read_required_text(metadata_dir, SYSTEM_DISK_FILENAME).strip()
    if not original_disk.startswith("/dev/") or len(original_disk.splitlines()) != 1:
        raise MalformedMetadata(
            SYSTEM_DISK_FILENAME, f"not a device path: {original_disk!r}"
        )

    original_size = read_original_size(metadata_dir)

    gpt_path = metadata_dir / GPT_FILENAME
    if not gpt_path.is_file():
        raise MalformedMetadata(GPT_FILENAME, "GPT backup file not found")
    if gpt_path.stat().st_size == 0:
        raise MalformedMetadata(GPT_FILENAME, "GPT backup file is empty")

    records = parse_blkid_records(_read_required_text(metadata_dir, BLKID_FILENAME))
    if not records:
        raise MalformedMetadata(BLKID_FILENAME, "no device records")

    snapshot = CapturedSnapshot(
        metadata_dir=metadata_dir,
        original_disk_path=original_disk,
        original_size_bytes=original_size,
        partition_table_path=gpt_path,
        identifier_records=records,
        mount_table_text=_read_optional_text(metadata_dir, FSTAB_FILENAME),
        boot_archive=_optional_file(metadata_dir, BOOT_ARCHIVE_FILENAME),
        esp_archive=_optional_file(metadata_dir, ESP_ARCHIVE_FILENAME),
    )
    log.info(f"Original system disk (at backup time): {snapshot.original_disk_path}")
    log.debug(
        f"Loaded {len(records)} identifier records; "
        f"boot.tar={'yes' if snapshot.boot_archive else 'no'} "
        f"boot-efi.tar={'yes' if snapshot.esp_archive else 'no'}"
    )
    return snapshot


def fetch_captured_snapshot(
    store: RemoteStore, snapshot_id: str, staging_root: Path
) -> CapturedSnapshot:
    """Restore only the metadata subtree of ``snapshot_id`` and load it.

    Raises:
        MetadataUnavailable: If the store fails or the subtree is absent
        MalformedMetadata: If a required file is missing or unparsable
    """
    try:
        reset_staging_dir(staging_root)
    except OSError as error:
        raise MetadataUnavailable(
            snapshot_id, f"cannot prepare staging directory {staging_root}: {error}"
        ) from error

    log.info(f"Restoring metadata ({METADATA_DIR_REL}) from snapshot={snapshot_id}")
    try:
        store.restore(snapshot_id, staging_root, include=METADATA_DIR_REL)
    except StoreError as error:
        raise MetadataUnavailable(snapshot_id, str(error)) from error

    metadata_dir = metadata_dir_for(staging_root)
    if not metadata_dir.is_dir():
        raise MetadataUnavailable(
            snapshot_id,
            f"metadata directory {metadata_dir} not found after restore",
        )
    return load_captured_snapshot(metadata_dir)
