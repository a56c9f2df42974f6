"""
Pytest configuration and shared fixtures for restic-disk-restore tests.

This module provides captured-metadata samples, a fake remote store and
subprocess mocks used across all test modules. No external tool is ever run.
"""

import json
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest

from restic_disk_restore.config.settings import RestoreConfig
from restic_disk_restore.restore.metadata import METADATA_DIR_REL


# ==============================================================================
# Captured Metadata Samples
# ==============================================================================


PLAIN_XFS_BLKID = (
    '/dev/sda1: UUID="1A2B-3C4D" BLOCK_SIZE="512" TYPE="vfat" '
    'PARTLABEL="EFI" PARTUUID="0a1b2c3d-0000-4000-8000-000000000001"\n'
    '/dev/sda2: UUID="AAAA-1111" BLOCK_SIZE="512" TYPE="xfs" '
    'PARTUUID="0a1b2c3d-0000-4000-8000-000000000002"\n'
)

LUKS_EXT4_BLKID = (
    '/dev/nvme0n1p1: UUID="5E6F-7A8B" TYPE="vfat" '
    'PARTUUID="9f1d0000-0000-4000-8000-000000000001"\n'
    '/dev/nvme0n1p2: UUID="L1" TYPE="crypto_LUKS" '
    'PARTUUID="9f1d0000-0000-4000-8000-000000000002"\n'
    '/dev/mapper/cryptroot: UUID="E1" BLOCK_SIZE="4096" TYPE="ext4"\n'
)

LUKS_FSTAB = """\
# /etc/fstab: static file system information.
#
# <file system>          <mount point>  <type>  <options>         <dump> <pass>
/dev/mapper/cryptroot    /              ext4    errors=remount-ro 0      1
UUID=5E6F-7A8B           /boot/efi      vfat    umask=0077        0      1
tmpfs                    /tmp           tmpfs   defaults          0      0
"""

PLAIN_FSTAB = """\
UUID=AAAA-1111  /          xfs   defaults   0 1
UUID=1A2B-3C4D  /boot/efi  vfat  umask=0077 0 1
"""


@pytest.fixture
def plain_xfs_blkid() -> str:
    """blkid output of a plain (unencrypted) xfs root on /dev/sda."""
    return PLAIN_XFS_BLKID


@pytest.fixture
def luks_ext4_blkid() -> str:
    """blkid output of a LUKS root with ext4 inside on /dev/nvme0n1."""
    return LUKS_EXT4_BLKID


@pytest.fixture
def luks_fstab() -> str:
    return LUKS_FSTAB


def _write_metadata(
    metadata_dir: Path,
    *,
    system_disk: Optional[str] = "/dev/sda",
    disk_size: Optional[str] = "500107862016",
    blkid: Optional[str] = PLAIN_XFS_BLKID,
    fstab: Optional[str] = PLAIN_FSTAB,
    gpt: Optional[bytes] = b"EFI PART" + b"\x00" * 120,
    boot_tar: bool = False,
    esp_tar: bool = False,
) -> Path:
    metadata_dir.mkdir(parents=True, exist_ok=True)
    if system_disk is not None:
        (metadata_dir / "system_disk.txt").write_text(f"{system_disk}\n", encoding="utf-8")
    if disk_size is not None:
        (metadata_dir / "disk-size-bytes.txt").write_text(f"{disk_size}\n", encoding="utf-8")
    if blkid is not None:
        (metadata_dir / "blkid.txt").write_text(blkid, encoding="utf-8")
    if fstab is not None:
        (metadata_dir / "fstab").write_text(fstab, encoding="utf-8")
    if gpt is not None:
        (metadata_dir / "disk.gpt").write_bytes(gpt)
    if boot_tar:
        (metadata_dir / "boot.tar").write_bytes(b"boot archive")
    if esp_tar:
        (metadata_dir / "boot-efi.tar").write_bytes(b"esp archive")
    return metadata_dir


@pytest.fixture
def make_metadata_dir(tmp_path) -> Callable[..., Path]:
    """
    Fixture providing a factory for captured metadata directories.

    Keyword arguments override individual files; pass None to omit one.

    Returns:
        Callable returning the populated metadata directory path.
    """

    def factory(name: str = "system-meta", **overrides) -> Path:
        return _write_metadata(tmp_path / "captured" / name, **overrides)

    return factory


# ==============================================================================
# Remote Store Fixtures
# ==============================================================================


class FakeStore:
    """In-memory stand-in for a restic repository.

    A metadata restore (``include`` set) copies ``metadata_source`` into the
    staging tree at the path restic would use. A full restore only records
    the call and writes ``full_tree`` (relative path -> bytes) under the
    target. ``errors`` maps "metadata" or "full" to an exception to raise.
    """

    def __init__(self, metadata_source: Optional[Path] = None):
        self.metadata_source = metadata_source
        self.full_tree: Dict[str, bytes] = {}
        self.calls: List[Dict[str, object]] = []
        self.errors: Dict[str, Exception] = {}

    def restore(self, snapshot_id, target_dir, include=None):
        self.calls.append(
            {"snapshot_id": snapshot_id, "target_dir": Path(target_dir), "include": include}
        )
        kind = "metadata" if include else "full"
        if kind in self.errors:
            raise self.errors[kind]
        if include and self.metadata_source is not None:
            destination = Path(target_dir) / METADATA_DIR_REL.lstrip("/")
            shutil.copytree(self.metadata_source, destination)
        if not include:
            for relative, data in self.full_tree.items():
                path = Path(target_dir) / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


# ==============================================================================
# Configuration Fixtures
# ==============================================================================


@pytest.fixture
def restore_config(tmp_path) -> RestoreConfig:
    """
    Fixture providing a restore configuration rooted in tmp_path.

    Returns:
        RestoreConfig targeting /dev/sdb with staging and mounts under tmp_path.
    """
    return RestoreConfig(
        backup_server_host="nas.local",
        backup_base_path="/srv/restic",
        repo_name="laptop",
        target_disk="/dev/sdb",
        backup_server_user="backup",
        snapshot="latest",
        restore_root=tmp_path / "staging",
        mount_root=tmp_path / "mnt" / "target",
        settle_timeout_seconds=1.0,
    )


@pytest.fixture
def temp_config_file(tmp_path) -> Path:
    """Path for a config file inside tmp_path (not created)."""
    return tmp_path / "restore.conf"


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


MUTATING_TOOLS = (
    "sgdisk",
    "partprobe",
    "mkfs.vfat",
    "mkfs.ext4",
    "mkfs.btrfs",
    "mkfs.xfs",
    "xfs_admin",
    "cryptsetup",
    "mount",
    "tar",
)


class FakeTools:
    """Scripted stand-in for subprocess.run, keyed on the program name.

    Every command is recorded in ``commands``; ``blockdev --getsize64``,
    ``lsblk`` and ``blkid`` answer from ``disk_size``, ``partitions`` and
    ``uuids``. Anything else succeeds silently.
    """

    def __init__(self):
        self.commands: List[List[str]] = []
        self.disk_size = 1000 * 1000**3
        self.partitions: List[Dict[str, str]] = []
        self.uuids: Dict[str, str] = {}

    def __call__(self, command, **kwargs):
        self.commands.append(list(command))
        program = Path(command[0]).name
        if program == "blockdev" and "--getsize64" in command:
            return Mock(returncode=0, stdout=f"{self.disk_size}\n", stderr="")
        if program == "lsblk":
            device = {"name": Path(command[-1]).name, "type": "disk", "children": self.partitions}
            return Mock(returncode=0, stdout=json.dumps({"blockdevices": [device]}), stderr="")
        if program == "blkid":
            value = self.uuids.get(command[-1])
            if value is None:
                return Mock(returncode=2, stdout="", stderr="")
            return Mock(returncode=0, stdout=f"{value}\n", stderr="")
        return Mock(returncode=0, stdout="", stderr="")

    def programs(self) -> List[str]:
        return [Path(command[0]).name for command in self.commands]

    def mutating_commands(self) -> List[List[str]]:
        return [
            command for command in self.commands if Path(command[0]).name in MUTATING_TOOLS
        ]


@pytest.fixture
def fake_tools(mocker) -> FakeTools:
    """
    Fixture replacing every external tool with scripted responses.

    Patches subprocess.run, shutil.which, block device checks and the mount
    table so a full restore can run against a temporary directory.

    Returns:
        FakeTools recording each command issued.
    """
    tools = FakeTools()
    mocker.patch("subprocess.run", side_effect=tools)
    mocker.patch("shutil.which", side_effect=lambda name: f"/usr/sbin/{name}")
    mocker.patch("restic_disk_restore.storage.devices.is_block_device", return_value=True)
    mocker.patch("restic_disk_restore.storage.mount.is_mountpoint_active", return_value=False)
    return tools
