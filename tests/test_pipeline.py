"""
Integration tests for the restore pipeline.

These tests drive run_restore() end to end against a fake remote store and
scripted external tools:
- Plain xfs root restored with its original UUID
- Encrypted root with ext4 inside
- Undersized target refused before any device mutation
- Plan-only mode
- First failing stage stops the run
"""

import shutil
from dataclasses import replace
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from restic_disk_restore.domain.models import PartitionTopology, StructureResult
from restic_disk_restore.restore import pipeline
from restic_disk_restore.services.restic import StoreError
from restic_disk_restore.storage.exceptions import (
    ContentRestoreFailed,
    MetadataUnavailable,
    StructureCreationFailed,
    UnsafeTarget,
    UnsupportedFilesystem,
)


GB = 1000**3


def _confirm_yes(prompt):
    return "YES"


@pytest.fixture
def xfs_store(fake_store, make_metadata_dir):
    """Store whose snapshot captured a 500 GB disk with an xfs root (AAAA-1111)."""
    fake_store.metadata_source = make_metadata_dir(boot_tar=True)
    fake_store.full_tree = {"boot/efi/EFI/systemd/systemd-bootx64.efi": b"systemd-boot"}
    return fake_store


class TestPlainXfsRestore:
    """End-to-end restore of a plain xfs root onto /dev/sdb."""

    def test_success(self, restore_config, xfs_store, fake_tools):
        fake_tools.disk_size = 1000 * GB
        fake_tools.uuids["/dev/sdb2"] = "AAAA-1111"

        ctx = pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        assert ctx.target.device_path == "/dev/sdb"
        assert ctx.topology.encrypted is False
        assert ctx.structure.root_filesystem_uuid == "AAAA-1111"
        assert ctx.content_restored is True
        assert ctx.fallback_loader.status == "installed"

        commands = fake_tools.commands
        gpt_table = ctx.snapshot.partition_table_path
        assert ["/usr/sbin/sgdisk", f"--load-backup={gpt_table}", "/dev/sdb"] in commands
        assert ["mkfs.vfat", "-F", "32", "/dev/sdb1"] in commands
        assert ["mkfs.xfs", "-f", "/dev/sdb2"] in commands
        assert ["xfs_admin", "-U", "AAAA-1111", "/dev/sdb2"] in commands
        assert "cryptsetup" not in fake_tools.programs()

        root = restore_config.mount_root
        assert ["mount", "/dev/sdb2", str(root)] in commands
        assert ["mount", "/dev/sdb1", str(root / "boot" / "efi")] in commands
        assert ["tar", "-xpf", str(ctx.snapshot.boot_archive), "-C", str(root)] in commands

        assert [call["include"] for call in xfs_store.calls] == [
            "/var/backups/system-meta",
            None,
        ]
        assert (root / "boot/efi/EFI/BOOT/BOOTX64.EFI").read_bytes() == b"systemd-boot"

    def test_fallback_copy_failure_still_completes(self, restore_config, xfs_store, fake_tools):
        fake_tools.uuids["/dev/sdb2"] = "AAAA-1111"
        real_copyfile = shutil.copyfile

        def copyfile(src, dst, *args, **kwargs):
            if str(dst).endswith("BOOTX64.EFI"):
                raise OSError(28, "No space left on device")
            return real_copyfile(src, dst, *args, **kwargs)

        with patch("shutil.copyfile", side_effect=copyfile):
            ctx = pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        assert ctx.fallback_loader.status == "failed"
        assert "Fallback loader: failed" in "\n".join(pipeline.completion_summary(ctx))

    def test_blkid_failure_is_structure_error(self, restore_config, xfs_store, fake_tools):
        def run_without_blkid(command, **kwargs):
            if Path(command[0]).name == "blkid":
                raise FileNotFoundError(command[0])
            return fake_tools(command, **kwargs)

        with patch("subprocess.run", side_effect=run_without_blkid):
            with pytest.raises(StructureCreationFailed, match="Cannot read UUID of /dev/sdb2"):
                pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        assert "mount" not in fake_tools.programs()

    def test_stage_order(self, restore_config, xfs_store, fake_tools):
        fake_tools.uuids["/dev/sdb2"] = "AAAA-1111"

        pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        programs = fake_tools.programs()
        first = {name: programs.index(name) for name in set(programs)}
        assert first["lsblk"] < first["sgdisk"] < first["mkfs.vfat"] < first["mkfs.xfs"]
        assert first["mkfs.xfs"] < first["mount"] < first["tar"]

    def test_undersized_target_left_untouched(self, restore_config, xfs_store, fake_tools):
        fake_tools.disk_size = 10 * GB

        with pytest.raises(UnsafeTarget, match="smaller than original"):
            pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        assert fake_tools.mutating_commands() == []
        assert len(xfs_store.calls) == 1

    def test_partitioned_target_left_untouched(self, restore_config, xfs_store, fake_tools):
        fake_tools.partitions = [{"name": "sdb1", "type": "part"}]

        with pytest.raises(UnsafeTarget, match="has partitions"):
            pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        assert fake_tools.mutating_commands() == []

    def test_refused_confirmation(self, restore_config, xfs_store, fake_tools):
        with pytest.raises(UnsafeTarget, match="did not confirm"):
            pipeline.run_restore(restore_config, xfs_store, confirm=lambda prompt: "no")

        assert fake_tools.commands == []


class TestEncryptedRestore:
    """End-to-end restore of a LUKS root with ext4 inside."""

    def test_success(
        self, restore_config, fake_store, fake_tools, make_metadata_dir, luks_ext4_blkid, luks_fstab
    ):
        fake_store.metadata_source = make_metadata_dir(
            system_disk="/dev/nvme0n1", blkid=luks_ext4_blkid, fstab=luks_fstab
        )
        fake_tools.uuids.update({"/dev/sdb2": "L1", "/dev/mapper/cryptroot": "E1"})

        ctx = pipeline.run_restore(restore_config, fake_store, confirm=_confirm_yes)

        commands = fake_tools.commands
        assert ["cryptsetup", "luksFormat", "--uuid=L1", "/dev/sdb2"] in commands
        assert ["cryptsetup", "open", "/dev/sdb2", "cryptroot"] in commands
        assert ["mkfs.ext4", "-F", "-U", "E1", "/dev/mapper/cryptroot"] in commands
        assert ["mount", "/dev/mapper/cryptroot", str(restore_config.mount_root)] in commands
        assert ctx.structure.encryption_container_uuid == "L1"
        assert ctx.fallback_loader.status == "missing"


class TestPipelineControl:
    """Plan mode and stage failure handling."""

    def test_plan_only(self, restore_config, xfs_store, fake_tools):
        confirm = Mock()

        ctx = pipeline.run_restore(restore_config, xfs_store, confirm=confirm, plan_only=True)

        assert ctx.topology.inner_filesystem_uuid == "AAAA-1111"
        assert ctx.target is None
        confirm.assert_not_called()
        assert fake_tools.commands == []

    def test_topology_failure_stops_before_safety(
        self, restore_config, fake_store, fake_tools, make_metadata_dir
    ):
        fake_store.metadata_source = make_metadata_dir(
            blkid='/dev/sda1: TYPE="vfat"\n/dev/sda2: UUID="N1" TYPE="ntfs"\n'
        )
        confirm = Mock()

        with pytest.raises(UnsupportedFilesystem):
            pipeline.run_restore(restore_config, fake_store, confirm=confirm)

        confirm.assert_not_called()
        assert fake_tools.commands == []

    def test_metadata_failure(self, restore_config, fake_store, fake_tools):
        fake_store.errors["metadata"] = StoreError("restic failed", returncode=1)

        with pytest.raises(MetadataUnavailable):
            pipeline.run_restore(restore_config, fake_store, confirm=_confirm_yes)

    def test_content_failure_after_structure(self, restore_config, xfs_store, fake_tools):
        fake_tools.uuids["/dev/sdb2"] = "AAAA-1111"
        xfs_store.errors["full"] = StoreError("connection lost", returncode=1)

        with pytest.raises(ContentRestoreFailed):
            pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        assert "mkfs.xfs" in fake_tools.programs()

    def test_stage_without_prerequisite(self, restore_config):
        with pytest.raises(RuntimeError, match="snapshot metadata"):
            pipeline.topology_stage(pipeline.initial_context(restore_config))


class TestCompletionSummary:
    """Tests for completion_summary() function."""

    def test_lists_restored_identifiers(self, restore_config, xfs_store, fake_tools):
        fake_tools.uuids["/dev/sdb2"] = "AAAA-1111"
        ctx = pipeline.run_restore(restore_config, xfs_store, confirm=_confirm_yes)

        summary = "\n".join(pipeline.completion_summary(ctx))

        assert "Restore complete." in summary
        assert "xfs (UUID AAAA-1111)" in summary
        assert "Fallback loader: installed" in summary
        assert f"umount -R {restore_config.mount_root}" in summary
        assert "cryptsetup close" not in summary

    def test_encrypted_hint(self, restore_config):
        topology = PartitionTopology(
            efi_partition_path="/dev/sdb1",
            root_partition_path="/dev/sdb2",
            original_efi_partition_path="/dev/nvme0n1p1",
            original_root_partition_path="/dev/nvme0n1p2",
            encrypted=True,
            inner_filesystem_type="ext4",
            inner_filesystem_uuid="E1",
            encryption_container_uuid="L1",
            encryption_container_name="cryptroot",
        )
        ctx = replace(
            pipeline.initial_context(restore_config),
            topology=topology,
            structure=StructureResult("/dev/mapper/cryptroot", "E1", "L1"),
        )

        summary = "\n".join(pipeline.completion_summary(ctx))

        assert "cryptroot (UUID L1)" in summary
        assert "cryptsetup close cryptroot" in summary
