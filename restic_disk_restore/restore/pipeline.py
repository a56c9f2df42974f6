"""Restore pipeline driver.

Stages run strictly in order and the first failure stops the run:

    metadata   fetch and load the captured snapshot metadata
    topology   infer what to recreate on the target
    safety     validate and confirm the target (nothing written before this)
    structure  GPT, ESP, optional LUKS container, root filesystem
    content    mount, full restore, boot archive overlay
    boot       fallback UEFI loader

Each stage takes a RestoreContext and returns a new one.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Optional

from restic_disk_restore.config.settings import RestoreConfig
from restic_disk_restore.domain.models import RestoreContext, TargetMountPlan
from restic_disk_restore.logging import LoggerFactory, operation_context
from restic_disk_restore.services.restic import RemoteStore

from . import boot, content, metadata, safety, structure, topology


log = LoggerFactory.for_restore()

Stage = Callable[[RestoreContext], RestoreContext]


def initial_context(config: RestoreConfig) -> RestoreContext:
    return RestoreContext(config=config, mount_plan=TargetMountPlan(root=config.mount_root))


def _require(value, name: str):
    if value is None:
        raise RuntimeError(f"Restore stage ran before {name} was available")
    return value


def metadata_stage(store: RemoteStore) -> Stage:
    def run(ctx: RestoreContext) -> RestoreContext:
        snapshot = metadata.fetch_captured_snapshot(
            store, ctx.config.snapshot, ctx.config.restore_root
        )
        return replace(ctx, snapshot=snapshot)

    return run


def topology_stage(ctx: RestoreContext) -> RestoreContext:
    snapshot = _require(ctx.snapshot, "snapshot metadata")
    return replace(
        ctx, topology=topology.infer_topology(snapshot, ctx.config.target_disk)
    )


def safety_stage(confirm: safety.ConfirmFunc) -> Stage:
    def run(ctx: RestoreContext) -> RestoreContext:
        target = safety.check_target(
            ctx.config.target_disk,
            _require(ctx.snapshot, "snapshot metadata"),
            repository=ctx.config.repository_url,
            snapshot_id=ctx.config.snapshot,
            confirm=confirm,
        )
        return replace(ctx, target=target)

    return run


def structure_stage(ctx: RestoreContext) -> RestoreContext:
    snapshot = _require(ctx.snapshot, "snapshot metadata")
    result = structure.recreate_structure(
        _require(ctx.topology, "topology"),
        _require(ctx.target, "validated target"),
        snapshot.partition_table_path,
        settle_timeout_seconds=ctx.config.settle_timeout_seconds,
    )
    return replace(ctx, structure=result)


def content_stage(store: RemoteStore) -> Stage:
    def run(ctx: RestoreContext) -> RestoreContext:
        content.restore_content(
            store,
            ctx.config.snapshot,
            _require(ctx.snapshot, "snapshot metadata"),
            _require(ctx.topology, "topology"),
            ctx.mount_plan,
        )
        return replace(ctx, content_restored=True)

    return run


def boot_stage(ctx: RestoreContext) -> RestoreContext:
    return replace(ctx, fallback_loader=boot.ensure_fallback_loader(ctx.mount_plan))


def build_stages(
    store: RemoteStore,
    *,
    confirm: safety.ConfirmFunc = input,
    plan_only: bool = False,
) -> list[tuple[str, Stage]]:
    stages: list[tuple[str, Stage]] = [
        ("metadata", metadata_stage(store)),
        ("topology", topology_stage),
    ]
    if plan_only:
        return stages
    stages.extend(
        [
            ("safety", safety_stage(confirm)),
            ("structure", structure_stage),
            ("content", content_stage(store)),
            ("boot", boot_stage),
        ]
    )
    return stages


def completion_summary(ctx: RestoreContext) -> list[str]:
    """Lines printed after a successful restore."""
    topo = _require(ctx.topology, "topology")
    lines = [
        "Restore complete.",
        f"  Target disk:     {ctx.config.target_disk}",
        f"  EFI partition:   {topo.efi_partition_path}",
        f"  Root partition:  {topo.root_partition_path}",
    ]
    result = ctx.structure
    if result is not None:
        if topo.encrypted:
            lines.append(
                f"  LUKS container:  {topo.encryption_container_name} "
                f"(UUID {result.encryption_container_uuid})"
            )
        lines.append(
            f"  Root filesystem: {topo.inner_filesystem_type} "
            f"(UUID {result.root_filesystem_uuid})"
        )
    if ctx.fallback_loader is not None:
        lines.append(f"  Fallback loader: {ctx.fallback_loader.status}")
    lines.extend(
        [
            f"  Mounted at:      {ctx.mount_plan.root} and {ctx.mount_plan.esp}",
            "Next steps:",
            f"  - Inspect {ctx.mount_plan.root} and unmount it with "
            f"'umount -R {ctx.mount_plan.root}'",
        ]
    )
    if topo.encrypted:
        lines.append(
            f"  - Close the container with 'cryptsetup close "
            f"{topo.encryption_container_name}'"
        )
    lines.append("  - Remove the old disk and boot from the restored one")
    return lines


def run_restore(
    config: RestoreConfig,
    store: RemoteStore,
    *,
    confirm: safety.ConfirmFunc = input,
    plan_only: bool = False,
    context: Optional[RestoreContext] = None,
) -> RestoreContext:
    """Run every stage in order and return the final context.

    Raises:
        RestoreError: From the first stage that fails; later stages never run
    """
    ctx = context or initial_context(config)
    log.info(
        f"Restoring {config.repository_url} snapshot={config.snapshot} "
        f"to {config.target_disk}"
    )
    for name, stage in build_stages(store, confirm=confirm, plan_only=plan_only):
        with operation_context(name, target=config.target_disk):
            ctx = stage(ctx)

    if plan_only:
        log.info("Plan only; no device was modified.")
        return ctx

    for line in completion_summary(ctx):
        log.info(line)
    return ctx
