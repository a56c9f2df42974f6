"""LUKS container creation with cryptsetup.

Both operations are interactive: cryptsetup asks the operator for the
passphrase (and for the capital-letters confirmation on luksFormat), so the
commands run attached to the terminal.
"""

from __future__ import annotations

from typing import Optional

from restic_disk_restore.logging import LoggerFactory

from .devices import run_command


log = LoggerFactory.for_storage()


def mapper_path(name: str) -> str:
    return f"/dev/mapper/{name}"


def luks_format(partition_path: str, container_uuid: Optional[str]) -> None:
    """Create a LUKS container, forcing its UUID when one is known.

    Without a captured UUID cryptsetup generates a new one. crypttab entries
    and kernel command lines that reference the old UUID stop matching, so
    that case is logged as a warning.
    """
    command = ["cryptsetup", "luksFormat"]
    if container_uuid:
        log.info(
            f"Creating LUKS container on {partition_path} "
            f"with original UUID {container_uuid}"
        )
        command.append(f"--uuid={container_uuid}")
    else:
        log.warning(
            f"No original LUKS UUID captured; creating container on {partition_path} "
            "with a new UUID. crypttab and boot entries referencing the old UUID "
            "must be updated after restore."
        )
    command.append(partition_path)
    run_command(command, capture=False)


def luks_open(partition_path: str, name: str) -> str:
    """Open a LUKS container and return its mapper device path."""
    log.info(f"Opening LUKS container {partition_path} as {name}")
    run_command(["cryptsetup", "open", partition_path, name], capture=False)
    return mapper_path(name)
