"""Remote content-addressed store backed by a restic repository.

The restore only needs one store primitive::

    restore(snapshot_id, target_dir, include=None)

It is called twice per run: once filtered to the metadata subtree and once
unfiltered for the full system tree.

Password Handling:
    The repository password is always typed interactively. Any RESTIC_*
    variables that would supply it (or a different repository) are removed
    from the child environment, and restic runs attached to the terminal so
    its prompt is visible.

Exit Codes (restic >= 0.17):
    10: repository does not exist     -> SnapshotNotFoundError
    12: wrong password                -> StoreAuthenticationError
    other non-zero                    -> StoreError
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Protocol

from restic_disk_restore.logging import LoggerFactory


log = LoggerFactory.for_store()

SCRUBBED_ENV_VARS = (
    "RESTIC_REPOSITORY",
    "RESTIC_REPOSITORY_FILE",
    "RESTIC_PASSWORD",
    "RESTIC_PASSWORD_COMMAND",
    "RESTIC_PASSWORD_FILE",
)

EXIT_REPOSITORY_MISSING = 10
EXIT_WRONG_PASSWORD = 12


class StoreError(Exception):
    """The remote store could not complete a restore."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


class SnapshotNotFoundError(StoreError):
    """Repository or snapshot does not exist."""


class StoreAuthenticationError(StoreError):
    """Repository password was rejected."""


class RemoteStore(Protocol):
    def restore(
        self, snapshot_id: str, target_dir: Path, include: Optional[str] = None
    ) -> None:
        ...


def scrubbed_environment(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Copy of the environment without variables that bypass the password prompt."""
    env = dict(os.environ if environ is None else environ)
    for name in SCRUBBED_ENV_VARS:
        env.pop(name, None)
    return env


class ResticStore:
    """restic repository accessed through the restic command line."""

    def __init__(self, repository: str, *, restic_binary: str = "restic"):
        self.repository = repository
        self.restic_binary = restic_binary

    def build_restore_command(
        self, snapshot_id: str, target_dir: Path, include: Optional[str] = None
    ) -> list[str]:
        command = [
            self.restic_binary,
            "restore",
            snapshot_id,
            "-r",
            self.repository,
            "--target",
            str(target_dir),
        ]
        if include:
            command.extend(["--include", include])
        return command

    def restore(
        self, snapshot_id: str, target_dir: Path, include: Optional[str] = None
    ) -> None:
        """Restore ``snapshot_id`` (optionally only ``include``) into ``target_dir``.

        Raises:
            SnapshotNotFoundError: Repository or snapshot missing
            StoreAuthenticationError: Wrong repository password
            StoreError: Any other restic failure
        """
        if not shutil.which(self.restic_binary):
            raise StoreError(f"{self.restic_binary} not found")
        command = self.build_restore_command(snapshot_id, target_dir, include)
        scope = include or "full tree"
        log.info(
            f"Restoring {scope} from {self.repository} snapshot={snapshot_id} "
            f"into {target_dir}"
        )
        log.debug(f"Running command: {' '.join(command)}")
        result = subprocess.run(command, env=scrubbed_environment())
        if result.returncode == 0:
            return
        if result.returncode == EXIT_REPOSITORY_MISSING:
            raise SnapshotNotFoundError(
                f"Repository {self.repository} does not exist",
                returncode=result.returncode,
            )
        if result.returncode == EXIT_WRONG_PASSWORD:
            raise StoreAuthenticationError(
                f"Wrong password for repository {self.repository}",
                returncode=result.returncode,
            )
        raise StoreError(
            f"restic restore of snapshot {snapshot_id} failed "
            f"(rc={result.returncode})",
            returncode=result.returncode,
        )
