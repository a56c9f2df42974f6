"""Restore configuration loading.

Reads either a JSON settings file or the shell-style ``restore.conf`` written
for the original backup/restore scripts::

    BACKUP_SERVER_USER="backup"
    BACKUP_SERVER_HOST="nas.local"
    BACKUP_BASE_PATH="/srv/restic"
    REPO_NAME="laptop"
    TARGET_DISK="/dev/nvme0n1"
    SNAPSHOT="latest"
"""

from __future__ import annotations

import json
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from restic_disk_restore.storage.exceptions import ConfigurationError


CONFIG_PATH = Path(
    os.environ.get("RESTIC_DISK_RESTORE_CONFIG", Path.cwd() / "restore.conf")
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SNAPSHOT = "latest"
DEFAULT_RESTORE_ROOT = "/tmp/restic-system-restore"
DEFAULT_MOUNT_ROOT = "/mnt/target"
DEFAULT_SETTLE_TIMEOUT_SECONDS = 10.0

DEFAULT_SETTINGS: dict[str, Any] = {
    "backup_server_user": None,
    "snapshot": DEFAULT_SNAPSHOT,
    "restore_root": DEFAULT_RESTORE_ROOT,
    "mount_root": DEFAULT_MOUNT_ROOT,
    "settle_timeout_seconds": DEFAULT_SETTLE_TIMEOUT_SECONDS,
}

REQUIRED_KEYS = (
    "backup_server_host",
    "backup_base_path",
    "repo_name",
    "target_disk",
)


@dataclass(frozen=True)
class RestoreConfig:
    backup_server_host: str
    backup_base_path: str
    repo_name: str
    target_disk: str
    backup_server_user: Optional[str] = None
    snapshot: str = DEFAULT_SNAPSHOT
    restore_root: Path = Path(DEFAULT_RESTORE_ROOT)
    mount_root: Path = Path(DEFAULT_MOUNT_ROOT)
    settle_timeout_seconds: float = DEFAULT_SETTLE_TIMEOUT_SECONDS

    @property
    def repository_url(self) -> str:
        """restic sftp repository URL built from the location components."""
        base = self.backup_base_path.rstrip("/")
        if self.backup_server_user:
            return (
                f"sftp:{self.backup_server_user}@{self.backup_server_host}:"
                f"{base}/{self.repo_name}"
            )
        return f"sftp:{self.backup_server_host}:{base}/{self.repo_name}"


def parse_shell_config(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` assignments from a shell-style config file.

    Values may be quoted. Comments, blank lines and ``export`` prefixes are
    accepted; anything else is a configuration error.
    """
    values: dict[str, str] = {}
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        try:
            tokens = shlex.split(raw_line, comments=True)
        except ValueError as error:
            raise ConfigurationError(
                f"Invalid config line {line_number}: {error}"
            ) from error
        if not tokens:
            continue
        if tokens[0] == "export":
            tokens = tokens[1:]
        if len(tokens) != 1 or "=" not in tokens[0]:
            raise ConfigurationError(
                f"Invalid config line {line_number}: expected KEY=value"
            )
        key, value = tokens[0].split("=", 1)
        values[key.strip().lower()] = value
    return values


def read_config_file(path: Path) -> dict[str, Any]:
    """Read raw settings from ``path`` (JSON or shell-style)."""
    if not path.exists():
        raise ConfigurationError(f"Config file {path} not found.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as error:
        raise ConfigurationError(f"Cannot read config file {path}: {error}") from error
    if path.suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as error:
            raise ConfigurationError(f"Invalid JSON in {path}: {error}") from error
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        return {str(key).lower(): value for key, value in data.items()}
    return parse_shell_config(text)


def build_config(values: dict[str, Any]) -> RestoreConfig:
    """Validate raw settings and build a RestoreConfig."""
    merged = dict(DEFAULT_SETTINGS)
    merged.update({key: value for key, value in values.items() if value not in (None, "")})

    for key in REQUIRED_KEYS:
        if not merged.get(key):
            raise ConfigurationError(f"{key.upper()} missing in config", key=key)

    try:
        settle_timeout = float(merged["settle_timeout_seconds"])
    except (TypeError, ValueError) as error:
        raise ConfigurationError(
            "SETTLE_TIMEOUT_SECONDS must be a number", key="settle_timeout_seconds"
        ) from error
    if settle_timeout <= 0:
        raise ConfigurationError(
            "SETTLE_TIMEOUT_SECONDS must be positive", key="settle_timeout_seconds"
        )

    return RestoreConfig(
        backup_server_host=str(merged["backup_server_host"]),
        backup_base_path=str(merged["backup_base_path"]),
        repo_name=str(merged["repo_name"]),
        target_disk=str(merged["target_disk"]),
        backup_server_user=merged.get("backup_server_user") or None,
        snapshot=str(merged["snapshot"]),
        restore_root=Path(merged["restore_root"]),
        mount_root=Path(merged["mount_root"]),
        settle_timeout_seconds=settle_timeout,
    )


def load_config(
    path: Optional[Path] = None, overrides: Optional[dict[str, Any]] = None
) -> RestoreConfig:
    """Load the restore configuration, applying command-line overrides."""
    values = read_config_file(path or CONFIG_PATH)
    if overrides:
        values.update({key: value for key, value in overrides.items() if value})
    return build_config(values)
