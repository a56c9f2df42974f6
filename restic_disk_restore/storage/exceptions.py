"""Custom exceptions for restore operations.

This module defines a hierarchy of exceptions for the restore pipeline so the
driver can stop at the first failed stage and report a specific reason.

Exception Hierarchy:
    RestoreError (base)
        ├── ConfigurationError
        ├── MetadataUnavailable
        ├── MalformedMetadata
        ├── UnsupportedTopology
        │   ├── AmbiguousMapperName
        │   └── UnsupportedFilesystem
        ├── UnsafeTarget
        ├── StructureCreationFailed
        └── ContentRestoreFailed

Every restore error is terminal. None of them is retried automatically.

Usage:
    from restic_disk_restore.storage.exceptions import UnsafeTarget

    if target_size < original_size:
        raise UnsafeTarget(target, "target disk is smaller than original")
"""

from typing import Optional


class RestoreError(Exception):
    """Base exception for all restore operations."""


class ConfigurationError(RestoreError):
    """Restore configuration is missing or invalid."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class MetadataUnavailable(RestoreError):
    """The metadata subtree could not be fetched from the remote store."""

    def __init__(self, snapshot_id: str, reason: str):
        self.snapshot_id = snapshot_id
        self.reason = reason
        super().__init__(
            f"Metadata unavailable for snapshot {snapshot_id}: {reason}"
        )


class MalformedMetadata(RestoreError):
    """A required metadata file is missing or cannot be parsed."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Malformed metadata in {filename}: {reason}")


class UnsupportedTopology(RestoreError):
    """The captured disk layout cannot be reproduced."""


class AmbiguousMapperName(UnsupportedTopology):
    """The encrypted root mapper name cannot be resolved uniquely."""

    def __init__(self, candidates: list[str]):
        self.candidates = list(candidates)
        if self.candidates:
            found = ", ".join(self.candidates)
            message = (
                "Cannot determine encrypted root mapper name: "
                f"multiple /dev/mapper entries mounted at / ({found})"
            )
        else:
            message = (
                "Cannot determine encrypted root mapper name: "
                "no /dev/mapper entry mounted at / in fstab"
            )
        super().__init__(message)


class UnsupportedFilesystem(UnsupportedTopology):
    """The root filesystem type is outside the supported set."""

    def __init__(self, fstype: str, supported: tuple[str, ...]):
        self.fstype = fstype
        self.supported = supported
        super().__init__(
            f"Unsupported root filesystem type {fstype!r} "
            f"(supported: {', '.join(supported)})"
        )


class UnsafeTarget(RestoreError):
    """The target device failed a safety check. It has not been modified."""

    def __init__(self, device_path: str, reason: str):
        self.device_path = device_path
        self.reason = reason
        super().__init__(f"Refusing to restore to {device_path}: {reason}")


class StructureCreationFailed(RestoreError):
    """Partition table, encryption container or filesystem creation failed."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class ContentRestoreFailed(RestoreError):
    """Mounting or file-level restore onto the new filesystems failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class CommandError(Exception):
    """An external tool exited with a non-zero status."""

    def __init__(
        self,
        command: list[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        details = " ".join(self.stderr.strip().split()) or " ".join(
            self.stdout.strip().split()
        )
        message = f"Command failed ({' '.join(self.command)}) rc={returncode}"
        if details:
            message += f": {details}"
        super().__init__(message)
