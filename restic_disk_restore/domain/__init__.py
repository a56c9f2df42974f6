"""Domain models for UUID-preserving disk restore.

This package contains type-safe domain objects for captured snapshot
metadata, the inferred partition topology and the restore pipeline context.
"""

from __future__ import annotations

from .models import (
    CapturedSnapshot,
    DeviceIdentifierRecord,
    FallbackLoaderResult,
    MountTableEntry,
    PartitionTopology,
    RestoreContext,
    RestoreTarget,
    StructureResult,
    TargetMountPlan,
)


__all__ = [
    "CapturedSnapshot",
    "DeviceIdentifierRecord",
    "FallbackLoaderResult",
    "MountTableEntry",
    "PartitionTopology",
    "RestoreContext",
    "RestoreTarget",
    "StructureResult",
    "TargetMountPlan",
]
