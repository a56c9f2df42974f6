"""Fallback boot loader for firmware that has no boot entry for the new disk.

UEFI firmware boots ``EFI/BOOT/BOOTX64.EFI`` from any ESP when no NVRAM entry
matches. The boot entries of the original machine are not restored, so the
restored ESP gets a copy of a known loader at that path if it lacks one.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

from restic_disk_restore.domain.models import FallbackLoaderResult, TargetMountPlan
from restic_disk_restore.logging import LoggerFactory


log = LoggerFactory.for_restore()

FALLBACK_RELATIVE_PATH = Path("BOOT") / "BOOTX64.EFI"
KNOWN_LOADER_CANDIDATES = (
    Path("systemd") / "systemd-bootx64.efi",
    Path("Linux") / "BOOTX64.EFI",
)
MAX_SEARCH_DEPTH = 3


def find_efi_binary(efi_root: Path, max_depth: int = MAX_SEARCH_DEPTH) -> Optional[Path]:
    """First ``*.efi`` file (any case) within ``max_depth`` levels, in sorted order."""
    if not efi_root.is_dir():
        return None
    pending = [(efi_root, 1)]
    while pending:
        directory, depth = pending.pop(0)
        try:
            entries = sorted(directory.iterdir())
        except OSError as error:
            log.debug(f"Cannot list {directory}: {error}")
            continue
        for entry in entries:
            if entry.is_file() and entry.suffix.lower() == ".efi":
                return entry
        if depth < max_depth:
            pending.extend((entry, depth + 1) for entry in entries if entry.is_dir())
    return None


def select_fallback_source(efi_root: Path) -> Optional[Path]:
    for candidate in KNOWN_LOADER_CANDIDATES:
        path = efi_root / candidate
        if path.is_file():
            log.info(f"Selected fallback source: {path}")
            return path
    source = find_efi_binary(efi_root)
    if source is not None:
        log.info(f"No known loaders matched; using first EFI binary found: {source}")
    return source


def ensure_fallback_loader(plan: TargetMountPlan) -> FallbackLoaderResult:
    """Make sure ``EFI/BOOT/BOOTX64.EFI`` exists on the restored ESP.

    Never raises: a missing loader or a failed copy is logged as a warning
    because the system may still boot through other firmware entries.
    """
    efi_root = plan.esp_efi_dir
    fallback_path = efi_root / FALLBACK_RELATIVE_PATH
    log.info("Ensuring UEFI fallback loader at EFI/BOOT/BOOTX64.EFI (if possible)")

    if fallback_path.is_file():
        log.info("Fallback loader already present at EFI/BOOT/BOOTX64.EFI; leaving it unchanged.")
        return FallbackLoaderResult(status="present", fallback_path=fallback_path)

    source = select_fallback_source(efi_root)
    if source is None:
        log.warning(
            "No EFI loaders found to use as fallback; disk may still rely on "
            "firmware-specific behaviour."
        )
        return FallbackLoaderResult(status="missing", fallback_path=fallback_path)

    try:
        fallback_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, fallback_path)
    except OSError as error:
        log.warning(f"Could not install fallback loader from {source}: {error}")
        return FallbackLoaderResult(
            status="failed", fallback_path=fallback_path, source_path=source
        )
    log.info(f"Installed fallback loader: EFI/BOOT/BOOTX64.EFI copied from {source}")
    return FallbackLoaderResult(
        status="installed", fallback_path=fallback_path, source_path=source
    )
