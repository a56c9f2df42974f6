"""Parsers for the text metadata captured at backup time."""

from __future__ import annotations

import re

from restic_disk_restore.domain.models import DeviceIdentifierRecord, MountTableEntry
from restic_disk_restore.storage.exceptions import MalformedMetadata


BLKID_FILENAME = "blkid.txt"
FSTAB_FILENAME = "fstab"

_BLKID_LINE = re.compile(r"^(?P<device>/\S+?):(?P<rest>(?:\s.*)?)$")
_BLKID_FIELD = re.compile(r'(?P<key>[A-Z_]+)="(?P<value>(?:[^"\\]|\\.)*)"')


def parse_blkid_line(line: str, line_number: int = 0) -> DeviceIdentifierRecord:
    """Parse one ``<device>: KEY="value" ...`` line."""
    match = _BLKID_LINE.match(line.strip())
    if not match:
        raise MalformedMetadata(
            BLKID_FILENAME, f"line {line_number} has no device prefix: {line.strip()!r}"
        )
    fields: dict[str, str] = {}
    for field_match in _BLKID_FIELD.finditer(match.group("rest")):
        fields.setdefault(field_match.group("key"), field_match.group("value"))
    return DeviceIdentifierRecord(
        device_path=match.group("device"),
        type=fields.get("TYPE") or None,
        uuid=fields.get("UUID") or None,
        label=fields.get("LABEL") or None,
        fields=fields,
    )


def parse_blkid_records(text: str) -> tuple[DeviceIdentifierRecord, ...]:
    """Parse captured ``blkid`` output into typed records, in file order."""
    records = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        records.append(parse_blkid_line(line, line_number))
    return tuple(records)


def parse_mount_table(text: str) -> tuple[MountTableEntry, ...]:
    """Parse a captured ``/etc/fstab``; comments and blank lines are skipped."""
    entries = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.split("#", 1)[0].strip()
        if not stripped:
            continue
        columns = stripped.split()
        if len(columns) < 2:
            raise MalformedMetadata(
                FSTAB_FILENAME, f"line {line_number} has no mount point: {line.strip()!r}"
            )
        entries.append(
            MountTableEntry(
                source=columns[0],
                mountpoint=columns[1],
                fstype=columns[2] if len(columns) > 2 else "",
                options=columns[3] if len(columns) > 3 else "",
            )
        )
    return tuple(entries)
