"""Domain model for the mass-storage gadget.

Type-safe objects for the disk items a user declares and the LUN slots
the gadget exposes to the host.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


GB = 1000 * 1000 * 1000  # Size labels use the short (decimal) convention
INQUIRY_STRING_MAX = 16


# ==============================================================================
# Disk Item Domain
# ==============================================================================


class DiskMode(Enum):
    """How a disk item is exposed to the host."""

    ISO = "ISO"  # Read-only optical image, path is the image file
    DISK = "Disk"  # Read-write image, path is the containing folder

    @classmethod
    def parse(cls, value: str | DiskMode) -> DiskMode:
        """Parse a mode label, case-insensitively.

        Raises:
            ValueError: If the label is not a known mode
        """
        if isinstance(value, DiskMode):
            return value
        for mode in cls:
            if mode.value.lower() == str(value).strip().lower():
                return mode
        raise ValueError(f"Unknown disk mode: {value}")

    @property
    def read_only(self) -> bool:
        return self is not DiskMode.DISK


@dataclass(frozen=True)
class DiskItem:
    """A user-declared ISO file or disk image.

    `is_active` holds exactly when `lun_id` is set.
    """

    mode: DiskMode
    path: str | None = None
    name: str = ""
    is_active: bool = False
    lun_id: int | None = None
    disk_size_gb: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if self.is_active != (self.lun_id is not None):
            raise ValueError(
                f"Disk item {self.id} must be active exactly when it has a LUN "
                f"(is_active={self.is_active}, lun_id={self.lun_id})"
            )

    @property
    def backing_file(self) -> str:
        """File the LUN is backed by when this item is mounted."""
        return backing_file_for(self.path or "", self.name, self.mode)

    def activated(self, lun_id: int) -> DiskItem:
        return replace(self, is_active=True, lun_id=lun_id)

    def deactivated(self) -> DiskItem:
        return replace(self, is_active=False, lun_id=None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the on-disk catalog field names."""
        return {
            "id": self.id,
            "mode": self.mode.value,
            "path": self.path,
            "isActive": self.is_active,
            "lunId": None if self.lun_id is None else str(self.lun_id),
            "name": self.name,
            "diskSizeGB": self.disk_size_gb,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiskItem:
        """Build a DiskItem from a catalog record.

        Raises:
            KeyError: If the mode is missing
            ValueError: If the mode or LUN id cannot be parsed
        """
        lun_id = data.get("lunId")
        if lun_id is not None and str(lun_id).strip() != "":
            lun_id = int(str(lun_id).strip())
        else:
            lun_id = None
        is_active = bool(data.get("isActive", False)) and lun_id is not None
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            mode=DiskMode.parse(data["mode"]),
            path=data.get("path"),
            name=data.get("name") or "",
            is_active=is_active,
            lun_id=lun_id if is_active else None,
            disk_size_gb=float(data.get("diskSizeGB") or 0.0),
        )


def backing_file_for(path: str, name: str, mode: DiskMode | str) -> str:
    """Resolve the LUN backing file for a path as the user declared it.

    ISO mode uses the path verbatim; Disk mode points at
    `{folder}/{name}.img` inside the declared folder.
    """
    if DiskMode.parse(mode) is DiskMode.DISK:
        return f"{path.rstrip('/')}/{name}.img"
    return path


def gb_to_bytes(size_gb: float) -> int:
    """Convert decimal gigabytes to bytes (1 GB = 1,000,000,000 bytes)."""
    return int(round(size_gb * GB))


# ==============================================================================
# LUN Domain
# ==============================================================================


@dataclass(frozen=True)
class LunSlot:
    """Live view of one LUN directory of the mass-storage function."""

    index: int
    file: str = ""
    read_only: bool = False
    removable: bool = True
    inquiry_string: str = ""

    @property
    def is_free(self) -> bool:
        return not self.file.strip()

    def format_label(self) -> str:
        """Human-readable one-line description, e.g. "lun.1 ro debian.iso"."""
        if self.is_free:
            return f"lun.{self.index} (free)"
        access = "ro" if self.read_only else "rw"
        return f"lun.{self.index} {access} {self.file}"
