"""LUN slot allocation for the mass-storage function.

Which slot is free is always read live from the control surface, never
cached: after an app restart or a manual change under configfs, a cached
table would disagree with the kernel.

Allocation is lowest-index-first over `[0, max_devices)`. The scan and
the claim of the chosen slot run under the gadget lock, so two mounts
cannot pick the same slot.

Attribute write order on mount matters: writing `file` is what makes the
LUN visible to the host, so `ro`, `removable` and `inquiry_string` are
written before it.
"""

from __future__ import annotations

import re
from typing import Callable

from isodroid.config import settings
from isodroid.domain.models import (
    INQUIRY_STRING_MAX,
    DiskMode,
    LunSlot,
    backing_file_for,
)
from isodroid.domain.results import Result
from isodroid.logging import LoggerFactory

from .exceptions import (
    GadgetError,
    InvalidInputError,
    LunNotFoundError,
    NoFreeLunError,
)
from .lock import gadget_operation
from .surface import ControlSurface


_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def inquiry_string_for(display_name: str) -> str:
    """Inquiry string shown to the host: control characters blanked,
    at most 16 characters."""
    return _CONTROL_CHARS_RE.sub(" ", display_name)[:INQUIRY_STRING_MAX]


def parse_lun_id(lun_id: int | str) -> int:
    """Parse a LUN id as stored in the catalog ("3", " 3 ", 3).

    Raises:
        InvalidInputError: If it is not a non-negative integer
    """
    try:
        index = int(str(lun_id).strip())
    except ValueError:
        raise InvalidInputError(f"Invalid LUN id: {lun_id!r}", field="lun_id") from None
    if index < 0:
        raise InvalidInputError(f"Invalid LUN id: {lun_id!r}", field="lun_id")
    return index


class LunAllocator:
    def __init__(
        self,
        surface: ControlSurface,
        max_devices_provider: Callable[[], int] = settings.get_max_devices,
    ) -> None:
        self.surface = surface
        self.paths = surface.paths
        self.max_devices_provider = max_devices_provider

    def read_slot(self, index: int) -> LunSlot | None:
        """Current attributes of lun.`index`, or None if it does not exist."""
        file_attr = self.paths.lun_attribute(index, "file")
        if not self.surface.exists(file_attr):
            return None

        def read_optional(name: str) -> str:
            path = self.paths.lun_attribute(index, name)
            return self.surface.read(path) if self.surface.exists(path) else ""

        return LunSlot(
            index=index,
            file=self.surface.read(file_attr),
            read_only=read_optional("ro") == "1",
            removable=read_optional("removable") != "0",
            inquiry_string=read_optional("inquiry_string"),
        )

    def list_slots(self) -> list[LunSlot]:
        """Every existing LUN slot, ascending by index."""
        slots = []
        for index in self.surface.lun_indices():
            slot = self.read_slot(index)
            if slot is not None:
                slots.append(slot)
        return slots

    def find_free_slot(self, max_devices: int) -> int | None:
        """Lowest index in `[0, max_devices)` whose backing file is empty."""
        for index in range(max_devices):
            file_attr = self.paths.lun_attribute(index, "file")
            if not self.surface.exists(file_attr):
                continue
            if not self.surface.read(file_attr).strip():
                return index
        return None

    def mount(
        self,
        file_path: str,
        display_name: str = "",
        mode: DiskMode | str = DiskMode.ISO,
        max_devices: int | None = None,
    ) -> Result:
        """Back the first free LUN with a file.

        `file_path` is the image itself in ISO mode and the containing
        folder in Disk mode, where the backing file is
        `{file_path}/{display_name}.img`.

        Returns:
            Result carrying the occupied LUN index
        """
        log = LoggerFactory.for_lun()
        try:
            disk_mode = self._parse_mode(mode)
            if not file_path or not file_path.strip():
                raise InvalidInputError("File path is empty", field="file_path")
            backing_file = backing_file_for(file_path, display_name, disk_mode)
            if "\n" in backing_file or "\r" in backing_file:
                raise InvalidInputError(
                    "File path contains a line break", field="file_path"
                )
            if max_devices is None:
                max_devices = self.max_devices_provider()
            max_devices = max(1, int(max_devices))

            with gadget_operation("mount"):
                index = self.find_free_slot(max_devices)
                if index is None:
                    raise NoFreeLunError(max_devices)
                self._configure(index, backing_file, display_name, disk_mode)
        except GadgetError as error:
            log.warning(f"Mount of {file_path} failed: {error}")
            return Result.failure(error.kind, str(error))

        log.info(
            f"Mounted {backing_file} on lun.{index}"
            f" ({'ro' if disk_mode.read_only else 'rw'})"
        )
        return Result.success(index)

    def eject(self, lun_id: int | str) -> Result:
        """Clear the backing file of a slot, keeping the slot itself.

        Ejecting an already-empty slot succeeds.

        Returns:
            Result carrying the ejected LUN index
        """
        log = LoggerFactory.for_lun()
        try:
            index = parse_lun_id(lun_id)
            with gadget_operation("eject"):
                file_attr = self.paths.lun_attribute(index, "file")
                if not self.surface.exists(file_attr):
                    raise LunNotFoundError(index)
                self.surface.write(file_attr, "")
        except GadgetError as error:
            log.warning(f"Eject of LUN {lun_id} failed: {error}")
            return Result.failure(error.kind, str(error))

        log.info(f"Ejected lun.{index}")
        return Result.success(index)

    def _configure(
        self, index: int, backing_file: str, display_name: str, mode: DiskMode
    ) -> None:
        write = self.surface.write
        write(self.paths.lun_attribute(index, "ro"), "1" if mode.read_only else "0")
        write(self.paths.lun_attribute(index, "removable"), "1")
        write(
            self.paths.lun_attribute(index, "inquiry_string"),
            inquiry_string_for(display_name),
        )
        # Must stay last: this is what exposes the LUN to the host
        write(self.paths.lun_attribute(index, "file"), backing_file)

    @staticmethod
    def _parse_mode(mode: DiskMode | str) -> DiskMode:
        try:
            return DiskMode.parse(mode)
        except ValueError as error:
            raise InvalidInputError(str(error), field="mode") from None
