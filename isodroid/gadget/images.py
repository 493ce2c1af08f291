"""Disk image creation and path validation for disk items."""

from __future__ import annotations

from isodroid.domain.models import DiskMode, backing_file_for, gb_to_bytes
from isodroid.domain.results import Result
from isodroid.logging import LoggerFactory, operation_context

from .exceptions import GadgetError, InvalidInputError, PathNotFoundError
from .surface import ControlSurface


log = LoggerFactory.for_lun()


class DiskImageCreator:
    def __init__(self, surface: ControlSurface) -> None:
        self.surface = surface

    def create(self, folder_path: str, name: str, size_bytes: int) -> Result:
        """Create (or resize) a sparse image at `{folder_path}/{name}.img`.

        The folder is created if missing. Input is validated before any
        privileged command runs.

        Returns:
            Result carrying the image path
        """
        try:
            self._validate(folder_path, name, size_bytes)
            image_path = backing_file_for(folder_path, name, DiskMode.DISK)
            with operation_context(
                "create", image=image_path, size_bytes=size_bytes
            ):
                self.surface.mkdir(folder_path)
                self.surface.truncate(image_path, size_bytes)
        except GadgetError as error:
            return Result.failure(error.kind, str(error))
        return Result.success(image_path)

    def create_gb(self, folder_path: str, name: str, size_gb: float) -> Result:
        """Like create(), with the size in decimal gigabytes (1 GB = 10^9 bytes)."""
        if size_gb <= 0:
            return Result.failure(
                InvalidInputError.kind, "Disk size must be greater than 0"
            )
        return self.create(folder_path, name, gb_to_bytes(size_gb))

    def validate_path(self, path: str | None, mode: DiskMode | str) -> Result:
        """Check that `path` exists with the type `mode` expects: an image
        file for ISO, a folder for Disk."""
        try:
            if not path or not path.strip():
                raise InvalidInputError("Path is empty", field="path")
            try:
                disk_mode = DiskMode.parse(mode)
            except ValueError as error:
                raise InvalidInputError(str(error), field="mode") from None
            expected = "dir" if disk_mode is DiskMode.DISK else "file"
            actual = self.surface.path_type(path)
            if actual != expected:
                log.debug(f"{path} is {actual}, expected {expected}")
                raise PathNotFoundError(
                    path, "folder" if expected == "dir" else "file"
                )
        except GadgetError as error:
            return Result.failure(error.kind, str(error))
        return Result.success(path)

    @staticmethod
    def _validate(folder_path: str, name: str, size_bytes: int) -> None:
        if not folder_path or not folder_path.strip():
            raise InvalidInputError("Folder path is empty", field="folder_path")
        if not name or not name.strip():
            raise InvalidInputError("Disk name is empty", field="name")
        if "/" in name or name in (".", ".."):
            raise InvalidInputError(f"Invalid disk name: {name}", field="name")
        if size_bytes <= 0:
            raise InvalidInputError(
                "Disk size must be greater than 0", field="size_bytes"
            )
