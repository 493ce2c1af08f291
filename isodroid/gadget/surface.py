"""Typed access to the gadget control surface.

ControlSurface turns the Executor's text results into Python values and
raises GadgetError subclasses when a primitive fails, so the controllers
can be written as straight-line sequences of steps.
"""

from __future__ import annotations

import posixpath
import re

from isodroid.privileged.executor import Executor

from .exceptions import ExecutionFailureError, PrivilegeDeniedError
from .paths import GadgetPaths


_LUN_DIR_RE = re.compile(r"^lun\.(\d+)$")


class ControlSurface:
    def __init__(self, executor: Executor, paths: GadgetPaths | None = None) -> None:
        self.executor = executor
        self.paths = paths or GadgetPaths()

    def _call(self, operation: str, *args: object) -> str:
        if not self.executor.privileged:
            raise PrivilegeDeniedError()
        result = self.executor.execute(operation, *args)
        if not result.ok:
            raise ExecutionFailureError(operation, result.output)
        return result.output

    def read(self, path: str) -> str:
        return self._call("read", path).strip()

    def write(self, path: str, value: str) -> None:
        self._call("write", path, value)

    def exists(self, path: str) -> bool:
        return self._call("exists", path) == "true"

    def is_link(self, path: str) -> bool:
        return self._call("is_link", path) == "true"

    def list_dir(self, path: str) -> list[str]:
        return [line.strip() for line in self._call("list", path).splitlines() if line.strip()]

    def mkdir(self, path: str) -> None:
        self._call("mkdir", path)

    def rmdir(self, path: str) -> None:
        self._call("rmdir", path)

    def remove(self, path: str) -> None:
        self._call("remove", path)

    def symlink(self, target: str, link: str) -> None:
        self._call("symlink", target, link)

    def getprop(self, name: str) -> str:
        return self._call("getprop", name)

    def setprop(self, name: str, value: str) -> None:
        self._call("setprop", name, value)

    def truncate(self, path: str, size_bytes: int) -> None:
        self._call("truncate", path, int(size_bytes))

    def path_type(self, path: str) -> str:
        """Return "dir", "file" or "none"."""
        return self._call("path_type", path)

    def resolve_path(self, path: str) -> str:
        """Canonical form of `path` with symlinks resolved.

        Falls back to a lexical normalization when the path cannot be
        resolved (for example a file deleted since it was mounted).
        """
        if not path:
            return ""
        try:
            return self._call("realpath", path).strip() or posixpath.normpath(path)
        except ExecutionFailureError:
            return posixpath.normpath(path)

    # Gadget-level helpers

    def controller_name(self) -> str:
        return self.getprop(self.paths.controller_property)

    def bound_controller(self) -> str:
        """Controller the gadget is currently bound to ("" when unbound)."""
        if not self.exists(self.paths.udc):
            return ""
        return self.read(self.paths.udc)

    def lun_indices(self) -> list[int]:
        """Indices of the existing lun.N directories, ascending."""
        if not self.exists(self.paths.function):
            return []
        indices = []
        for entry in self.list_dir(self.paths.function):
            match = _LUN_DIR_RE.match(entry)
            if match:
                indices.append(int(match.group(1)))
        return sorted(indices)
