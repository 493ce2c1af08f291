"""Privileged command execution.

Every read or write of the gadget control surface and the charging
attribute goes through an Executor. An Executor runs one named
operation from a fixed table of primitives, exactly once, and reports
the merged stdout/stderr text, trimmed.

Two backends share the table:

    RootShellExecutor
        Runs each primitive as a POSIX sh snippet under `su -c` (Android)
        or `sudo` (Linux). Arguments reach the snippet only as positional
        parameters, and the whole command line is built with shlex
        quoting, so a quote, semicolon or newline in a path or display
        name stays inside its argument.

    DirectExecutor
        Performs the same primitives in-process with os/pathlib, for a
        process that already runs with the required privilege.

Failures never raise out of `run()`: an unknown operation, a missing
root binary, a spawn error or a non-zero exit status all come back as
text starting with "Error:".

Example:
    >>> executor = RootShellExecutor()
    >>> executor.check_privilege()
    True
    >>> executor.run("read", "/config/usb_gadget/g1/UDC")
    'a600000.dwc3'
"""

from __future__ import annotations

import os
import shlex
import subprocess
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from isodroid.domain.results import ERROR_PREFIX
from isodroid.logging import LoggerFactory


log = LoggerFactory.for_executor()

# $0 for the sh snippets; shows up in `ps` while a command runs
SHELL_NAME = "isodroid"

NOT_ROOTED_MESSAGE = "Device is not rooted"


@dataclass(frozen=True)
class Operation:
    snippet: str
    arity: int


# Positional parameters only: "$1" is the first argument, "$2" the second.
OPERATIONS: dict[str, Operation] = {
    "id": Operation("id", 0),
    "read": Operation('cat "$1"', 1),
    "write": Operation('printf \'%s\\n\' "$2" > "$1"', 2),
    "exists": Operation('if [ -e "$1" ]; then echo true; else echo false; fi', 1),
    "is_link": Operation('if [ -L "$1" ]; then echo true; else echo false; fi', 1),
    "list": Operation('ls -1 "$1"', 1),
    "mkdir": Operation('mkdir -p "$1"', 1),
    "rmdir": Operation('rmdir "$1"', 1),
    "remove": Operation('rm -f "$1"', 1),
    "symlink": Operation('ln -s "$1" "$2"', 2),
    "getprop": Operation('getprop "$1"', 1),
    "setprop": Operation('setprop "$1" "$2"', 2),
    "truncate": Operation('truncate -s "$2" "$1"', 2),
    "realpath": Operation('readlink -f "$1"', 1),
    "path_type": Operation(
        'if [ -d "$1" ]; then echo dir; '
        'elif [ -f "$1" ]; then echo file; '
        "else echo none; fi",
        1,
    ),
}


@dataclass(frozen=True)
class ExecResult:
    """Outcome of one privileged operation."""

    operation: str
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def as_text(self) -> str:
        """Render using the "Error:" convention for failures."""
        if self.ok:
            return self.output
        return f"{ERROR_PREFIX}: {self.output}"


class Executor:
    """Base class for privileged operation backends.

    `privileged` is None until `check_privilege()` has run; operations are
    refused unless it is True.
    """

    def __init__(self, privileged: Optional[bool] = None) -> None:
        self.privileged = privileged

    def probe(self) -> bool:
        """Run a trivial privileged command; True iff it exits with status 0."""
        result = self._execute("id", [])
        log.bind(tags=["root", "probe"]).debug(
            f"Privilege probe exited with {result.returncode}: {result.output}"
        )
        return result.ok

    def check_privilege(self) -> bool:
        self.privileged = self.probe()
        if self.privileged:
            log.info("Root access available")
        else:
            log.warning("Root access unavailable, privileged operations disabled")
        return self.privileged

    def execute(self, operation: str, *args: object) -> ExecResult:
        """Run `operation` if privilege was granted."""
        if not self.privileged:
            return ExecResult(operation, 1, NOT_ROOTED_MESSAGE)
        return self._execute(operation, [str(arg) for arg in args])

    def run(self, operation: str, *args: object) -> str:
        """Run `operation` and return its text, "Error: ..." on failure."""
        return self.execute(operation, *args).as_text()

    def _execute(self, operation: str, args: list[str]) -> ExecResult:
        entry = OPERATIONS.get(operation)
        if entry is None:
            log.warning(f"Unknown operation requested: {operation}")
            return ExecResult(operation, 127, f"Unknown operation {operation}")
        if len(args) != entry.arity:
            return ExecResult(
                operation,
                2,
                f"{operation} expects {entry.arity} argument(s), got {len(args)}",
            )
        log.debug(f"{operation} {args}")
        try:
            returncode, output = self._invoke(operation, args)
        except (OSError, ValueError) as error:
            log.warning(f"Could not execute {operation}: {error}")
            return ExecResult(operation, 126, f"Could not execute {operation} - {error}")
        output = (output or "").strip()
        if returncode != 0:
            if not output:
                output = f"{operation} exited with status {returncode}"
            log.warning(f"{operation} {args} failed ({returncode}): {output}")
        return ExecResult(operation, returncode, output)

    def _invoke(self, operation: str, args: list[str]) -> tuple[int, str]:
        raise NotImplementedError


class RootShellExecutor(Executor):
    """Runs the operation snippets through the system's root command."""

    def __init__(self, root_command: str = "su", privileged: Optional[bool] = None) -> None:
        super().__init__(privileged)
        self.root_command = root_command

    def build_command(self, operation: str, args: list[str]) -> list[str]:
        """Build the argv that runs `operation` as root.

        With su the inner command travels as one string, so every piece is
        shlex-quoted; sudo takes the argument vector as-is.
        """
        inner = ["sh", "-c", OPERATIONS[operation].snippet, SHELL_NAME, *args]
        if Path(self.root_command).name == "sudo":
            return [self.root_command, "-n", *inner]
        return [self.root_command, "-c", shlex.join(inner)]

    def _invoke(self, operation: str, args: list[str]) -> tuple[int, str]:
        command = self.build_command(operation, args)
        result = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
        return result.returncode, result.stdout


class DirectExecutor(Executor):
    """Performs the operations in-process for an already-privileged caller.

    Android properties do not exist off-device: the controller property
    resolves to the single entry of the UDC class directory and the other
    properties live in `properties`.
    """

    def __init__(
        self,
        privileged: Optional[bool] = None,
        udc_class_path: str = "/sys/class/udc",
        controller_property: str = "sys.usb.controller",
        properties: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(privileged)
        self.udc_class_path = udc_class_path
        self.controller_property = controller_property
        self.properties: dict[str, str] = dict(properties or {})

    def _invoke(self, operation: str, args: list[str]) -> tuple[int, str]:
        handler = getattr(self, f"_op_{operation}")
        return 0, handler(*args) or ""

    def _op_id(self) -> str:
        return f"uid={os.getuid()}"

    def _op_read(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8", errors="replace")

    def _op_write(self, path: str, value: str) -> None:
        Path(path).write_text(f"{value}\n", encoding="utf-8")

    def _op_exists(self, path: str) -> str:
        return "true" if os.path.exists(path) else "false"

    def _op_is_link(self, path: str) -> str:
        return "true" if os.path.islink(path) else "false"

    def _op_list(self, path: str) -> str:
        return "\n".join(sorted(os.listdir(path)))

    def _op_mkdir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def _op_rmdir(self, path: str) -> None:
        os.rmdir(path)

    def _op_remove(self, path: str) -> None:
        with suppress(FileNotFoundError):
            os.remove(path)

    def _op_symlink(self, target: str, link: str) -> None:
        os.symlink(target, link)

    def _op_getprop(self, name: str) -> str:
        if name in self.properties:
            return self.properties[name]
        if name == self.controller_property:
            try:
                controllers = sorted(os.listdir(self.udc_class_path))
            except FileNotFoundError:
                return ""
            if len(controllers) == 1:
                return controllers[0]
        return ""

    def _op_setprop(self, name: str, value: str) -> None:
        self.properties[name] = value

    def _op_truncate(self, path: str, size: str) -> None:
        with open(path, "ab"):
            pass
        os.truncate(path, int(size))

    def _op_path_type(self, path: str) -> str:
        if os.path.isdir(path):
            return "dir"
        if os.path.isfile(path):
            return "file"
        return "none"

    def _op_realpath(self, path: str) -> str:
        return os.path.realpath(path)
