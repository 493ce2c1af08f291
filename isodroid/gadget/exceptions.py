"""Custom exceptions for gadget operations.

This module defines a hierarchy of exceptions raised inside the gadget,
LUN, image and charging controllers. Each public operation catches
GadgetError at its boundary and turns it into a Result carrying the
exception's ErrorKind, so callers never see these raised.

Exception Hierarchy:
    GadgetError (base)
        ├── PrivilegeDeniedError
        ├── NoFreeLunError
        ├── NotFoundError
        │   ├── LunNotFoundError
        │   └── PathNotFoundError
        ├── InvalidInputError
        └── ExecutionFailureError

Usage:
    from isodroid.gadget.exceptions import NoFreeLunError

    if slot is None:
        raise NoFreeLunError(max_devices)
"""

from __future__ import annotations

from isodroid.domain.results import ErrorKind


class GadgetError(Exception):
    """Base exception for all gadget operations."""

    kind = ErrorKind.EXECUTION_FAILURE


class PrivilegeDeniedError(GadgetError):
    """Root is unavailable or was revoked."""

    kind = ErrorKind.PRIVILEGE_DENIED

    def __init__(self, reason: str = "Device is not rooted"):
        self.reason = reason
        super().__init__(reason)


class NoFreeLunError(GadgetError):
    """Every configured LUN slot already has a backing file."""

    kind = ErrorKind.RESOURCE_EXHAUSTED

    def __init__(self, max_devices: int):
        self.max_devices = max_devices
        super().__init__(f"No free slots (all {max_devices} LUNs in use)")


class NotFoundError(GadgetError):
    """Base exception for missing slots and paths."""

    kind = ErrorKind.NOT_FOUND


class LunNotFoundError(NotFoundError):
    """The LUN's attribute directory does not exist."""

    def __init__(self, lun_id: int | str):
        self.lun_id = lun_id
        super().__init__(f"LUN not found: {lun_id}")


class PathNotFoundError(NotFoundError):
    """A user-supplied path is missing or of the wrong type."""

    def __init__(self, path: str, expected: str = ""):
        self.path = path
        self.expected = expected
        msg = f"Path not found: {path}"
        if expected:
            msg = f"Path is not an existing {expected}: {path}"
        super().__init__(msg)


class InvalidInputError(GadgetError):
    """Rejected before any privileged command runs."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ExecutionFailureError(GadgetError):
    """A privileged command could not be started, crashed or failed."""

    kind = ErrorKind.EXECUTION_FAILURE

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.detail = message
        super().__init__(f"{operation} failed: {message}")
