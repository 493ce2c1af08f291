"""Gadget operation lock serializing every gadget and LUN mutation.

Enabling, disabling, mounting and ejecting all rewrite the same configfs
tree. Each of them runs inside `gadget_operation()`, so two callers can
never interleave their steps, and the free-slot scan of a mount and the
claim of that slot happen under one hold of the lock.

The lock is re-entrant: a composite operation (mounting a catalog item
and recording its LUN in the catalog) holds it across its nested steps.

Usage:
    from isodroid.gadget.lock import gadget_operation, is_operation_active

    with gadget_operation("mount"):
        slot = find_free_slot()
        claim(slot)

    # In status polling code:
    if is_operation_active():
        # Show "busy" instead of re-reading the slots
        ...
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generator

from isodroid.logging import LoggerFactory


log = LoggerFactory.for_gadget()

_lock = threading.RLock()

# Guards the two fields below so status readers never wait on _lock
_state_lock = threading.Lock()
_active_operation: str | None = None
_depth: int = 0


@contextmanager
def gadget_operation(name: str) -> Generator[None, None, None]:
    """Context manager holding the gadget lock for the named operation.

    Blocks until any operation running on another thread has finished.

    Args:
        name: Operation name, reported by get_active_operation()
    """
    global _active_operation, _depth

    with _lock:
        with _state_lock:
            _depth += 1
            if _depth == 1:
                _active_operation = name
        log.trace(f"Gadget operation {name} acquired lock")
        try:
            yield
        finally:
            with _state_lock:
                _depth -= 1
                if _depth == 0:
                    _active_operation = None
            log.trace(f"Gadget operation {name} released lock")


def is_operation_active() -> bool:
    with _state_lock:
        return _depth > 0


def get_active_operation() -> str | None:
    """Name of the outermost operation holding the lock, or None."""
    with _state_lock:
        return _active_operation
