"""Domain models for the mass-storage gadget."""

from __future__ import annotations

from .models import (
    DiskItem,
    DiskMode,
    LunSlot,
    backing_file_for,
    gb_to_bytes,
)
from .results import ErrorKind, Result


__all__ = [
    "DiskItem",
    "DiskMode",
    "ErrorKind",
    "LunSlot",
    "Result",
    "backing_file_for",
    "gb_to_bytes",
]
