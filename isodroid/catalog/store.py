"""Durable, observable catalog of disk items.

The catalog is an ordered list of DiskItem records kept as JSON:

    [
      {"id": "…", "mode": "ISO", "path": "/sdcard/debian.iso",
       "isActive": true, "lunId": "0", "name": "Debian", "diskSizeGB": 0.0}
    ]

Every change is written through to disk and then reported to the
registered listeners with the new list.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Callable, List, Optional

from isodroid.config.settings import STATE_DIR
from isodroid.domain.models import DiskItem
from isodroid.logging import LoggerFactory


log = LoggerFactory.for_catalog()

CATALOG_PATH = Path(
    os.environ.get("ISODROID_CATALOG_PATH", STATE_DIR / "disk_items.json")
)


class CatalogError(Exception):
    """Base exception for catalog operations."""


class ItemNotFoundError(CatalogError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Disk item not found: {item_id}")


class ItemActiveError(CatalogError):
    """Active items are mounted and cannot be removed."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Disk item {item_id} is mounted, eject it first")


class CatalogStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else CATALOG_PATH
        self._lock = threading.Lock()
        self._listeners: List[Callable[[List[DiskItem]], None]] = []
        self._items: List[DiskItem] = self._load()

    def list(self) -> List[DiskItem]:
        with self._lock:
            return list(self._items)

    def get(self, item_id: str) -> DiskItem:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
        raise ItemNotFoundError(item_id)

    def append(self, item: DiskItem) -> None:
        self._update(lambda items: items + [item])
        log.info(f"Added {item.mode.value} item {item.name!r} ({item.id})")

    def replace(self, item: DiskItem) -> None:
        """Replace the item with the same id."""

        def replace_item(items: List[DiskItem]) -> List[DiskItem]:
            if not any(existing.id == item.id for existing in items):
                raise ItemNotFoundError(item.id)
            return [item if existing.id == item.id else existing for existing in items]

        self._update(replace_item)

    def remove(self, item_id: str) -> None:
        """Remove an inactive item.

        Raises:
            ItemNotFoundError: If no item has this id
            ItemActiveError: If the item is currently mounted
        """

        def remove_item(items: List[DiskItem]) -> List[DiskItem]:
            matches = [item for item in items if item.id == item_id]
            if not matches:
                raise ItemNotFoundError(item_id)
            if matches[0].is_active:
                raise ItemActiveError(item_id)
            return [item for item in items if item.id != item_id]

        self._update(remove_item)
        log.info(f"Removed item {item_id}")

    def add_listener(self, callback: Callable[[List[DiskItem]], None]) -> None:
        """Add a callback to be called with the new list after each change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[List[DiskItem]], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _update(self, transform: Callable[[List[DiskItem]], List[DiskItem]]) -> None:
        with self._lock:
            items = transform(list(self._items))
            self._save(items)
            self._items = items
            snapshot = list(items)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.warning(f"Error in catalog listener: {e}")

    def _load(self) -> List[DiskItem]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            log.warning(f"Cannot read catalog {self.path}, starting empty: {error}")
            return []
        if not isinstance(data, list):
            log.warning(f"Catalog {self.path} is not a list, starting empty")
            return []
        items = []
        for record in data:
            try:
                items.append(DiskItem.from_dict(record))
            except (KeyError, TypeError, ValueError, AttributeError) as error:
                log.warning(f"Skipping unreadable catalog record {record!r}: {error}")
        return items

    def _save(self, items: List[DiskItem]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(
            json.dumps([item.to_dict() for item in items], indent=2),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)
