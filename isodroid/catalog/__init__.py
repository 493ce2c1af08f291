"""Persistent catalog of user-declared disk items."""

from .store import CatalogError, CatalogStore, ItemActiveError, ItemNotFoundError


__all__ = ["CatalogError", "CatalogStore", "ItemActiveError", "ItemNotFoundError"]
