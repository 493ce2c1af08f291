"""
Pytest configuration and shared fixtures for isodroid tests.

The gadget tests run against a fake configfs tree under tmp_path. It is
driven by DirectExecutor, with mkdir/rmdir patched to behave the way the
kernel's mass-storage function does: creating the function directory
creates lun.0, creating lun.N creates its attribute files, lun.0 cannot
be removed on its own, and the function cannot be removed while extra
LUNs exist.
"""

import errno
import os
import re
import shutil
from pathlib import Path
from typing import Dict

import pytest

from isodroid.app.manager import GadgetManager
from isodroid.catalog.store import CatalogStore
from isodroid.config import settings
from isodroid.gadget.controller import GadgetController
from isodroid.gadget.images import DiskImageCreator
from isodroid.gadget.luns import LunAllocator
from isodroid.gadget.paths import GadgetPaths
from isodroid.gadget.surface import ControlSurface
from isodroid.privileged.executor import DirectExecutor


CONTROLLER_NAME = "a600000.dwc3"

LUN_ATTRIBUTES: Dict[str, str] = {
    "file": "",
    "ro": "0",
    "removable": "0",
    "inquiry_string": "",
    "cdrom": "0",
    "nofua": "0",
}


class FakeConfigfsExecutor(DirectExecutor):
    """DirectExecutor with configfs mkdir/rmdir semantics.

    With `resolve_backing_files` set, a path written to a LUN `file`
    attribute reads back with its symlinks resolved, as the kernel does.
    """

    def __init__(self, udc_class_path: str) -> None:
        super().__init__(privileged=True, udc_class_path=udc_class_path)
        self.calls = []
        self.resolve_backing_files = False

    def _invoke(self, operation, args):
        self.calls.append((operation, tuple(args)))
        return super()._invoke(operation, args)

    def _op_mkdir(self, path: str) -> None:
        name = os.path.basename(path)
        created = not os.path.isdir(path)
        os.makedirs(path, exist_ok=True)
        if not created:
            return
        if re.match(r"^lun\.\d+$", name):
            for attribute, value in LUN_ATTRIBUTES.items():
                Path(path, attribute).write_text(value)
        elif name.startswith("mass_storage."):
            self._op_mkdir(os.path.join(path, "lun.0"))

    def _op_write(self, path: str, value: str) -> None:
        if self.resolve_backing_files and value and os.path.basename(path) == "file":
            value = os.path.realpath(value)
        super()._op_write(path, value)

    def _op_rmdir(self, path: str) -> None:
        name = os.path.basename(path)
        if name == "lun.0":
            raise OSError(errno.EPERM, "Operation not permitted", path)
        if re.match(r"^lun\.\d+$", name):
            shutil.rmtree(path)
        elif name.startswith("mass_storage."):
            extra = [entry for entry in os.listdir(path) if entry != "lun.0"]
            if extra:
                raise OSError(errno.ENOTEMPTY, "Directory not empty", path)
            shutil.rmtree(path)
        else:
            os.rmdir(path)

    def operations(self):
        return [operation for operation, _ in self.calls]


# ==============================================================================
# Settings Isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temporary file and reset to defaults."""
    settings_file = tmp_path / ".config" / "isodroid" / "settings.json"
    monkeypatch.setattr("isodroid.config.settings.SETTINGS_PATH", settings_file)
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield settings_file
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    """Temporary settings file path inside an existing directory."""
    settings_dir = tmp_path / "settings-dir"
    settings_dir.mkdir(parents=True, exist_ok=True)
    return settings_dir / "settings.json"


# ==============================================================================
# Fake Control Surface Fixtures
# ==============================================================================


@pytest.fixture
def gadget_paths(tmp_path) -> GadgetPaths:
    """GadgetPaths rooted in a fresh fake configfs tree.

    The gadget exists, is unbound, and has no mass-storage function yet.
    """
    gadget_dir = tmp_path / "config" / "usb_gadget" / "g1"
    (gadget_dir / "configs" / "b.1").mkdir(parents=True)
    (gadget_dir / "functions").mkdir()
    (gadget_dir / "UDC").write_text("\n")
    charging = tmp_path / "power_supply" / "battery" / "input_suspend"
    charging.parent.mkdir(parents=True)
    charging.write_text("0\n")
    return GadgetPaths(gadget=str(gadget_dir), charging_attribute=str(charging))


@pytest.fixture
def fake_executor(tmp_path) -> FakeConfigfsExecutor:
    udc_dir = tmp_path / "class" / "udc"
    (udc_dir / CONTROLLER_NAME).mkdir(parents=True)
    return FakeConfigfsExecutor(str(udc_dir))


@pytest.fixture
def surface(fake_executor, gadget_paths) -> ControlSurface:
    return ControlSurface(fake_executor, gadget_paths)


@pytest.fixture
def controller(surface) -> GadgetController:
    return GadgetController(surface)


@pytest.fixture
def allocator(surface) -> LunAllocator:
    return LunAllocator(surface, max_devices_provider=lambda: 3)


@pytest.fixture
def image_creator(surface) -> DiskImageCreator:
    return DiskImageCreator(surface)


@pytest.fixture
def enabled_gadget(controller, gadget_paths):
    """Gadget enabled with three empty LUN slots."""
    result = controller.enable(3)
    assert result.ok, result.message
    return gadget_paths


@pytest.fixture
def read_attr(gadget_paths):
    """Read a LUN attribute straight from the fake configfs tree."""

    def read(index: int, name: str) -> str:
        return Path(gadget_paths.lun_attribute(index, name)).read_text().strip()

    return read


@pytest.fixture
def make_executor():
    """Build a FakeConfigfsExecutor over a given UDC class directory."""
    return FakeConfigfsExecutor


@pytest.fixture
def controller_name() -> str:
    return CONTROLLER_NAME


# ==============================================================================
# Catalog / Manager Fixtures
# ==============================================================================


@pytest.fixture
def catalog_path(tmp_path) -> Path:
    return tmp_path / "state" / "disk_items.json"


@pytest.fixture
def catalog(catalog_path) -> CatalogStore:
    return CatalogStore(catalog_path)


@pytest.fixture
def iso_file(tmp_path) -> Path:
    """A small file standing in for an ISO image."""
    iso = tmp_path / "media" / "debian-12.iso"
    iso.parent.mkdir(parents=True)
    iso.write_bytes(b"\x00" * 2048)
    return iso


@pytest.fixture
def manager(fake_executor, catalog, gadget_paths):
    """GadgetManager over the fake configfs with three LUN slots."""
    mgr = GadgetManager(
        fake_executor, catalog, gadget_paths, max_devices_provider=lambda: 3
    )
    mgr.check_privilege()
    yield mgr
    mgr.shutdown()
