"""Orchestration of the gadget, the LUNs, charging and the catalog.

GadgetManager is the single owner of the privilege flag and the
observable gadget/charging state. `check_privilege()` (or `initialize()`)
has to run before any privileged call; until then every operation is
refused with a PRIVILEGE_DENIED result.

Blocking calls can be pushed onto the manager's single background worker
with `submit()`, which runs tasks one at a time in submission order.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from isodroid.catalog.store import CatalogError, CatalogStore, ItemActiveError
from isodroid.config import settings
from isodroid.domain.models import DiskItem, DiskMode
from isodroid.domain.results import ErrorKind, Result
from isodroid.gadget.controller import GadgetController
from isodroid.gadget.images import DiskImageCreator
from isodroid.gadget.lock import gadget_operation
from isodroid.gadget.luns import LunAllocator
from isodroid.gadget.paths import GadgetPaths
from isodroid.gadget.surface import ControlSurface
from isodroid.logging import LoggerFactory
from isodroid.power.charging import ChargingController
from isodroid.privileged.executor import DirectExecutor, Executor, RootShellExecutor

from .observable import ObservableValue


log = LoggerFactory.for_system()

NOT_ROOTED = Result.failure(ErrorKind.PRIVILEGE_DENIED, "Device is not rooted")


def _catalog_failure(error: CatalogError) -> Result:
    kind = ErrorKind.INVALID_INPUT if isinstance(error, ItemActiveError) else ErrorKind.NOT_FOUND
    return Result.failure(kind, str(error))


class GadgetManager:
    def __init__(
        self,
        executor: Executor,
        catalog: CatalogStore,
        paths: Optional[GadgetPaths] = None,
        max_devices_provider: Callable[[], int] = settings.get_max_devices,
    ) -> None:
        self.executor = executor
        self.catalog = catalog
        self.paths = paths or GadgetPaths()
        self.max_devices_provider = max_devices_provider

        surface = ControlSurface(executor, self.paths)
        self.surface = surface
        self.gadget = GadgetController(surface)
        self.luns = LunAllocator(surface, max_devices_provider)
        self.images = DiskImageCreator(surface)
        self.charging = ChargingController(executor, self.paths.charging_attribute)

        self.rooted: ObservableValue[bool] = ObservableValue(False)
        self.gadget_enabled: ObservableValue[bool] = ObservableValue(False)
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="isodroid")

    @classmethod
    def from_settings(cls, *, direct: bool = False) -> GadgetManager:
        """Build a manager from the stored settings.

        Args:
            direct: Operate on configfs in-process instead of through the
                root command (for callers already running as root)
        """
        paths = GadgetPaths.from_settings()
        if direct:
            executor: Executor = DirectExecutor(
                udc_class_path=settings.get_str("udc_class_path", "/sys/class/udc"),
                controller_property=paths.controller_property,
            )
        else:
            executor = RootShellExecutor(settings.get_str("root_command", "su"))
        return cls(executor, CatalogStore(), paths)

    @property
    def charging_suspended(self) -> ObservableValue[bool]:
        return self.charging.suspended

    @property
    def is_rooted(self) -> bool:
        return self.rooted.value

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def check_privilege(self) -> bool:
        rooted = self.executor.check_privilege()
        self.rooted.set(rooted)
        return rooted

    def initialize(self) -> None:
        """Probe root, then resynchronize gadget, charging and catalog state
        from the live system."""
        if not self.check_privilege():
            self.gadget_enabled.set(False)
            self.charging.get()
            return
        self.gadget_enabled.set(self.gadget.query_configured())
        self.charging.get()
        self.reconcile()

    # ------------------------------------------------------------------
    # Gadget
    # ------------------------------------------------------------------

    def turn_on(self) -> Result:
        if not self.is_rooted:
            return NOT_ROOTED
        with gadget_operation("turn_on"):
            result = self.gadget.enable(self.max_devices_provider())
            if result.ok:
                self.gadget_enabled.set(True)
                # Enabling recreates every LUN empty
                self._deactivate_all()
            else:
                self.reconcile()
        return result

    def turn_off(self) -> Result:
        """Disable the gadget and deactivate every active item.

        Disabling already empties every slot; after a partial failure the
        catalog is reconciled with whatever slots are left.
        """
        if not self.is_rooted:
            return NOT_ROOTED
        with gadget_operation("turn_off"):
            result = self.gadget.disable()
            if result.ok:
                self.gadget_enabled.set(False)
                self._deactivate_all()
            else:
                self.reconcile()
        return result

    def query_configured(self) -> bool:
        if not self.is_rooted:
            return False
        configured = self.gadget.query_configured()
        self.gadget_enabled.set(configured)
        return configured

    # ------------------------------------------------------------------
    # Disk items
    # ------------------------------------------------------------------

    def add_item(
        self,
        mode: DiskMode | str,
        path: str,
        name: str,
        disk_size_gb: float = 0.0,
    ) -> Result:
        """Declare a new disk item; Disk mode creates its image first.

        Returns:
            Result carrying the new DiskItem
        """
        if not self.is_rooted:
            return NOT_ROOTED
        try:
            disk_mode = DiskMode.parse(mode)
        except ValueError as error:
            return Result.failure(ErrorKind.INVALID_INPUT, str(error))
        if not name or not name.strip():
            return Result.failure(ErrorKind.INVALID_INPUT, "Name is empty")

        validation = self.images.validate_path(path, disk_mode)
        if not validation.ok:
            return validation

        if disk_mode is DiskMode.DISK:
            if disk_size_gb <= 0:
                return Result.failure(
                    ErrorKind.INVALID_INPUT, "Disk size must be greater than 0"
                )
            created = self.images.create_gb(path, name, disk_size_gb)
            if not created.ok:
                return created
        else:
            disk_size_gb = 0.0

        item = DiskItem(mode=disk_mode, path=path, name=name, disk_size_gb=disk_size_gb)
        self.catalog.append(item)
        return Result.success(item)

    def remove_item(self, item_id: str) -> Result:
        try:
            self.catalog.remove(item_id)
        except CatalogError as error:
            return _catalog_failure(error)
        return Result.success(item_id)

    def mount_item(self, item_id: str) -> Result:
        """Mount an item on the first free LUN and mark it active.

        Returns:
            Result carrying the LUN index
        """
        if not self.is_rooted:
            return NOT_ROOTED
        try:
            item = self.catalog.get(item_id)
        except CatalogError as error:
            return _catalog_failure(error)
        if item.is_active:
            return Result.success(item.lun_id)

        with gadget_operation("mount_item"):
            result = self.luns.mount(
                item.path or "", item.name, item.mode, self.max_devices_provider()
            )
            if result.ok:
                self.catalog.replace(item.activated(result.value))
        return result

    def eject_item(self, item_id: str) -> Result:
        """Eject an item's LUN and mark it inactive."""
        if not self.is_rooted:
            return NOT_ROOTED
        try:
            item = self.catalog.get(item_id)
        except CatalogError as error:
            return _catalog_failure(error)
        if item.lun_id is None:
            if item.is_active:
                self.catalog.replace(item.deactivated())
            return Result.success()

        with gadget_operation("eject_item"):
            result = self.luns.eject(item.lun_id)
            if result.ok:
                self.catalog.replace(item.deactivated())
        return result

    def toggle_item(self, item_id: str, active: bool) -> Result:
        if active:
            return self.mount_item(item_id)
        return self.eject_item(item_id)

    def reconcile(self) -> List[DiskItem]:
        """Deactivate items whose LUN is no longer backed by their file.

        Paths are compared after symlink resolution, since the kernel
        reports the resolved path of a backing file. Everything is
        deactivated when the gadget is not configured.

        Returns:
            The items that were changed
        """
        if not self.is_rooted:
            return []
        with gadget_operation("reconcile"):
            if not self.gadget.query_configured():
                return self._deactivate_all()
            slots = {slot.index: slot for slot in self.luns.list_slots()}
            stale = []
            for item in self.catalog.list():
                if not item.is_active:
                    continue
                slot = slots.get(item.lun_id)
                if slot is None or slot.is_free or not self._same_file(
                    slot.file, item.backing_file
                ):
                    stale.append(item)
            for item in stale:
                log.info(f"Item {item.name!r} is no longer on lun.{item.lun_id}")
                self.catalog.replace(item.deactivated())
        return stale

    # ------------------------------------------------------------------
    # Charging
    # ------------------------------------------------------------------

    def get_charging_state(self) -> bool:
        return self.charging.get()

    def set_charging_state(self, suspend: bool) -> Result:
        return self.charging.set(suspend)

    # ------------------------------------------------------------------
    # Background worker
    # ------------------------------------------------------------------

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Run `fn` on the background worker; tasks run one at a time."""
        return self._worker.submit(fn, *args, **kwargs)

    def shutdown(self) -> None:
        self._worker.shutdown(wait=True)

    def _same_file(self, first: str, second: str) -> bool:
        if first == second:
            return True
        return self.surface.resolve_path(first) == self.surface.resolve_path(second)

    def _deactivate_all(self) -> List[DiskItem]:
        active = [item for item in self.catalog.list() if item.is_active]
        for item in active:
            self.catalog.replace(item.deactivated())
        return active
