"""USB gadget on/off transitions.

The gadget is either configured (mass-storage function linked into the
active configuration and the gadget bound to the system's controller) or
not. Nothing about that state is stored by this module: it is re-derived
from the control surface every time it is queried, since reboots and
other root tools can change it behind our back.

Every rebind goes through an explicit unbind first. Some kernels detach
automatically when UDC is rewritten, but that cannot be relied on.
"""

from __future__ import annotations

from isodroid.domain.results import Result
from isodroid.logging import LoggerFactory, operation_context

from .exceptions import GadgetError
from .lock import gadget_operation
from .surface import ControlSurface


log = LoggerFactory.for_gadget()


class GadgetController:
    def __init__(self, surface: ControlSurface) -> None:
        self.surface = surface
        self.paths = surface.paths

    def enable(self, max_devices: int) -> Result:
        """Tear down any existing mass-storage setup and rebuild it with
        `max_devices` empty, removable LUNs, then bind the controller.

        Safe to call when the gadget is already configured. A count below
        1 is clamped to 1.
        """
        if max_devices < 1:
            log.warning(f"Clamping LUN count {max_devices} to 1")
            max_devices = 1
        try:
            with gadget_operation("enable"), operation_context(
                "enable", max_devices=max_devices
            ) as op_log:
                self._enable(max_devices, op_log)
        except GadgetError as error:
            return Result.failure(error.kind, str(error))
        return Result.success()

    def disable(self) -> Result:
        """Expose no drive, drop extra LUNs and restore the default USB profile."""
        try:
            with gadget_operation("disable"), operation_context("disable") as op_log:
                self._disable(op_log)
        except GadgetError as error:
            return Result.failure(error.kind, str(error))
        return Result.success()

    def query_configured(self) -> bool:
        """True iff the function is linked and the gadget is bound to the
        controller the system reports."""
        try:
            linked = self.surface.is_link(self.paths.link)
            controller = self.surface.controller_name()
            bound = self.surface.bound_controller()
        except GadgetError as error:
            log.warning(f"Could not query gadget state: {error}")
            return False
        configured = linked and bool(controller) and bound == controller
        log.debug(
            f"Gadget linked={linked} bound={bound!r} controller={controller!r}"
            f" -> configured={configured}"
        )
        return configured

    def _enable(self, max_devices: int, op_log) -> None:
        controller = self.surface.controller_name()
        self._unbind()
        self.surface.setprop(self.paths.usb_config_property, "none")

        self._unlink_function()
        self._remove_function()

        self.surface.mkdir(self.paths.function)
        for index in range(max_devices):
            self.surface.mkdir(self.paths.lun(index))
            self.surface.write(self.paths.lun_attribute(index, "removable"), "1")
        op_log.debug(f"Created {max_devices} LUN slot(s) under {self.paths.function}")

        self.surface.symlink(self.paths.function, self.paths.link)
        self._bind(controller)

    def _disable(self, op_log) -> None:
        controller = self.surface.controller_name()
        try:
            self._unbind()
            indices = self.surface.lun_indices()
            self._clear_backing_files(indices)
            self._unlink_function()
            removed = 0
            for index in indices:
                if index == 0:
                    continue
                try:
                    self.surface.rmdir(self.paths.lun(index))
                    removed += 1
                except GadgetError as error:
                    op_log.warning(f"Keeping lun.{index}: {error}")
            op_log.debug(f"Removed {removed} extra LUN slot(s)")
        finally:
            # The phone gets its default profile back even after a failed step
            self.surface.setprop(
                self.paths.usb_config_property, self.paths.default_usb_config
            )
            self._bind(controller)

    def _unbind(self) -> None:
        # Writing an empty UDC to an unbound gadget fails with ENODEV
        if self.surface.bound_controller():
            self.surface.write(self.paths.udc, "")

    def _bind(self, controller: str) -> None:
        if not controller:
            log.warning("System reports no USB controller, leaving gadget unbound")
            return
        # The default profile may already have been rebound by the system
        if self.surface.bound_controller() == controller:
            return
        self.surface.write(self.paths.udc, controller)
        log.info(f"Gadget bound to {controller}")

    def _unlink_function(self) -> None:
        if self.surface.is_link(self.paths.link):
            self.surface.remove(self.paths.link)

    def _clear_backing_files(self, indices: list[int]) -> None:
        for index in indices:
            file_attr = self.paths.lun_attribute(index, "file")
            if self.surface.exists(file_attr):
                self.surface.write(file_attr, "")

    def _remove_function(self) -> None:
        indices = self.surface.lun_indices()
        if not indices and not self.surface.exists(self.paths.function):
            return
        self._clear_backing_files(indices)
        # lun.0 is created and removed by the kernel along with the function
        for index in indices:
            if index != 0:
                self.surface.rmdir(self.paths.lun(index))
        self.surface.rmdir(self.paths.function)
