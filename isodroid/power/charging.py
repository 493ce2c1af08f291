"""Charging suspend control.

The kernel's power-supply `input_suspend` attribute stops the battery
from charging while a host powers the device over USB. The attribute
file is the source of truth; `suspended` mirrors it for display only.
This control shares the Executor with the gadget but is otherwise
independent of it.
"""

from __future__ import annotations

from isodroid.app.observable import ObservableValue
from isodroid.config import settings
from isodroid.domain.results import ErrorKind, Result
from isodroid.logging import LoggerFactory
from isodroid.privileged.executor import Executor


log = LoggerFactory.for_power()


class ChargingController:
    def __init__(
        self,
        executor: Executor,
        attribute_path: str = settings.DEFAULT_CHARGING_ATTRIBUTE,
    ) -> None:
        self.executor = executor
        self.attribute_path = attribute_path
        self.suspended: ObservableValue[bool] = ObservableValue(False)

    def get(self) -> bool:
        """True iff the attribute reads as the integer 1.

        Without privilege the attribute is not read at all and the
        answer is False.
        """
        if not self.executor.privileged:
            self.suspended.set(False)
            return False

        result = self.executor.execute("read", self.attribute_path)
        if not result.ok:
            log.debug(f"Could not read {self.attribute_path}: {result.output}")
            is_suspended = False
        else:
            try:
                is_suspended = int(result.output.strip()) == 1
            except ValueError:
                is_suspended = False
        self.suspended.set(is_suspended)
        return is_suspended

    def set(self, suspend: bool) -> Result:
        """Write "1" (suspend) or "0" (charge); the mirrored flag only
        changes when the write succeeds."""
        if not self.executor.privileged:
            return Result.failure(ErrorKind.PRIVILEGE_DENIED, "Device is not rooted")

        value = "1" if suspend else "0"
        result = self.executor.execute("write", self.attribute_path, value)
        if not result.ok:
            log.warning(f"Cannot write to {self.attribute_path}: {result.output}")
            return Result.failure(
                ErrorKind.EXECUTION_FAILURE,
                f"Cannot write to input_suspend: {result.output}",
            )

        self.suspended.set(suspend)
        log.info(f"Charging {'suspended' if suspend else 'resumed'}")
        return Result.success(value)
