"""USB mass-storage gadget control.

This package drives the kernel's configfs gadget tree through a
privileged Executor.

Main Classes:
    - GadgetController: enable()/disable()/query_configured()
    - LunAllocator: mount()/eject()/list_slots()
    - DiskImageCreator: create()/create_gb()/validate_path()

Supporting Modules:
    - surface: ControlSurface, typed primitives over the Executor
    - paths: GadgetPaths, configfs layout
    - lock: gadget_operation(), serializes mutations
    - exceptions: GadgetError hierarchy
"""

from .controller import GadgetController
from .images import DiskImageCreator
from .luns import LunAllocator
from .paths import GadgetPaths
from .surface import ControlSurface


__all__ = [
    "ControlSurface",
    "DiskImageCreator",
    "GadgetController",
    "GadgetPaths",
    "LunAllocator",
]
