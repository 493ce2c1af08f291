"""Layout of the gadget control surface."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass

from isodroid.config import settings


@dataclass(frozen=True)
class GadgetPaths:
    """Where the gadget's configfs nodes and properties live.

    Defaults match the Android `g1` gadget with the mass-storage function
    linked into configuration `b.1` as `f100`.
    """

    gadget: str = settings.DEFAULT_GADGET_PATH
    function_name: str = "mass_storage.usb0"
    config_name: str = "b.1"
    function_link: str = "f100"
    controller_property: str = "sys.usb.controller"
    usb_config_property: str = "sys.usb.config"
    default_usb_config: str = "mtp,adb"
    charging_attribute: str = settings.DEFAULT_CHARGING_ATTRIBUTE

    @property
    def udc(self) -> str:
        return posixpath.join(self.gadget, "UDC")

    @property
    def function(self) -> str:
        return posixpath.join(self.gadget, "functions", self.function_name)

    @property
    def link(self) -> str:
        return posixpath.join(self.gadget, "configs", self.config_name, self.function_link)

    def lun(self, index: int) -> str:
        return posixpath.join(self.function, f"lun.{index}")

    def lun_attribute(self, index: int, name: str) -> str:
        return posixpath.join(self.lun(index), name)

    @classmethod
    def from_settings(cls) -> GadgetPaths:
        return cls(
            gadget=settings.get_str("gadget_path", settings.DEFAULT_GADGET_PATH),
            function_name=settings.get_str("function_name", cls.function_name),
            config_name=settings.get_str("config_name", cls.config_name),
            function_link=settings.get_str("function_link", cls.function_link),
            controller_property=settings.get_str(
                "controller_property", cls.controller_property
            ),
            usb_config_property=settings.get_str(
                "usb_config_property", cls.usb_config_property
            ),
            default_usb_config=settings.get_str(
                "default_usb_config", cls.default_usb_config
            ),
            charging_attribute=settings.get_str(
                "charging_attribute", settings.DEFAULT_CHARGING_ATTRIBUTE
            ),
        )
