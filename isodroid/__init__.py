"""Multi-LUN USB mass-storage gadget control for rooted devices."""

from .__version__ import __version__


__all__ = ["__version__"]
