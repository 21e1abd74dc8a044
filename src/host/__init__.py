"""Host-side dispatcher, transport and persistence interfaces."""

from .dispatcher import HostDispatcher
from .persistence import DebouncedSaver

__all__ = ["HostDispatcher", "DebouncedSaver"]
