"""In-process transport implementing the channel contract."""

from widgethub.transport.memory import MemoryChannel, MemoryTransport, WidgetLoader

__all__ = [
    "MemoryChannel",
    "MemoryTransport",
    "WidgetLoader",
]
