"""Manager and widget runtimes."""

from widgethub.runtime.manager import (
    HOST_SENDER,
    ManagerState,
    RelayStats,
    WidgetListeners,
    WidgetManager,
)
from widgethub.runtime.widget import Widget, WidgetHooks

__all__ = [
    "HOST_SENDER",
    "ManagerState",
    "RelayStats",
    "Widget",
    "WidgetHooks",
    "WidgetListeners",
    "WidgetManager",
]
