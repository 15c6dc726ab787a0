"""
widgethub

A publish/subscribe hub for sandboxed widgets.

Widgets run in isolated contexts and can only talk to the manager over
a point-to-point channel. The manager drives each widget through its
handshake, keeps the topic -> subscribers table, and relays messages.

- WidgetManager -> registry, handshake, relay
- Widget -> peer-side wrapper for the hosted application
"""

__version__ = "0.1.0"

from widgethub.core.errors import DuplicateWidgetError, WidgetHubError
from widgethub.core.lifecycle import LifecycleState, PeerRecord
from widgethub.core.settings import ManagerConfig, SharedSettings, WidgetEvent, WidgetOptions
from widgethub.runtime.manager import WidgetListeners, WidgetManager
from widgethub.runtime.widget import Widget, WidgetHooks

__all__ = [
    "__version__",
    "DuplicateWidgetError",
    "LifecycleState",
    "ManagerConfig",
    "PeerRecord",
    "SharedSettings",
    "Widget",
    "WidgetEvent",
    "WidgetHooks",
    "WidgetHubError",
    "WidgetListeners",
    "WidgetManager",
    "WidgetOptions",
]
