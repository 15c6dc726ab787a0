"""Core abstractions for the widget hub."""

from widgethub.core.channel import (
    Channel,
    ChannelConfig,
    ChannelFactory,
    ChannelInterface,
    LocalMethod,
    RemoteMethod,
)
from widgethub.core.errors import (
    ChannelClosedError,
    ChannelError,
    DuplicateWidgetError,
    InvalidTopicError,
    InvalidWidgetUrlError,
    ManagerNotRunningError,
    RemoteCallError,
    UndeclaredMethodError,
    WidgetHubError,
)
from widgethub.core.lifecycle import LifecycleState, PeerRecord
from widgethub.core.registry import PeerRegistry
from widgethub.core.settings import (
    HandshakeResponse,
    ManagerConfig,
    SharedSettings,
    WidgetEvent,
    WidgetOptions,
)

__all__ = [
    "Channel",
    "ChannelClosedError",
    "ChannelConfig",
    "ChannelError",
    "ChannelFactory",
    "ChannelInterface",
    "DuplicateWidgetError",
    "HandshakeResponse",
    "InvalidTopicError",
    "InvalidWidgetUrlError",
    "LifecycleState",
    "LocalMethod",
    "ManagerConfig",
    "ManagerNotRunningError",
    "PeerRecord",
    "PeerRegistry",
    "RemoteCallError",
    "RemoteMethod",
    "SharedSettings",
    "UndeclaredMethodError",
    "WidgetEvent",
    "WidgetHubError",
    "WidgetOptions",
]
