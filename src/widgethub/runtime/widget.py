"""
Widget: the wrapper running inside a sandboxed peer.

Gives the hosted application ``publish``, ``subscribe`` and
``register_message_handler``, and answers the manager's handshake.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from widgethub.bus.topics import Topic, topic_name
from widgethub.core.channel import (
    Channel,
    ChannelConfig,
    ChannelFactory,
    ChannelInterface,
    LocalMethod,
    RemoteMethod,
)
from widgethub.core.settings import HandshakeResponse, SharedSettings

logger = structlog.get_logger()

WidgetCallback = Callable[["Widget", Channel], None]
MessageHandler = Callable[[str, str, Any], None]


@dataclass
class WidgetHooks:
    """Callbacks and static topics supplied by the hosted application."""

    initialize: WidgetCallback
    initialized: WidgetCallback | None = None
    subscriptions: list[str] = field(default_factory=list)


class Widget:
    """
    Peer-side end of the hub.

    ``hooks.initialize`` runs synchronously during construction, before any
    remote call is answered, so topics subscribed there are part of the
    handshake response. The response snapshots the topic list; later
    subscriptions only show up in the next handshake.
    """

    def __init__(
        self,
        hooks: WidgetHooks,
        channel_config: ChannelConfig,
        channel_factory: ChannelFactory,
    ) -> None:
        self._hooks = hooks
        self._topics: list[str] = []
        self._handler: MessageHandler | None = None
        self._settings: SharedSettings | None = None
        self._handshake_count = 0
        self._closed = False
        self._log = logger.bind(
            widget=channel_config.local_resource,
            channel_id=channel_config.channel_id,
        )

        for topic in hooks.subscriptions:
            self._remember(topic_name(topic))

        self._channel = channel_factory(
            channel_config,
            ChannelInterface(
                local={
                    "initialize": LocalMethod(self._on_initialize),
                    "send": LocalMethod(self._on_send, is_void=True),
                },
                remote={
                    "subscribe": RemoteMethod(is_void=True),
                    "publish": RemoteMethod(is_void=True),
                },
            ),
        )

        try:
            hooks.initialize(self, self._channel)
        except BaseException:
            self.close()
            raise

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def subscriptions(self) -> list[str]:
        return list(self._topics)

    @property
    def settings(self) -> SharedSettings | None:
        """Settings received in the last handshake."""
        return self._settings

    @property
    def handshake_count(self) -> int:
        return self._handshake_count

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, topic: str | Topic) -> None:
        """Ask the manager to deliver ``topic`` to this widget."""
        name = topic_name(topic)
        self._remember(name)
        self._channel.notify("subscribe", name)

    def publish(self, topic: str | Topic, data: Any) -> None:
        """Ask the manager to relay ``data`` to the other subscribers of ``topic``."""
        self._channel.notify("publish", topic_name(topic), data)

    def register_message_handler(self, handler: MessageHandler | None) -> None:
        """Install the handler for relayed messages; replaces any previous one."""
        self._handler = handler

    def close(self) -> None:
        """Release the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if not self._channel.released:
            self._channel.release()
        self._log.debug("widget_closed")

    def __enter__(self) -> "Widget":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- Remote methods ---

    def _on_initialize(self, settings: dict[str, Any]) -> dict[str, Any]:
        self._settings = SharedSettings.model_validate(settings)
        self._handshake_count += 1

        if self._hooks.initialized is not None:
            try:
                self._hooks.initialized(self, self._channel)
            except Exception:
                self._log.exception("initialized_hook_failed")
                return HandshakeResponse(success=False).model_dump()

        response = HandshakeResponse(success=True, subscriptions=list(self._topics))
        self._log.debug("handshake_answered", subscriptions=response.subscriptions)
        return response.model_dump()

    def _on_send(self, url: str, topic: str, data: Any) -> None:
        handler = self._handler
        if handler is None:
            self._log.debug("message_dropped", sender=url, topic=topic)
            return
        handler(url, topic, data)

    def _remember(self, topic: str) -> None:
        if topic not in self._topics:
            self._topics.append(topic)
