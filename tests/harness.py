"""Shared helpers for widget hub tests."""

from collections import defaultdict
from collections.abc import Iterable
from typing import Any

import anyio

from widgethub.core.channel import Channel, ChannelConfig, ChannelFactory, ChannelInterface
from widgethub.runtime.widget import Widget, WidgetHooks
from widgethub.transport.memory import MemoryTransport

Delivery = tuple[str, str, Any]


async def settle() -> None:
    """Let every pump and handshake task run until they are all blocked."""
    await anyio.wait_all_tasks_blocked()


class WidgetBench:
    """Mounts widgets on a memory transport and records what they receive."""

    def __init__(self, transport: MemoryTransport) -> None:
        self.transport = transport
        self.widgets: dict[str, Widget] = {}
        self.received: dict[str, list[Delivery]] = defaultdict(list)
        self.loads: dict[str, int] = defaultdict(int)

    def mount(
        self,
        url: str,
        topics: Iterable[str] = (),
        *,
        static_topics: Iterable[str] = (),
        reject_first: int = 0,
        with_handler: bool = True,
        publish_early: tuple[str, Any] | None = None,
    ) -> None:
        topics = list(topics)

        def load(config: ChannelConfig, factory: ChannelFactory) -> Widget:
            self.loads[url] += 1
            load_number = self.loads[url]

            def initialize(widget: Widget, manager: Channel) -> None:
                for topic in topics:
                    widget.subscribe(topic)
                if with_handler:
                    widget.register_message_handler(
                        lambda sender, topic, data: self.received[url].append((sender, topic, data))
                    )
                if publish_early is not None:
                    widget.publish(*publish_early)

            def initialized(widget: Widget, manager: Channel) -> None:
                if load_number <= reject_first:
                    raise RuntimeError("widget refused to start")

            widget = Widget(
                WidgetHooks(
                    initialize=initialize,
                    initialized=initialized,
                    subscriptions=list(static_topics),
                ),
                config,
                factory,
            )
            self.widgets[url] = widget
            return widget

        self.transport.register_widget(url, load)


class RawPeer:
    """A bare peer end with a hand-written interface."""

    def __init__(
        self,
        config: ChannelConfig,
        factory: ChannelFactory,
        interface: ChannelInterface,
    ) -> None:
        self.channel = factory(config, interface)
        self.close_count = 0

    def close(self) -> None:
        self.close_count += 1
        if not self.channel.released:
            self.channel.release()


class FakeChannel:
    """Records outgoing traffic without any transport behind it."""

    def __init__(self, config: ChannelConfig, interface: ChannelInterface) -> None:
        self.config = config
        self.interface = interface
        self.sent: list[tuple[str, tuple[Any, ...]]] = []
        self.released = False
        self.release_count = 0

    async def ready(self) -> None:
        return None

    async def call(self, method: str, *args: Any) -> Any:
        raise NotImplementedError

    def notify(self, method: str, *args: Any) -> None:
        self.sent.append((method, args))

    def release(self) -> None:
        self.released = True
        self.release_count += 1

    def answer(self, method: str, *args: Any) -> Any:
        """Invoke one of the local handlers as if the remote side had called it."""
        return self.interface.local[method].handler(*args)
