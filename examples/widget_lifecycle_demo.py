#!/usr/bin/env python3
"""
Example: Widget Lifecycle Demo

Demonstrates:
- Registering widgets and awaiting their handshake
- A widget refusing to start, then succeeding on retry
- Handshake timeout for a url nobody answers
- Topic relay versus broadcast
- Removing a widget and tearing the manager down

Lifecycle per widget:
AWAITING_INIT -> ACTIVE -> DESTROYED
             \\-> FAILED (discarded, may be added again)
"""

import asyncio

from widgethub import (
    ManagerConfig,
    Widget,
    WidgetEvent,
    WidgetHooks,
    WidgetListeners,
    WidgetManager,
)
from widgethub.core.channel import Channel, ChannelConfig, ChannelFactory
from widgethub.transport import MemoryTransport


def make_loader(topics: list[str], inbox: list[str], refuse_first: bool = False):
    attempts = {"count": 0}

    def load(config: ChannelConfig, factory: ChannelFactory) -> Widget:
        attempts["count"] += 1
        url = config.local_resource

        def initialize(widget: Widget, manager: Channel) -> None:
            for topic in topics:
                widget.subscribe(topic)
            widget.register_message_handler(
                lambda sender, topic, data: inbox.append(f"{url} <- {sender or 'manager'} [{topic}] {data}")
            )

        def initialized(widget: Widget, manager: Channel) -> None:
            if refuse_first and attempts["count"] == 1:
                raise RuntimeError("not ready yet")

        return Widget(WidgetHooks(initialize=initialize, initialized=initialized), config, factory)

    return load


async def run() -> None:
    inbox: list[str] = []

    def on_initialized(manager: WidgetManager, event: WidgetEvent) -> None:
        print(f"  initialized: {event.url}")

    def on_failed(manager: WidgetManager, event: WidgetEvent) -> None:
        print(f"  failed:      {event.url} ({event.reason})")

    transport = MemoryTransport()
    transport.register_widget("weather", make_loader(["forecast"], inbox))
    transport.register_widget("ticker", make_loader(["forecast", "quotes"], inbox, refuse_first=True))

    manager = WidgetManager(
        ManagerConfig(local="relay.html", handshake_timeout=0.2),
        transport.channel_factory,
        WidgetListeners(on_initialized=on_initialized, on_failed=on_failed),
    )

    async with transport.run_context(), manager.run_context():
        # =====================================================================
        # Step 1: Handshakes
        # =====================================================================
        print("Step 1: Handshakes")
        print("-" * 40)
        await manager.add_widget("weather").wait_settled()
        await manager.add_widget("ticker").wait_settled()
        await manager.add_widget("ticker").wait_settled()
        await manager.add_widget("offline").wait_settled()
        print(f"  active: {manager.active_urls()}")
        print()

        # =====================================================================
        # Step 2: Relay and broadcast
        # =====================================================================
        print("Step 2: Relay and broadcast")
        print("-" * 40)
        manager.publish("forecast", "sunny")
        manager.publish("quotes", {"ACME": 42})
        manager.broadcast("maintenance at noon")
        await asyncio.sleep(0.01)
        for line in inbox:
            print(f"  {line}")
        print()

        # =====================================================================
        # Step 3: Removal
        # =====================================================================
        print("Step 3: Removal")
        print("-" * 40)
        manager.remove_widget("weather")
        print(f"  forecast subscribers: {manager.subscribers('forecast')}")
        print(f"  health: {manager.get_health()}")

    print()
    print("=" * 60)
    print("Example Complete!")
    print("=" * 60)


def main():
    print("=" * 60)
    print("Widget Lifecycle Demo")
    print("=" * 60)
    print()
    asyncio.run(run())


if __name__ == "__main__":
    main()
