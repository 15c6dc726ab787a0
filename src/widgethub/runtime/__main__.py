"""
Demo entry point for the widget hub.

Wires a manager to two in-process widgets over the memory transport and
relays a few messages between them.

Usage:
    python -m widgethub.runtime
"""

import asyncio
import sys
from typing import Any, NoReturn

import structlog

from widgethub.core.channel import Channel, ChannelConfig, ChannelFactory
from widgethub.core.settings import ManagerConfig, WidgetEvent
from widgethub.runtime.manager import WidgetListeners, WidgetManager
from widgethub.runtime.widget import Widget, WidgetHooks
from widgethub.transport.memory import MemoryTransport, WidgetLoader

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def news_widget_loader(received: list[tuple[str, str, str, Any]]) -> WidgetLoader:
    """Build a loader for a widget that subscribes to "news" and records what it receives."""

    def load(config: ChannelConfig, factory: ChannelFactory) -> Widget:
        url = config.local_resource

        def initialize(widget: Widget, manager: Channel) -> None:
            widget.subscribe("news")
            widget.register_message_handler(
                lambda sender, topic, data: received.append((url, sender, topic, data))
            )

        return Widget(WidgetHooks(initialize=initialize), config, factory)

    return load


async def run_demo() -> list[tuple[str, str, str, Any]]:
    """Run the two-widget relay scenario and return every delivery."""
    received: list[tuple[str, str, str, Any]] = []
    widgets: dict[str, Widget] = {}
    loader = news_widget_loader(received)

    def keep(config: ChannelConfig, factory: ChannelFactory) -> Widget:
        widget = loader(config, factory)
        widgets[config.local_resource] = widget
        return widget

    def on_initialized(manager: WidgetManager, event: WidgetEvent) -> None:
        logger.info("demo_widget_ready", url=event.url)

    def on_failed(manager: WidgetManager, event: WidgetEvent) -> None:
        logger.warning("demo_widget_failed", url=event.url, reason=event.reason)

    transport = MemoryTransport()
    transport.register_widget("peerA", keep)
    transport.register_widget("peerB", keep)

    manager = WidgetManager(
        ManagerConfig(local="hub", widget_settings={"theme": "dark"}),
        transport.channel_factory,
        WidgetListeners(on_initialized=on_initialized, on_failed=on_failed),
    )

    async with transport.run_context(), manager.run_context():
        for url in ("peerA", "peerB"):
            await manager.add_widget(url).wait_settled()

        manager.publish("news", {"n": 1})
        await asyncio.sleep(0.01)

        widgets["peerA"].publish("news", {"n": 2})
        await asyncio.sleep(0.01)

        logger.info("demo_health", **manager.get_health())

    return received


def main() -> NoReturn:
    """Main entry point."""
    try:
        received = asyncio.run(run_demo())
        for url, sender, topic, data in received:
            logger.info("demo_delivery", to=url, sender=sender or "<manager>", topic=topic, data=data)
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("interrupted")
        sys.exit(130)
    except Exception:
        logger.exception("fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
