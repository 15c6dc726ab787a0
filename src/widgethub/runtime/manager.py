"""
WidgetManager: registry, handshake driver and message relay.

Owns one channel per registered widget, drives each widget through
AWAITING_INIT -> ACTIVE (or FAILED), and relays publish/broadcast traffic
between widgets that cannot see each other directly.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum, auto
from itertools import count
from typing import Any

import anyio
import structlog
from anyio.abc import TaskGroup
from pydantic import ValidationError

from widgethub.bus.subscriptions import SubscriptionTable
from widgethub.bus.topics import BROADCAST, Topic, topic_name
from widgethub.core.channel import (
    ChannelConfig,
    ChannelFactory,
    ChannelInterface,
    LocalMethod,
    RemoteMethod,
)
from widgethub.core.errors import (
    ChannelError,
    DuplicateWidgetError,
    InvalidTopicError,
    InvalidWidgetUrlError,
    ManagerNotRunningError,
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

logger = structlog.get_logger()

# Sender marker for traffic originating from the manager itself
HOST_SENDER = ""


class ManagerState(Enum):
    """Lifecycle states for the manager."""

    CREATED = auto()
    RUNNING = auto()
    STOPPED = auto()


WidgetListener = Callable[["WidgetManager", WidgetEvent], None]


@dataclass
class WidgetListeners:
    """Observers for handshake outcomes."""

    on_initialized: WidgetListener | None = None
    on_failed: WidgetListener | None = None


@dataclass
class RelayStats:
    """Statistics for relayed traffic."""

    total_published: int = 0
    total_broadcasts: int = 0
    total_delivered: int = 0
    total_dropped: int = 0
    total_errors: int = 0


class WidgetManager:
    """
    Coordinates a set of sandboxed widgets.

    Responsibilities:
    - Reserve a url and open its channel on ``add_widget``
    - Run the ``initialize`` handshake with a timeout
    - Keep the topic -> subscribers table in step with widget lifecycles
    - Relay ``publish`` to subscribers and ``broadcast`` to every active widget

    All state belongs to this instance and is torn down when
    ``run_context()`` exits.
    """

    def __init__(
        self,
        config: ManagerConfig,
        channel_factory: ChannelFactory,
        listeners: WidgetListeners | None = None,
    ) -> None:
        self._config = config
        self._channel_factory = channel_factory
        self._listeners = listeners or WidgetListeners()
        self._settings = SharedSettings.build(config.host_url, config.widget_settings)
        self._registry = PeerRegistry()
        self._subscriptions = SubscriptionTable()
        self._stats = RelayStats()
        self._channel_numbers = count()
        self._state = ManagerState.CREATED
        self._task_group: TaskGroup | None = None
        self._log = logger.bind(component="widget_manager", local=config.local)

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def settings(self) -> SharedSettings:
        return self._settings

    @property
    def stats(self) -> RelayStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == ManagerState.RUNNING

    # --- Lifecycle management ---

    @asynccontextmanager
    async def run_context(self) -> AsyncIterator["WidgetManager"]:
        """Run the manager; every widget is released on exit."""
        if self._state != ManagerState.CREATED:
            raise RuntimeError(f"Cannot start widget manager in state {self._state}")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            self._state = ManagerState.RUNNING
            self._log.info("widget_manager_started")
            try:
                yield self
            finally:
                self._shutdown()
                tg.cancel_scope.cancel()

    def _shutdown(self) -> None:
        self._state = ManagerState.STOPPED
        self._task_group = None

        records = self._registry.clear()
        for record in records:
            self._release(record)
            record.transition(LifecycleState.DESTROYED)
        self._subscriptions.clear()

        self._log.info("widget_manager_stopped", released=len(records))

    # --- Widget registration ---

    def add_widget(self, url: str, options: WidgetOptions | None = None) -> PeerRecord:
        """
        Register a widget and start its handshake.

        The url is reserved immediately, so a second call for the same url
        fails until this registration is removed or has failed.

        Raises:
            DuplicateWidgetError: if ``url`` has an active or in-flight record
            InvalidWidgetUrlError: if ``url`` is empty
            ManagerNotRunningError: if called outside ``run_context()``
        """
        if self._task_group is None:
            raise ManagerNotRunningError(f"Cannot add widget in state {self._state.name}")
        if not isinstance(url, str) or not url:
            raise InvalidWidgetUrlError(f"Widget url must be a non-empty string, got {url!r}")
        if url in self._registry:
            raise DuplicateWidgetError(url)

        options = options or WidgetOptions()
        mount_point = options.container or self._config.container
        channel_config = ChannelConfig(
            channel_id=f"widget{next(self._channel_numbers)}",
            local_resource=self._config.local,
            remote_resource=url,
            mount_point=mount_point,
        )
        channel = self._channel_factory(channel_config, self._interface_for(url))

        record = PeerRecord(url=url, channel=channel, container=mount_point)
        self._registry.reserve(record)
        self._log.info("widget_adding", url=url, channel_id=channel_config.channel_id)

        self._task_group.start_soon(self._handshake, record)
        return record

    def remove_widget(self, url: str) -> bool:
        """
        Remove an active widget, its subscriptions and its channel.

        Returns:
            False (without raising) if no active widget exists for ``url``
        """
        record = self._registry.get_active(url)
        if record is None:
            self._log.info("widget_not_loaded", url=url)
            return False

        topics = self._subscriptions.remove_subscriber(url)
        self._registry.discard(record)
        self._release(record)
        record.transition(LifecycleState.DESTROYED)

        self._log.info("widget_removed", url=url, topics=topics)
        return True

    def _interface_for(self, url: str) -> ChannelInterface:
        return ChannelInterface(
            local={
                "subscribe": LocalMethod(lambda topic: self._on_subscribe(url, topic), is_void=True),
                "publish": LocalMethod(
                    lambda topic, data: self._on_publish(url, topic, data), is_void=True
                ),
            },
            remote={
                "initialize": RemoteMethod(),
                "send": RemoteMethod(is_void=True),
            },
        )

    # --- Handshake ---

    async def _handshake(self, record: PeerRecord) -> None:
        log = self._log.bind(
            url=record.url,
            record_id=record.id,
            channel_id=record.channel.config.channel_id,
        )
        log.debug("widget_handshake_started")

        response: HandshakeResponse | None = None
        reason: str | None = None
        try:
            with anyio.fail_after(self._config.handshake_timeout):
                await record.channel.ready()
                raw = await record.channel.call("initialize", self._settings.model_dump())
            response = HandshakeResponse.model_validate(raw)
        except TimeoutError:
            reason = "timeout"
        except ChannelError as exc:
            log.warning("widget_handshake_channel_error", error=str(exc))
            reason = "channel_error"
        except ValidationError as exc:
            log.warning("widget_handshake_invalid_response", error=str(exc))
            reason = "invalid_response"
        except Exception:
            log.exception("widget_handshake_transport_error")
            reason = "channel_error"

        if not self._registry.holds(record) or record.state != LifecycleState.AWAITING_INIT:
            log.debug("stale_handshake_ignored", state=record.state.name)
            return

        if response is not None and not response.success:
            reason = "rejected"

        if reason is None and response is not None:
            self._activate(record, response.subscriptions)
        else:
            self._fail(record, reason or "rejected")

    def _activate(self, record: PeerRecord, declared: list[str]) -> None:
        record.transition(LifecycleState.ACTIVE)

        topics: list[str] = []
        for topic in [*declared, *record.pending_topics]:
            try:
                topics.append(topic_name(topic))
            except InvalidTopicError:
                self._log.warning("invalid_topic_ignored", url=record.url, topic=topic)
        record.pending_topics.clear()
        self._subscriptions.add_many(topics, record.url)

        self._log.info(
            "widget_initialized",
            url=record.url,
            topics=self._subscriptions.topics_for(record.url),
        )
        self._notify(self._listeners.on_initialized, WidgetEvent(url=record.url))

    def _fail(self, record: PeerRecord, reason: str) -> None:
        self._registry.discard(record)
        record.pending_topics.clear()
        self._release(record)
        record.transition(LifecycleState.FAILED)

        self._log.warning("widget_failed", url=record.url, reason=reason)
        self._notify(self._listeners.on_failed, WidgetEvent(url=record.url, reason=reason))

    def _release(self, record: PeerRecord) -> None:
        if not record.channel.released:
            record.channel.release()

    def _notify(self, listener: WidgetListener | None, event: WidgetEvent) -> None:
        if listener is None:
            return
        try:
            listener(self, event)
        except Exception:
            self._log.exception("listener_failed", url=event.url)

    # --- Inbound calls from widgets ---

    def _on_subscribe(self, url: str, topic: Any) -> None:
        try:
            name = topic_name(topic)
        except InvalidTopicError:
            self._log.warning("invalid_topic_ignored", url=url, topic=topic)
            return

        record = self._registry.get(url)
        if record is None:
            self._log.warning("subscribe_dropped", url=url, topic=name)
            return

        if record.is_active:
            self._subscriptions.add(name, url)
        elif name not in record.pending_topics:
            record.pending_topics.append(name)

    def _on_publish(self, url: str, topic: Any, data: Any) -> None:
        if self._registry.get_active(url) is None:
            self._stats.total_dropped += 1
            self._log.warning("publish_dropped", url=url, topic=topic)
            return

        try:
            name = topic_name(topic)
        except InvalidTopicError:
            self._stats.total_dropped += 1
            self._log.warning("invalid_topic_ignored", url=url, topic=topic)
            return

        self._relay(url, name, data)

    # --- Relay ---

    def publish(self, topic: str | Topic, data: Any) -> int:
        """
        Publish ``data`` from the manager to every subscriber of ``topic``.

        Returns:
            Number of widgets the message was handed to
        """
        return self._relay(HOST_SENDER, topic_name(topic), data)

    def broadcast(self, data: Any) -> int:
        """
        Send ``data`` to every active widget, ignoring subscriptions.

        Widgets receive it as ``send("", "broadcast", data)``.
        """
        self._stats.total_broadcasts += 1
        delivered = 0
        for record in self._registry.get_by_state(LifecycleState.ACTIVE):
            if self._deliver(record, HOST_SENDER, str(BROADCAST), data):
                delivered += 1

        self._stats.total_delivered += delivered
        self._log.debug("broadcast", delivered=delivered)
        return delivered

    def _relay(self, sender: str, topic: str, data: Any) -> int:
        self._stats.total_published += 1
        recipients = [url for url in self._subscriptions.subscribers(topic) if url != sender]
        if not recipients:
            self._log.debug("no_subscribers", topic=topic, sender=sender)
            return 0

        delivered = 0
        for url in recipients:
            record = self._registry.get_active(url)
            if record is not None and self._deliver(record, sender, topic, data):
                delivered += 1

        self._stats.total_delivered += delivered
        self._log.debug(
            "published",
            topic=topic,
            sender=sender,
            delivered=delivered,
            total_subscribers=len(recipients),
        )
        return delivered

    def _deliver(self, record: PeerRecord, sender: str, topic: str, data: Any) -> bool:
        try:
            record.channel.notify("send", sender, topic, data)
            return True
        except Exception:
            self._stats.total_errors += 1
            self._log.exception("delivery_failed", url=record.url, topic=topic)
            return False

    # --- Introspection ---

    def get_record(self, url: str) -> PeerRecord | None:
        return self._registry.get(url)

    def active_urls(self) -> list[str]:
        return self._registry.list_active_urls()

    def subscribers(self, topic: str | Topic) -> list[str]:
        return self._subscriptions.subscribers(topic_name(topic))

    def topics_for(self, url: str) -> list[str]:
        return self._subscriptions.topics_for(url)

    def get_health(self) -> dict[str, Any]:
        """Get manager health status."""
        return {
            "state": self._state.name,
            "widgets": {
                "total": len(self._registry),
                "active": len(self._registry.get_by_state(LifecycleState.ACTIVE)),
                "awaiting_init": len(self._registry.get_by_state(LifecycleState.AWAITING_INIT)),
            },
            "topics": len(self._subscriptions),
            "relay": {
                "published": self._stats.total_published,
                "broadcasts": self._stats.total_broadcasts,
                "delivered": self._stats.total_delivered,
                "dropped": self._stats.total_dropped,
                "errors": self._stats.total_errors,
            },
        }
