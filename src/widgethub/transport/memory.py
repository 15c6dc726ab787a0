"""
In-process implementation of the channel contract.

MemoryTransport links a manager-side channel to a widget "mounted" at a url.
Opening a channel to a url loads the widget asynchronously, the same way a
browser would load a frame, and the channel becomes ready once the widget
has opened its end. Each direction is an unbounded anyio memory object
stream, so delivery over one channel keeps sender order.
"""

import inspect
import math
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from itertools import count
from typing import Any, Protocol

import anyio
import structlog
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from widgethub.core.channel import ChannelConfig, ChannelFactory, ChannelInterface
from widgethub.core.errors import (
    ChannelClosedError,
    ChannelError,
    RemoteCallError,
    UndeclaredMethodError,
)

logger = structlog.get_logger()


class SupportsClose(Protocol):
    def close(self) -> None: ...


WidgetLoader = Callable[[ChannelConfig, ChannelFactory], SupportsClose]


@dataclass(frozen=True)
class _Envelope:
    """A single frame on a link."""

    kind: str  # "notify", "call" or "result"
    method: str = ""
    args: tuple[Any, ...] = ()
    call_id: int = 0
    value: Any = None
    error: str | None = None


class _PendingCall:
    def __init__(self) -> None:
        self.event = anyio.Event()
        self.value: Any = None
        self.error: ChannelError | None = None

    def resolve(self, value: Any) -> None:
        if not self.event.is_set():
            self.value = value
            self.event.set()

    def fail(self, error: ChannelError) -> None:
        if not self.event.is_set():
            self.error = error
            self.event.set()


class MemoryChannel:
    """One end of an in-memory link."""

    def __init__(
        self,
        config: ChannelConfig,
        interface: ChannelInterface,
        outbox: MemoryObjectSendStream[_Envelope],
        on_release: Callable[[], None],
    ) -> None:
        self._config = config
        self._interface = interface
        self._outbox = outbox
        self._on_release = on_release
        self._ready = anyio.Event()
        self._released = False
        self._pending: dict[int, _PendingCall] = {}
        self._call_ids = count(1)
        self._log = logger.bind(
            component="memory_channel",
            channel_id=config.channel_id,
            local=config.local_resource,
        )

    @property
    def config(self) -> ChannelConfig:
        return self._config

    @property
    def released(self) -> bool:
        return self._released

    @property
    def pending_calls(self) -> int:
        return len(self._pending)

    async def ready(self) -> None:
        await self._ready.wait()
        if self._released:
            raise ChannelClosedError(f"Channel {self._config.channel_id} was released")

    async def call(self, method: str, *args: Any) -> Any:
        self._check_remote(method, is_void=False)
        call_id = next(self._call_ids)
        pending = _PendingCall()
        self._pending[call_id] = pending
        try:
            self._post(_Envelope("call", method, args, call_id=call_id))
            await pending.event.wait()
        finally:
            self._pending.pop(call_id, None)

        if pending.error is not None:
            raise pending.error
        return pending.value

    def notify(self, method: str, *args: Any) -> None:
        self._check_remote(method, is_void=True)
        self._post(_Envelope("notify", method, args))

    def release(self) -> None:
        if self._released:
            self._log.debug("release_ignored")
            return
        self._log.debug("channel_releasing")
        self._on_release()

    # --- Transport side ---

    def mark_ready(self) -> None:
        self._ready.set()

    def shutdown(self) -> None:
        """Mark released and fail every outstanding call."""
        self._released = True
        self._ready.set()
        for pending in list(self._pending.values()):
            pending.fail(ChannelClosedError(f"Channel {self._config.channel_id} was released"))

    async def dispatch(self, envelope: _Envelope) -> None:
        """Handle one inbound frame."""
        if self._released:
            self._log.debug("frame_dropped", kind=envelope.kind, method=envelope.method)
            return

        if envelope.kind == "result":
            pending = self._pending.get(envelope.call_id)
            if pending is None:
                self._log.debug("orphan_result", call_id=envelope.call_id)
            elif envelope.error is not None:
                pending.fail(RemoteCallError(envelope.error))
            else:
                pending.resolve(envelope.value)
            return

        is_call = envelope.kind == "call"
        local = self._interface.local.get(envelope.method)
        if local is None:
            self._log.warning("undeclared_local_method", method=envelope.method)
            if is_call:
                self._reply(envelope.call_id, error=f"Unknown method '{envelope.method}'")
            return

        try:
            result = local.handler(*envelope.args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self._log.exception("local_method_failed", method=envelope.method)
            if is_call:
                self._reply(envelope.call_id, error=f"{type(exc).__name__}: {exc}")
            return

        if is_call:
            self._reply(envelope.call_id, value=result)

    def _reply(self, call_id: int, value: Any = None, error: str | None = None) -> None:
        try:
            self._post(_Envelope("result", call_id=call_id, value=value, error=error))
        except ChannelClosedError:
            self._log.debug("reply_dropped", call_id=call_id)

    def _check_remote(self, method: str, *, is_void: bool) -> None:
        remote = self._interface.remote.get(method)
        if remote is None:
            raise UndeclaredMethodError(f"Remote method '{method}' is not declared")
        if remote.is_void != is_void:
            kind = "void" if remote.is_void else "request/response"
            raise UndeclaredMethodError(f"Remote method '{method}' is declared {kind}")

    def _post(self, envelope: _Envelope) -> None:
        if self._released:
            raise ChannelClosedError(f"Channel {self._config.channel_id} was released")
        try:
            self._outbox.send_nowait(envelope)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise ChannelClosedError(f"Channel {self._config.channel_id} is closed") from exc


class _Link:
    """Both ends of one channel plus the widget loaded behind it."""

    def __init__(self, config: ChannelConfig) -> None:
        self.config = config
        self.to_peer_send, self.to_peer_receive = anyio.create_memory_object_stream(math.inf)
        self.to_host_send, self.to_host_receive = anyio.create_memory_object_stream(math.inf)
        self.host: MemoryChannel | None = None
        self.peer: MemoryChannel | None = None
        self.widget: SupportsClose | None = None
        self.closed = False


class MemoryTransport:
    """
    Loopback transport connecting a manager to widgets in the same process.

    Usage:
        transport = MemoryTransport()
        transport.register_widget("peerA", lambda config, factory: Widget(hooks, config, factory))
        async with transport.run_context():
            manager = WidgetManager(config, transport.channel_factory)
    """

    def __init__(self) -> None:
        self._loaders: dict[str, WidgetLoader] = {}
        self._links: dict[tuple[str, str], _Link] = {}
        self._task_group: TaskGroup | None = None
        self._log = logger.bind(component="memory_transport")

    @property
    def is_running(self) -> bool:
        return self._task_group is not None

    def open_channels(self) -> list[str]:
        """Channel ids of links that are still open."""
        return [channel_id for _, channel_id in self._links]

    def register_widget(self, url: str, loader: WidgetLoader) -> None:
        """Mount a widget loader at ``url``."""
        self._loaders[url] = loader
        self._log.debug("widget_mounted", url=url)

    @asynccontextmanager
    async def run_context(self) -> AsyncIterator["MemoryTransport"]:
        """Run the transport; every link is torn down on exit."""
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            self._log.debug("transport_started")
            try:
                yield self
            finally:
                for link in list(self._links.values()):
                    self._close_link(link)
                self._task_group = None
                tg.cancel_scope.cancel()
                self._log.debug("transport_stopped")

    def channel_factory(self, config: ChannelConfig, interface: ChannelInterface) -> MemoryChannel:
        """Open the manager-side end of a channel to ``config.remote_resource``."""
        tg = self._require_task_group()
        key = (config.local_resource, config.channel_id)
        if key in self._links:
            raise ChannelError(f"Channel id '{config.channel_id}' is already open")

        link = _Link(config)
        host = MemoryChannel(config, interface, link.to_peer_send, lambda: self._close_link(link))
        link.host = host
        self._links[key] = link

        tg.start_soon(self._pump, host, link.to_host_receive)
        tg.start_soon(self._load, link)
        self._log.debug(
            "channel_opened",
            channel_id=config.channel_id,
            remote=config.remote_resource,
            mount_point=config.mount_point,
        )
        return host

    async def _load(self, link: _Link) -> None:
        url = link.config.remote_resource
        if link.closed:
            return

        loader = self._loaders.get(url)
        if loader is None:
            self._log.warning("no_widget_at_url", url=url, channel_id=link.config.channel_id)
            return

        peer_config = ChannelConfig(
            channel_id=link.config.channel_id,
            local_resource=url,
            remote_resource=link.config.local_resource,
        )

        def open_peer_channel(config: ChannelConfig, interface: ChannelInterface) -> MemoryChannel:
            if link.closed:
                raise ChannelClosedError(f"Channel {config.channel_id} was released")
            if link.peer is not None:
                raise ChannelError(f"Channel {config.channel_id} already has a widget end")

            peer = MemoryChannel(config, interface, link.to_host_send, lambda: self._close_link(link))
            link.peer = peer
            self._require_task_group().start_soon(self._pump, peer, link.to_peer_receive)
            peer.mark_ready()
            if link.host is not None:
                link.host.mark_ready()
            return peer

        try:
            link.widget = loader(peer_config, open_peer_channel)
        except Exception:
            self._log.exception("widget_load_failed", url=url)
            return

        if link.closed:
            link.widget.close()

    async def _pump(
        self,
        channel: MemoryChannel,
        inbox: MemoryObjectReceiveStream[_Envelope],
    ) -> None:
        async with inbox:
            async for envelope in inbox:
                await channel.dispatch(envelope)

    def _close_link(self, link: _Link) -> None:
        if link.closed:
            return
        link.closed = True
        self._links.pop((link.config.local_resource, link.config.channel_id), None)

        link.to_peer_send.close()
        link.to_host_send.close()
        if link.peer is None:
            link.to_peer_receive.close()

        for end in (link.host, link.peer):
            if end is not None:
                end.shutdown()

        if link.widget is not None:
            link.widget.close()

        self._log.debug("channel_closed", channel_id=link.config.channel_id)

    def _require_task_group(self) -> TaskGroup:
        if self._task_group is None:
            raise ChannelError("Memory transport is not running")
        return self._task_group
