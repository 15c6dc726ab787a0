"""Tests for the in-memory channel transport."""

from typing import Any

import anyio
import pytest

from widgethub.core.channel import (
    ChannelConfig,
    ChannelFactory,
    ChannelInterface,
    LocalMethod,
    RemoteMethod,
)
from widgethub.core.errors import (
    ChannelClosedError,
    ChannelError,
    RemoteCallError,
    UndeclaredMethodError,
)
from widgethub.transport.memory import MemoryTransport

from harness import RawPeer, settle

HOST_CONFIG = ChannelConfig(
    channel_id="widget0",
    local_resource="hub",
    remote_resource="peerA",
    mount_point="body",
)


def host_interface(received: list[Any] | None = None) -> ChannelInterface:
    return ChannelInterface(
        local={
            "publish": LocalMethod(
                lambda topic, data: (received if received is not None else []).append((topic, data)),
                is_void=True,
            ),
        },
        remote={
            "initialize": RemoteMethod(),
            "send": RemoteMethod(is_void=True),
        },
    )


def mount_peer(transport: MemoryTransport, url: str, local: dict[str, LocalMethod]) -> list[RawPeer]:
    peers: list[RawPeer] = []

    def load(config: ChannelConfig, factory: ChannelFactory) -> RawPeer:
        peer = RawPeer(
            config,
            factory,
            ChannelInterface(local=local, remote={"publish": RemoteMethod(is_void=True)}),
        )
        peers.append(peer)
        return peer

    transport.register_widget(url, load)
    return peers


class TestMemoryChannel:
    @pytest.mark.asyncio
    async def test_call_round_trip(self) -> None:
        transport = MemoryTransport()
        peers = mount_peer(
            transport,
            "peerA",
            {"initialize": LocalMethod(lambda settings: {"echo": settings})},
        )

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            with anyio.fail_after(1):
                await host.ready()
                result = await host.call("initialize", {"host_url": "x"})

        assert result == {"echo": {"host_url": "x"}}
        assert peers[0].channel.config.local_resource == "peerA"
        assert peers[0].channel.config.remote_resource == "hub"

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        transport = MemoryTransport()

        async def initialize(settings: dict[str, Any]) -> str:
            await anyio.sleep(0)
            return "done"

        mount_peer(transport, "peerA", {"initialize": LocalMethod(initialize)})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            with anyio.fail_after(1):
                assert await host.call("initialize", {}) == "done"

    @pytest.mark.asyncio
    async def test_notify_keeps_order(self) -> None:
        transport = MemoryTransport()
        seen: list[int] = []
        mount_peer(transport, "peerA", {"send": LocalMethod(lambda n: seen.append(n), is_void=True)})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            for n in range(20):
                host.notify("send", n)
            await settle()

        assert seen == list(range(20))

    @pytest.mark.asyncio
    async def test_peer_to_host_notify(self) -> None:
        transport = MemoryTransport()
        received: list[Any] = []
        peers = mount_peer(transport, "peerA", {})

        async with transport.run_context():
            transport.channel_factory(HOST_CONFIG, host_interface(received))
            await settle()
            peers[0].channel.notify("publish", "news", {"n": 1})
            await settle()

        assert received == [("news", {"n": 1})]

    @pytest.mark.asyncio
    async def test_undeclared_methods(self) -> None:
        transport = MemoryTransport()
        mount_peer(transport, "peerA", {})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            with pytest.raises(UndeclaredMethodError):
                host.notify("missing")
            with pytest.raises(UndeclaredMethodError, match="void"):
                await host.call("send", "x")
            with pytest.raises(UndeclaredMethodError, match="request/response"):
                host.notify("initialize", {})

    @pytest.mark.asyncio
    async def test_remote_failure_surfaces_as_remote_call_error(self) -> None:
        transport = MemoryTransport()

        def initialize(settings: dict[str, Any]) -> None:
            raise ValueError("bad settings")

        mount_peer(transport, "peerA", {"initialize": LocalMethod(initialize)})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            with anyio.fail_after(1), pytest.raises(RemoteCallError, match="bad settings"):
                await host.call("initialize", {})

    @pytest.mark.asyncio
    async def test_unknown_remote_method_fails_call(self) -> None:
        transport = MemoryTransport()
        mount_peer(transport, "peerA", {})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            with anyio.fail_after(1), pytest.raises(RemoteCallError, match="Unknown method"):
                await host.call("initialize", {})


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_tears_down_both_ends(self) -> None:
        transport = MemoryTransport()
        peers = mount_peer(transport, "peerA", {})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            await settle()
            assert transport.open_channels() == ["widget0"]

            host.release()
            host.release()

            assert host.released
            assert peers[0].channel.released
            assert peers[0].close_count == 1
            assert transport.open_channels() == []
            with pytest.raises(ChannelClosedError):
                host.notify("send", "x")

    @pytest.mark.asyncio
    async def test_release_fails_pending_call(self) -> None:
        transport = MemoryTransport()
        never = anyio.Event()

        async def initialize(settings: dict[str, Any]) -> None:
            await never.wait()

        mount_peer(transport, "peerA", {"initialize": LocalMethod(initialize)})
        errors: list[Exception] = []

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())

            async def caller() -> None:
                try:
                    await host.call("initialize", {})
                except ChannelClosedError as exc:
                    errors.append(exc)

            async with anyio.create_task_group() as tg:
                tg.start_soon(caller)
                await settle()
                assert host.pending_calls == 1
                host.release()

        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_peer_close_releases_host_end(self) -> None:
        transport = MemoryTransport()
        peers = mount_peer(transport, "peerA", {})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            await settle()
            peers[0].close()
            assert host.released

    @pytest.mark.asyncio
    async def test_unmounted_url_never_ready(self) -> None:
        transport = MemoryTransport()

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            with pytest.raises(TimeoutError):
                with anyio.fail_after(0.05):
                    await host.ready()
            host.release()
            with pytest.raises(ChannelClosedError):
                await host.ready()

    @pytest.mark.asyncio
    async def test_factory_requires_running_transport(self) -> None:
        transport = MemoryTransport()
        with pytest.raises(ChannelError, match="not running"):
            transport.channel_factory(HOST_CONFIG, host_interface())

    @pytest.mark.asyncio
    async def test_duplicate_channel_id(self) -> None:
        transport = MemoryTransport()
        async with transport.run_context():
            transport.channel_factory(HOST_CONFIG, host_interface())
            with pytest.raises(ChannelError, match="already open"):
                transport.channel_factory(HOST_CONFIG, host_interface())

    @pytest.mark.asyncio
    async def test_exit_closes_open_links(self) -> None:
        transport = MemoryTransport()
        peers = mount_peer(transport, "peerA", {})

        async with transport.run_context():
            host = transport.channel_factory(HOST_CONFIG, host_interface())
            await settle()

        assert host.released
        assert peers[0].close_count == 1
        assert not transport.is_running
