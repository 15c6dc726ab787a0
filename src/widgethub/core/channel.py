"""
Contract for the point-to-point RPC channel linking the manager and one widget.

The transport itself is an external collaborator. The hub only relies on:

- construction from a ChannelConfig plus a ChannelInterface declaring the
  local methods it answers and the remote methods it may invoke
- ``ready()`` resolving once the remote end is up
- ``call()`` for request/response methods, resolving exactly once
- ``notify()`` for void methods, fire-and-forget
- ``release()`` tearing the link down
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

LocalHandler = Callable[..., Any | Awaitable[Any]]


class ChannelConfig(BaseModel):
    """Addressing information for one channel."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    channel_id: str
    local_resource: str
    remote_resource: str
    mount_point: str | None = None


@dataclass(frozen=True)
class LocalMethod:
    """A method this side answers."""

    handler: LocalHandler
    is_void: bool = False


@dataclass(frozen=True)
class RemoteMethod:
    """A method this side may invoke on the other end."""

    is_void: bool = False


@dataclass
class ChannelInterface:
    """Declaration of the methods exposed and consumed over a channel."""

    local: dict[str, LocalMethod] = field(default_factory=dict)
    remote: dict[str, RemoteMethod] = field(default_factory=dict)


@runtime_checkable
class Channel(Protocol):
    """The narrow surface the hub consumes from a transport."""

    @property
    def config(self) -> ChannelConfig: ...

    @property
    def released(self) -> bool: ...

    async def ready(self) -> None: ...

    async def call(self, method: str, *args: Any) -> Any: ...

    def notify(self, method: str, *args: Any) -> None: ...

    def release(self) -> None: ...


ChannelFactory = Callable[[ChannelConfig, ChannelInterface], Channel]
