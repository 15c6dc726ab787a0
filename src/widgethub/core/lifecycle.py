"""
Per-widget lifecycle state.

    (none) -> AWAITING_INIT -> ACTIVE -> DESTROYED
                            \\-> FAILED (discarded)

No transition leaves DESTROYED or FAILED.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto

import anyio
from ulid import ULID

from widgethub.core.channel import Channel


class LifecycleState(Enum):
    """Lifecycle states for a registered widget."""

    AWAITING_INIT = auto()
    ACTIVE = auto()
    FAILED = auto()
    DESTROYED = auto()


_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.AWAITING_INIT: frozenset(
        {LifecycleState.ACTIVE, LifecycleState.FAILED, LifecycleState.DESTROYED}
    ),
    LifecycleState.ACTIVE: frozenset({LifecycleState.DESTROYED}),
    LifecycleState.FAILED: frozenset(),
    LifecycleState.DESTROYED: frozenset(),
}


@dataclass(eq=False)
class PeerRecord:
    """Manager-side bookkeeping for one widget registration."""

    url: str
    channel: Channel
    container: str
    id: str = field(default_factory=lambda: str(ULID()))
    state: LifecycleState = LifecycleState.AWAITING_INIT
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    activated_at: datetime | None = None
    # Topics a widget subscribed to over the channel before its handshake completed
    pending_topics: list[str] = field(default_factory=list)
    _settled: anyio.Event = field(default_factory=anyio.Event, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state == LifecycleState.ACTIVE

    @property
    def is_settled(self) -> bool:
        return self._settled.is_set()

    def transition(self, target: LifecycleState) -> None:
        """Move to ``target``, rejecting transitions the lifecycle forbids."""
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.name} -> {target.name}")
        self.state = target
        if target == LifecycleState.ACTIVE:
            self.activated_at = datetime.now(UTC)
        self._settled.set()

    async def wait_settled(self) -> LifecycleState:
        """Wait until the handshake has been decided (or the record torn down)."""
        await self._settled.wait()
        return self.state
