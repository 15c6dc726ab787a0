"""
Peer registry for the widget manager.

Holds at most one PeerRecord per url. A url is reserved at registration
time, before its handshake resolves, so two back-to-back registrations of
the same url cannot both proceed.
"""

import structlog

from widgethub.core.errors import DuplicateWidgetError
from widgethub.core.lifecycle import LifecycleState, PeerRecord

logger = structlog.get_logger()


class PeerRegistry:
    """
    Registry of widget registrations keyed by url.

    Only AWAITING_INIT and ACTIVE records live here; failed and destroyed
    records are discarded so that the url can be registered again.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PeerRecord] = {}
        self._log = logger.bind(component="peer_registry")

    def reserve(self, record: PeerRecord) -> None:
        """
        Reserve the record's url.

        Raises:
            DuplicateWidgetError: if the url has an active or in-flight record
        """
        if record.url in self._entries:
            raise DuplicateWidgetError(record.url)

        self._entries[record.url] = record
        self._log.debug("peer_reserved", url=record.url, record_id=record.id)

    def discard(self, record: PeerRecord) -> bool:
        """
        Drop ``record`` if it is still the one held for its url.

        Returns:
            True if the record was removed
        """
        current = self._entries.get(record.url)
        if current is not record:
            return False

        del self._entries[record.url]
        self._log.debug("peer_discarded", url=record.url, record_id=record.id)
        return True

    def holds(self, record: PeerRecord) -> bool:
        """Check whether ``record`` is the current registration for its url."""
        return self._entries.get(record.url) is record

    def get(self, url: str) -> PeerRecord | None:
        return self._entries.get(url)

    def get_active(self, url: str) -> PeerRecord | None:
        """Get the record for ``url`` only if its handshake succeeded."""
        record = self._entries.get(url)
        if record is not None and record.state == LifecycleState.ACTIVE:
            return record
        return None

    def get_by_state(self, state: LifecycleState) -> list[PeerRecord]:
        return [record for record in self._entries.values() if record.state == state]

    def list_active_urls(self) -> list[str]:
        return [r.url for r in self._entries.values() if r.state == LifecycleState.ACTIVE]

    def clear(self) -> list[PeerRecord]:
        """Remove every record and return them."""
        records = list(self._entries.values())
        self._entries.clear()
        return records

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries
