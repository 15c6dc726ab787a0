"""
Topic -> subscriber table owned by a single WidgetManager.

Each topic maps to a set of widget urls. Insertion order is kept for
stable iteration but carries no delivery meaning.
"""

from collections.abc import Iterable

import structlog

logger = structlog.get_logger()


class SubscriptionTable:
    """Mapping from topic to the urls subscribed to it."""

    def __init__(self) -> None:
        # dict used as an ordered set
        self._subscribers: dict[str, dict[str, None]] = {}
        self._log = logger.bind(component="subscription_table")

    def add(self, topic: str, url: str) -> bool:
        """
        Subscribe ``url`` to ``topic``.

        Returns:
            True if the subscription is new
        """
        members = self._subscribers.setdefault(topic, {})
        if url in members:
            return False
        members[url] = None
        self._log.debug("subscribed", url=url, topic=topic)
        return True

    def add_many(self, topics: Iterable[str], url: str) -> list[str]:
        """Subscribe ``url`` to every topic; returns the topics that were new."""
        return [topic for topic in topics if self.add(topic, url)]

    def remove(self, topic: str, url: str) -> bool:
        members = self._subscribers.get(topic)
        if not members or url not in members:
            return False
        del members[url]
        if not members:
            del self._subscribers[topic]
        return True

    def remove_subscriber(self, url: str) -> list[str]:
        """
        Remove ``url`` from every topic.

        Returns:
            Topics the url was removed from
        """
        removed = [topic for topic in list(self._subscribers) if self.remove(topic, url)]
        if removed:
            self._log.debug("unsubscribed_all", url=url, topics=removed)
        return removed

    def subscribers(self, topic: str) -> list[str]:
        return list(self._subscribers.get(topic, ()))

    def topics_for(self, url: str) -> list[str]:
        return [topic for topic, members in self._subscribers.items() if url in members]

    def is_subscribed(self, topic: str, url: str) -> bool:
        return url in self._subscribers.get(topic, ())

    def referenced_urls(self) -> set[str]:
        """Every url that appears under at least one topic."""
        urls: set[str] = set()
        for members in self._subscribers.values():
            urls.update(members)
        return urls

    def clear(self) -> None:
        count = len(self._subscribers)
        self._subscribers.clear()
        self._log.debug("cleared", removed_topics=count)

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, topic: str) -> bool:
        return topic in self._subscribers
