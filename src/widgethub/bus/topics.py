"""
Topic definitions for the widget hub.

Topics are opaque string keys partitioning publish/subscribe traffic.
Matching is exact; there are no wildcards.
"""

from dataclasses import dataclass

from widgethub.core.errors import InvalidTopicError


@dataclass(frozen=True)
class Topic:
    """A publish/subscribe topic."""

    path: str

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path:
            raise InvalidTopicError(f"Invalid topic: {self.path!r}")

    def __str__(self) -> str:
        return self.path


# Topic carried by manager broadcasts
BROADCAST = Topic("broadcast")


def topic_name(topic: "str | Topic") -> str:
    """Normalize a topic argument to its string key."""
    if isinstance(topic, Topic):
        return topic.path
    return Topic(topic).path
