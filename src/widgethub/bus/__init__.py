"""Topic-based subscription bookkeeping."""

from widgethub.bus.subscriptions import SubscriptionTable
from widgethub.bus.topics import BROADCAST, Topic, topic_name

__all__ = [
    "BROADCAST",
    "SubscriptionTable",
    "Topic",
    "topic_name",
]
