"""Registry of Topic objects owned by one client of a connection."""

import asyncio
from typing import Dict, List, Optional

from topicbus.connection import Connection
from topicbus.errors import TopicTypeMismatchError
from topicbus.futures import completed, settle_all
from topicbus.topic import Topic


class TopicRegistry:
    """One Topic per name on one connection; closing the registry tears them all down."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._topics: Dict[str, Topic] = {}

    def get_or_create(self, name: str, message_type: str) -> Topic:
        """
        Return the Topic for ``name``, creating it with ``message_type`` if needed.
        Raises TopicTypeMismatchError if it exists with another type.
        """
        topic = self._topics.get(name)
        if topic is None:
            topic = Topic(self._connection, name, message_type)
            self._topics[name] = topic
        elif topic.message_type != message_type:
            raise TopicTypeMismatchError(name, topic.message_type, message_type)
        return topic

    def get(self, name: str) -> Optional[Topic]:
        """Return topic by name or None."""
        return self._topics.get(name)

    def remove(self, name: str) -> "asyncio.Future":
        """Close and forget the topic; resolves once its handles are released."""
        topic = self._topics.pop(name, None)
        if topic is None:
            return completed(None)
        return topic.close()

    def close_all(self) -> "asyncio.Future":
        topics = list(self._topics.values())
        self._topics.clear()
        return settle_all(topic.close() for topic in topics)

    def list_topics(self) -> List[Dict[str, object]]:
        """Return ``{name, type, publisher, subscriptions}`` for each topic."""
        return [
            {
                "name": t.name,
                "type": t.message_type,
                "publisher": t.publisher_state.value,
                "subscriptions": t.subscription_count,
            }
            for t in self._topics.values()
        ]

    def __len__(self) -> int:
        return len(self._topics)

    def __contains__(self, name: object) -> bool:
        return name in self._topics
