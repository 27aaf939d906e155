"""In-process loopback bus implementing the Connection contract."""

import asyncio
from typing import Any, Dict, List, Optional, Set

from topicbus.connection import EVENT_CLOSED, EVENT_CONNECTED, EVENT_ERROR, Connection
from topicbus.errors import BusError, NotConnectedError, TopicTypeMismatchError
from topicbus.futures import settle_all
from topicbus.message import Message
from topicbus.observability import Metrics
from topicbus.publisher import Publisher
from topicbus.subscription import Callback, Subscription


class _Channel:
    """One named channel: its type (fixed by the first advertiser) and live handles."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.message_type: Optional[str] = None
        self.publishers: Set["LoopbackPublisher"] = set()
        # dict as an ordered set: delivery follows subscription order
        self.subscriptions: Dict["LoopbackSubscription", None] = {}

    @property
    def empty(self) -> bool:
        return not self.publishers and not self.subscriptions


class LoopbackPublisher(Publisher):
    def __init__(self, bus: "InMemoryConnection", topic_name: str, message_type: str) -> None:
        super().__init__(topic_name, message_type)
        self._bus = bus

    def _send(self, message: Any) -> None:
        self._bus._dispatch(self.topic_name, message)

    async def _release(self) -> None:
        self._bus._drop_publisher(self)


class LoopbackSubscription(Subscription):
    def __init__(self, bus: "InMemoryConnection", topic_name: str, callback: Callback) -> None:
        super().__init__(topic_name, callback)
        self._bus = bus

    async def _release(self) -> None:
        self._bus._drop_subscription(self)


class InMemoryConnection(Connection):
    """
    Loopback bus: publishers and subscriptions on the same process share named
    channels. Factories always suspend at least once (``latency`` seconds), and
    deliveries are scheduled on the loop rather than made inside ``publish``.
    """

    def __init__(self, latency: float = 0.0) -> None:
        super().__init__()
        self._latency = max(0.0, latency)
        self._connected = False
        self._channels: Dict[str, _Channel] = {}
        self.metrics = Metrics()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        self._logger.info("connected", extra={"latency": self._latency})
        self.emit(EVENT_CONNECTED)

    async def close(self) -> None:
        """Release every live handle, then emit ``closed``. Safe to call twice."""
        if not self._connected:
            return
        self._connected = False
        releases = []
        for channel in list(self._channels.values()):
            for publisher in list(channel.publishers):
                releases.append(publisher.unadvertise())
            for subscription in list(channel.subscriptions):
                releases.append(subscription.unsubscribe())
        await settle_all(releases)
        self._channels.clear()
        self.metrics.set_gauge("channels", 0)
        self._logger.info("closed", extra={"released": len(releases)})
        self.emit(EVENT_CLOSED)

    async def create_publisher(self, name: str, message_type: str) -> LoopbackPublisher:
        await asyncio.sleep(self._latency)
        self._require_connected(name)
        channel = self._channels.get(name)
        if channel is not None and channel.message_type not in (None, message_type):
            self._fail(TopicTypeMismatchError(name, channel.message_type, message_type))
        channel = self._channel(name)
        channel.message_type = message_type
        publisher = LoopbackPublisher(self, name, message_type)
        channel.publishers.add(publisher)
        self.metrics.increment("advertised", topic=name)
        self._logger.info("advertise", extra={"topic": name, "message_type": message_type})
        return publisher

    async def create_subscription(self, name: str, callback: Callback) -> LoopbackSubscription:
        await asyncio.sleep(self._latency)
        self._require_connected(name)
        subscription = LoopbackSubscription(self, name, callback)
        self._channel(name).subscriptions[subscription] = None
        self.metrics.increment("subscribed", topic=name)
        self._logger.info("subscribe", extra={"topic": name})
        return subscription

    def list_channels(self) -> List[Dict[str, Any]]:
        """Return ``{name, type, publishers, subscriptions}`` for each live channel."""
        return [
            {
                "name": channel.name,
                "type": channel.message_type,
                "publishers": len(channel.publishers),
                "subscriptions": len(channel.subscriptions),
            }
            for channel in self._channels.values()
        ]

    def channel_type(self, name: str) -> Optional[str]:
        channel = self._channels.get(name)
        return channel.message_type if channel is not None else None

    def subscription_count(self, name: Optional[str] = None) -> int:
        if name is not None:
            channel = self._channels.get(name)
            return len(channel.subscriptions) if channel is not None else 0
        return sum(len(c.subscriptions) for c in self._channels.values())

    # ---- internals used by the handles ----

    def _channel(self, name: str) -> _Channel:
        if name not in self._channels:
            self._channels[name] = _Channel(name)
            self.metrics.set_gauge("channels", len(self._channels))
        return self._channels[name]

    def _require_connected(self, name: str) -> None:
        if not self._connected:
            self._fail(NotConnectedError("connection is not connected", topic=name))

    def _fail(self, error: BusError) -> None:
        self.metrics.increment("errors", topic=error.topic)
        self._logger.warning("request_failed", extra={"topic": error.topic, "error": str(error)})
        self.emit(EVENT_ERROR, error)
        raise error

    def _dispatch(self, name: str, message: Any) -> int:
        """Schedule delivery of ``message`` to every subscription on ``name``; returns the fan-out."""
        payload = Message(Message.wrap(message).to_dict())
        self.metrics.increment("published", topic=name)
        channel = self._channels.get(name)
        if channel is None:
            return 0
        loop = asyncio.get_running_loop()
        subscriptions = list(channel.subscriptions)
        for subscription in subscriptions:
            loop.call_soon(self._deliver, subscription, payload)
        return len(subscriptions)

    def _deliver(self, subscription: LoopbackSubscription, message: Message) -> None:
        if not subscription.active:
            return
        subscription.deliver(message)
        self.metrics.increment("delivered", topic=subscription.topic_name)

    def _drop_publisher(self, publisher: LoopbackPublisher) -> None:
        channel = self._channels.get(publisher.topic_name)
        if channel is None:
            return
        channel.publishers.discard(publisher)
        if not channel.publishers:
            channel.message_type = None
        self._prune(channel)

    def _drop_subscription(self, subscription: LoopbackSubscription) -> None:
        channel = self._channels.get(subscription.topic_name)
        if channel is None:
            return
        channel.subscriptions.pop(subscription, None)
        self._prune(channel)

    def _prune(self, channel: _Channel) -> None:
        if channel.empty and self._channels.get(channel.name) is channel:
            del self._channels[channel.name]
            self.metrics.set_gauge("channels", len(self._channels))
