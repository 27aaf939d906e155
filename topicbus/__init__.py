"""Topic-based publish/subscribe over one message-bus connection."""

from topicbus.connection import Connection
from topicbus.diagnostics import DiagnosticsMonitor, DiagnosticStatus
from topicbus.errors import (
    BusError,
    HandleClosedError,
    NotConnectedError,
    ProtocolError,
    TopicTypeMismatchError,
)
from topicbus.memory import InMemoryConnection
from topicbus.message import Message
from topicbus.publisher import Publisher, PublisherState
from topicbus.registry import TopicRegistry
from topicbus.subscription import Subscription, SubscriptionState
from topicbus.topic import AdvertiseState, Topic

__all__ = [
    "AdvertiseState",
    "BusError",
    "Connection",
    "DiagnosticStatus",
    "DiagnosticsMonitor",
    "HandleClosedError",
    "InMemoryConnection",
    "Message",
    "NotConnectedError",
    "ProtocolError",
    "Publisher",
    "PublisherState",
    "Subscription",
    "SubscriptionState",
    "Topic",
    "TopicRegistry",
    "TopicTypeMismatchError",
]
