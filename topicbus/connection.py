"""Connection: the capability provider a Topic binds to."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

from topicbus.observability import get_logger
from topicbus.publisher import Publisher
from topicbus.subscription import Callback, Subscription

EVENT_CONNECTED = "connected"
EVENT_ERROR = "error"
EVENT_CLOSED = "closed"
EVENTS = (EVENT_CONNECTED, EVENT_ERROR, EVENT_CLOSED)


class Connection(ABC):
    """
    Owns the transport beneath topics and hands out publisher and subscription
    handles. Both factories are coroutines and may raise; failures are also
    reported on the ``error`` event, which is where applications observe them.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = {name: [] for name in EVENTS}
        self._logger = get_logger(f"topicbus.connection.{self.__class__.__name__}")

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register ``handler`` for a lifecycle event (connected, error, closed)."""
        self._handlers_for(event).append(handler)

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers_for(event)
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, *args: Any) -> None:
        """Call every handler of ``event``; a failing handler is logged and skipped."""
        for handler in list(self._handlers_for(event)):
            try:
                handler(*args)
            except Exception as e:
                self._logger.exception(
                    "event_handler_failed", extra={"event": event, "error": str(e)}
                )

    def _handlers_for(self, event: str) -> List[Callable[..., Any]]:
        try:
            return self._handlers[event]
        except KeyError:
            raise ValueError(f"unknown connection event {event!r}; expected one of {EVENTS}") from None

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while the transport can create handles."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport and emit ``connected``."""

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and emit ``closed``."""

    @abstractmethod
    async def create_publisher(self, name: str, message_type: str) -> Publisher:
        """Advertise ``name`` with ``message_type`` and return its handle."""

    @abstractmethod
    async def create_subscription(self, name: str, callback: Callback) -> Subscription:
        """Register ``callback`` for messages on ``name`` and return its handle."""
