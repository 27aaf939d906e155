"""Publisher handle: one advertised outgoing topic on a connection."""

import asyncio
import enum
from abc import ABC, abstractmethod
from typing import Any

from topicbus.errors import HandleClosedError
from topicbus.futures import completed
from topicbus.observability import get_logger


class PublisherState(enum.Enum):
    ADVERTISED = "advertised"
    UNADVERTISED = "unadvertised"


class Publisher(ABC):
    """
    Base class for publisher handles created by a Connection.

    Subclasses implement ``_send`` (hand one message to the transport) and
    ``_release`` (drop the advertisement on the transport). Once unadvertised
    a handle never sends again.
    """

    def __init__(self, topic_name: str, message_type: str) -> None:
        self._topic_name = topic_name
        self._message_type = message_type
        self._state = PublisherState.ADVERTISED
        self._logger = get_logger("topicbus.publisher")

    @property
    def topic_name(self) -> str:
        return self._topic_name

    @property
    def message_type(self) -> str:
        return self._message_type

    @property
    def state(self) -> PublisherState:
        return self._state

    @property
    def advertised(self) -> bool:
        return self._state is PublisherState.ADVERTISED

    def publish(self, message: Any) -> None:
        """Forward one message to the transport. Raises HandleClosedError after unadvertise."""
        if self._state is PublisherState.UNADVERTISED:
            raise HandleClosedError(
                f"publisher for {self._topic_name!r} is unadvertised", topic=self._topic_name
            )
        self._send(message)
        self._logger.debug("published", extra={"topic": self._topic_name})

    def unadvertise(self) -> "asyncio.Future":
        """
        Mark the handle unadvertised and release it on the transport.

        Returns a future resolving to True once released, or an already
        completed future resolving to False if the handle was unadvertised before.
        """
        if self._state is PublisherState.UNADVERTISED:
            return completed(False)
        self._state = PublisherState.UNADVERTISED
        self._logger.info(
            "unadvertised",
            extra={"topic": self._topic_name, "message_type": self._message_type},
        )
        return asyncio.ensure_future(self._finish_release())

    async def _finish_release(self) -> bool:
        await self._release()
        return True

    @abstractmethod
    def _send(self, message: Any) -> None:
        """Hand one message to the transport."""

    @abstractmethod
    async def _release(self) -> None:
        """Remove the advertisement from the transport."""

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(topic={self._topic_name!r}, "
            f"type={self._message_type!r}, state={self._state.value})"
        )
