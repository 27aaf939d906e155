"""Subscription handle: one inbound registration delivering to one callback."""

import asyncio
import enum
from abc import ABC, abstractmethod
from typing import Any, Callable

from topicbus.futures import completed
from topicbus.observability import get_logger

Callback = Callable[[Any], Any]


class SubscriptionState(enum.Enum):
    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"


class Subscription(ABC):
    """
    Base class for subscription handles created by a Connection.

    The connection calls ``deliver`` for each inbound message. Deliveries stop
    the moment ``unsubscribe`` is called, including ones already scheduled.
    """

    def __init__(self, topic_name: str, callback: Callback) -> None:
        self._topic_name = topic_name
        self._callback = callback
        self._state = SubscriptionState.ACTIVE
        self._logger = get_logger("topicbus.subscription")

    @property
    def topic_name(self) -> str:
        return self._topic_name

    @property
    def callback(self) -> Callback:
        return self._callback

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is SubscriptionState.ACTIVE

    def deliver(self, message: Any) -> None:
        """Invoke the callback with ``message`` if still active; callback errors are logged."""
        if self._state is not SubscriptionState.ACTIVE:
            return
        try:
            result = self._callback(message)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(self._log_task_failure)
        except Exception as e:
            self._logger.exception(
                "delivery_failed",
                extra={"topic": self._topic_name, "error": str(e)},
            )

    def _log_task_failure(self, task: "asyncio.Task") -> None:
        if task.cancelled() or task.exception() is None:
            return
        self._logger.error(
            "delivery_failed",
            extra={"topic": self._topic_name, "error": str(task.exception())},
        )

    def unsubscribe(self) -> "asyncio.Future":
        """
        Stop deliveries and release the registration on the transport.

        Returns a future resolving to True once released, or an already
        completed future resolving to False if the handle was unsubscribed before.
        """
        if self._state is SubscriptionState.UNSUBSCRIBED:
            return completed(False)
        self._state = SubscriptionState.UNSUBSCRIBED
        self._logger.info("unsubscribed", extra={"topic": self._topic_name})
        return asyncio.ensure_future(self._finish_release())

    async def _finish_release(self) -> bool:
        await self._release()
        return True

    @abstractmethod
    async def _release(self) -> None:
        """Remove the registration from the transport."""

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(topic={self._topic_name!r}, "
            f"state={self._state.value})"
        )
