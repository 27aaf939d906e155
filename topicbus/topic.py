"""Topic: one named, typed channel bound to a Connection (publisher + subscriptions)."""

import asyncio
import enum
import functools
import itertools
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from topicbus.futures import completed, settle_all
from topicbus.observability import get_logger

if TYPE_CHECKING:
    from topicbus.connection import Connection
    from topicbus.publisher import Publisher
    from topicbus.subscription import Callback, Subscription


class AdvertiseState(enum.Enum):
    UNADVERTISED = "unadvertised"
    ADVERTISING = "advertising"
    ADVERTISED = "advertised"


def _resolve(future: "asyncio.Future", value: Any) -> None:
    if not future.done():
        future.set_result(value)


class _PendingSubscribe:
    """An in-flight subscribe request; ``retired`` resolves once its outcome is settled."""

    __slots__ = ("request_id", "retired")

    def __init__(self, request_id: int, retired: "asyncio.Future") -> None:
        self.request_id = request_id
        self.retired = retired


class Topic:
    """
    Owner of at most one publisher and any number of subscriptions for one
    (name, message type) pair on a Connection.

    Every operation returns immediately with an ``asyncio.Future``; awaiting it
    is optional. Connection failures never propagate out of a Topic: they are
    logged here and reported by the connection on its ``error`` event.

    Publisher side::

        UNADVERTISED --advertise()--> ADVERTISING --resolved--> ADVERTISED
             ^                             |  (failure)            |
             +-----------------------------+---- unadvertise() ----+
    """

    def __init__(self, connection: "Connection", name: str, message_type: str) -> None:
        if not isinstance(name, str) or not name:
            raise ValueError("topic name must be a non-empty string")
        if not isinstance(message_type, str) or not message_type:
            raise ValueError("message type must be a non-empty string")
        self._connection = connection
        self._name = name
        self._message_type = message_type

        self._state = AdvertiseState.UNADVERTISED
        # Resolves to the Publisher handle, or None when advertising failed
        self._publisher_future: Optional["asyncio.Future"] = None
        self._publisher: Optional["Publisher"] = None
        self._generation = 0

        self._subscriptions: Dict["Callback", "Subscription"] = {}
        self._pending: Dict["Callback", _PendingSubscribe] = {}
        self._request_ids = itertools.count(1)

        self._logger = get_logger("topicbus.topic")

    @property
    def name(self) -> str:
        return self._name

    @property
    def message_type(self) -> str:
        return self._message_type

    @property
    def connection(self) -> "Connection":
        return self._connection

    @property
    def publisher_state(self) -> AdvertiseState:
        return self._state

    @property
    def publisher(self) -> Optional["Publisher"]:
        """The resolved publisher handle while ADVERTISED, else None."""
        return self._publisher if self._state is AdvertiseState.ADVERTISED else None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def pending_subscription_count(self) -> int:
        return len(self._pending)

    def has_subscription(self, callback: "Callback") -> bool:
        return callback in self._subscriptions

    # ---- Publisher side ----

    def advertise(self) -> "asyncio.Future":
        """
        Request a publisher unless one is already pending or resolved.

        The returned future resolves to the Publisher handle, or to None if the
        connection rejected the request.
        """
        return asyncio.shield(self._ensure_publisher())

    def _ensure_publisher(self) -> "asyncio.Future":
        if self._publisher_future is not None:
            return self._publisher_future
        loop = asyncio.get_running_loop()
        self._generation += 1
        future = loop.create_future()
        self._publisher_future = future
        self._state = AdvertiseState.ADVERTISING
        self._logger.debug(
            "advertising", extra={"topic": self._name, "message_type": self._message_type}
        )
        request = asyncio.ensure_future(
            self._connection.create_publisher(self._name, self._message_type)
        )
        request.add_done_callback(
            functools.partial(self._on_advertised, self._generation, future)
        )
        return future

    def _on_advertised(self, generation: int, future: "asyncio.Future", request: "asyncio.Future") -> None:
        publisher: Optional["Publisher"] = None
        if request.cancelled():
            self._logger.warning("advertise_failed", extra={"topic": self._name, "error": "cancelled"})
        elif request.exception() is not None:
            self._logger.warning(
                "advertise_failed",
                extra={"topic": self._name, "error": str(request.exception())},
            )
        else:
            publisher = request.result()

        if generation == self._generation:
            if publisher is None:
                self._state = AdvertiseState.UNADVERTISED
                self._publisher_future = None
            else:
                self._publisher = publisher
                self._state = AdvertiseState.ADVERTISED
                self._logger.info(
                    "advertised",
                    extra={"topic": self._name, "message_type": self._message_type},
                )
        # A superseded request's handle is retired by the unadvertise() that superseded it
        future.set_result(publisher)

    def publish(self, message: Any) -> "asyncio.Future":
        """
        Forward ``message`` to the publisher, advertising first if needed.

        Forwards are queued on the shared publisher future, so calls made while
        advertising is in flight reach the transport in call order. The returned
        future resolves to True if the message was forwarded, False if dropped.
        """
        source = self._ensure_publisher()
        outcome = asyncio.get_running_loop().create_future()
        source.add_done_callback(functools.partial(self._forward, message, outcome))
        return outcome

    def _forward(self, message: Any, outcome: "asyncio.Future", source: "asyncio.Future") -> None:
        publisher = source.result()
        if publisher is None:
            self._logger.debug("publish_dropped", extra={"topic": self._name, "reason": "not advertised"})
            _resolve(outcome, False)
            return
        if not publisher.advertised and publisher is self._publisher:
            # Released by the connection (e.g. closed); next publish re-advertises
            self._logger.warning("publisher_lost", extra={"topic": self._name})
            self._generation += 1
            self._publisher_future = None
            self._publisher = None
            self._state = AdvertiseState.UNADVERTISED
        try:
            publisher.publish(message)
        except Exception as e:
            self._logger.warning("publish_failed", extra={"topic": self._name, "error": str(e)})
            _resolve(outcome, False)
            return
        _resolve(outcome, True)

    def unadvertise(self) -> "asyncio.Future":
        """
        Return to UNADVERTISED now and unadvertise the handle once it resolves.

        Publishes issued before this call are still forwarded first. The returned
        future resolves to True once the handle is released, False if there was
        nothing to unadvertise.
        """
        source = self._publisher_future
        if source is None:
            return completed(False)
        self._generation += 1
        self._publisher_future = None
        self._publisher = None
        self._state = AdvertiseState.UNADVERTISED

        done = asyncio.get_running_loop().create_future()
        source.add_done_callback(functools.partial(self._retire_publisher, done))
        return done

    def _retire_publisher(self, done: "asyncio.Future", source: "asyncio.Future") -> None:
        publisher = source.result()
        if publisher is None:
            _resolve(done, False)
            return
        self._watch_teardown(publisher.unadvertise(), done)

    # ---- Subscriber side ----

    def subscribe(self, callback: "Callback") -> "asyncio.Future":
        """
        Request a new subscription delivering to ``callback``.

        Only the latest request per callback is kept: an older request that
        resolves later, or a handle it replaces, is unsubscribed. The returned
        future resolves to True once registered, False if superseded or rejected.
        """
        loop = asyncio.get_running_loop()
        request_id = next(self._request_ids)
        if callback in self._pending:
            self._logger.debug(
                "subscribe_superseded",
                extra={"topic": self._name, "request_id": self._pending[callback].request_id},
            )
        pending = _PendingSubscribe(request_id, loop.create_future())
        self._pending[callback] = pending

        outcome = loop.create_future()
        request = asyncio.ensure_future(
            self._connection.create_subscription(self._name, callback)
        )
        request.add_done_callback(
            functools.partial(self._on_subscribed, callback, pending, outcome)
        )
        return outcome

    def _is_current(self, callback: "Callback", pending: _PendingSubscribe) -> bool:
        return self._pending.get(callback) is pending

    def _on_subscribed(
        self,
        callback: "Callback",
        pending: _PendingSubscribe,
        outcome: "asyncio.Future",
        request: "asyncio.Future",
    ) -> None:
        if request.cancelled() or request.exception() is not None:
            error = "cancelled" if request.cancelled() else str(request.exception())
            self._logger.warning("subscribe_failed", extra={"topic": self._name, "error": error})
            if self._is_current(callback, pending):
                del self._pending[callback]
            _resolve(pending.retired, False)
            _resolve(outcome, False)
            return

        subscription = request.result()
        if not self._is_current(callback, pending):
            # Superseded by a newer subscribe() or dropped by unsubscribe()
            self._logger.info(
                "subscription_discarded",
                extra={"topic": self._name, "request_id": pending.request_id},
            )
            self._watch_teardown(subscription.unsubscribe(), pending.retired)
            _resolve(outcome, False)
            return

        del self._pending[callback]
        previous = self._subscriptions.get(callback)
        self._subscriptions[callback] = subscription
        if previous is not None and previous is not subscription:
            self._watch_teardown(previous.unsubscribe())
        self._logger.info(
            "subscribed",
            extra={"topic": self._name, "subscriptions": len(self._subscriptions)},
        )
        _resolve(pending.retired, True)
        _resolve(outcome, True)

    def unsubscribe(self, callback: Optional["Callback"] = None) -> "asyncio.Future":
        """
        Remove the entry for ``callback``, or every entry when omitted.

        In-flight requests for removed callbacks are unsubscribed as soon as they
        resolve. Unknown callbacks are ignored. The returned future resolves once
        every removed handle has been released.
        """
        if callback is None:
            pending = list(self._pending.values())
            removed = list(self._subscriptions.values())
            self._pending.clear()
            self._subscriptions.clear()
        else:
            entry = self._pending.pop(callback, None)
            pending = [entry] if entry is not None else []
            subscription = self._subscriptions.pop(callback, None)
            removed = [subscription] if subscription is not None else []

        loop = asyncio.get_running_loop()
        waits: List["asyncio.Future"] = [p.retired for p in pending]
        for subscription in removed:
            # Cancelling a waiter leaves the release running
            done = loop.create_future()
            self._watch_teardown(subscription.unsubscribe(), done)
            waits.append(done)
        if removed or pending:
            self._logger.info(
                "unsubscribing",
                extra={"topic": self._name, "removed": len(removed), "pending": len(pending)},
            )
        return settle_all(waits)

    # ---- Teardown ----

    def close(self) -> "asyncio.Future":
        """Unsubscribe everything and unadvertise; the Topic stays usable afterwards."""
        return settle_all([self.unsubscribe(), self.unadvertise()])

    def _watch_teardown(self, teardown: "asyncio.Future", done: Optional["asyncio.Future"] = None) -> "asyncio.Future":
        """Log a failed release; when ``done`` is given, resolve it with the teardown's outcome."""

        def _finished(fut: "asyncio.Future") -> None:
            released = False
            if fut.cancelled():
                self._logger.warning("teardown_failed", extra={"topic": self._name, "error": "cancelled"})
            elif fut.exception() is not None:
                self._logger.warning(
                    "teardown_failed", extra={"topic": self._name, "error": str(fut.exception())}
                )
            else:
                released = bool(fut.result())
            if done is not None:
                _resolve(done, released)

        teardown.add_done_callback(_finished)
        return teardown

    def __repr__(self) -> str:
        return (
            f"Topic(name={self._name!r}, type={self._message_type!r}, "
            f"publisher={self._state.value}, subscriptions={len(self._subscriptions)})"
        )
