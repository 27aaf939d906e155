"""Bridge client session: one WebSocket client's topics plus a bounded outbox drained to the socket."""

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from topicbus.connection import EVENT_ERROR, Connection
from topicbus.errors import (
    ERROR_INTERNAL,
    ERROR_SLOW_CONSUMER,
    ERROR_TOPIC_NOT_FOUND,
    BusError,
    ProtocolError,
)
from topicbus.message import Message
from topicbus.observability import get_logger
from topicbus.protocol import (
    OP_ADVERTISE,
    OP_PING,
    OP_PUBLISH,
    OP_SUBSCRIBE,
    OP_UNADVERTISE,
    OP_UNSUBSCRIBE,
    ClientOp,
    op_ack,
    op_error,
    op_pong,
    op_publish,
)
from topicbus.registry import TopicRegistry
from topicbus.topic import Topic

Send = Callable[[Dict[str, Any]], Awaitable[None]]

DEFAULT_QUEUE_MAX_SIZE = 1024


class ClientSession:
    """
    Handles the ops of one client against a shared connection.

    Every frame for the client (replies and deliveries) goes through one outbox,
    so the client sees them in the order they were produced. When the outbox is
    full the oldest frame is dropped.
    """

    def __init__(
        self,
        client_id: str,
        connection: Connection,
        send: Send,
        queue_max_size: int = DEFAULT_QUEUE_MAX_SIZE,
    ) -> None:
        self._client_id = client_id
        self._connection = connection
        self._send = send
        self._registry = TopicRegistry(connection)
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_max_size))
        # One stable callback per topic name, used as the subscription key
        self._callbacks: Dict[str, Callable[[Any], None]] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._closed = False
        self._dropped = 0
        # Request ids of ops awaiting the connection, per topic name
        self._inflight: Dict[str, List[Optional[str]]] = {}
        self._logger = get_logger(f"topicbus.session.{client_id}")
        connection.on(EVENT_ERROR, self._on_connection_error)

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        """Frames dropped because the outbox was full."""
        return self._dropped

    def list_topics(self) -> List[Dict[str, object]]:
        return self._registry.list_topics()

    def start(self) -> None:
        """Start the drain task (idempotent)."""
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain_loop())

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to ``send``."""
        await self._outbox.join()

    def send(self, frame: Dict[str, Any]) -> None:
        """Queue a frame for the client; on a full outbox drop the oldest one."""
        if self._closed:
            return
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            dropped = self._outbox.get_nowait()
            self._outbox.task_done()
            self._outbox.put_nowait(frame)
            self._dropped += 1
            self._logger.warning(
                "queue_full_dropped_oldest",
                extra={
                    "client_id": self._client_id,
                    "dropped_op": dropped.get("op"),
                    "dropped_topic": dropped.get("topic"),
                },
            )

    async def _drain_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._send(frame)
            except Exception as e:
                self._logger.warning(
                    "send_failed",
                    extra={"client_id": self._client_id, "code": ERROR_SLOW_CONSUMER, "error": str(e)},
                )
            finally:
                self._outbox.task_done()

    # ---- Ops ----

    async def handle(self, frame: Any) -> None:
        """Handle one decoded client frame; failures become error status frames."""
        request_id = frame.get("id") if isinstance(frame, dict) else None
        try:
            op = ClientOp.from_dict(frame)
            await self._dispatch(op)
        except BusError as e:
            self.send(op_error(request_id, e.code, str(e), topic=e.topic))

    async def _dispatch(self, op: ClientOp) -> None:
        if op.op == OP_PING:
            self.send(op_pong(op.id))
        elif op.op == OP_ADVERTISE:
            await self._advertise(op)
        elif op.op == OP_UNADVERTISE:
            topic = self._require_topic(op)
            await topic.unadvertise()
            self.send(op_ack(op.id, op.op, op.topic))
        elif op.op == OP_PUBLISH:
            await self._publish(op)
        elif op.op == OP_SUBSCRIBE:
            await self._subscribe(op)
        elif op.op == OP_UNSUBSCRIBE:
            topic = self._require_topic(op)
            callback = self._callbacks.get(op.topic)
            if callback is not None:
                await topic.unsubscribe(callback)
            self.send(op_ack(op.id, op.op, op.topic))

    async def _advertise(self, op: ClientOp) -> None:
        topic = self._registry.get_or_create(op.topic, op.type)
        with self._awaiting(op):
            publisher = await topic.advertise()
        if publisher is None:
            # The connection's error event has already told the client why
            return
        self.send(op_ack(op.id, op.op, op.topic))

    async def _publish(self, op: ClientOp) -> None:
        if op.type is not None:
            topic = self._registry.get_or_create(op.topic, op.type)
        else:
            topic = self._require_topic(op)
        with self._awaiting(op):
            published = await topic.publish(Message(op.msg))
        if published:
            self.send(op_ack(op.id, op.op, op.topic))
        else:
            self.send(op_error(op.id, ERROR_INTERNAL, "message was not published", topic=op.topic))

    async def _subscribe(self, op: ClientOp) -> None:
        topic = self._registry.get_or_create(op.topic, op.type)
        with self._awaiting(op):
            subscribed = await topic.subscribe(self._callback_for(topic))
        if subscribed:
            self.send(op_ack(op.id, op.op, op.topic))

    @contextlib.contextmanager
    def _awaiting(self, op: ClientOp) -> Iterator[None]:
        """Mark ``op`` as waiting on the connection, so its failures reach this client."""
        waiting = self._inflight.setdefault(op.topic, [])
        waiting.append(op.id)
        try:
            yield
        finally:
            waiting.remove(op.id)
            if not waiting:
                self._inflight.pop(op.topic, None)

    def _require_topic(self, op: ClientOp) -> Topic:
        topic = self._registry.get(op.topic)
        if topic is None:
            raise ProtocolError(
                f"topic {op.topic!r} is not known to this client", code=ERROR_TOPIC_NOT_FOUND, topic=op.topic
            )
        return topic

    def _callback_for(self, topic: Topic) -> Callable[[Any], None]:
        callback = self._callbacks.get(topic.name)
        if callback is None:
            name = topic.name

            def callback(message: Any) -> None:
                self.send(op_publish(name, Message.wrap(message).to_dict()))

            self._callbacks[name] = callback
        return callback

    def _on_connection_error(self, error: Exception) -> None:
        topic = getattr(error, "topic", None)
        waiting = self._inflight.get(topic) if topic is not None else None
        if not waiting:
            # Another client's request, or none of ours
            return
        self.send(op_error(waiting[-1], getattr(error, "code", ERROR_INTERNAL), str(error), topic=topic))

    async def close(self) -> None:
        """Tear down every topic of this client and stop the drain task."""
        if self._closed:
            return
        self._closed = True
        self._connection.off(EVENT_ERROR, self._on_connection_error)
        await self._registry.close_all()
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        self._logger.info("session_closed", extra={"client_id": self._client_id})

    def __repr__(self) -> str:
        return f"ClientSession(id={self._client_id!r}, topics={len(self._registry)})"
