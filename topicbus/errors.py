"""Exceptions raised by connections, handles and the bridge protocol."""

from typing import Optional

# Error codes used in bridge status frames and HTTP error bodies
ERROR_BAD_REQUEST = "BAD_REQUEST"
ERROR_TOPIC_NOT_FOUND = "TOPIC_NOT_FOUND"
ERROR_TYPE_MISMATCH = "TYPE_MISMATCH"
ERROR_NOT_CONNECTED = "NOT_CONNECTED"
ERROR_SLOW_CONSUMER = "SLOW_CONSUMER"
ERROR_UNAUTHORIZED = "UNAUTHORIZED"
ERROR_INTERNAL = "INTERNAL"


class BusError(Exception):
    """Base class for every error raised by topicbus."""

    code: str = ERROR_INTERNAL

    def __init__(self, message: str, topic: Optional[str] = None) -> None:
        super().__init__(message)
        self.topic = topic


class NotConnectedError(BusError):
    """The connection is not (or no longer) connected."""

    code = ERROR_NOT_CONNECTED


class TopicTypeMismatchError(BusError):
    """A topic was advertised or looked up with a type other than its own."""

    code = ERROR_TYPE_MISMATCH

    def __init__(self, topic: str, expected: str, actual: str) -> None:
        super().__init__(
            f"topic {topic!r} has type {expected!r}, not {actual!r}", topic=topic
        )
        self.expected = expected
        self.actual = actual


class HandleClosedError(BusError):
    """A publisher or subscription handle was used after teardown."""


class ProtocolError(BusError):
    """A client frame could not be handled."""

    def __init__(self, message: str, code: str = ERROR_BAD_REQUEST, topic: Optional[str] = None) -> None:
        super().__init__(message, topic=topic)
        self.code = code
