"""Message: an open-ended keyed bag of fields carried on a topic."""

import copy
from collections.abc import Mapping
from typing import Any, Dict, Iterator, Optional


class Message(Mapping):
    """
    Fields of one bus message, readable by attribute (``msg.status``) or key
    (``msg["status"]``). The schema is named by the topic's message type and
    is not enforced here.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping] = None, **fields: Any) -> None:
        merged: Dict[str, Any] = dict(values or {})
        merged.update(fields)
        object.__setattr__(self, "_values", merged)

    @classmethod
    def wrap(cls, obj: Any) -> "Message":
        """Return ``obj`` unchanged if it is a Message, else wrap a mapping."""
        if isinstance(obj, Message):
            return obj
        if isinstance(obj, Mapping):
            return cls(obj)
        raise TypeError(f"message must be a mapping, got {type(obj).__name__}")

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Message fields are read-only")

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Message):
            return _plain(self._values) == _plain(other._values)
        if isinstance(other, Mapping):
            return _plain(self._values) == _plain(dict(other))
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> Dict[str, Any]:
        """Deep plain-dict copy, suitable for JSON encoding."""
        return _plain(self._values)

    def __repr__(self) -> str:
        return f"Message({self._values!r})"


def _plain(value: Any) -> Any:
    if isinstance(value, Message):
        return _plain(value._values)
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return copy.deepcopy(value)
