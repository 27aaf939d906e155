"""Diagnostics monitor: latest aggregated robot diagnostics, classified by level."""

import asyncio
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from topicbus.connection import Connection
from topicbus.observability import get_logger
from topicbus.topic import Topic

DIAGNOSTICS_MESSAGE_TYPE = "diagnostic_msgs/DiagnosticArray"
NOT_AVAILABLE = "N/A"

LEVEL_OK = "0"
LEVEL_WARN = "1"
LEVEL_ERROR = "2"
LEVEL_STALE = "3"


def diagnostics_topic_name(namespace: str) -> str:
    """``/<namespace>/diagnostics_agg``; surrounding slashes in ``namespace`` are ignored."""
    ns = (namespace or "").strip().strip("/")
    if not ns:
        raise ValueError("namespace must be non-empty")
    return f"/{ns}/diagnostics_agg"


@dataclass(frozen=True)
class DiagnosticStatus:
    name: str
    message: str
    level: str

    @classmethod
    def from_dict(cls, data: Mapping) -> "DiagnosticStatus":
        name = data.get("name")
        message = data.get("message")
        level = data.get("level")
        return cls(
            name=str(name) if name is not None else NOT_AVAILABLE,
            message=str(message) if message is not None else NOT_AVAILABLE,
            level=str(level) if level is not None else NOT_AVAILABLE,
        )

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class DiagnosticsMonitor:
    """Subscribes to one robot's diagnostics topic and keeps the latest status list."""

    def __init__(
        self,
        connection: Connection,
        namespace: str,
        message_type: str = DIAGNOSTICS_MESSAGE_TYPE,
    ) -> None:
        self._namespace = namespace.strip("/")
        self._topic = Topic(connection, diagnostics_topic_name(namespace), message_type)
        self._statuses: List[DiagnosticStatus] = []
        self._received = 0
        self._callback = self._on_message
        self._logger = get_logger("topicbus.diagnostics")

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def topic(self) -> Topic:
        return self._topic

    @property
    def statuses(self) -> List[DiagnosticStatus]:
        return list(self._statuses)

    @property
    def received(self) -> int:
        """Number of well-formed diagnostics messages received."""
        return self._received

    def start(self) -> "asyncio.Future":
        return self._topic.subscribe(self._callback)

    def stop(self) -> "asyncio.Future":
        return self._topic.unsubscribe(self._callback)

    def _on_message(self, message: Any) -> None:
        status = message.get("status") if isinstance(message, Mapping) else None
        if not isinstance(status, list):
            self._logger.warning(
                "unexpected_diagnostics_format",
                extra={"topic": self._topic.name, "payload_type": type(message).__name__},
            )
            return
        self._statuses = [DiagnosticStatus.from_dict(s) for s in status if isinstance(s, Mapping)]
        self._received += 1
        self._logger.debug(
            "diagnostics_received",
            extra={"topic": self._topic.name, "statuses": len(self._statuses)},
        )

    def leaf_statuses(self, levels: Optional[Iterable[str]] = None) -> List[DiagnosticStatus]:
        """Statuses with nothing nested under them (``name + "/"``), optionally filtered by level."""
        wanted = set(levels) if levels is not None else None
        leaves = []
        for status in self._statuses:
            prefix = f"{status.name}/"
            if any(other.name.startswith(prefix) for other in self._statuses):
                continue
            if wanted is None or status.level in wanted:
                leaves.append(status)
        return leaves

    def summary(self) -> Dict[str, List[Dict[str, str]]]:
        def by_level(level: str) -> List[Dict[str, str]]:
            return [s.to_dict() for s in self.leaf_statuses([level])]

        return {
            "errors": by_level(LEVEL_ERROR),
            "warnings": by_level(LEVEL_WARN),
            "stale": by_level(LEVEL_STALE),
            "ok": by_level(LEVEL_OK),
        }

    def tree(self) -> List[Dict[str, Any]]:
        """Nest statuses by the ``/``-separated parts of their names."""
        root: Dict[str, Dict[str, Any]] = {}
        for status in self._statuses:
            parts = [p for p in status.name.split("/") if p]
            current = root
            for index, part in enumerate(parts):
                node = current.setdefault(part, {"name": part, "children": {}, "data": None})
                if index == len(parts) - 1:
                    node["data"] = status
                current = node["children"]
        return _to_tree(root)


def _to_tree(nodes: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for node in nodes.values():
        data: Optional[DiagnosticStatus] = node["data"]
        out.append({
            "name": node["name"],
            "message": data.message if data is not None else NOT_AVAILABLE,
            "level": data.level if data is not None else NOT_AVAILABLE,
            "children": _to_tree(node["children"]),
        })
    return out
