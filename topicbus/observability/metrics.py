"""Counters and gauges for bus activity (published, delivered, errors)."""

from typing import Dict


class Metrics:
    """In-memory metrics collector; counters may be scoped per topic with ``topic``."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, int] = {}
        self._per_topic: Dict[str, Dict[str, int]] = {}

    def increment(self, name: str, value: int = 1, topic: str | None = None) -> None:
        """Increment a counter, and the topic's own counter when ``topic`` is given."""
        self._counters[name] = self._counters.get(name, 0) + value
        if topic is not None:
            counters = self._per_topic.setdefault(topic, {})
            counters[name] = counters.get(name, 0) + value

    def set_gauge(self, name: str, value: int) -> None:
        self._gauges[name] = value

    def get_counter(self, name: str, topic: str | None = None) -> int:
        if topic is not None:
            return self._per_topic.get(topic, {}).get(name, 0)
        return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> int:
        return self._gauges.get(name, 0)

    def snapshot(self) -> Dict[str, Dict]:
        """Return a copy of all metrics."""
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "topics": {name: dict(c) for name, c in self._per_topic.items()},
        }
