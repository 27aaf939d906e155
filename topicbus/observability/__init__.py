"""Observability: logging and counters for the topic runtime and the bridge."""

from topicbus.observability.logger import get_logger, set_level
from topicbus.observability.metrics import Metrics

__all__ = ["get_logger", "set_level", "Metrics"]
