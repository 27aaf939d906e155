"""Test doubles for topicbus tests."""

from tests.fixtures.scripted_connection import (
    RecordingPublisher,
    RecordingSubscription,
    ScriptedConnection,
    settle,
)

__all__ = ["RecordingPublisher", "RecordingSubscription", "ScriptedConnection", "settle"]
