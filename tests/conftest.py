"""
pytest configuration and shared fixtures for topicbus tests.
"""

import pytest
import pytest_asyncio

from topicbus.memory import InMemoryConnection


@pytest_asyncio.fixture
async def bus():
    """Connected loopback bus, closed after the test."""
    connection = InMemoryConnection()
    await connection.connect()
    yield connection
    await connection.close()


@pytest.fixture
def diagnostics_array():
    """Sample diagnostic_msgs/DiagnosticArray payload."""
    return {
        "status": [
            {"name": "/robot", "message": "Warning", "level": 1},
            {"name": "/robot/battery", "message": "OK", "level": 0},
            {"name": "/robot/motors", "message": "Overheating", "level": 1},
            {"name": "/robot/lidar", "message": "No data", "level": 3},
            {"name": "/robot/estop", "message": "Pressed", "level": 2},
        ]
    }
