"""Small helpers for the futures returned by topic and handle operations."""

import asyncio
from typing import Any, Iterable


def completed(value: Any) -> "asyncio.Future":
    """Return a future on the running loop that is already resolved with ``value``."""
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def settle_all(futures: Iterable["asyncio.Future"]) -> "asyncio.Future":
    """
    Future resolving to the list of results once every future is done; failures
    become the exception objects. Cancelling it leaves the inputs running.
    """
    futures = list(futures)
    if not futures:
        return completed([])
    return asyncio.gather(*(asyncio.shield(f) for f in futures), return_exceptions=True)
