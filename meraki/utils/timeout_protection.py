# meraki/utils/timeout_protection.py
"""
Bounded waits for best-effort work.
A caller that only wants to *wait a while* for background sync uses these
helpers so a slow remote never stalls the request that triggered it.
"""
import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


async def with_timeout(aw: Awaitable, timeout_seconds: float = 5.0, default_value: Any = None,
                       operation: str = "operation"):
    """
    Await ``aw`` for at most ``timeout_seconds``, returning ``default_value`` on
    timeout or failure.

    Pass a task wrapped in ``asyncio.shield`` when the work must keep running
    after the caller stops waiting.
    """
    try:
        return await asyncio.wait_for(aw, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.info("%s still running after %ss, not waiting any longer", operation, timeout_seconds)
        return default_value
    except Exception as e:
        logger.warning("%s failed: %s, using default value", operation, e)
        return default_value


def spawn(coro, name: str, registry: set) -> asyncio.Task:
    """Start a fire-and-forget task and keep a strong reference until it finishes."""
    task = asyncio.create_task(coro, name=name)
    registry.add(task)
    task.add_done_callback(registry.discard)
    return task
