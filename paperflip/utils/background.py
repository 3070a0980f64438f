"""
Fire-and-forget execution of store writes from synchronous callbacks.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Optional, Set

from paperflip.utils import logger

_tasks: Set["asyncio.Task"] = set()


async def _guarded(awaitable: Awaitable[Any], label: str) -> Optional[Any]:
    try:
        return await awaitable
    except Exception as e:
        logger.error(f"{label} failed: {e}")
        return None


def run_in_background(result: Any, label: str) -> None:
    """
    Schedule `result` if it is awaitable.

    Inside a running event loop the awaitable becomes a task; otherwise
    it is run to completion immediately. Failures are logged, not raised.
    """
    if not inspect.isawaitable(result):
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(_guarded(result, label))
        return

    task = loop.create_task(_guarded(result, label))
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)


async def drain() -> None:
    """Wait for every background write scheduled so far."""
    while _tasks:
        await asyncio.gather(*list(_tasks))
