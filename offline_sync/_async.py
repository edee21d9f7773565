import asyncio
import inspect
from typing import Any, Set


def spawn_if_awaitable(result: Any, tasks: Set[asyncio.Task]) -> None:
    """Schedule ``result`` on the running loop when a callback returned a coroutine.

    The task is held in ``tasks`` until done so it is not garbage collected.
    """
    if not inspect.isawaitable(result):
        return
    task = asyncio.ensure_future(result)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
