import asyncio
import logging

logger = logging.getLogger(__name__)

# Strong references; the event loop only keeps weak ones.
_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("BACKGROUND_TASK_ERROR task=%s", task.get_name(), exc_info=exc)


def spawn_background(coro, *, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain_background() -> None:
    if _tasks:
        await asyncio.gather(*list(_tasks), return_exceptions=True)


def get_task_spawner():
    return spawn_background
