"""
Background Task Supervision

Owns every fire-and-forget unit of work started by the orchestrator:
restaurant discovery, delayed order dispatch, delayed client-proxy replies
and notification sequences. Tasks are grouped by owner (a session id or an
order id) so a pending sequence can be cancelled for one order, and the
whole set is cancelled on application shutdown.

Failures inside a task are logged here; they never reach the request that
started the task.
"""

import asyncio
import logging
from collections import Counter, defaultdict
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Registry of owned asyncio tasks.

    Attributes:
        launched: Number of tasks started, by task name
        failed: Number of tasks that ended with an exception, by task name
    """

    def __init__(self):
        self._tasks: dict[str, set[asyncio.Task]] = defaultdict(set)
        self.launched: Counter = Counter()
        self.failed: Counter = Counter()

    def spawn(self, owner: str, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        """
        Start ``coro`` as a task owned by ``owner``.

        Must be called from inside a running event loop.
        """
        task = asyncio.create_task(self._run(owner, name, coro), name=f"{name}:{owner}")
        self._tasks[owner].add(task)
        self.launched[name] += 1
        task.add_done_callback(lambda t: self._forget(owner, t))
        logger.debug(f"Task started: {name} (owner={owner})")
        return task

    async def _run(self, owner: str, name: str, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            logger.info(f"Task cancelled: {name} (owner={owner})")
            raise
        except Exception as e:
            self.failed[name] += 1
            logger.exception(f"Task failed: {name} (owner={owner}) - {e}")
            return None

    def _forget(self, owner: str, task: asyncio.Task) -> None:
        tasks = self._tasks.get(owner)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._tasks.pop(owner, None)

    def pending(self, owner: Optional[str] = None) -> int:
        """Number of unfinished tasks, for one owner or overall."""
        if owner is not None:
            return sum(1 for t in self._tasks.get(owner, ()) if not t.done())
        return sum(1 for tasks in self._tasks.values() for t in tasks if not t.done())

    def cancel(self, owner: str) -> int:
        """Cancel every pending task of ``owner``. Returns how many were cancelled."""
        cancelled = 0
        for task in list(self._tasks.get(owner, ())):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} task(s) for {owner}")
        return cancelled

    async def drain(self, owner: Optional[str] = None) -> None:
        """
        Wait until the selected tasks, and any tasks they spawn, finish.
        """
        while True:
            if owner is not None:
                tasks = [t for t in self._tasks.get(owner, ()) if not t.done()]
            else:
                tasks = [t for group in self._tasks.values() for t in group if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all tasks and wait for them to unwind."""
        tasks = [t for group in self._tasks.values() for t in group if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Task supervisor stopped ({len(tasks)} task(s) cancelled)")
        self._tasks.clear()
