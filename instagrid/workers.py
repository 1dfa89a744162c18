# workers.py
"""
Background task execution utilities for instagrid.
Runs blocking image work on a thread pool while keeping every state
change on the event loop, and tracks the asyncio tasks spawned per slot.
"""
import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from . import config

logger = logging.getLogger(__name__)


class TaskRunner:
    """Owns the render executor and the set of in-flight asyncio tasks."""

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = config.RENDER_WORKERS):
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="instagrid-render"
        )
        self._tasks: Set[asyncio.Task] = set()
        self._by_key: Dict[str, Set[asyncio.Task]] = {}

    async def run(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run ``fn(*args)`` on the executor; this is a suspension point."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def spawn(self, coro: Awaitable[Any], key: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop and track it until done."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        if key is not None:
            self._by_key.setdefault(key, set()).add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if key is not None:
                bucket = self._by_key.get(key)
                if bucket is not None:
                    bucket.discard(finished)
                    if not bucket:
                        self._by_key.pop(key, None)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("Task error: %s", finished.exception())

        task.add_done_callback(_done)
        return task

    def pending(self, key: Optional[str] = None) -> int:
        if key is None:
            return len(self._tasks)
        return len(self._by_key.get(key, ()))

    def cancel(self, key: str) -> None:
        """Cancel tasks spawned under ``key``; their results are never applied."""
        for task in list(self._by_key.pop(key, ())):
            task.cancel()

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._by_key.clear()

    async def wait_idle(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def shutdown(self) -> None:
        """Cancel tracked tasks and release the executor if we created it."""
        self.cancel_all()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
