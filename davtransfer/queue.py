"""
Bounded execution of transfer operations.

The queue runs every submitted job as its own asyncio task and lets at
most ``max_concurrent`` of them past the semaphore at a time.  Waiters on
an asyncio.Semaphore are woken in FIFO order, so a job submitted early is
never starved by later ones.  All bookkeeping happens on the event loop,
which makes submission from any number of operations safe.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

log = logging.getLogger(__name__)


class QueueHandle:
    """
    Handle of a submitted job, used to wait for or cancel it.
    """

    def __init__(self, ident: int, task: "asyncio.Task[Any]", name: Optional[str] = None) -> None:
        self.ident = ident
        self.task = task
        self.name = name

    def __repr__(self) -> str:
        return "QueueHandle(%s, %s)" % (self.ident, self.name or "-")

    def done(self) -> bool:
        return self.task.done()

    def cancelled(self) -> bool:
        return self.task.cancelled()


class OperationQueue:
    def __init__(self, max_concurrent: int = 4) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._handles: Dict[int, QueueHandle] = {}
        self._counter = itertools.count(1)
        self._running = 0

    @property
    def semaphore(self) -> asyncio.Semaphore:
        ## created lazily, so the queue can be built outside of a running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    @property
    def pending(self) -> int:
        """Jobs submitted and not finished yet, running or waiting"""
        return len(self._handles)

    @property
    def running(self) -> int:
        return self._running

    def submit(self, job: Callable[[], Awaitable[Any]], name: Optional[str] = None) -> QueueHandle:
        """
        Schedule job() to run once a slot is free.

        Must be called from within the running event loop.
        """
        ident = next(self._counter)
        task = asyncio.get_running_loop().create_task(self._run(job, ident, name))
        handle = QueueHandle(ident, task, name)
        self._handles[ident] = handle
        task.add_done_callback(lambda _: self._handles.pop(ident, None))
        log.debug(f"queued {handle}, {self.pending} pending")
        return handle

    async def _run(self, job: Callable[[], Awaitable[Any]], ident: int, name: Optional[str]) -> Any:
        async with self.semaphore:
            self._running += 1
            try:
                log.debug(f"starting job {ident} ({name or '-'})")
                return await job()
            finally:
                self._running -= 1

    def cancel(self, handle: QueueHandle) -> bool:
        """
        Cancel a queued or running job.  Returns False if it was
        already finished.
        """
        if handle.task.done():
            return False
        log.debug(f"cancelling {handle}")
        return handle.task.cancel()

    async def wait(self, handle: QueueHandle) -> Any:
        return await handle.task

    def cancel_all(self) -> None:
        for handle in list(self._handles.values()):
            self.cancel(handle)

    async def join(self) -> None:
        """Wait until every job submitted so far has finished"""
        tasks = [h.task for h in self._handles.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
