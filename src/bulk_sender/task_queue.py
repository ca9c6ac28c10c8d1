# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared task queue with not-before deferral.

Ready tasks wait in a FIFO; deferred tasks wait in a heap ordered by their
``not_before`` time and are moved behind the ready ones once due. The queue
keeps its own deferral clock instead of relying on a broker's delayed
delivery, so any substrate can sit underneath the scheduler.

All access goes through one ``asyncio.Condition``.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections import deque
from collections.abc import Callable

from .models import SendTask


class TaskQueue:
    """FIFO of ready tasks plus a heap of deferred ones."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._ready: deque[SendTask] = deque()
        self._deferred: list[tuple[float, int, SendTask]] = []
        self._seq = itertools.count()
        self._cond = asyncio.Condition()
        self._closed = False

    def __len__(self) -> int:
        return len(self._ready) + len(self._deferred)

    @property
    def ready_count(self) -> int:
        return len(self._ready)

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_tasks(self) -> list[SendTask]:
        """Snapshot of every queued task, ready first."""
        return list(self._ready) + [task for _, _, task in sorted(self._deferred)]

    async def put(self, task: SendTask) -> None:
        async with self._cond:
            self._ready.append(task)
            self._cond.notify()

    async def put_many(self, tasks: list[SendTask]) -> None:
        async with self._cond:
            self._ready.extend(tasks)
            self._cond.notify(len(tasks))

    async def defer(self, task: SendTask, not_before: float) -> None:
        """Hold ``task`` back until the clock reaches ``not_before``."""
        task.not_before = not_before
        async with self._cond:
            heapq.heappush(self._deferred, (not_before, next(self._seq), task))
            # A waiter may be sleeping until a later deadline.
            self._cond.notify()

    def _promote_due(self) -> None:
        now = self._clock()
        while self._deferred and self._deferred[0][0] <= now:
            _, _, task = heapq.heappop(self._deferred)
            self._ready.append(task)

    async def get(self) -> SendTask | None:
        """Wait for the next ready task.

        Returns:
            The next task, or None once the queue has been closed. Closing
            leaves queued tasks in place.
        """
        async with self._cond:
            while not self._closed:
                self._promote_due()
                if self._ready:
                    return self._ready.popleft()
                timeout = None
                if self._deferred:
                    timeout = max(0.0, self._deferred[0][0] - self._clock())
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
            return None

    async def close(self) -> None:
        """Stop handing out tasks and wake every waiter."""
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    async def reopen(self) -> None:
        async with self._cond:
            self._closed = False
            self._cond.notify_all()
