# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Worker pool that throttles, delivers and retries send tasks.

Each worker repeatedly pulls a task from the shared :class:`TaskQueue` and:

1. asks the :class:`RateLimiter` for a permit. A denial defers the task by
   the configured cooldown without touching its attempt count;
2. with a permit, marks the task in flight, counts the attempt and calls the
   delivery client under ``request_timeout``;
3. on success marks the task succeeded;
4. on failure lets the :class:`RetryPolicy` decide between a delayed retry
   and a terminal failure, which is reported once to the failure sink.

Worker count bounds how many attempts run at once; the limiter bounds how
many happen per window. The two are configured independently.

Example:
    Running a batch to completion::

        scheduler = Scheduler(RateLimiter(100, 60), client, worker_count=20)
        await scheduler.start()
        await scheduler.submit(tasks)
        await scheduler.join()
        await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import Any

from .delivery import DeliveryClient
from .errors import DeliveryError, ExhaustedRetryError
from .failure_sink import FailureSink, LoggingFailureSink
from .logger import get_logger
from .models import SendTask, TaskState
from .prometheus import DispatchMetrics
from .rate_limit import RateLimiter
from .retry import RetryPolicy, classify_delivery_error
from .task_queue import TaskQueue

DEFAULT_DEFERRAL_COOLDOWN = 10.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_WORKER_COUNT = 10


class Scheduler:
    """Fixed-size pool of asyncio workers over a shared task queue.

    The scheduler owns every task state transition after intake. The rate
    limiter is shared with nobody else but is passed in so the caller
    decides its lifetime.

    Attributes:
        limiter: Global permit counter.
        client: Delivery capability invoked once per attempt.
        retry_policy: Attempt budget and backoff schedule.
        queue: Ready/deferred task queue.
        failure_sink: Receives every terminally failed task once.
        metrics: Prometheus collectors.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        client: DeliveryClient,
        retry_policy: RetryPolicy | None = None,
        *,
        worker_count: int = DEFAULT_WORKER_COUNT,
        deferral_cooldown: float | None = DEFAULT_DEFERRAL_COOLDOWN,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        failure_sink: FailureSink | None = None,
        metrics: DispatchMetrics | None = None,
        logger=None,
        log_delivery_activity: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Configure the pool. Workers start with :meth:`start`.

        Args:
            limiter: Shared rate limiter.
            client: Delivery client.
            retry_policy: Retry policy; defaults to :class:`RetryPolicy()`.
            worker_count: Number of concurrent workers, at least 1.
            deferral_cooldown: Seconds a throttled task waits before the next
                permit check. ``None`` waits for the current window to end.
            request_timeout: Upper bound in seconds on one delivery call.
                Exceeding it is a transient failure.
            failure_sink: Terminal failure reporter; logs by default.
            metrics: Prometheus collectors; a private set by default.
            logger: Logger override.
            log_delivery_activity: Log each attempt at INFO instead of DEBUG.
            clock: Monotonic time source shared with the queue.
        """
        if int(worker_count) < 1:
            raise ValueError("worker_count must be at least 1")
        if float(request_timeout) <= 0:
            raise ValueError("request_timeout must be positive")
        if deferral_cooldown is not None and float(deferral_cooldown) <= 0:
            raise ValueError("deferral_cooldown must be positive, or None to wait for the window end")
        self.limiter = limiter
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.worker_count = int(worker_count)
        self.deferral_cooldown = None if deferral_cooldown is None else float(deferral_cooldown)
        self.request_timeout = float(request_timeout)
        self.failure_sink = failure_sink or LoggingFailureSink()
        self.metrics = metrics or DispatchMetrics()
        self.logger = logger or get_logger("Scheduler")
        self._log_delivery_activity = bool(log_delivery_activity)
        self._clock = clock
        self.queue = TaskQueue(clock=clock)

        self._workers: list[asyncio.Task] = []
        self._running = False
        self._in_flight = 0
        self._outstanding = 0
        self._tracked: set[str] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------ control
    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def outstanding(self) -> int:
        """Submitted tasks that have not reached a terminal state."""
        return self._outstanding

    async def submit(self, tasks: Iterable[SendTask]) -> int:
        """Enqueue tasks for delivery.

        Terminal tasks and tasks already queued on this scheduler are ignored.

        Returns:
            Number of tasks enqueued.
        """
        fresh = []
        for task in tasks:
            if task.is_terminal or task.id in self._tracked:
                continue
            self._tracked.add(task.id)
            fresh.append(task)
        if not fresh:
            return 0
        self._outstanding += len(fresh)
        self._idle.clear()
        await self.queue.put_many(fresh)
        self.metrics.set_pending(len(self.queue))
        return len(fresh)

    async def start(self) -> None:
        """Spawn the workers. Calling it on a running pool does nothing."""
        if self._running:
            return
        await self.queue.reopen()
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"send-worker-{index}")
            for index in range(self.worker_count)
        ]
        self.logger.debug("Started %d send workers", self.worker_count)

    async def cancel(self) -> None:
        """Stop pulling tasks and wait for in-flight attempts to settle.

        Pending and deferred tasks stay queued; :meth:`resume` picks them up
        again. Finished tasks are not touched.
        """
        if not self._running and not self._workers:
            return
        self._running = False
        await self.queue.close()
        workers, self._workers = self._workers, []
        await asyncio.gather(*workers, return_exceptions=True)
        self.logger.info("Scheduler cancelled with %d task(s) still queued", len(self.queue))

    async def resume(self) -> None:
        await self.start()

    async def stop(self) -> None:
        await self.cancel()

    async def join(self, timeout: float | None = None) -> None:
        """Wait until every submitted task is terminal.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        await asyncio.wait_for(self._idle.wait(), timeout)

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "workers": len(self._workers),
            "queued": len(self.queue),
            "ready": self.queue.ready_count,
            "deferred": self.queue.deferred_count,
            "in_flight": self._in_flight,
            "outstanding": self._outstanding,
        }

    # ------------------------------------------------------------------ workers
    async def _worker_loop(self, index: int) -> None:
        while True:
            task = await self.queue.get()
            if task is None:
                break
            try:
                await self._process(task)
            except Exception as exc:  # pragma: no cover
                self.logger.exception("Worker %d: unhandled error on task %s: %s", index, task.id, exc)
        self.logger.debug("Worker %d stopped", index)

    def _log_activity(self, msg: str, *args: Any) -> None:
        if self._log_delivery_activity:
            self.logger.info(msg, *args)
        else:
            self.logger.debug(msg, *args)

    def _deferral_delay(self) -> float:
        if self.deferral_cooldown is None:
            return self.limiter.current_window_remaining_time()
        return self.deferral_cooldown

    async def _process(self, task: SendTask) -> None:
        if task.is_terminal:
            self._task_done(task)
            return

        if not self.limiter.try_acquire():
            delay = self._deferral_delay()
            task.transition(TaskState.DEFERRED)
            await self.queue.defer(task, self._clock() + delay)
            self.metrics.inc_rate_limited()
            self.metrics.set_pending(len(self.queue))
            self.logger.debug("Task %s rate-limited, deferred by %.2fs", task.id, delay)
            # get() does not suspend when a due task is waiting
            await asyncio.sleep(0)
            return

        task.transition(TaskState.IN_FLIGHT)
        task.attempt_count += 1
        self._log_activity("Attempt %d for task %s to %s", task.attempt_count, task.id, task.recipient)

        error: DeliveryError | None = None
        self._in_flight += 1
        self.metrics.set_in_flight(self._in_flight)
        try:
            await asyncio.wait_for(
                self.client.send(task.recipient, task.payload),
                timeout=self.request_timeout,
            )
        except Exception as exc:
            error = classify_delivery_error(exc)
        finally:
            self._in_flight -= 1
            self.metrics.set_in_flight(self._in_flight)

        if error is None:
            task.transition(TaskState.SUCCEEDED)
            task.last_error = None
            self.metrics.inc_sent()
            self._log_activity("Task %s delivered to %s", task.id, task.recipient)
            self._task_done(task)
            return
        await self._handle_failure(task, error)

    async def _handle_failure(self, task: SendTask, error: DeliveryError) -> None:
        task.last_error = str(error)
        if self.retry_policy.should_retry(task.attempt_count, error):
            delay = self.retry_policy.backoff_delay(task.attempt_count)
            task.transition(TaskState.DEFERRED)
            await self.queue.defer(task, self._clock() + delay)
            self.metrics.inc_retried()
            self.metrics.set_pending(len(self.queue))
            self.logger.warning(
                "Transient error for task %s (attempt %d/%d): %s - retrying in %.1fs",
                task.id,
                task.attempt_count,
                self.retry_policy.max_attempts,
                error,
                delay,
            )
            return

        final: BaseException
        if error.retryable:
            final = ExhaustedRetryError(task.attempt_count, error)
            final.__cause__ = error
            self.logger.error(
                "Task %s to %s failed after %d attempts: %s",
                task.id,
                task.recipient,
                task.attempt_count,
                error,
            )
        else:
            final = error
            self.logger.error("Task %s to %s failed with permanent error: %s", task.id, task.recipient, error)

        task.last_error = str(final)
        task.transition(TaskState.FAILED)
        self.metrics.inc_failed(getattr(final, "kind", "permanent"))
        try:
            await self.failure_sink.record_failure(task.recipient, task.payload, task.attempt_count, final)
        except Exception as exc:
            self.logger.exception("Failure sink rejected task %s: %s", task.id, exc)
        finally:
            self._task_done(task)

    def _task_done(self, task: SendTask) -> None:
        if task.id not in self._tracked:
            return
        self._tracked.discard(task.id)
        self._outstanding -= 1
        self.metrics.set_pending(len(self.queue))
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()
