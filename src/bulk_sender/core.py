# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core orchestration for the bulk sender.

This module provides the BulkSenderCore class, which wires the subsystems
together from a :class:`DispatcherConfig`:

- one shared fixed-window rate limiter
- the retry policy
- the worker pool scheduler and its task queue
- the intake dispatcher
- the failure sink (log, plus SQLite when configured)
- Prometheus metrics

External control goes through :meth:`BulkSenderCore.handle_command`, used
by the HTTP API and the CLI alike.

Example:
    Running a bulk send::

        core = BulkSenderCore(load_config())
        await core.start()
        result = await core.handle_command(
            "sendBulk", {"message": "Hello", "recipients": ["+39061", "+39062"]}
        )
        await core.stop()
"""

from __future__ import annotations

from typing import Any

from .config_loader import DispatcherConfig
from .delivery import DeliveryClient, HttpDeliveryClient, LoggingDeliveryClient
from .dispatcher import Dispatcher
from .errors import IntakeValidationError
from .failure_sink import FailureSink, FanOutFailureSink, LoggingFailureSink, MemoryFailureSink
from .logger import get_logger
from .models import TaskState
from .persistence import FailureStore
from .prometheus import DispatchMetrics
from .rate_limit import RateLimiter
from .retry import RetryPolicy
from .scheduler import Scheduler


class BulkSenderCore:
    """Central orchestrator of the bulk sender.

    Attributes:
        config: Effective configuration.
        limiter: Shared rate limiter, built once here.
        retry_policy: Retry policy built from the configuration.
        client: Delivery client.
        failure_store: SQLite failure log, when ``failure_db_path`` is set.
        failures: In-memory record of recent failures, used when no
            ``failure_db_path`` is configured.
        scheduler: Worker pool.
        dispatcher: Intake boundary.
        metrics: Prometheus metrics.
    """

    def __init__(
        self,
        config: DispatcherConfig | None = None,
        *,
        client: DeliveryClient | None = None,
        failure_sink: FailureSink | None = None,
        metrics: DispatchMetrics | None = None,
        logger=None,
    ):
        """Build every component from ``config``.

        Args:
            config: Configuration; defaults to :class:`DispatcherConfig()`.
            client: Delivery client. Without one, an HTTP client is built
                from ``provider_url``, or a dry-run client if none is set.
            failure_sink: Extra sink receiving terminal failures, called
                after the built-in ones.
            metrics: Prometheus collectors.
            logger: Logger override.
        """
        self.config = (config or DispatcherConfig()).validate()
        self.logger = logger or get_logger("BulkSenderCore")
        self.metrics = metrics or DispatchMetrics()
        self.limiter = RateLimiter(self.config.limit, self.config.interval_seconds)
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            delays=self.config.retry_delays,
            jitter=self.config.retry_jitter,
        )
        self.client = client or self._build_client()

        self.failure_store = FailureStore(self.config.failure_db_path) if self.config.failure_db_path else None
        self.failures = MemoryFailureSink() if self.failure_store is None else None
        sinks: list[FailureSink] = [LoggingFailureSink()]
        sinks.append(self.failure_store if self.failure_store is not None else self.failures)
        if failure_sink is not None:
            sinks.append(failure_sink)

        self.scheduler = Scheduler(
            self.limiter,
            self.client,
            self.retry_policy,
            worker_count=self.config.worker_count,
            deferral_cooldown=self.config.deferral_cooldown,
            request_timeout=self.config.request_timeout,
            failure_sink=FanOutFailureSink(*sinks),
            metrics=self.metrics,
            log_delivery_activity=self.config.log_delivery_activity,
        )
        self.dispatcher = Dispatcher(
            self.scheduler,
            max_payload_length=self.config.max_payload_length,
            batch_retention=self.config.batch_retention_seconds,
        )

    def _build_client(self) -> DeliveryClient:
        if self.config.provider_url:
            return HttpDeliveryClient(
                self.config.provider_url,
                self.config.provider_credential,
                timeout=self.config.request_timeout,
            )
        self.logger.warning("No provider URL configured, messages will only be logged")
        return LoggingDeliveryClient()

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Prepare storage and start the worker pool."""
        if self.failure_store is not None:
            await self.failure_store.init_db()
        await self.scheduler.start()
        self.logger.info(
            "Bulk sender started (limit=%d/%ss, workers=%d)",
            self.config.limit,
            self.config.interval_seconds,
            self.config.worker_count,
        )

    async def stop(self) -> None:
        """Stop the workers and release the delivery client."""
        await self.scheduler.stop()
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    async def wait_idle(self, timeout: float | None = None) -> None:
        await self.scheduler.join(timeout)

    # ------------------------------------------------------------------ commands
    async def handle_command(self, cmd: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute an external control command.

        Supported commands:
        - ``sendBulk``: validate and enqueue ``message`` for ``recipients``
        - ``status``: scheduler and limiter state
        - ``getBatch``: summary and tasks of ``batch_id``
        - ``listTasks``: tasks filtered by ``batch_id`` and/or ``state``
        - ``listFailures``: recorded terminal failures (``limit``)
        - ``cancel``: stop pulling tasks, keep queued ones
        - ``resume``: restart the workers

        Args:
            cmd: Command name to execute.
            payload: Command-specific parameters.

        Returns:
            dict: Result with ``ok`` status and command-specific data.
        """
        payload = payload or {}
        match cmd:
            case "sendBulk":
                return await self._handle_send_bulk(payload)
            case "status":
                return {"ok": True, **self.scheduler.stats(), "limiter": self.limiter.snapshot()}
            case "getBatch":
                batch_id = payload.get("batch_id")
                summary = self.dispatcher.batch_summary(batch_id) if batch_id else None
                if summary is None:
                    return {"ok": False, "error": "batch not found"}
                tasks = [task.to_dict() for task in self.dispatcher.get_batch(batch_id) or []]
                return {"ok": True, "summary": summary.model_dump(), "tasks": tasks}
            case "listTasks":
                state = payload.get("state")
                if state is not None and state not in {s.value for s in TaskState}:
                    return {"ok": False, "error": f"unknown state: {state}"}
                tasks = self.dispatcher.list_tasks(batch_id=payload.get("batch_id"), state=state)
                return {"ok": True, "tasks": [task.to_dict() for task in tasks]}
            case "listFailures":
                limit = payload.get("limit")
                limit = int(limit) if limit is not None else None
                if limit is not None and limit < 0:
                    return {"ok": False, "error": "limit must be non-negative"}
                if self.failure_store is not None:
                    failures = await self.failure_store.list_failures(limit=limit)
                else:
                    failures = await self.failures.list_failures(limit=limit)
                return {"ok": True, "failures": failures}
            case "cancel":
                await self.scheduler.cancel()
                return {"ok": True, "running": False, "queued": len(self.scheduler.queue)}
            case "resume":
                await self.scheduler.resume()
                return {"ok": True, "running": True, "queued": len(self.scheduler.queue)}
            case _:
                return {"ok": False, "error": "unknown command"}

    async def _handle_send_bulk(self, payload: dict[str, Any]) -> dict[str, Any]:
        message = payload.get("message")
        recipients = payload.get("recipients")
        if recipients is None:
            recipients = []
        if not isinstance(recipients, (list, tuple)):
            return {"ok": False, "error": "recipients must be a list", "code": "no_recipients"}
        try:
            accepted = await self.dispatcher.submit(message, recipients)
        except IntakeValidationError as exc:
            self.logger.warning("Bulk request rejected (%s): %s", exc.code, exc)
            return {"ok": False, "error": str(exc), "code": exc.code}
        return {"ok": True, "batch_id": accepted.batch_id, "queued": accepted.queued}
