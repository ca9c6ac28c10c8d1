# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Intake boundary: turns one bulk request into many send tasks.

A request is validated as a whole before anything is created, so a
rejected request never leaves a partial batch behind. Accepted requests
become one :class:`SendTask` per recipient, handed to the scheduler in input
order under a fresh batch id.

Final per-recipient outcomes are not returned here; they are read back with
:meth:`Dispatcher.get_batch` / :meth:`Dispatcher.list_tasks` or observed in
the failure sink.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Sequence

from .errors import IntakeValidationError
from .logger import get_logger
from .models import BatchSummary, BulkAcceptance, SendTask, TaskState
from .scheduler import Scheduler

DEFAULT_MAX_PAYLOAD_LENGTH = 160
DEFAULT_BATCH_RETENTION = 24 * 3600.0


def validate_bulk_request(
    payload: str,
    recipients: Sequence[str],
    max_payload_length: int = DEFAULT_MAX_PAYLOAD_LENGTH,
) -> None:
    """Check a bulk request, raising on the first problem found.

    Raises:
        IntakeValidationError: With code ``empty_payload``,
            ``payload_too_long``, ``no_recipients`` or ``empty_recipient``.
    """
    if not isinstance(payload, str) or not payload.strip():
        raise IntakeValidationError("empty_payload", "message payload must not be empty")
    if len(payload) > max_payload_length:
        raise IntakeValidationError(
            "payload_too_long",
            f"message payload is {len(payload)} characters, maximum is {max_payload_length}",
        )
    if isinstance(recipients, str) or not recipients:
        raise IntakeValidationError("no_recipients", "recipient list must not be empty")
    for position, recipient in enumerate(recipients):
        if not isinstance(recipient, str) or not recipient.strip():
            raise IntakeValidationError(
                "empty_recipient", f"recipient at position {position} is empty"
            )


class Dispatcher:
    """Validates bulk requests and fans them out to the scheduler.

    Attributes:
        scheduler: Receives every created task.
        max_payload_length: Longest accepted message, in characters.
        batch_retention: Seconds a finished batch stays queryable after its
            last task ended. None keeps batches for the process lifetime.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        max_payload_length: int = DEFAULT_MAX_PAYLOAD_LENGTH,
        batch_retention: float | None = DEFAULT_BATCH_RETENTION,
        logger=None,
        clock: Callable[[], float] = time.time,
    ):
        if int(max_payload_length) < 1:
            raise ValueError("max_payload_length must be at least 1")
        if batch_retention is not None and batch_retention < 0:
            raise ValueError("batch_retention must be non-negative")
        self.batch_retention = batch_retention
        self._clock = clock
        self.scheduler = scheduler
        self.max_payload_length = int(max_payload_length)
        self.logger = logger or get_logger("Dispatcher")
        self._batches: dict[str, list[SendTask]] = {}

    async def submit(self, payload: str, recipients: Sequence[str]) -> BulkAcceptance:
        """Accept a bulk send.

        Args:
            payload: Message body, identical for every recipient.
            recipients: Recipient identifiers; duplicates produce duplicate
                tasks.

        Returns:
            The batch id and the number of tasks enqueued.

        Raises:
            IntakeValidationError: The request was rejected; nothing queued.
        """
        if not isinstance(recipients, str):
            recipients = list(recipients)
        validate_bulk_request(payload, recipients, self.max_payload_length)
        self.evict_finished()
        batch_id = uuid.uuid4().hex
        tasks = [SendTask(recipient=recipient, payload=payload, batch_id=batch_id) for recipient in recipients]
        self._batches[batch_id] = tasks
        queued = await self.scheduler.submit(tasks)
        self.logger.info("Accepted batch %s with %d task(s)", batch_id, queued)
        return BulkAcceptance(batch_id=batch_id, queued=queued)

    def evict_finished(self) -> int:
        """Forget batches whose tasks all ended more than ``batch_retention`` ago.

        Returns:
            Number of batches removed.
        """
        if self.batch_retention is None:
            return 0
        cutoff = self._clock() - self.batch_retention
        expired = [
            batch_id
            for batch_id, tasks in self._batches.items()
            if all(task.is_terminal and task.finished_at <= cutoff for task in tasks)
        ]
        for batch_id in expired:
            del self._batches[batch_id]
        if expired:
            self.logger.debug("Evicted %d finished batch(es)", len(expired))
        return len(expired)

    def batch_ids(self) -> list[str]:
        self.evict_finished()
        return list(self._batches)

    def get_batch(self, batch_id: str) -> list[SendTask] | None:
        self.evict_finished()
        tasks = self._batches.get(batch_id)
        return list(tasks) if tasks is not None else None

    def batch_summary(self, batch_id: str) -> BatchSummary | None:
        self.evict_finished()
        tasks = self._batches.get(batch_id)
        if tasks is None:
            return None
        counts = {state.value: 0 for state in TaskState}
        for task in tasks:
            counts[task.state.value] += 1
        return BatchSummary(batch_id=batch_id, total=len(tasks), **counts)

    def list_tasks(self, batch_id: str | None = None, state: TaskState | str | None = None) -> list[SendTask]:
        """Return tasks, optionally filtered by batch and state."""
        self.evict_finished()
        if batch_id is not None:
            tasks = self._batches.get(batch_id, [])
        else:
            tasks = [task for batch in self._batches.values() for task in batch]
        if state is not None:
            wanted = TaskState(state)
            tasks = [task for task in tasks if task.state is wanted]
        return list(tasks)
