# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Task model and Pydantic schemas for the bulk sender.

This module defines the unit of work handled by the scheduler together with
the request and response models exposed by the HTTP API and the CLI.

Models:
    - TaskState: Lifecycle states of a send task
    - SendTask: One recipient, one message
    - BulkAcceptance: Result of a successful intake
    - BulkSendPayload: HTTP request body for a bulk send
    - TaskRecord, BatchSummary, LimiterStatus: Reporting schemas
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidTransitionError


class TaskState(str, Enum):
    """Lifecycle states of a :class:`SendTask`.

    Attributes:
        PENDING: Created at intake, never attempted.
        IN_FLIGHT: A delivery attempt is running.
        DEFERRED: Waiting for its ``not_before`` time (throttled or retrying).
        SUCCEEDED: Delivered. Terminal.
        FAILED: Permanently failed or out of attempts. Terminal.
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DEFERRED = "deferred"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED})

ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.IN_FLIGHT, TaskState.DEFERRED}),
    TaskState.DEFERRED: frozenset({TaskState.IN_FLIGHT, TaskState.DEFERRED}),
    TaskState.IN_FLIGHT: frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.DEFERRED}),
    TaskState.SUCCEEDED: frozenset(),
    TaskState.FAILED: frozenset(),
}


@dataclass(eq=False)
class SendTask:
    """A single delivery: one recipient, one message.

    ``recipient`` and ``payload`` never change after intake. State changes go
    through :meth:`transition`, which rejects any move out of a terminal
    state.
    """

    recipient: str
    payload: str
    batch_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt_count: int = 0
    state: TaskState = TaskState.PENDING
    not_before: float = 0.0
    last_error: str | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("recipient", "payload") and name in self.__dict__:
            raise AttributeError(f"{name} is immutable once the task is created")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: TaskState) -> None:
        """Move the task to ``new_state``.

        Raises:
            InvalidTransitionError: If the edge is not allowed, in particular
                any edge leaving ``succeeded`` or ``failed``.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"task {self.id}: cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        if new_state in TERMINAL_STATES:
            self.finished_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "recipient": self.recipient,
            "state": self.state.value,
            "attempt_count": self.attempt_count,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }


@dataclass(frozen=True)
class BulkAcceptance:
    """Acknowledgement returned by the intake boundary."""

    batch_id: str
    queued: int


# --------------------------------------------------------------------- schemas


class BulkSendPayload(BaseModel):
    """Request body for ``POST /commands/send-bulk``.

    Length limits are enforced by the dispatcher, which knows the configured
    maximum, so this model only shapes the input.
    """

    model_config = ConfigDict(extra="forbid")

    message: Annotated[str, Field(description="Message body sent to every recipient")]
    recipients: Annotated[
        list[str],
        Field(default_factory=list, description="Recipient identifiers, one task each"),
    ]


class CommandStatus(BaseModel):
    """Base schema shared by command responses."""

    ok: bool
    error: str | None = None
    code: str | None = None


class BulkAccepted(CommandStatus):
    """Response for an accepted (or rejected) bulk send."""

    batch_id: str | None = None
    queued: int = 0


class TaskRecord(BaseModel):
    """A task as reported by ``listTasks`` and ``getBatch``."""

    id: str
    batch_id: str
    recipient: str
    state: TaskState
    attempt_count: int
    last_error: str | None = None
    created_at: float
    finished_at: float | None = None


class BatchSummary(BaseModel):
    """Per-state counts of a batch."""

    batch_id: str
    total: int
    pending: int = 0
    in_flight: int = 0
    deferred: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def done(self) -> bool:
        return self.succeeded + self.failed == self.total


class BatchResponse(CommandStatus):
    summary: BatchSummary | None = None
    tasks: list[TaskRecord] = Field(default_factory=list)


class TasksResponse(CommandStatus):
    tasks: list[TaskRecord] = Field(default_factory=list)


class FailureInfo(BaseModel):
    recipient: str
    payload: str
    attempts: int
    error: str
    error_kind: str
    failed_ts: float | None = None


class FailuresResponse(CommandStatus):
    failures: list[FailureInfo] = Field(default_factory=list)


class LimiterStatus(BaseModel):
    limit: int
    interval: float
    count: int
    remaining: int
    reset_in: float


class StatusResponse(CommandStatus):
    """Scheduler and limiter state returned by ``status``."""

    running: bool = False
    workers: int = 0
    queued: int = 0
    ready: int = 0
    deferred: int = 0
    in_flight: int = 0
    limiter: LimiterStatus | None = None
