# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Failure sinks: where terminally failed tasks are reported.

The scheduler calls :meth:`FailureSink.record_failure` exactly once for each
task that ends in the ``failed`` state. A sink that raises does not affect
the task or the rest of the batch; the scheduler logs the error and moves on.

A SQLite-backed sink lives in :mod:`bulk_sender.persistence`.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .logger import get_logger

DEFAULT_MAX_RECORDS = 1000


def error_kind(error: BaseException) -> str:
    """Short label for a terminal error (``permanent``, ``exhausted``...)."""
    return getattr(error, "kind", None) or error.__class__.__name__


@runtime_checkable
class FailureSink(Protocol):
    async def record_failure(
        self,
        recipient: str,
        payload: str,
        final_attempt_count: int,
        last_error: BaseException,
    ) -> None: ...


@dataclass(frozen=True)
class FailureRecord:
    recipient: str
    payload: str
    attempts: int
    error: str
    error_kind: str
    failed_ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "recipient": self.recipient,
            "payload": self.payload,
            "attempts": self.attempts,
            "error": self.error,
            "error_kind": self.error_kind,
            "failed_ts": self.failed_ts,
        }


class LoggingFailureSink:
    """Report failures through the package logger at ERROR level."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("FailureSink")

    async def record_failure(self, recipient, payload, final_attempt_count, last_error):
        self.logger.error(
            "Delivery to %s failed after %d attempt(s) [%s]: %s",
            recipient,
            final_attempt_count,
            error_kind(last_error),
            last_error,
        )


class MemoryFailureSink:
    """Keep the newest ``max_records`` failures in memory, newest last."""

    def __init__(self, max_records: int | None = DEFAULT_MAX_RECORDS):
        if max_records is not None and max_records < 1:
            raise ValueError("max_records must be at least 1")
        self.records: deque[FailureRecord] = deque(maxlen=max_records)

    async def record_failure(self, recipient, payload, final_attempt_count, last_error):
        self.records.append(
            FailureRecord(
                recipient=recipient,
                payload=payload,
                attempts=final_attempt_count,
                error=str(last_error),
                error_kind=error_kind(last_error),
            )
        )

    async def list_failures(self, limit: int | None = None) -> list[dict]:
        if limit is not None and limit < 0:
            raise ValueError("limit must be non-negative")
        records = list(self.records)
        if limit is not None:
            records = records[len(records) - limit :] if limit else []
        return [record.to_dict() for record in records]


class FanOutFailureSink:
    """Forward each failure to several sinks in order."""

    def __init__(self, *sinks: FailureSink):
        self.sinks = list(sinks)

    async def record_failure(self, recipient, payload, final_attempt_count, last_error):
        for sink in self.sinks:
            await sink.record_failure(recipient, payload, final_attempt_count, last_error)
