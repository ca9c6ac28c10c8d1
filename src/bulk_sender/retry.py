# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry policy and delivery error classification.

Delivery failures are split into transient errors, which are retried after a
delay taken from a fixed schedule, and permanent errors, which end the task
at once whatever attempt budget remains.

Throttling by the rate limiter never reaches this module: a deferred task
has not been attempted and does not spend an attempt.

Attributes:
    DEFAULT_MAX_ATTEMPTS: Attempts before a transient failure becomes final.
    DEFAULT_RETRY_DELAYS: Delay schedule in seconds (1min, 5min, 15min, 1h, 2h).
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Sequence

import aiohttp

from .errors import DeliveryError, PermanentDeliveryError, TransientDeliveryError

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (60, 300, 900, 3600, 7200)

TEMPORARY_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "service unavailable",
    "try again",
    "throttl",
    "too many requests",
)

PERMANENT_PATTERNS = (
    "authentication failed",
    "unauthorized",
    "forbidden",
    "invalid credential",
    "invalid recipient",
    "malformed recipient",
    "unknown recipient",
)


def classify_delivery_error(exc: BaseException) -> DeliveryError:
    """Map any exception raised by a delivery attempt onto the taxonomy.

    :class:`DeliveryError` instances pass through unchanged. Network and
    timeout errors are transient. Otherwise the message is matched against
    known temporary and permanent patterns; anything unrecognised is treated
    as transient, which is the safer choice for a retrying sender.
    """
    if isinstance(exc, DeliveryError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientDeliveryError(f"request timed out: {exc}" if str(exc) else "request timed out")
    if isinstance(exc, aiohttp.ClientResponseError):
        status = exc.status
        if status in (408, 425, 429) or status >= 500:
            return TransientDeliveryError(exc.message or "provider error", status_code=status)
        return PermanentDeliveryError(exc.message or "provider rejected request", status_code=status)
    if isinstance(exc, (aiohttp.ClientError, ConnectionError, OSError)):
        return TransientDeliveryError(str(exc) or exc.__class__.__name__)

    error_msg = str(exc).lower()
    for pattern in TEMPORARY_PATTERNS:
        if pattern in error_msg:
            return TransientDeliveryError(str(exc))
    for pattern in PERMANENT_PATTERNS:
        if pattern in error_msg:
            return PermanentDeliveryError(str(exc))
    return TransientDeliveryError(str(exc) or exc.__class__.__name__)


class RetryPolicy:
    """Decides whether and when a failed task is attempted again.

    Attributes:
        max_attempts: Upper bound on delivery attempts per task.
        delays: Delay in seconds after the 1st, 2nd, ... failed attempt. The
            last value is reused once the schedule runs out.
        jitter: Fraction of random spread applied to each delay (0 = none).
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        jitter: float = 0.0,
    ):
        if int(max_attempts) < 1:
            raise ValueError("max_attempts must be at least 1")
        if not delays:
            raise ValueError("delays must not be empty")
        if any(float(d) < 0 for d in delays):
            raise ValueError("delays must be non-negative")
        if not 0.0 <= float(jitter) < 1.0:
            raise ValueError("jitter must be in [0, 1)")
        self.max_attempts = int(max_attempts)
        self.delays = tuple(float(d) for d in delays)
        self.jitter = float(jitter)

    def backoff_delay(self, attempt_count: int) -> float:
        """Seconds to wait after ``attempt_count`` failed attempts."""
        index = min(max(attempt_count, 1), len(self.delays)) - 1
        delay = self.delays[index]
        if self.jitter:
            delay *= random.uniform(1.0 - self.jitter, 1.0 + self.jitter)
        return delay

    def should_retry(self, attempt_count: int, error: BaseException) -> bool:
        """True if ``error`` is transient and attempts remain."""
        if not classify_delivery_error(error).retryable:
            return False
        return attempt_count < self.max_attempts
