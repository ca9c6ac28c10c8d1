# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Rate-limited bulk message dispatcher."""

from .dispatcher import Dispatcher
from .errors import (
    BulkSenderError,
    ExhaustedRetryError,
    IntakeValidationError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from .models import BulkAcceptance, SendTask, TaskState
from .rate_limit import RateLimiter
from .retry import RetryPolicy
from .scheduler import Scheduler

__all__ = [
    "BulkAcceptance",
    "BulkSenderError",
    "Dispatcher",
    "ExhaustedRetryError",
    "IntakeValidationError",
    "PermanentDeliveryError",
    "RateLimiter",
    "RetryPolicy",
    "Scheduler",
    "SendTask",
    "TaskState",
    "TransientDeliveryError",
]
