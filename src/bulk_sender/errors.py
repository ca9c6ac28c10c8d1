# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception hierarchy for the bulk sender.

Only :class:`IntakeValidationError` can prevent a batch from starting. Every
other error is confined to the single task that raised it: transient delivery
errors are retried, permanent ones and exhausted retries end the task in the
``failed`` state and are handed to the failure sink.

Rate-limit deferrals are not errors and have no exception type; they are a
state transition recorded by the scheduler.
"""

from __future__ import annotations


class BulkSenderError(Exception):
    """Base class for all bulk sender errors."""


class IntakeValidationError(BulkSenderError, ValueError):
    """Raised when a bulk request is malformed. No tasks are created.

    Attributes:
        code: Machine readable reason (``empty_payload``, ``payload_too_long``,
            ``no_recipients``, ``empty_recipient``).
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class ConfigError(BulkSenderError, ValueError):
    """Raised when configuration values are missing or invalid."""


class InvalidTransitionError(BulkSenderError, RuntimeError):
    """Raised when a task is asked to move along a forbidden state edge."""


class DeliveryError(BulkSenderError):
    """Failure reported by a delivery client for a single attempt.

    Attributes:
        status_code: Provider response status, when one was received.
        retryable: Whether the scheduler may try the task again.
    """

    retryable = True
    kind = "delivery"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            return f"{message} (HTTP {self.status_code})"
        return message


class TransientDeliveryError(DeliveryError):
    """Retryable failure: network timeout, 5xx, provider throttling."""

    retryable = True
    kind = "transient"


class PermanentDeliveryError(DeliveryError):
    """Non-retryable failure: malformed recipient, authentication failure."""

    retryable = False
    kind = "permanent"


class ExhaustedRetryError(BulkSenderError):
    """Terminal failure after ``max_attempts`` transient errors.

    Attributes:
        attempts: Number of delivery attempts made.
        last_error: The transient error observed on the final attempt.
    """

    kind = "exhausted"

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Max attempts ({attempts}) exceeded: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
