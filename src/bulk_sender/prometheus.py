# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the bulk sender.

All metrics use the ``bulk_`` prefix.

Metrics exposed:
    - ``bulk_sent_total``: Counter of delivered messages.
    - ``bulk_failed_total``: Counter of terminal failures by reason
      (``permanent`` or ``exhausted``).
    - ``bulk_rate_limited_total``: Counter of deferrals caused by the limiter.
    - ``bulk_retried_total``: Counter of transient failures scheduled again.
    - ``bulk_pending_tasks``: Gauge of tasks waiting in the queue.
    - ``bulk_in_flight_tasks``: Gauge of delivery attempts running now.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class DispatchMetrics:
    """Prometheus metrics collector for the scheduler.

    Attributes:
        registry: The CollectorRegistry holding all metrics. Each instance
            owns its registry so several schedulers can coexist in tests.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sent = Counter("bulk_sent_total", "Total delivered messages", registry=self.registry)
        self.failed = Counter(
            "bulk_failed_total",
            "Total terminally failed messages",
            ["reason"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "bulk_rate_limited_total",
            "Total deferrals caused by the rate limiter",
            registry=self.registry,
        )
        self.retried = Counter(
            "bulk_retried_total",
            "Total transient failures scheduled for retry",
            registry=self.registry,
        )
        self.pending = Gauge("bulk_pending_tasks", "Tasks waiting in the queue", registry=self.registry)
        self.in_flight = Gauge("bulk_in_flight_tasks", "Delivery attempts in progress", registry=self.registry)

    def inc_sent(self) -> None:
        self.sent.inc()

    def inc_failed(self, reason: str) -> None:
        self.failed.labels(reason=reason or "unknown").inc()

    def inc_rate_limited(self) -> None:
        self.rate_limited.inc()

    def inc_retried(self) -> None:
        self.retried.inc()

    def set_pending(self, value: int) -> None:
        self.pending.set(value)

    def set_in_flight(self, value: int) -> None:
        self.in_flight.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
