# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery clients: the boundary towards the upstream provider.

The scheduler only depends on the :class:`DeliveryClient` protocol: one call
per attempt, returning a :class:`DeliveryAck` or raising a
:class:`~bulk_sender.errors.DeliveryError` subclass that says whether the
attempt may be retried.

Example:
    Sending through an HTTP provider::

        async with HttpDeliveryClient("https://sms.example.com/send", "token") as client:
            ack = await client.send("+390612345678", "Hello")
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp

from .errors import PermanentDeliveryError, TransientDeliveryError
from .logger import get_logger

# Statuses worth another attempt: request timeout, too early, throttled
TRANSIENT_STATUSES = frozenset({408, 425, 429})


@dataclass(frozen=True)
class DeliveryAck:
    """Provider acknowledgement for one delivered message."""

    recipient: str
    provider_id: str | None = None
    status_code: int | None = None


@runtime_checkable
class DeliveryClient(Protocol):
    """Capability the scheduler uses to deliver one message."""

    async def send(self, recipient: str, payload: str) -> DeliveryAck:
        """Deliver ``payload`` to ``recipient``.

        Raises:
            TransientDeliveryError: The attempt may be retried.
            PermanentDeliveryError: The message can never be delivered.
        """
        ...


def classify_status(status: int, message: str) -> TransientDeliveryError | PermanentDeliveryError | None:
    """Turn a provider HTTP status into an error, or None on success."""
    if 200 <= status < 300:
        return None
    if status in TRANSIENT_STATUSES or status >= 500:
        return TransientDeliveryError(message or "provider unavailable", status_code=status)
    return PermanentDeliveryError(message or "provider rejected request", status_code=status)


class HttpDeliveryClient:
    """Deliver messages with one aiohttp POST per attempt.

    The request body is ``{"recipient": ..., "payload": ...}`` and the
    credential travels as a bearer token. 2xx responses are acknowledgements;
    408, 425, 429 and 5xx are transient; any other status (bad recipient,
    authentication failure) is permanent. Connection errors and timeouts are
    transient.

    Attributes:
        url: Provider endpoint.
        timeout: Total request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        credential: str | None = None,
        *,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self.timeout = float(timeout)
        self._credential = credential
        self._session = session
        self._owns_session = session is None
        self.logger = get_logger("HttpDeliveryClient")

    async def __aenter__(self) -> HttpDeliveryClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _provider_id(self, body: str) -> str | None:
        """Message id from an acknowledgement body, or None."""
        if not body.strip():
            return None
        try:
            data = json.loads(body)
        except ValueError:
            # the message is accepted already, only the id is lost
            self.logger.warning("Provider accepted the message but sent an unreadable body: %.80r", body)
            return None
        if not isinstance(data, dict):
            return None
        provider_id = data.get("id") or data.get("message_id")
        return str(provider_id) if provider_id is not None else None

    async def send(self, recipient: str, payload: str) -> DeliveryAck:
        headers = {}
        if self._credential:
            headers["Authorization"] = f"Bearer {self._credential}"
        session = self._get_session()
        try:
            async with session.post(
                self.url,
                json={"recipient": recipient, "payload": payload},
                headers=headers or None,
            ) as resp:
                body = await resp.text()
                error = classify_status(resp.status, body.strip()[:200])
                if error is not None:
                    raise error
                provider_id = None
                if resp.content_type == "application/json":
                    provider_id = self._provider_id(body)
                return DeliveryAck(recipient=recipient, provider_id=provider_id, status_code=resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.logger.debug("Provider call for %s failed: %s", recipient, exc)
            raise TransientDeliveryError(str(exc) or exc.__class__.__name__) from exc


class LoggingDeliveryClient:
    """Dry-run client: logs each message and acknowledges it."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("DryRunDelivery")
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, payload: str) -> DeliveryAck:
        self.sent.append((recipient, payload))
        self.logger.info("Dry run: would send %d chars to %s", len(payload), recipient)
        return DeliveryAck(recipient=recipient, provider_id=f"dry-run-{len(self.sent)}")
