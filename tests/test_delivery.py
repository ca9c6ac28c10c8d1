import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from bulk_sender.delivery import (
    DeliveryClient,
    HttpDeliveryClient,
    LoggingDeliveryClient,
    classify_status,
)
from bulk_sender.errors import PermanentDeliveryError, TransientDeliveryError

PROVIDER_URL = "https://sms.example.com/send"


@pytest.mark.parametrize(
    "status, expected",
    [
        (200, None),
        (202, None),
        (400, PermanentDeliveryError),
        (401, PermanentDeliveryError),
        (404, PermanentDeliveryError),
        (408, TransientDeliveryError),
        (429, TransientDeliveryError),
        (500, TransientDeliveryError),
        (503, TransientDeliveryError),
    ],
)
def test_classify_status(status, expected):
    error = classify_status(status, "")
    if expected is None:
        assert error is None
    else:
        assert type(error) is expected
        assert error.status_code == status


@pytest.mark.asyncio
async def test_http_client_posts_recipient_and_payload():
    async with HttpDeliveryClient(PROVIDER_URL, "token-1", timeout=5) as client:
        assert isinstance(client, DeliveryClient)
        with aioresponses() as m:
            m.post(PROVIDER_URL, status=200, payload={"id": 1234})
            ack = await client.send("+390611", "Hello")

            request = m.requests[("POST", URL(PROVIDER_URL))][0]
            assert request.kwargs["json"] == {"recipient": "+390611", "payload": "Hello"}
            assert request.kwargs["headers"]["Authorization"] == "Bearer token-1"

    assert ack.recipient == "+390611"
    assert ack.provider_id == "1234"
    assert ack.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["{not json", "", "[1, 2]"])
async def test_http_client_accepts_unreadable_acknowledgement(body):
    client = HttpDeliveryClient(PROVIDER_URL)
    try:
        with aioresponses() as m:
            m.post(PROVIDER_URL, status=200, body=body, content_type="application/json")
            ack = await client.send("+390611", "Hello")
    finally:
        await client.close()
    assert ack.recipient == "+390611"
    assert ack.provider_id is None
    assert ack.status_code == 200


@pytest.mark.asyncio
async def test_http_client_rejection_is_permanent():
    client = HttpDeliveryClient(PROVIDER_URL)
    try:
        with aioresponses() as m:
            m.post(PROVIDER_URL, status=400, body="invalid recipient")
            with pytest.raises(PermanentDeliveryError) as excinfo:
                await client.send("not-a-number", "Hello")
    finally:
        await client.close()
    assert excinfo.value.status_code == 400
    assert "invalid recipient" in str(excinfo.value)


@pytest.mark.asyncio
async def test_http_client_server_error_is_transient():
    client = HttpDeliveryClient(PROVIDER_URL)
    try:
        with aioresponses() as m:
            m.post(PROVIDER_URL, status=503)
            with pytest.raises(TransientDeliveryError) as excinfo:
                await client.send("+390611", "Hello")
    finally:
        await client.close()
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exception",
    [aiohttp.ClientConnectionError("connection refused"), asyncio.TimeoutError()],
)
async def test_http_client_network_errors_are_transient(exception):
    client = HttpDeliveryClient(PROVIDER_URL)
    try:
        with aioresponses() as m:
            m.post(PROVIDER_URL, exception=exception)
            with pytest.raises(TransientDeliveryError) as excinfo:
                await client.send("+390611", "Hello")
    finally:
        await client.close()
    assert excinfo.value.__cause__ is exception


@pytest.mark.asyncio
async def test_http_client_keeps_borrowed_session_open():
    async with aiohttp.ClientSession() as session:
        client = HttpDeliveryClient(PROVIDER_URL, session=session)
        await client.close()
        assert not session.closed


@pytest.mark.asyncio
async def test_logging_client_records_sends():
    client = LoggingDeliveryClient()
    first = await client.send("+391", "hi")
    second = await client.send("+392", "hi")
    assert client.sent == [("+391", "hi"), ("+392", "hi")]
    assert (first.provider_id, second.provider_id) == ("dry-run-1", "dry-run-2")
