import types

import pytest
from fastapi.testclient import TestClient

from bulk_sender import api
from bulk_sender.api import API_TOKEN_HEADER_NAME, create_app

API_TOKEN = "secret-token"

TASK = {
    "id": "t1",
    "batch_id": "b1",
    "recipient": "+391",
    "state": "succeeded",
    "attempt_count": 1,
    "last_error": None,
    "created_at": 1.0,
    "finished_at": 2.0,
}


class DummyService:
    def __init__(self):
        self.calls = []
        self.metrics = types.SimpleNamespace(generate_latest=lambda: b"metrics-data")

    async def handle_command(self, cmd, payload):
        self.calls.append((cmd, payload))
        if cmd == "sendBulk":
            if not payload.get("message"):
                return {"ok": False, "error": "message payload must not be empty", "code": "empty_payload"}
            return {"ok": True, "batch_id": "b1", "queued": len(payload["recipients"])}
        if cmd == "status":
            return {
                "ok": True,
                "running": True,
                "workers": 3,
                "queued": 1,
                "ready": 1,
                "deferred": 0,
                "in_flight": 0,
                "outstanding": 1,
                "limiter": {"limit": 100, "interval": 60.0, "count": 4, "remaining": 96, "reset_in": 12.5},
            }
        if cmd == "getBatch":
            if payload["batch_id"] != "b1":
                return {"ok": False, "error": "batch not found"}
            summary = {"batch_id": "b1", "total": 1, "succeeded": 1}
            return {"ok": True, "summary": summary, "tasks": [TASK]}
        if cmd == "listTasks":
            return {"ok": True, "tasks": [TASK]}
        if cmd == "listFailures":
            failure = {"recipient": "+392", "payload": "hi", "attempts": 5, "error": "x", "error_kind": "exhausted"}
            return {"ok": True, "failures": [failure]}
        if cmd == "cancel":
            return {"ok": True, "running": False, "queued": 2}
        if cmd == "resume":
            return {"ok": True, "running": True, "queued": 2}
        return {"ok": False, "error": "unknown command"}


@pytest.fixture(autouse=True)
def reset_service():
    original = api.service
    original_token = getattr(api.app.state, "api_token", None)
    api.service = None
    api.app.state.api_token = None
    try:
        yield
    finally:
        api.service = original
        api.app.state.api_token = original_token


@pytest.fixture
def client_and_service():
    svc = DummyService()
    client = TestClient(create_app(svc, api_token=API_TOKEN))
    client.headers.update({API_TOKEN_HEADER_NAME: API_TOKEN})
    return client, svc


def test_returns_500_when_service_missing():
    create_app(DummyService(), api_token=API_TOKEN)
    api.service = None
    client = TestClient(api.app)
    response = client.post("/commands/cancel", headers={API_TOKEN_HEADER_NAME: API_TOKEN})
    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"


def test_health_needs_no_token(client_and_service):
    client, _ = client_and_service
    response = client.get("/health", headers={API_TOKEN_HEADER_NAME: ""})
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.parametrize("token", [None, "wrong"])
def test_rejects_missing_or_wrong_token(client_and_service, token):
    client, svc = client_and_service
    client.headers.pop(API_TOKEN_HEADER_NAME)
    headers = {API_TOKEN_HEADER_NAME: token} if token else {}
    response = client.post("/commands/send-bulk", json={"message": "hi", "recipients": ["+391"]}, headers=headers)
    assert response.status_code == 401
    assert svc.calls == []


def test_send_bulk_accepted(client_and_service):
    client, svc = client_and_service
    response = client.post("/commands/send-bulk", json={"message": "hi", "recipients": ["+391", "+392"]})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "batch_id": "b1", "queued": 2}
    assert svc.calls == [("sendBulk", {"message": "hi", "recipients": ["+391", "+392"]})]


def test_send_bulk_rejected(client_and_service):
    client, _ = client_and_service
    response = client.post("/commands/send-bulk", json={"message": "", "recipients": ["+391"]})
    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["code"] == "empty_payload"


def test_send_bulk_schema_errors(client_and_service):
    client, svc = client_and_service
    response = client.post("/commands/send-bulk", json={"message": "hi", "recipients": ["+391"], "extra": 1})
    assert response.status_code == 422
    assert svc.calls == []


def test_status(client_and_service):
    client, _ = client_and_service
    body = client.get("/status").json()
    assert body["running"] is True
    assert body["workers"] == 3
    assert body["limiter"]["remaining"] == 96
    assert "outstanding" not in body


def test_cancel_and_resume(client_and_service):
    client, svc = client_and_service
    assert client.post("/commands/cancel").json() == {"ok": True}
    assert client.post("/commands/resume").json() == {"ok": True}
    assert [cmd for cmd, _ in svc.calls] == ["cancel", "resume"]


def test_get_batch(client_and_service):
    client, _ = client_and_service
    body = client.get("/batches/b1").json()
    assert body["summary"]["succeeded"] == 1
    assert body["tasks"][0]["recipient"] == "+391"

    missing = client.get("/batches/nope")
    assert missing.status_code == 404


def test_list_tasks_passes_filters(client_and_service):
    client, svc = client_and_service
    response = client.get("/tasks", params={"batch_id": "b1", "state": "succeeded"})
    assert response.status_code == 200
    assert svc.calls[-1] == ("listTasks", {"batch_id": "b1", "state": "succeeded"})

    assert client.get("/tasks", params={"state": "lost"}).status_code == 422


def test_list_failures(client_and_service):
    client, svc = client_and_service
    body = client.get("/failures", params={"limit": 5}).json()
    assert body["failures"][0]["error_kind"] == "exhausted"
    assert svc.calls[-1] == ("listFailures", {"limit": 5})

    assert client.get("/failures", params={"limit": -1}).status_code == 422


def test_metrics_endpoint(client_and_service):
    client, _ = client_and_service
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.content == b"metrics-data"
