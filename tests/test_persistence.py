import pytest

from bulk_sender.errors import ExhaustedRetryError, PermanentDeliveryError, TransientDeliveryError
from bulk_sender.failure_sink import FailureSink
from bulk_sender.persistence import FailureStore


@pytest.mark.asyncio
async def test_failure_log_lifecycle(tmp_path):
    store = FailureStore(str(tmp_path / "failures.db"))
    await store.init_db()
    await store.init_db()  # idempotent
    assert isinstance(store, FailureSink)

    await store.record_failure("+391", "hello", 1, PermanentDeliveryError("bad number", status_code=400))
    exhausted = ExhaustedRetryError(5, TransientDeliveryError("provider down", status_code=503))
    await store.record_failure("+392", "hello", 5, exhausted)
    await store.record_failure("+393", "hello", 2, RuntimeError("sink test"))

    rows = await store.list_failures()
    assert [r["recipient"] for r in rows] == ["+391", "+392", "+393"]
    assert rows[0]["attempts"] == 1
    assert rows[0]["error_kind"] == "permanent"
    assert rows[0]["error"] == "bad number (HTTP 400)"
    assert rows[1]["error_kind"] == "exhausted"
    assert rows[1]["error"].startswith("Max attempts (5) exceeded")
    assert rows[2]["error_kind"] == "RuntimeError"
    assert rows[0]["failed_ts"] > 0

    newest = await store.list_failures(limit=2)
    assert [r["recipient"] for r in newest] == ["+392", "+393"]
    assert await store.list_failures(limit=0) == []
    with pytest.raises(ValueError):
        await store.list_failures(limit=-1)

    assert await store.count_failures() == 3
    assert await store.clear() == 3
    assert await store.count_failures() == 0
    assert await store.list_failures() == []
