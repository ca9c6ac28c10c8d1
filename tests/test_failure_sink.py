import pytest

from bulk_sender.errors import ExhaustedRetryError, PermanentDeliveryError, TransientDeliveryError
from bulk_sender.failure_sink import FanOutFailureSink, MemoryFailureSink, error_kind


@pytest.mark.asyncio
async def test_memory_sink_keeps_newest_records_only():
    sink = MemoryFailureSink(max_records=3)
    for index in range(5):
        await sink.record_failure(f"+39{index}", "hi", 1, PermanentDeliveryError("rejected"))

    assert [r.recipient for r in sink.records] == ["+392", "+393", "+394"]
    assert [r["recipient"] for r in await sink.list_failures()] == ["+392", "+393", "+394"]
    assert [r["recipient"] for r in await sink.list_failures(limit=2)] == ["+393", "+394"]
    assert [r["recipient"] for r in await sink.list_failures(limit=10)] == ["+392", "+393", "+394"]
    assert await sink.list_failures(limit=0) == []


@pytest.mark.asyncio
async def test_memory_sink_rejects_negative_limit():
    sink = MemoryFailureSink()
    with pytest.raises(ValueError):
        await sink.list_failures(limit=-1)
    with pytest.raises(ValueError):
        MemoryFailureSink(max_records=0)


@pytest.mark.asyncio
async def test_fan_out_forwards_in_order():
    first, second = MemoryFailureSink(), MemoryFailureSink()
    error = ExhaustedRetryError(3, TransientDeliveryError("down"))
    await FanOutFailureSink(first, second).record_failure("+391", "hi", 3, error)

    assert first.records[0].error_kind == "exhausted"
    assert second.records[0].attempts == 3


def test_error_kind_labels():
    assert error_kind(PermanentDeliveryError("x")) == "permanent"
    assert error_kind(TransientDeliveryError("x")) == "transient"
    assert error_kind(KeyError("x")) == "KeyError"
