import pytest

from bulk_sender.errors import InvalidTransitionError
from bulk_sender.models import BatchSummary, SendTask, TaskState


def make_task(**kwargs) -> SendTask:
    return SendTask(recipient="+390611", payload="hello", batch_id="b1", **kwargs)


def test_new_task_defaults():
    task = make_task()
    assert task.state is TaskState.PENDING
    assert task.attempt_count == 0
    assert task.last_error is None
    assert not task.is_terminal
    assert len(task.id) == 32


def test_recipient_and_payload_are_immutable():
    task = make_task()
    with pytest.raises(AttributeError):
        task.payload = "changed"
    with pytest.raises(AttributeError):
        task.recipient = "+39000"


def test_happy_path_transitions():
    task = make_task()
    task.transition(TaskState.DEFERRED)
    task.transition(TaskState.IN_FLIGHT)
    task.transition(TaskState.DEFERRED)
    task.transition(TaskState.IN_FLIGHT)
    task.transition(TaskState.SUCCEEDED)
    assert task.is_terminal
    assert task.finished_at is not None


@pytest.mark.parametrize("terminal", [TaskState.SUCCEEDED, TaskState.FAILED])
@pytest.mark.parametrize("target", list(TaskState))
def test_terminal_states_are_final(terminal, target):
    task = make_task()
    task.transition(TaskState.IN_FLIGHT)
    task.transition(terminal)
    with pytest.raises(InvalidTransitionError):
        task.transition(target)
    assert task.state is terminal


def test_pending_cannot_finish_without_attempt():
    task = make_task()
    with pytest.raises(InvalidTransitionError):
        task.transition(TaskState.SUCCEEDED)


def test_to_dict_contains_reporting_fields():
    data = make_task().to_dict()
    assert data["state"] == "pending"
    assert data["recipient"] == "+390611"
    assert "payload" not in data


def test_batch_summary_done():
    summary = BatchSummary(batch_id="b1", total=3, succeeded=2, failed=1)
    assert summary.done
    assert not BatchSummary(batch_id="b1", total=3, succeeded=2, deferred=1).done
