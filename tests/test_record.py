# tests/test_record.py

from __future__ import annotations

from task_shells.record import TaskRecord, TaskStatus


def test_status_transitions_are_monotonic() -> None:
    assert TaskStatus.PENDING.can_transition(TaskStatus.RUNNING)
    assert not TaskStatus.PENDING.can_transition(TaskStatus.COMPLETED)
    for terminal in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.STOPPED):
        assert TaskStatus.RUNNING.can_transition(terminal)
        assert terminal.is_terminal
        assert not terminal.can_transition(TaskStatus.RUNNING)
    assert not TaskStatus.RUNNING.can_transition(TaskStatus.PENDING)


def test_dict_round_trip_keeps_optional_fields() -> None:
    rec = TaskRecord(
        id="x",
        name="train",
        command="python train.py",
        env_type="conda",
        env_name="ml",
        cwd="/srv",
        status=TaskStatus.FAILED,
        created_at=1.0,
        started_at=2.0,
        ended_at=7.5,
        pid=99,
        exit_code=1,
    )
    data = rec.to_dict()
    assert data["status"] == "Failed"
    assert TaskRecord.from_dict(data) == rec


def test_payload_adds_duration_and_log_path() -> None:
    rec = TaskRecord(id="x", name="n", command="c", env_type="shell", cwd=".", started_at=10.0, ended_at=12.5)
    payload = rec.to_payload(log_path="/tmp/x.log")
    assert payload["duration"] == 2.5
    assert payload["log_path"] == "/tmp/x.log"
    assert TaskRecord(id="y", name="n", command="c", env_type="shell", cwd=".").duration is None
